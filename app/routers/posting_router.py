# app/routers/posting_router.py

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.services.posting_service import PostingService
from app.services.proposal_service import ProposalService
from app.schemas.posting_schema import PostingCreate, PostingUpdate, PostingClose, PostingOut
from app.schemas.proposal_schema import ProposalCreate, ProposalReject, ProposalOut, ProposalOutWithExpert
from app.schemas.engagement_schema import EngagementOut
from app.schemas.common_schema import ApiResponse, PaginatedResponse
from app.schemas.user_schema import Actor
from app.models.posting import BudgetTypeEnum, PostingStatusEnum
from app.core.security import get_current_actor # 依賴注入：目前登入的操作者
from app.core.database import get_db
from app.utils.pagination import PageParams, page_params, build_meta

router = APIRouter(
    prefix="/postings",
    tags=["Postings"]
)

# 輔助函式：在路由中快速實例化 Service
def get_posting_service(db: AsyncSession = Depends(get_db)) -> PostingService:
    return PostingService(db)

def get_proposal_service(db: AsyncSession = Depends(get_db)) -> ProposalService:
    return ProposalService(db)


# --- 固定路徑 (需放在 /{posting_id} 之前) ---

@router.get(
    "",
    response_model=PaginatedResponse[PostingOut],
    summary="瀏覽開放中的案件"
)
async def api_list_open_postings(
    budget_type: Optional[BudgetTypeEnum] = Query(None, alias="budgetType"),
    currency: Optional[str] = Query(None),
    urgent_only: bool = Query(False, alias="urgentOnly"),
    params: PageParams = Depends(page_params),
    service: PostingService = Depends(get_posting_service),
):
    """
    (公開) 列出 open 狀態的案件，可依預算類型、幣別與是否急件篩選。
    """
    postings, total = await service.list_open_postings(
        params,
        budget_type=budget_type,
        currency=currency.lower() if currency else None,
        urgent_only=urgent_only,
    )
    return PaginatedResponse[PostingOut](
        data=[PostingOut.model_validate(p) for p in postings],
        meta=build_meta(params, total),
    )

@router.get(
    "/my",
    response_model=PaginatedResponse[PostingOut],
    summary="我刊登的案件"
)
async def api_list_my_postings(
    status_filter: Optional[PostingStatusEnum] = Query(None, alias="status"),
    params: PageParams = Depends(page_params),
    service: PostingService = Depends(get_posting_service),
    actor: Actor = Depends(get_current_actor),
):
    postings, total = await service.list_my_postings(actor, params, status_filter)
    return PaginatedResponse[PostingOut](
        data=[PostingOut.model_validate(p) for p in postings],
        meta=build_meta(params, total),
    )

@router.get(
    "/proposals/my",
    response_model=PaginatedResponse[ProposalOut],
    summary="我提交的提案"
)
async def api_list_my_proposals(
    params: PageParams = Depends(page_params),
    service: ProposalService = Depends(get_proposal_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    (專家) 列出自己提交過的所有提案。
    """
    proposals, total = await service.list_my_proposals(actor, params)
    return PaginatedResponse[ProposalOut](
        data=[ProposalOut.model_validate(p) for p in proposals],
        meta=build_meta(params, total),
    )

@router.post(
    "/proposals/{proposal_id}/withdraw",
    response_model=ApiResponse[ProposalOut],
    summary="撤回提案 (專家)"
)
async def api_withdraw_proposal(
    proposal_id: str,
    service: ProposalService = Depends(get_proposal_service),
    actor: Actor = Depends(get_current_actor),
):
    proposal = await service.withdraw_proposal(proposal_id, actor)
    return ApiResponse[ProposalOut](data=ProposalOut.model_validate(proposal), message="提案已撤回")

@router.post(
    "/proposals/{proposal_id}/shortlist",
    response_model=ApiResponse[ProposalOut],
    summary="將提案加入候選 (發案方)"
)
async def api_shortlist_proposal(
    proposal_id: str,
    service: ProposalService = Depends(get_proposal_service),
    actor: Actor = Depends(get_current_actor),
):
    proposal = await service.shortlist_proposal(proposal_id, actor)
    return ApiResponse[ProposalOut](data=ProposalOut.model_validate(proposal))

@router.post(
    "/proposals/{proposal_id}/reject",
    response_model=ApiResponse[ProposalOut],
    summary="拒絕提案 (發案方)"
)
async def api_reject_proposal(
    proposal_id: str,
    data: ProposalReject,
    service: ProposalService = Depends(get_proposal_service),
    actor: Actor = Depends(get_current_actor),
):
    proposal = await service.reject_proposal(proposal_id, actor, data.reason)
    return ApiResponse[ProposalOut](data=ProposalOut.model_validate(proposal), message="提案已拒絕")

@router.post(
    "/proposals/{proposal_id}/accept",
    response_model=ApiResponse[EngagementOut],
    status_code=status.HTTP_201_CREATED,
    summary="接受提案並成立專案 (發案方)"
)
async def api_accept_proposal_by_id(
    proposal_id: str,
    service: ProposalService = Depends(get_proposal_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    (發案方) 接受提案。案件改為 assigned，其餘提案一律拒絕，
    並以提案金額成立專案 (accepted，等待付款)。

    同一案件同時接受兩份提案時，只有一個會成功，另一個回 409 AlreadyAssigned。
    """
    engagement = await service.accept_proposal_by_id(proposal_id, actor)
    return ApiResponse[EngagementOut](data=EngagementOut.model_validate(engagement), message="已接受提案")


# --- 單一案件 ---

@router.post(
    "",
    response_model=ApiResponse[PostingOut],
    status_code=status.HTTP_201_CREATED,
    summary="刊登案件 (發案方)"
)
async def api_create_posting(
    data: PostingCreate,
    service: PostingService = Depends(get_posting_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    (發案方) 建立案件，可先存草稿 (draft) 或直接開放收件 (open)。
    """
    posting = await service.create_posting(data, actor)
    return ApiResponse[PostingOut](data=PostingOut.model_validate(posting), message="案件已建立")

@router.get(
    "/{posting_id}",
    response_model=ApiResponse[PostingOut],
    summary="檢視案件"
)
async def api_get_posting(
    posting_id: str,
    service: PostingService = Depends(get_posting_service),
):
    posting = await service.get_posting(posting_id)
    return ApiResponse[PostingOut](data=PostingOut.model_validate(posting))

@router.patch(
    "/{posting_id}",
    response_model=ApiResponse[PostingOut],
    summary="更新案件 (發案方)"
)
async def api_update_posting(
    posting_id: str,
    data: PostingUpdate,
    service: PostingService = Depends(get_posting_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    (發案方) 修改案件內容，或在 open / in_review 之間切換。
    """
    posting = await service.update_posting(posting_id, data, actor)
    return ApiResponse[PostingOut](data=PostingOut.model_validate(posting))

@router.post(
    "/{posting_id}/open",
    response_model=ApiResponse[PostingOut],
    summary="開放收件 (發案方)"
)
async def api_open_posting(
    posting_id: str,
    service: PostingService = Depends(get_posting_service),
    actor: Actor = Depends(get_current_actor),
):
    posting = await service.open_posting(posting_id, actor)
    return ApiResponse[PostingOut](data=PostingOut.model_validate(posting))

@router.post(
    "/{posting_id}/close",
    response_model=ApiResponse[PostingOut],
    summary="關閉案件 (發案方)"
)
async def api_close_posting(
    posting_id: str,
    data: PostingClose,
    service: PostingService = Depends(get_posting_service),
    actor: Actor = Depends(get_current_actor),
):
    posting = await service.close_posting(posting_id, actor, data.reason)
    return ApiResponse[PostingOut](data=PostingOut.model_validate(posting), message="案件已關閉")

@router.delete(
    "/{posting_id}",
    response_model=ApiResponse[PostingOut],
    summary="刪除案件 (發案方)"
)
async def api_delete_posting(
    posting_id: str,
    reason: Optional[str] = Query(None, max_length=1000),
    service: PostingService = Depends(get_posting_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    (發案方) 草稿直接刪除 (data 為 null)；其他狀態視為關閉案件。
    """
    posting = await service.delete_posting(posting_id, actor, reason)
    if posting is None:
        return ApiResponse[PostingOut](data=None, message="草稿已刪除")
    return ApiResponse[PostingOut](data=PostingOut.model_validate(posting), message="案件已關閉")


# --- 案件底下的提案 ---

@router.post(
    "/{posting_id}/proposals",
    response_model=ApiResponse[ProposalOut],
    status_code=status.HTTP_201_CREATED,
    summary="提交提案 (專家)"
)
async def api_submit_proposal(
    posting_id: str,
    data: ProposalCreate,
    service: ProposalService = Depends(get_proposal_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    (專家) 對開放中的案件提交提案。同一案件只能有一份未撤回的提案。
    """
    proposal = await service.submit_proposal(posting_id, data, actor)
    return ApiResponse[ProposalOut](data=ProposalOut.model_validate(proposal), message="提案已送出")

@router.get(
    "/{posting_id}/proposals",
    response_model=PaginatedResponse[ProposalOutWithExpert],
    summary="檢視案件收到的提案 (發案方)"
)
async def api_list_posting_proposals(
    posting_id: str,
    params: PageParams = Depends(page_params),
    service: ProposalService = Depends(get_proposal_service),
    actor: Actor = Depends(get_current_actor),
):
    proposals, total = await service.list_proposals_for_posting(posting_id, actor, params)
    return PaginatedResponse[ProposalOutWithExpert](
        data=[ProposalOutWithExpert.model_validate(p) for p in proposals],
        meta=build_meta(params, total),
    )

@router.post(
    "/{posting_id}/proposals/{proposal_id}/accept",
    response_model=ApiResponse[EngagementOut],
    status_code=status.HTTP_201_CREATED,
    summary="接受案件中的提案 (發案方)"
)
async def api_accept_proposal(
    posting_id: str,
    proposal_id: str,
    service: ProposalService = Depends(get_proposal_service),
    actor: Actor = Depends(get_current_actor),
):
    engagement = await service.accept_proposal(posting_id, proposal_id, actor)
    return ApiResponse[EngagementOut](data=EngagementOut.model_validate(engagement), message="已接受提案")
