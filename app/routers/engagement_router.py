# app/routers/engagement_router.py

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from app.services.engagement_service import EngagementService
from app.schemas.engagement_schema import (
    EngagementOut, DeliverRequest, ReasonRequest, ResolveRequest, ActivityOut
)
from app.schemas.common_schema import ApiResponse, PaginatedResponse
from app.schemas.user_schema import Actor
from app.models.engagement import EngagementStatusEnum
from app.core.security import get_current_actor
from app.core.database import get_db
from app.utils.pagination import PageParams, page_params, build_meta

router = APIRouter(
    prefix="/engagements",
    tags=["Engagements"]
)

def get_engagement_service(db: AsyncSession = Depends(get_db)) -> EngagementService:
    return EngagementService(db)


def _ok(engagement, message: Optional[str] = None) -> ApiResponse[EngagementOut]:
    return ApiResponse[EngagementOut](data=EngagementOut.model_validate(engagement), message=message)


@router.get(
    "/my",
    response_model=PaginatedResponse[EngagementOut],
    summary="我的專案列表"
)
async def api_list_my_engagements(
    status_filter: Optional[EngagementStatusEnum] = Query(None, alias="status"),
    params: PageParams = Depends(page_params),
    service: EngagementService = Depends(get_engagement_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    (發案方 / 專家) 列出我是當事人的所有專案，可依狀態篩選。
    """
    engagements, total = await service.list_my_engagements(actor, params, status_filter)
    return PaginatedResponse[EngagementOut](
        data=[EngagementOut.model_validate(e) for e in engagements],
        meta=build_meta(params, total),
    )

@router.get(
    "/{engagement_id}",
    response_model=ApiResponse[EngagementOut],
    summary="檢視專案"
)
async def api_get_engagement(
    engagement_id: str,
    service: EngagementService = Depends(get_engagement_service),
    actor: Actor = Depends(get_current_actor),
):
    return _ok(await service.get_engagement(engagement_id, actor))

@router.get(
    "/{engagement_id}/activities",
    response_model=ApiResponse[List[ActivityOut]],
    summary="專案歷程"
)
async def api_list_activities(
    engagement_id: str,
    service: EngagementService = Depends(get_engagement_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    專案的每一次狀態轉移 (誰、何時、從哪個狀態到哪個狀態、附註)。
    """
    activities = await service.list_activities(engagement_id, actor)
    return ApiResponse[List[ActivityOut]](data=[ActivityOut.model_validate(a) for a in activities])

@router.post(
    "/{engagement_id}/start",
    response_model=ApiResponse[EngagementOut],
    summary="開始工作 (專家)"
)
async def api_start_work(
    engagement_id: str,
    service: EngagementService = Depends(get_engagement_service),
    actor: Actor = Depends(get_current_actor),
):
    return _ok(await service.start_work(engagement_id, actor))

@router.post(
    "/{engagement_id}/deliver",
    response_model=ApiResponse[EngagementOut],
    summary="交付成果 (專家)"
)
async def api_deliver(
    engagement_id: str,
    data: DeliverRequest,
    service: EngagementService = Depends(get_engagement_service),
    actor: Actor = Depends(get_current_actor),
):
    engagement = await service.deliver(engagement_id, actor, data.message, data.attachments)
    return _ok(engagement, "已交付")

@router.post(
    "/{engagement_id}/request-revision",
    response_model=ApiResponse[EngagementOut],
    summary="要求修改 (發案方)"
)
async def api_request_revision(
    engagement_id: str,
    data: ReasonRequest,
    service: EngagementService = Depends(get_engagement_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    (發案方) 對已交付的成果要求修改。超過方案包含的修改次數時回 409。
    """
    engagement = await service.request_revision(engagement_id, actor, data.reason)
    return _ok(engagement)

@router.post(
    "/{engagement_id}/complete",
    response_model=ApiResponse[EngagementOut],
    summary="驗收完成 (發案方)"
)
async def api_accept_delivery(
    engagement_id: str,
    service: EngagementService = Depends(get_engagement_service),
    actor: Actor = Depends(get_current_actor),
):
    return _ok(await service.accept(engagement_id, actor), "專案已完成")

@router.post(
    "/{engagement_id}/dispute",
    response_model=ApiResponse[EngagementOut],
    summary="提出爭議"
)
async def api_open_dispute(
    engagement_id: str,
    data: ReasonRequest,
    service: EngagementService = Depends(get_engagement_service),
    actor: Actor = Depends(get_current_actor),
):
    return _ok(await service.open_dispute(engagement_id, actor, data.reason))

@router.post(
    "/{engagement_id}/cancel",
    response_model=ApiResponse[EngagementOut],
    summary="取消專案 (發案方)"
)
async def api_cancel_engagement(
    engagement_id: str,
    data: ReasonRequest,
    service: EngagementService = Depends(get_engagement_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    (發案方) 在開始工作前取消專案。已付款的專案取消後，付款標記為退款。
    """
    return _ok(await service.cancel(engagement_id, actor, data.reason), "專案已取消")

@router.post(
    "/{engagement_id}/resolve",
    response_model=ApiResponse[EngagementOut],
    summary="仲裁爭議 (管理員)"
)
async def api_resolve_dispute(
    engagement_id: str,
    data: ResolveRequest,
    service: EngagementService = Depends(get_engagement_service),
    actor: Actor = Depends(get_current_actor),
):
    engagement = await service.resolve(engagement_id, actor, data.outcome, data.note)
    return _ok(engagement)
