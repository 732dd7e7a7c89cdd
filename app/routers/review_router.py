# app/routers/review_router.py

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.review_service import ReviewService
from app.schemas.review_schema import (
    ReviewCreate, ReviewResponseCreate, ReviewOut, ReviewSummary, ReviewSubmitOut
)
from app.schemas.common_schema import ApiResponse, PaginatedResponse
from app.schemas.user_schema import Actor
from app.core.security import get_current_actor
from app.core.database import get_db
from app.utils.pagination import PageParams, page_params, build_meta

router = APIRouter(
    prefix="/reviews",
    tags=["Reviews"]
)

def get_review_service(db: AsyncSession = Depends(get_db)) -> ReviewService:
    return ReviewService(db)


@router.post(
    "",
    response_model=ApiResponse[ReviewSubmitOut],
    status_code=status.HTTP_201_CREATED,
    summary="評價已完成的專案"
)
async def api_submit_review(
    data: ReviewCreate,
    service: ReviewService = Depends(get_review_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    (發案方 / 專家) 專案完成後評價對方，每人每個專案一則。
    回傳新的評價與被評價者最新的統計。
    """
    review, summary = await service.submit_review(data, actor)
    return ApiResponse[ReviewSubmitOut](
        data=ReviewSubmitOut(review=ReviewOut.model_validate(review), summary=summary),
        message="評價已送出",
    )

@router.get(
    "/expert/{user_id}",
    response_model=PaginatedResponse[ReviewOut],
    summary="使用者收到的公開評價"
)
async def api_list_user_reviews(
    user_id: str,
    params: PageParams = Depends(page_params),
    service: ReviewService = Depends(get_review_service),
):
    reviews, total = await service.list_reviews_for(user_id, params)
    return PaginatedResponse[ReviewOut](
        data=[ReviewOut.model_validate(r) for r in reviews],
        meta=build_meta(params, total),
    )

@router.get(
    "/summary/{user_id}",
    response_model=ApiResponse[ReviewSummary],
    summary="使用者的評價統計"
)
async def api_get_review_summary(
    user_id: str,
    service: ReviewService = Depends(get_review_service),
):
    return ApiResponse[ReviewSummary](data=await service.get_summary(user_id))

@router.post(
    "/{review_id}/response",
    response_model=ApiResponse[ReviewOut],
    summary="回覆評價 (被評價者)"
)
async def api_respond_review(
    review_id: str,
    data: ReviewResponseCreate,
    service: ReviewService = Depends(get_review_service),
    actor: Actor = Depends(get_current_actor),
):
    review = await service.respond(review_id, actor, data.response)
    return ApiResponse[ReviewOut](data=ReviewOut.model_validate(review))

@router.post(
    "/{review_id}/helpful",
    response_model=ApiResponse[ReviewOut],
    summary="標記評價有幫助"
)
async def api_mark_helpful(
    review_id: str,
    service: ReviewService = Depends(get_review_service),
    actor: Actor = Depends(get_current_actor),
):
    review = await service.mark_helpful(review_id)
    return ApiResponse[ReviewOut](data=ReviewOut.model_validate(review))
