# app/routers/booking_router.py

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.booking_service import BookingService
from app.schemas.booking_schema import BookingCreate, BookingRespond, BookingOut
from app.schemas.common_schema import ApiResponse, PaginatedResponse
from app.schemas.user_schema import Actor
from app.core.security import get_current_actor
from app.core.database import get_db
from app.utils.pagination import PageParams, page_params, build_meta

router = APIRouter(
    prefix="/bookings",
    tags=["Bookings"]
)

def get_booking_service(db: AsyncSession = Depends(get_db)) -> BookingService:
    return BookingService(db)


@router.post(
    "",
    response_model=ApiResponse[BookingOut],
    status_code=status.HTTP_201_CREATED,
    summary="直接預約專家 (發案方)"
)
async def api_create_booking(
    data: BookingCreate,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    (發案方) 不經刊登案件，直接向專家提出預約。預約在期限內未回覆即過期。
    """
    booking = await service.create_booking(data, actor)
    return ApiResponse[BookingOut](data=BookingOut.model_validate(booking), message="預約已送出")

@router.get(
    "/my",
    response_model=PaginatedResponse[BookingOut],
    summary="我的預約"
)
async def api_list_my_bookings(
    params: PageParams = Depends(page_params),
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(get_current_actor),
):
    bookings, total = await service.list_my_bookings(actor, params)
    return PaginatedResponse[BookingOut](
        data=[BookingOut.model_validate(b) for b in bookings],
        meta=build_meta(params, total),
    )

@router.post(
    "/{booking_id}/respond",
    response_model=ApiResponse[BookingOut],
    summary="回覆預約 (專家)"
)
async def api_respond_booking(
    booking_id: str,
    data: BookingRespond,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    (專家) 接受或婉拒預約。接受時會成立專案，`engagementId` 即為新專案。
    """
    booking = await service.respond(booking_id, actor, data.accept, data.response)
    return ApiResponse[BookingOut](data=BookingOut.model_validate(booking))

@router.post(
    "/{booking_id}/cancel",
    response_model=ApiResponse[BookingOut],
    summary="取消預約 (發案方)"
)
async def api_cancel_booking(
    booking_id: str,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(get_current_actor),
):
    booking = await service.cancel_booking(booking_id, actor)
    return ApiResponse[BookingOut](data=BookingOut.model_validate(booking), message="預約已取消")
