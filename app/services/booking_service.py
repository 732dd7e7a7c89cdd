# app/services/booking_service.py
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
import logging

from app.core.config import settings
from app.core.database import atomic
from app.core.exceptions import (
    ValidationError, NotEligibleError, NotFoundError, IllegalTransitionError,
)
from app.models.booking import Booking, BookingStatusEnum
from app.models.engagement import Engagement, EngagementActivity, EngagementStatusEnum
from app.models.user import UserRoleEnum
from app.schemas.booking_schema import BookingCreate
from app.schemas.user_schema import Actor
from app.repositories.booking_repo import BookingRepository
from app.repositories.engagement_repo import EngagementRepository
from app.repositories.user_repo import UserRepository
from app.utils.money import split_platform_fee
from app.utils.pagination import PageParams

logger = logging.getLogger(__name__)


class BookingService:
    """
    發案方直接預約專家 (不經過刊登案件)；
    專家接受後即成立一個 accepted 的專案，之後與提案流程相同。
    """
    def __init__(self, db: AsyncSession):
        self.db = db
        self.booking_repo = BookingRepository(db)
        self.engagement_repo = EngagementRepository(db)
        self.user_repo = UserRepository(db)

    async def _get_booking(self, booking_id: str) -> Booking:
        booking = await self.booking_repo.get_booking_by_id(booking_id)
        if not booking:
            raise NotFoundError("預約不存在")
        return booking

    async def create_booking(self, data: BookingCreate, actor: Actor) -> Booking:
        if actor.role != UserRoleEnum.client.value:
            raise NotEligibleError("只有發案方可以預約專家")
        if data.proposed_start_date and data.proposed_deadline and data.proposed_deadline < data.proposed_start_date:
            raise ValidationError("截止日不可早於開始日")

        async with atomic(self.db):
            expert = await self.user_repo.get_active_expert(data.expert_id)
            if not expert:
                raise NotFoundError("專家不存在")
            if expert.user_id == actor.user_id:
                raise NotEligibleError("不能預約自己")

            booking = Booking(
                client_id=actor.user_id,
                expert_id=expert.user_id,
                title=data.title,
                message=data.message,
                proposed_budget=data.proposed_budget,
                currency=data.currency,
                proposed_start_date=data.proposed_start_date,
                proposed_deadline=data.proposed_deadline,
                status=BookingStatusEnum.pending,
                expires_at=datetime.now() + timedelta(days=settings.BOOKING_EXPIRY_DAYS),
            )
            await self.booking_repo.create_booking(booking)

        logger.info(f"發案方 {actor.user_id} 預約專家 {expert.user_id}: {booking.booking_id}")
        return booking

    async def respond(
        self, booking_id: str, actor: Actor, accept: bool, response: Optional[str] = None
    ) -> Booking:
        """
        業務邏輯：專家回覆預約
        - 只有被預約的專家可以回覆，且預約必須仍在 pending 且未過期
        - 接受時需有預算金額，並成立專案 (accepted)
        """
        async with atomic(self.db):
            booking = await self._get_booking(booking_id)
            if booking.expert_id != actor.user_id:
                raise NotEligibleError("只有被預約的專家可以回覆")
            if booking.status != BookingStatusEnum.pending:
                raise IllegalTransitionError(f"預約狀態為「{booking.status.value}」，無法回覆")

            now = datetime.now()
            expired = booking.expires_at <= now
            if expired:
                # 過期的預約標記為 expired 並 commit，之後才回錯誤
                await self.booking_repo.transition(
                    booking_id, [BookingStatusEnum.pending], status=BookingStatusEnum.expired,
                )
            else:
                await self._answer(booking, actor, accept, response, now)

        if expired:
            logger.info(f"預約 {booking_id} 已過期")
            raise IllegalTransitionError("此預約已過期")

        logger.info(f"預約 {booking_id}: pending -> {booking.status.value}")
        return booking

    async def _answer(
        self, booking: Booking, actor: Actor, accept: bool, response: Optional[str], now: datetime
    ) -> None:
        booking_id = booking.booking_id
        values = {"expert_response": response, "responded_at": now}
        if accept:
            if not booking.proposed_budget:
                raise ValidationError("預約未提供預算，無法直接接受")
            platform_fee, expert_payout = split_platform_fee(
                booking.proposed_budget, settings.PLATFORM_FEE_PERCENT
            )
            engagement = Engagement(
                client_id=booking.client_id,
                expert_id=booking.expert_id,
                booking_id=booking.booking_id,
                title=booking.title,
                description=booking.message,
                price=booking.proposed_budget,
                currency=booking.currency,
                platform_fee=platform_fee,
                expert_payout=expert_payout,
                status=EngagementStatusEnum.accepted,
                revisions_used=0,
                revisions_allowed=settings.DEFAULT_REVISIONS_ALLOWED,
                delivery_date=booking.proposed_deadline,
            )
            await self.engagement_repo.create_engagement(engagement)
            await self.engagement_repo.add_activity(EngagementActivity(
                engagement_id=engagement.engagement_id,
                actor_id=actor.user_id,
                kind="created_from_booking",
                to_status=EngagementStatusEnum.accepted.value,
                message=response,
            ))
            values.update(status=BookingStatusEnum.accepted, engagement_id=engagement.engagement_id)
        else:
            values.update(status=BookingStatusEnum.declined)

        if not await self.booking_repo.transition(booking_id, [BookingStatusEnum.pending], **values):
            raise IllegalTransitionError("預約狀態已變更，請重新整理後再試")
        await self.db.refresh(booking)

    async def cancel_booking(self, booking_id: str, actor: Actor) -> Booking:
        async with atomic(self.db):
            booking = await self._get_booking(booking_id)
            if booking.client_id != actor.user_id:
                raise NotEligibleError("只有提出預約的發案方可以取消")
            if not await self.booking_repo.transition(
                booking_id, [BookingStatusEnum.pending], status=BookingStatusEnum.cancelled,
            ):
                raise IllegalTransitionError(f"預約狀態為「{booking.status.value}」，無法取消")
            await self.db.refresh(booking)

        logger.info(f"預約 {booking_id} 已取消")
        return booking

    async def list_my_bookings(self, actor: Actor, params: PageParams) -> Tuple[List[Booking], int]:
        return await self.booking_repo.list_bookings_by_user(actor.user_id, params)
