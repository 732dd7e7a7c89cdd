# app/repositories/booking_repo.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.sql.expression import or_
from sqlalchemy import update, func
from typing import Iterable, List, Optional, Tuple

from app.models.booking import Booking, BookingStatusEnum
from app.utils.pagination import PageParams


class BookingRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_booking(self, booking: Booking) -> Booking:
        self.db.add(booking)
        await self.db.flush()
        return booking

    async def get_booking_by_id(self, booking_id: str) -> Optional[Booking]:
        stmt = select(Booking).execution_options(populate_existing=True).where(Booking.booking_id == booking_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_bookings_by_user(
        self, user_id: str, params: PageParams
    ) -> Tuple[List[Booking], int]:
        """
        (R) 我發出的 (client) 或我收到的 (expert) 預約
        """
        filters = [or_(Booking.client_id == user_id, Booking.expert_id == user_id)]
        total = (await self.db.execute(
            select(func.count(Booking.booking_id)).where(*filters)
        )).scalar_one()

        stmt = (
            select(Booking).execution_options(populate_existing=True)
            .where(*filters)
            .order_by(Booking.created_at.desc())
            .offset(params.offset)
            .limit(params.per_page)
        )
        result = await self.db.execute(stmt)
        return result.scalars().all(), total

    async def transition(
        self,
        booking_id: str,
        from_statuses: Iterable[BookingStatusEnum],
        **values,
    ) -> bool:
        stmt = (
            update(Booking)
            .where(
                Booking.booking_id == booking_id,
                Booking.status.in_(list(from_statuses)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1
