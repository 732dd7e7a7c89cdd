# app/repositories/payment_repo.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import update, func
from typing import Iterable, List, Optional, Tuple

from app.models.payment import Payment, Payout, PaymentStatusEnum, PayoutStatusEnum
from app.models.engagement import Engagement, EngagementStatusEnum
from app.utils.pagination import PageParams


class PaymentRepository:
    """
    封裝對 'payments' 與 'payouts' 資料表的操作
    """
    def __init__(self, db: AsyncSession):
        self.db = db

    # --- Payments ---

    async def create_payment(self, payment: Payment) -> Payment:
        self.db.add(payment)
        await self.db.flush()
        return payment

    async def get_payment_by_id(self, payment_id: str) -> Optional[Payment]:
        stmt = select(Payment).execution_options(populate_existing=True).where(Payment.payment_id == payment_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_payment_by_session(self, session_id: str) -> Optional[Payment]:
        stmt = select(Payment).execution_options(populate_existing=True).where(Payment.session_id == session_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_engagement_payments(self, engagement_id: str) -> List[Payment]:
        stmt = (
            select(Payment).execution_options(populate_existing=True)
            .where(Payment.engagement_id == engagement_id)
            .order_by(Payment.created_at)
        )
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def get_open_checkout(self, engagement_id: str) -> Optional[Payment]:
        """
        (R) 此專案尚在等待金流結果的付款 (pending 且已有結帳工作階段)
        """
        stmt = (
            select(Payment).execution_options(populate_existing=True)
            .where(
                Payment.engagement_id == engagement_id,
                Payment.status == PaymentStatusEnum.pending,
                Payment.session_id.is_not(None),
            )
            .order_by(Payment.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def transition(
        self,
        payment_id: str,
        from_statuses: Iterable[PaymentStatusEnum],
        **values,
    ) -> bool:
        """
        (U) 條件式更新付款狀態；同一個 webhook 重送時第二次會回 False
        """
        stmt = (
            update(Payment)
            .where(
                Payment.payment_id == payment_id,
                Payment.status.in_(list(from_statuses)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def update_engagement_payments(
        self,
        engagement_id: str,
        from_statuses: Iterable[PaymentStatusEnum],
        **values,
    ) -> int:
        """
        (U) 專案層級的付款狀態連動 (爭議、退款)
        """
        stmt = (
            update(Payment)
            .where(
                Payment.engagement_id == engagement_id,
                Payment.status.in_(list(from_statuses)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount

    async def earned_total(self, expert_id: str, currency: str) -> int:
        """
        (R) 專家已完成、且付款成功的專案實拿金額總和
        以專案為單位計算 expert_payout，同一專案有多筆付款也只算一次
        """
        paid = (
            select(Payment.payment_id)
            .where(
                Payment.engagement_id == Engagement.engagement_id,
                Payment.status == PaymentStatusEnum.succeeded,
            )
            .exists()
        )
        stmt = select(func.coalesce(func.sum(Engagement.expert_payout), 0)).where(
            Engagement.expert_id == expert_id,
            Engagement.currency == currency,
            Engagement.status == EngagementStatusEnum.completed,
            paid,
        )
        return int((await self.db.execute(stmt)).scalar_one())

    # --- Payouts ---

    async def paid_out_total(self, expert_id: str, currency: str) -> int:
        """
        (R) 已申請 (未失敗) 的撥款總和
        """
        stmt = select(func.coalesce(func.sum(Payout.amount), 0)).where(
            Payout.expert_id == expert_id,
            Payout.currency == currency,
            Payout.status != PayoutStatusEnum.failed,
        )
        return int((await self.db.execute(stmt)).scalar_one())

    async def create_payout(self, payout: Payout) -> Payout:
        self.db.add(payout)
        await self.db.flush()
        return payout

    async def list_payouts_by_expert(
        self, expert_id: str, params: PageParams
    ) -> Tuple[List[Payout], int]:
        filters = [Payout.expert_id == expert_id]
        total = (await self.db.execute(
            select(func.count(Payout.payout_id)).where(*filters)
        )).scalar_one()

        stmt = (
            select(Payout).execution_options(populate_existing=True)
            .where(*filters)
            .order_by(Payout.created_at.desc())
            .offset(params.offset)
            .limit(params.per_page)
        )
        result = await self.db.execute(stmt)
        return result.scalars().all(), total
