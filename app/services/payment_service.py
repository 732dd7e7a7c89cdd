# app/services/payment_service.py
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
import logging

from app.core.config import settings
from app.core.database import atomic
from app.core.exceptions import (
    ValidationError, NotEligibleError, NotFoundError, IllegalTransitionError, PaymentFailedError,
)
from app.core.payment_gateway import PaymentGateway, GatewayError
from app.models.engagement import (
    Engagement, EngagementActivity, EngagementStatusEnum, UNPAID_ENGAGEMENT_STATUSES,
)
from app.models.payment import Payment, Payout, PaymentStatusEnum, PayoutStatusEnum
from app.models.user import UserRoleEnum
from app.schemas.payment_schema import CheckoutCreate, CheckoutSessionOut, ServicePurchase
from app.schemas.user_schema import Actor
from app.repositories.engagement_repo import EngagementRepository
from app.repositories.payment_repo import PaymentRepository
from app.repositories.user_repo import UserRepository
from app.services.engagement_service import EngagementService, EngagementEvent
from app.utils import revision_ledger
from app.utils.money import split_platform_fee
from app.utils.pagination import PageParams

logger = logging.getLogger(__name__)

PAYMENT_FAILED_REASON = "payment_failed"


class PaymentService:
    """
    與外部金流之間的橋接：
    - 建立結帳工作階段 (寫一筆 pending 的 Payment)
    - 接收金流商的成功 / 失敗通知，觸發專案的 mark_paid / cancel
    - 專家申請撥款
    """
    def __init__(self, db: AsyncSession, gateway: PaymentGateway):
        self.db = db
        self.gateway = gateway
        self.payment_repo = PaymentRepository(db)
        self.engagement_repo = EngagementRepository(db)
        self.user_repo = UserRepository(db)
        self.lifecycle = EngagementService(db)

    # --- 結帳 ---

    async def _engagement_for_checkout(self, data: CheckoutCreate, actor: Actor) -> Engagement:
        engagement = await self.engagement_repo.get_engagement_by_id(data.engagement_id)
        if not engagement:
            raise NotFoundError("專案不存在")
        if engagement.client_id != actor.user_id:
            raise NotEligibleError("只有發案方可以為此專案付款")
        if engagement.status not in UNPAID_ENGAGEMENT_STATUSES:
            raise IllegalTransitionError(f"專案狀態為「{engagement.status.value}」，無法付款")
        if data.amount is not None and data.amount != engagement.price:
            raise ValidationError("付款金額與專案金額不符")
        if data.currency is not None and data.currency != engagement.currency:
            raise ValidationError("付款幣別與專案幣別不符")
        return engagement

    async def _engagement_from_service(self, service: ServicePurchase, actor: Actor) -> Engagement:
        """
        直接購買服務：先成立一個 pending 的專案，付款成功後才進入 paid
        """
        expert = await self.user_repo.get_active_expert(service.expert_id)
        if not expert:
            raise NotFoundError("專家不存在")
        if expert.user_id == actor.user_id:
            raise NotEligibleError("不能購買自己的服務")

        allowance = revision_ledger.from_package(service.revisions_included)
        platform_fee, expert_payout = split_platform_fee(service.price, settings.PLATFORM_FEE_PERCENT)
        engagement = Engagement(
            client_id=actor.user_id,
            expert_id=expert.user_id,
            title=service.title,
            description=service.description,
            price=service.price,
            currency=service.currency,
            platform_fee=platform_fee,
            expert_payout=expert_payout,
            status=EngagementStatusEnum.pending,
            revisions_used=0,
            revisions_allowed=revision_ledger.to_column(allowance),
            delivery_date=(
                datetime.now() + timedelta(days=service.delivery_days) if service.delivery_days else None
            ),
        )
        await self.engagement_repo.create_engagement(engagement)
        await self.engagement_repo.add_activity(EngagementActivity(
            engagement_id=engagement.engagement_id,
            actor_id=actor.user_id,
            kind="created_from_service",
            to_status=EngagementStatusEnum.pending.value,
        ))
        return engagement

    async def create_checkout_session(self, data: CheckoutCreate, actor: Actor) -> CheckoutSessionOut:
        """
        業務邏輯：建立結帳工作階段

        金流商失敗時：付款記為 failed、專案以 payment_failed 取消，
        這些變更會 commit，之後再回 PaymentFailedError。
        """
        if actor.role != UserRoleEnum.client.value:
            raise NotEligibleError("只有發案方可以付款")

        failure: Optional[str] = None
        async with atomic(self.db):
            if data.engagement_id is not None:
                engagement = await self._engagement_for_checkout(data, actor)
            else:
                engagement = await self._engagement_from_service(data.service, actor)

            # 發案方中途離開後重新結帳：沿用尚未有結果的工作階段，不再開第二筆付款
            if data.engagement_id is not None:
                existing = await self.payment_repo.get_open_checkout(engagement.engagement_id)
                if existing is not None:
                    logger.info(f"專案 {engagement.engagement_id} 沿用結帳 {existing.session_id}")
                    return CheckoutSessionOut(
                        session_id=existing.session_id,
                        redirect_url=existing.redirect_url,
                        payment_id=existing.payment_id,
                        engagement_id=engagement.engagement_id,
                    )

            if engagement.price < settings.MIN_CHARGE_AMOUNT:
                raise ValidationError(f"付款金額不可低於 {settings.MIN_CHARGE_AMOUNT}")

            payment = Payment(
                engagement_id=engagement.engagement_id,
                payer_id=engagement.client_id,
                payee_id=engagement.expert_id,
                amount=engagement.price,
                currency=engagement.currency,
                platform_fee=engagement.platform_fee,
                net_amount=engagement.expert_payout,
                status=PaymentStatusEnum.pending,
            )
            await self.payment_repo.create_payment(payment)

            try:
                session = await self.gateway.create_checkout_session(
                    f"engagement:{engagement.engagement_id}", payment.amount, payment.currency,
                )
            except GatewayError as e:
                failure = str(e) or "gateway_error"
                logger.error(f"建立結帳工作階段失敗 (專案 {engagement.engagement_id}): {failure}")
                await self.payment_repo.transition(
                    payment.payment_id,
                    [PaymentStatusEnum.pending],
                    status=PaymentStatusEnum.failed,
                    failure_reason=failure,
                )
                await self.lifecycle.apply(
                    engagement.engagement_id,
                    EngagementEvent.cancel,
                    Actor.system(),
                    reason=PAYMENT_FAILED_REASON,
                )
            else:
                payment.session_id = session.session_id
                payment.redirect_url = session.redirect_url
                await self.db.flush()

        if failure is not None:
            raise PaymentFailedError(f"付款失敗：{failure}")

        logger.info(f"專案 {engagement.engagement_id} 建立結帳 {session.session_id} (付款 {payment.payment_id})")
        return CheckoutSessionOut(
            session_id=session.session_id,
            redirect_url=session.redirect_url,
            payment_id=payment.payment_id,
            engagement_id=engagement.engagement_id,
        )

    # --- 金流回呼 ---

    async def _payment_for_session(self, session_id: str) -> Payment:
        payment = await self.payment_repo.get_payment_by_session(session_id)
        if not payment:
            raise NotFoundError("找不到此結帳工作階段")
        return payment

    async def on_payment_succeeded(self, session_id: str) -> Engagement:
        """
        付款成功：Payment pending -> succeeded，再觸發專案 mark_paid。
        同一個通知送兩次時，第二次不做任何變更。
        專案已由另一筆付款付清 (或已取消) 時，這筆款項記為 refunded 退回發案方，
        不會讓同一個專案被收兩次錢，也不會讓金流商一直重送。
        """
        async with atomic(self.db):
            payment = await self._payment_for_session(session_id)
            if payment.status == PaymentStatusEnum.failed:
                raise IllegalTransitionError("此付款已失敗，無法標記成功")
            if payment.status != PaymentStatusEnum.pending:
                # 重送的通知：這筆付款已經處理過
                logger.info(f"付款通知 {session_id} 已處理過，略過")
                return await self.engagement_repo.get_engagement_by_id(payment.engagement_id)

            engagement = await self.engagement_repo.get_engagement_by_id(payment.engagement_id)
            now = datetime.now()
            if engagement.status not in UNPAID_ENGAGEMENT_STATUSES:
                await self.payment_repo.transition(
                    payment.payment_id,
                    [PaymentStatusEnum.pending],
                    status=PaymentStatusEnum.refunded,
                    paid_at=now,
                    refunded_at=now,
                    failure_reason=f"engagement_{engagement.status.value}",
                )
                logger.warning(
                    f"付款 {payment.payment_id} 成功時專案 {engagement.engagement_id} "
                    f"已是 {engagement.status.value}，款項退回"
                )
                return engagement

            moved = await self.payment_repo.transition(
                payment.payment_id,
                [PaymentStatusEnum.pending],
                status=PaymentStatusEnum.succeeded,
                paid_at=now,
            )
            if not moved:
                logger.info(f"付款通知 {session_id} 已處理過，略過")
                return engagement

            await self.db.refresh(payment)
            engagement = await self.lifecycle.apply(
                payment.engagement_id,
                EngagementEvent.mark_paid,
                Actor.system(),
                payment=payment,
            )

        logger.info(f"付款成功 {session_id} -> 專案 {engagement.engagement_id} ({engagement.status.value})")
        return engagement

    async def on_payment_failed(self, session_id: str, reason: Optional[str] = None) -> Engagement:
        """
        付款失敗：Payment pending -> failed，專案若仍未付款則以 payment_failed 取消
        """
        async with atomic(self.db):
            payment = await self._payment_for_session(session_id)
            moved = await self.payment_repo.transition(
                payment.payment_id,
                [PaymentStatusEnum.pending],
                status=PaymentStatusEnum.failed,
                failure_reason=reason or PAYMENT_FAILED_REASON,
            )
            engagement = await self.engagement_repo.get_engagement_by_id(payment.engagement_id)
            if moved and engagement.status in UNPAID_ENGAGEMENT_STATUSES:
                engagement = await self.lifecycle.apply(
                    engagement.engagement_id,
                    EngagementEvent.cancel,
                    Actor.system(),
                    reason=PAYMENT_FAILED_REASON,
                )

        logger.info(f"付款失敗 {session_id} -> 專案 {engagement.engagement_id} ({engagement.status.value})")
        return engagement

    async def get_payment(self, payment_id: str, actor: Actor) -> Payment:
        payment = await self.payment_repo.get_payment_by_id(payment_id)
        if not payment:
            raise NotFoundError("付款紀錄不存在")
        if actor.user_id not in (payment.payer_id, payment.payee_id) and not actor.is_admin:
            raise NotEligibleError("你無權檢視此付款紀錄")
        return payment

    async def list_engagement_payments(self, engagement_id: str, actor: Actor) -> List[Payment]:
        engagement = await self.engagement_repo.get_engagement_by_id(engagement_id)
        if not engagement:
            raise NotFoundError("專案不存在")
        if actor.user_id not in (engagement.client_id, engagement.expert_id) and not actor.is_admin:
            raise NotEligibleError("你無權檢視此專案的付款紀錄")
        return await self.payment_repo.list_engagement_payments(engagement_id)

    # --- 撥款 ---

    async def available_balance(self, expert_id: str, currency: str) -> int:
        earned = await self.payment_repo.earned_total(expert_id, currency)
        paid_out = await self.payment_repo.paid_out_total(expert_id, currency)
        return earned - paid_out

    async def request_payout(self, actor: Actor, amount: int, currency: str) -> Payout:
        """
        專家申請撥款：金額不可超過可提領餘額，且不低於最低金額
        """
        if actor.role != UserRoleEnum.expert.value:
            raise NotEligibleError("只有專家可以申請撥款")
        if amount < settings.MIN_CHARGE_AMOUNT:
            raise ValidationError(f"撥款金額不可低於 {settings.MIN_CHARGE_AMOUNT}")

        async with atomic(self.db):
            balance = await self.available_balance(actor.user_id, currency)
            if amount > balance:
                raise ValidationError(f"可提領餘額不足 (目前 {balance} {currency})")

            payout = Payout(
                expert_id=actor.user_id,
                amount=amount,
                currency=currency,
                status=PayoutStatusEnum.pending,
            )
            try:
                result = await self.gateway.create_payout(actor.user_id, amount, currency)
            except GatewayError as e:
                payout.status = PayoutStatusEnum.failed
                payout.failure_reason = str(e) or "gateway_error"
                logger.error(f"撥款失敗 (專家 {actor.user_id}): {payout.failure_reason}")
            else:
                payout.gateway_payout_id = result.payout_id
                payout.status = PayoutStatusEnum(result.status)
            await self.payment_repo.create_payout(payout)

        logger.info(f"專家 {actor.user_id} 申請撥款 {amount} {currency}: {payout.status.value}")
        return payout

    async def list_my_payouts(self, actor: Actor, params: PageParams) -> Tuple[List[Payout], int]:
        return await self.payment_repo.list_payouts_by_expert(actor.user_id, params)
