# app/services/engagement_service.py
"""
專案狀態機。

每個事件 (mark_paid, start_work, deliver...) 對應一條轉移規則：
允許的來源狀態、目標狀態、可執行的角色。檢查順序固定為
「是否為當事人 -> 目前狀態是否允許 -> 角色是否允許 -> 事件本身的條件」，
全部通過後以條件式 UPDATE (WHERE status = 讀到的狀態) 寫入，
並在 engagement_activities 留下一筆歷程。

apply() 不 commit，讓 PaymentService 等可以把狀態轉移併入自己的交易；
對外的 start_work / deliver / ... 則各自包在 atomic() 裡。
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import atomic
from app.core.exceptions import (
    ValidationError, NotEligibleError, NotFoundError, IllegalTransitionError,
    RevisionLimitExceededError, PaymentFailedError,
)
from app.models.engagement import Engagement, EngagementActivity, EngagementStatusEnum as S
from app.models.payment import Payment, PaymentStatusEnum
from app.schemas.user_schema import Actor
from app.repositories.engagement_repo import EngagementRepository
from app.repositories.payment_repo import PaymentRepository
from app.services.posting_service import PostingService
from app.utils import revision_ledger
from app.utils.pagination import PageParams

logger = logging.getLogger(__name__)


class EngagementEvent(str, enum.Enum):
    mark_paid = "mark_paid"
    start_work = "start_work"
    deliver = "deliver"
    request_revision = "request_revision"
    accept = "accept"
    open_dispute = "open_dispute"
    cancel = "cancel"
    resolve = "resolve"


# 參與者在狀態機中的身分
CLIENT, EXPERT, SYSTEM, ARBITER = "client", "expert", "system", "arbiter"


@dataclass(frozen=True)
class TransitionRule:
    sources: FrozenSet[S]
    target: Optional[S]  # None：由 resolve 的 outcome 決定
    parties: FrozenSet[str]


TRANSITIONS = {
    EngagementEvent.mark_paid: TransitionRule(frozenset({S.pending, S.accepted}), S.paid, frozenset({SYSTEM})),
    EngagementEvent.start_work: TransitionRule(frozenset({S.paid}), S.in_progress, frozenset({EXPERT})),
    EngagementEvent.deliver: TransitionRule(frozenset({S.in_progress, S.revision}), S.delivered, frozenset({EXPERT})),
    EngagementEvent.request_revision: TransitionRule(frozenset({S.delivered}), S.revision, frozenset({CLIENT})),
    EngagementEvent.accept: TransitionRule(frozenset({S.delivered}), S.completed, frozenset({CLIENT})),
    EngagementEvent.open_dispute: TransitionRule(
        frozenset({S.paid, S.in_progress, S.delivered, S.revision}), S.disputed, frozenset({CLIENT, EXPERT}),
    ),
    EngagementEvent.cancel: TransitionRule(
        frozenset({S.pending, S.accepted, S.paid}), S.cancelled, frozenset({CLIENT, SYSTEM}),
    ),
    EngagementEvent.resolve: TransitionRule(frozenset({S.disputed}), None, frozenset({ARBITER})),
}

RESOLUTION_OUTCOMES = {"completed": S.completed, "refunded": S.refunded}


def party_of(engagement: Engagement, actor: Actor) -> Optional[str]:
    """操作者在此專案中的身分；非當事人回傳 None"""
    if actor.is_system:
        return SYSTEM
    if actor.is_admin:
        return ARBITER
    if actor.user_id == engagement.client_id:
        return CLIENT
    if actor.user_id == engagement.expert_id:
        return EXPERT
    return None


class EngagementService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.engagement_repo = EngagementRepository(db)
        self.payment_repo = PaymentRepository(db)
        self.posting_service = PostingService(db)

    # --- 讀取 ---

    async def _load(self, engagement_id: str) -> Engagement:
        engagement = await self.engagement_repo.get_engagement_by_id(engagement_id)
        if not engagement:
            raise NotFoundError("專案不存在")
        return engagement

    async def get_engagement(self, engagement_id: str, actor: Actor) -> Engagement:
        engagement = await self._load(engagement_id)
        if party_of(engagement, actor) is None:
            raise NotEligibleError("你無權檢視此專案")
        return engagement

    async def list_my_engagements(
        self, actor: Actor, params: PageParams, status: Optional[S] = None
    ) -> Tuple[List[Engagement], int]:
        return await self.engagement_repo.list_engagements_by_user(actor.user_id, params, status)

    async def list_activities(self, engagement_id: str, actor: Actor) -> List[EngagementActivity]:
        await self.get_engagement(engagement_id, actor)
        return await self.engagement_repo.list_activities(engagement_id)

    # --- 狀態機核心 (不 commit) ---

    async def apply(
        self,
        engagement_id: str,
        event: EngagementEvent,
        actor: Actor,
        *,
        message: Optional[str] = None,
        attachments: Optional[List[str]] = None,
        reason: Optional[str] = None,
        outcome: Optional[str] = None,
        payment: Optional[Payment] = None,
    ) -> Engagement:
        engagement = await self._load(engagement_id)
        rule = TRANSITIONS[event]

        # 1. 當事人
        party = party_of(engagement, actor)
        if party is None:
            raise NotEligibleError("你不是此專案的當事人")

        # mark_paid 重送：同一筆成功付款、專案已是 paid，直接回傳
        if (
            event == EngagementEvent.mark_paid
            and engagement.status == S.paid
            and payment is not None
            and payment.engagement_id == engagement_id
            and payment.status == PaymentStatusEnum.succeeded
        ):
            return engagement

        # 2. 目前狀態
        current = engagement.status
        if current not in rule.sources:
            raise IllegalTransitionError(f"專案狀態為「{current.value}」，無法執行 {event.value}")

        # 3. 角色
        if party not in rule.parties:
            raise NotEligibleError(f"你的身分 ({party}) 無權執行 {event.value}")

        # 4. 事件本身的條件與要寫入的欄位
        now = datetime.now()
        target = rule.target
        values = {}
        expected_revisions_used = None
        note = message or reason

        if event == EngagementEvent.mark_paid:
            if payment is None or payment.engagement_id != engagement_id:
                raise PaymentFailedError("找不到此專案的付款紀錄")
            if payment.status != PaymentStatusEnum.succeeded:
                raise PaymentFailedError("付款尚未成功，無法標記為已付款")
            values["paid_at"] = now
            note = f"payment:{payment.payment_id}"

        elif event == EngagementEvent.start_work:
            values["started_at"] = now

        elif event == EngagementEvent.deliver:
            if not message or not message.strip():
                raise ValidationError("請填寫交付說明")
            values["delivered_at"] = now

        elif event == EngagementEvent.request_revision:
            if not reason or not reason.strip():
                raise ValidationError("請說明需要修改的內容")
            if not revision_ledger.can_request_revision(engagement):
                raise RevisionLimitExceededError()
            expected_revisions_used = engagement.revisions_used
            values["revisions_used"] = engagement.revisions_used + 1

        elif event == EngagementEvent.accept:
            values["completed_at"] = now

        elif event == EngagementEvent.open_dispute:
            if not reason or not reason.strip():
                raise ValidationError("請說明爭議原因")
            values["is_disputed"] = True
            values["dispute_reason"] = reason

        elif event == EngagementEvent.cancel:
            values["cancelled_at"] = now
            values["cancellation_reason"] = reason

        elif event == EngagementEvent.resolve:
            if outcome not in RESOLUTION_OUTCOMES:
                raise ValidationError("仲裁結果必須是 completed 或 refunded")
            target = RESOLUTION_OUTCOMES[outcome]
            values["resolution_outcome"] = outcome
            if target == S.completed:
                values["completed_at"] = now

        # 5. 條件式寫入
        moved = await self.engagement_repo.transition(
            engagement_id,
            expected_status=current,
            expected_revisions_used=expected_revisions_used,
            status=target,
            **values,
        )
        if not moved:
            # 讀取之後、寫入之前被其他請求搶先轉移
            raise IllegalTransitionError("專案狀態已被其他操作變更，請重新整理後再試")

        await self._after_transition(engagement, event, current, target, now)

        await self.engagement_repo.add_activity(EngagementActivity(
            engagement_id=engagement_id,
            actor_id=actor.user_id,
            kind=event.value,
            from_status=current.value,
            to_status=target.value,
            message=note,
            attachments=list(attachments or []),
        ))
        await self.db.refresh(engagement)

        logger.info(
            f"專案 {engagement_id}: {current.value} -> {target.value} ({event.value}, by {party} {actor.user_id})"
        )
        return engagement

    async def _after_transition(
        self, engagement: Engagement, event: EngagementEvent, current: S, target: S, now: datetime
    ) -> None:
        """狀態轉移連帶的案件與付款狀態"""
        engagement_id = engagement.engagement_id

        if target == S.completed and engagement.posting_id:
            await self.posting_service.mark_completed(engagement.posting_id, now)

        if event == EngagementEvent.open_dispute:
            await self.payment_repo.update_engagement_payments(
                engagement_id, [PaymentStatusEnum.succeeded], status=PaymentStatusEnum.disputed,
            )
        elif event == EngagementEvent.resolve and target == S.completed:
            await self.payment_repo.update_engagement_payments(
                engagement_id, [PaymentStatusEnum.disputed], status=PaymentStatusEnum.succeeded,
            )
        elif target == S.refunded or (event == EngagementEvent.cancel and current == S.paid):
            await self.payment_repo.update_engagement_payments(
                engagement_id,
                [PaymentStatusEnum.succeeded, PaymentStatusEnum.disputed],
                status=PaymentStatusEnum.refunded,
                refunded_at=now,
            )

    # --- 對外操作 (各自一個交易) ---

    async def _run(self, engagement_id: str, event: EngagementEvent, actor: Actor, **kwargs) -> Engagement:
        async with atomic(self.db):
            return await self.apply(engagement_id, event, actor, **kwargs)

    async def mark_paid(self, engagement_id: str, payment: Payment, actor: Actor) -> Engagement:
        return await self._run(engagement_id, EngagementEvent.mark_paid, actor, payment=payment)

    async def start_work(self, engagement_id: str, actor: Actor) -> Engagement:
        return await self._run(engagement_id, EngagementEvent.start_work, actor)

    async def deliver(
        self, engagement_id: str, actor: Actor, message: str, attachments: Optional[List[str]] = None
    ) -> Engagement:
        return await self._run(
            engagement_id, EngagementEvent.deliver, actor, message=message, attachments=attachments,
        )

    async def request_revision(self, engagement_id: str, actor: Actor, reason: str) -> Engagement:
        return await self._run(engagement_id, EngagementEvent.request_revision, actor, reason=reason)

    async def accept(self, engagement_id: str, actor: Actor) -> Engagement:
        return await self._run(engagement_id, EngagementEvent.accept, actor)

    async def open_dispute(self, engagement_id: str, actor: Actor, reason: str) -> Engagement:
        return await self._run(engagement_id, EngagementEvent.open_dispute, actor, reason=reason)

    async def cancel(self, engagement_id: str, actor: Actor, reason: str) -> Engagement:
        return await self._run(engagement_id, EngagementEvent.cancel, actor, reason=reason)

    async def resolve(
        self, engagement_id: str, actor: Actor, outcome: str, note: Optional[str] = None
    ) -> Engagement:
        return await self._run(engagement_id, EngagementEvent.resolve, actor, outcome=outcome, reason=note)
