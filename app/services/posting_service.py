# app/services/posting_service.py
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime
from typing import List, Optional, Tuple
import logging

from app.core.database import atomic
from app.core.exceptions import (
    ValidationError, NotEligibleError, NotFoundError, IllegalTransitionError,
)
from app.models.posting import (
    Posting, PostingStatusEnum, BudgetTypeEnum, EDITABLE_POSTING_STATUSES,
)
from app.models.user import UserRoleEnum
from app.schemas.posting_schema import PostingCreate, PostingUpdate
from app.schemas.user_schema import Actor
from app.repositories.posting_repo import PostingRepository
from app.utils.pagination import PageParams

logger = logging.getLogger(__name__)


def validate_budget(budget_type, budget_min: Optional[int], budget_max: Optional[int]) -> None:
    """
    fixed / hourly：budget_min 即金額，budget_max 可省略 (有的話不得小於 min)
    range：min 與 max 都要有，且 min <= max
    """
    if budget_min is None:
        raise ValidationError("請填寫預算金額")
    if budget_min <= 0 or (budget_max is not None and budget_max <= 0):
        raise ValidationError("預算金額必須大於 0")
    if budget_type == BudgetTypeEnum.range and budget_max is None:
        raise ValidationError("預算區間需同時填寫最低與最高金額")
    if budget_max is not None and budget_max < budget_min:
        raise ValidationError("最高預算不可小於最低預算")


class PostingService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.posting_repo = PostingRepository(db)

    # 輔助函式：取得案件並檢查是否為擁有者
    async def _get_owned_posting(self, posting_id: str, actor: Actor) -> Posting:
        posting = await self.get_posting(posting_id)
        if posting.client_id != actor.user_id:
            raise NotEligibleError("你沒有權限修改此案件")
        return posting

    async def _move(self, posting: Posting, from_statuses, **values) -> Posting:
        """
        條件式更新案件狀態，更新不到代表狀態已被其他操作改變
        """
        moved = await self.posting_repo.transition(posting.posting_id, from_statuses, **values)
        if not moved:
            raise IllegalTransitionError("案件狀態已變更，請重新整理後再試")
        await self.db.refresh(posting)
        return posting

    async def get_posting(self, posting_id: str) -> Posting:
        posting = await self.posting_repo.get_posting_by_id(posting_id)
        if not posting:
            raise NotFoundError("案件不存在")
        return posting

    async def list_open_postings(
        self,
        params: PageParams,
        budget_type: Optional[str] = None,
        currency: Optional[str] = None,
        urgent_only: bool = False,
    ) -> Tuple[List[Posting], int]:
        return await self.posting_repo.list_open_postings(
            params, budget_type=budget_type, currency=currency, urgent_only=urgent_only
        )

    async def list_my_postings(
        self, actor: Actor, params: PageParams, status: Optional[str] = None
    ) -> Tuple[List[Posting], int]:
        return await self.posting_repo.list_postings_by_client(actor.user_id, params, status)

    async def create_posting(self, data: PostingCreate, actor: Actor) -> Posting:
        """
        業務邏輯：發案方刊登案件 (草稿或直接開放收件)
        """
        if actor.role != UserRoleEnum.client.value:
            raise NotEligibleError("只有發案方可以刊登案件")
        validate_budget(data.budget_type, data.budget_min, data.budget_max)

        posting = Posting(
            client_id=actor.user_id,
            **data.model_dump(exclude={"status"}),
            status=PostingStatusEnum(data.status),
        )
        async with atomic(self.db):
            await self.posting_repo.create_posting(posting)

        logger.info(f"案件 {posting.posting_id} 已建立 ({posting.status.value}) by {actor.user_id}")
        return posting

    async def open_posting(self, posting_id: str, actor: Actor) -> Posting:
        """
        draft -> open；已開放則不做任何事
        """
        async with atomic(self.db):
            posting = await self._get_owned_posting(posting_id, actor)
            if posting.status == PostingStatusEnum.open:
                return posting
            if posting.status != PostingStatusEnum.draft:
                raise IllegalTransitionError(f"案件狀態為「{posting.status.value}」，無法開放收件")
            await self._move(posting, [PostingStatusEnum.draft], status=PostingStatusEnum.open)

        logger.info(f"案件 {posting_id}: draft -> open")
        return posting

    async def update_posting(self, posting_id: str, data: PostingUpdate, actor: Actor) -> Posting:
        """
        業務邏輯：更新案件內容 (僅限 draft / open / in_review)，
        並可在 open 與 in_review 之間切換
        """
        update_data = data.model_dump(exclude_unset=True)
        new_status = update_data.pop("status", None)

        async with atomic(self.db):
            posting = await self._get_owned_posting(posting_id, actor)
            current = posting.status
            if current not in EDITABLE_POSTING_STATUSES:
                raise IllegalTransitionError(f"案件狀態為「{current.value}」，無法修改")

            if new_status is not None:
                new_status = PostingStatusEnum(new_status)
                if new_status != current and current == PostingStatusEnum.draft:
                    # 草稿需透過 open_posting 開放
                    if new_status != PostingStatusEnum.open:
                        raise IllegalTransitionError("草稿無法直接進入評估中")
                update_data["status"] = new_status

            validate_budget(
                update_data.get("budget_type", posting.budget_type),
                update_data.get("budget_min", posting.budget_min),
                update_data.get("budget_max", posting.budget_max),
            )

            if update_data:
                await self._move(posting, [current], **update_data)

        logger.info(f"案件 {posting_id} 已更新: {sorted(update_data)}")
        return posting

    async def close_posting(self, posting_id: str, actor: Actor, reason: Optional[str] = None) -> Posting:
        """
        任何非終態 -> cancelled，同時清除指派的專家
        """
        async with atomic(self.db):
            posting = await self._get_owned_posting(posting_id, actor)
            current = posting.status
            if current in (PostingStatusEnum.completed, PostingStatusEnum.cancelled):
                raise IllegalTransitionError(f"案件狀態為「{current.value}」，無法關閉")
            await self._move(
                posting,
                [current],
                status=PostingStatusEnum.cancelled,
                assigned_expert_id=None,
                cancelled_at=datetime.now(),
                cancellation_reason=reason,
            )

        logger.info(f"案件 {posting_id}: {current.value} -> cancelled ({reason})")
        return posting

    async def delete_posting(self, posting_id: str, actor: Actor, reason: Optional[str] = None) -> Optional[Posting]:
        """
        草稿直接刪除 (回傳 None)；其他狀態改為關閉案件
        """
        async with atomic(self.db):
            posting = await self._get_owned_posting(posting_id, actor)
            if posting.status == PostingStatusEnum.draft:
                await self.posting_repo.delete_posting(posting)
                logger.info(f"草稿案件 {posting_id} 已刪除")
                return None

        return await self.close_posting(posting_id, actor, reason or "deleted_by_client")

    async def mark_completed(self, posting_id: str, now: datetime) -> bool:
        """
        (交易內呼叫，不 commit) 專案完成時，案件 assigned -> completed
        """
        return await self.posting_repo.transition(
            posting_id,
            [PostingStatusEnum.assigned],
            status=PostingStatusEnum.completed,
            completed_at=now,
        )
