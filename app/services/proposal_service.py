# app/services/proposal_service.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from datetime import datetime
from typing import List, Optional, Tuple
import logging

from app.core.config import settings
from app.core.database import atomic
from app.core.exceptions import (
    NotEligibleError, NotFoundError, IllegalTransitionError, PostingClosedError,
    AlreadyAssignedError, DuplicateProposalError,
)
from app.models.posting import Posting, PostingStatusEnum, ACCEPTING_POSTING_STATUSES
from app.models.proposal import Proposal, ProposalStatusEnum, OPEN_PROPOSAL_STATUSES, make_bid_key
from app.models.engagement import Engagement, EngagementActivity, EngagementStatusEnum
from app.models.user import UserRoleEnum
from app.schemas.proposal_schema import ProposalCreate
from app.schemas.user_schema import Actor
from app.repositories.posting_repo import PostingRepository
from app.repositories.proposal_repo import ProposalRepository
from app.repositories.engagement_repo import EngagementRepository
from app.utils.money import split_platform_fee
from app.utils.pagination import PageParams

logger = logging.getLogger(__name__)


class ProposalService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.posting_repo = PostingRepository(db)
        self.proposal_repo = ProposalRepository(db)
        self.engagement_repo = EngagementRepository(db)

    # --- 讀取 ---

    async def _get_posting(self, posting_id: str) -> Posting:
        posting = await self.posting_repo.get_posting_by_id(posting_id)
        if not posting:
            raise NotFoundError("案件不存在")
        return posting

    async def _get_proposal(self, proposal_id: str) -> Proposal:
        proposal = await self.proposal_repo.get_proposal_by_id(proposal_id)
        if not proposal:
            raise NotFoundError("提案不存在")
        return proposal

    async def _get_proposal_for_owner(self, proposal_id: str, actor: Actor) -> Tuple[Proposal, Posting]:
        """
        取得提案，並確認操作者是該案件的發案方
        """
        proposal = await self._get_proposal(proposal_id)
        posting = await self._get_posting(proposal.posting_id)
        if posting.client_id != actor.user_id:
            raise NotEligibleError("你無權操作此提案")
        return proposal, posting

    async def list_proposals_for_posting(
        self, posting_id: str, actor: Actor, params: PageParams
    ) -> Tuple[List[Proposal], int]:
        """
        (發案方) 檢視案件收到的提案
        """
        posting = await self._get_posting(posting_id)
        if posting.client_id != actor.user_id:
            raise NotEligibleError("你沒有權限查看此案件的提案")
        return await self.proposal_repo.list_proposals_by_posting(posting_id, params)

    async def list_my_proposals(self, actor: Actor, params: PageParams) -> Tuple[List[Proposal], int]:
        return await self.proposal_repo.list_proposals_by_expert(actor.user_id, params)

    # --- 專家 ---

    async def submit_proposal(self, posting_id: str, data: ProposalCreate, actor: Actor) -> Proposal:
        """
        業務邏輯：專家對開放中的案件提交提案
        1. 只有專家可以提案，且不能對自己的案件提案
        2. 案件必須是 open，否則 PostingClosedError
        3. 同一位專家對同一案件只能有一份未撤回的提案
        """
        if actor.role != UserRoleEnum.expert.value:
            raise NotEligibleError("只有專家可以提交提案")

        try:
            async with atomic(self.db):
                posting = await self._get_posting(posting_id)
                if posting.client_id == actor.user_id:
                    raise NotEligibleError("不能對自己的案件提交提案")
                if posting.status != PostingStatusEnum.open:
                    raise PostingClosedError(f"案件狀態為「{posting.status.value}」，目前不接受提案")

                if await self.proposal_repo.get_active_proposal(posting_id, actor.user_id):
                    raise DuplicateProposalError()

                proposal = Proposal(
                    posting_id=posting_id,
                    expert_id=actor.user_id,
                    cover_letter=data.cover_letter,
                    proposed_price=data.proposed_price,
                    currency=data.currency,
                    proposed_duration=data.proposed_duration,
                    status=ProposalStatusEnum.pending,
                    bid_key=make_bid_key(posting_id, actor.user_id),
                )
                await self.proposal_repo.create_proposal(proposal)
        except IntegrityError:
            # 兩個請求同時通過上面的檢查，由 bid_key 的 UNIQUE 擋下第二個
            raise DuplicateProposalError()

        logger.info(f"專家 {actor.user_id} 對案件 {posting_id} 提交提案 {proposal.proposal_id}")
        return proposal

    async def withdraw_proposal(self, proposal_id: str, actor: Actor) -> Proposal:
        """
        pending / shortlisted -> withdrawn，只有提案者本人可以撤回
        """
        async with atomic(self.db):
            proposal = await self._get_proposal(proposal_id)
            if proposal.expert_id != actor.user_id:
                raise NotEligibleError("只有提案者本人可以撤回提案")
            await self._move(
                proposal,
                status=ProposalStatusEnum.withdrawn,
                withdrawn_at=datetime.now(),
                bid_key=None, # 撤回後可以重新提案
            )

        logger.info(f"提案 {proposal_id} 已撤回")
        return proposal

    # --- 發案方 ---

    async def _move(self, proposal: Proposal, **values) -> Proposal:
        if proposal.status not in OPEN_PROPOSAL_STATUSES:
            raise IllegalTransitionError(f"提案狀態為「{proposal.status.value}」，無法變更")
        moved = await self.proposal_repo.transition(
            proposal.proposal_id, [proposal.status], **values
        )
        if not moved:
            raise IllegalTransitionError("提案狀態已變更，請重新整理後再試")
        await self.db.refresh(proposal)
        return proposal

    async def shortlist_proposal(self, proposal_id: str, actor: Actor) -> Proposal:
        """
        pending -> shortlisted；已在候選名單則不做任何事
        """
        async with atomic(self.db):
            proposal, _ = await self._get_proposal_for_owner(proposal_id, actor)
            if proposal.status == ProposalStatusEnum.shortlisted:
                return proposal
            if proposal.status != ProposalStatusEnum.pending:
                raise IllegalTransitionError(f"提案狀態為「{proposal.status.value}」，無法加入候選")
            await self._move(
                proposal,
                status=ProposalStatusEnum.shortlisted,
                shortlisted_at=datetime.now(),
            )

        logger.info(f"提案 {proposal_id}: pending -> shortlisted")
        return proposal

    async def reject_proposal(self, proposal_id: str, actor: Actor, reason: Optional[str] = None) -> Proposal:
        async with atomic(self.db):
            proposal, _ = await self._get_proposal_for_owner(proposal_id, actor)
            await self._move(
                proposal,
                status=ProposalStatusEnum.rejected,
                rejected_at=datetime.now(),
                rejection_reason=reason,
            )

        logger.info(f"提案 {proposal_id} 已被拒絕")
        return proposal

    async def accept_proposal(self, posting_id: str, proposal_id: str, actor: Actor) -> Engagement:
        """
        業務邏輯：接受提案 (整段在同一個交易中完成)

        1. 確認提案屬於此案件，且仍在 pending / shortlisted
        2. 以單一條件式 UPDATE 將案件由 open / in_review 搶成 assigned；
           沒搶到 (0 筆) 代表已有其他提案先被接受 -> AlreadyAssignedError
        3. 提案 -> accepted，其餘競標中的提案 -> rejected
        4. 依提案金額建立專案 (accepted)
        任何一步失敗整段 rollback，不會出現「案件已指派卻沒有被接受的提案」。
        """
        async with atomic(self.db):
            posting = await self._get_posting(posting_id)
            if posting.client_id != actor.user_id:
                raise NotEligibleError("你無權操作此提案")

            proposal = await self._get_proposal(proposal_id)
            if proposal.posting_id != posting_id:
                raise NotFoundError("此案件沒有這份提案")
            if posting.status not in ACCEPTING_POSTING_STATUSES:
                raise AlreadyAssignedError(f"案件狀態為「{posting.status.value}」，無法再接受提案")
            if proposal.status not in OPEN_PROPOSAL_STATUSES:
                raise IllegalTransitionError(f"提案狀態為「{proposal.status.value}」，無法接受")

            now = datetime.now()

            # (關鍵) 搶案件：只有第一個呼叫者會更新到資料
            claimed = await self.posting_repo.transition(
                posting_id,
                ACCEPTING_POSTING_STATUSES,
                status=PostingStatusEnum.assigned,
                assigned_expert_id=proposal.expert_id,
                assigned_at=now,
            )
            if not claimed:
                raise AlreadyAssignedError()

            accepted = await self.proposal_repo.transition(
                proposal_id,
                OPEN_PROPOSAL_STATUSES,
                status=ProposalStatusEnum.accepted,
                accepted_at=now,
            )
            if not accepted:
                # 提案在這段期間被撤回或拒絕
                raise IllegalTransitionError("提案狀態已變更，請重新整理後再試")

            rejected_count = await self.proposal_repo.reject_competing_proposals(posting_id, proposal_id, now)

            platform_fee, expert_payout = split_platform_fee(
                proposal.proposed_price, settings.PLATFORM_FEE_PERCENT
            )
            engagement = Engagement(
                client_id=posting.client_id,
                expert_id=proposal.expert_id,
                posting_id=posting_id,
                proposal_id=proposal_id,
                title=posting.title,
                description=posting.description,
                price=proposal.proposed_price,
                currency=proposal.currency,
                platform_fee=platform_fee,
                expert_payout=expert_payout,
                status=EngagementStatusEnum.accepted,
                revisions_used=0,
                revisions_allowed=settings.DEFAULT_REVISIONS_ALLOWED,
                delivery_date=posting.deadline,
            )
            await self.engagement_repo.create_engagement(engagement)
            await self.engagement_repo.add_activity(EngagementActivity(
                engagement_id=engagement.engagement_id,
                actor_id=actor.user_id,
                kind="created_from_proposal",
                to_status=EngagementStatusEnum.accepted.value,
                message=f"proposal:{proposal_id}",
            ))

        logger.info(
            f"案件 {posting_id} 接受提案 {proposal_id} (專家 {proposal.expert_id})，"
            f"拒絕其他 {rejected_count} 份提案，建立專案 {engagement.engagement_id}"
        )
        return engagement

    async def accept_proposal_by_id(self, proposal_id: str, actor: Actor) -> Engagement:
        """
        /postings/proposals/{id}/accept 只帶提案 id，案件 id 由提案取得
        """
        proposal = await self._get_proposal(proposal_id)
        return await self.accept_proposal(proposal.posting_id, proposal_id, actor)
