# app/repositories/proposal_repo.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from sqlalchemy import update, func
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from app.models.proposal import Proposal, ProposalStatusEnum, OPEN_PROPOSAL_STATUSES, make_bid_key
from app.utils.pagination import PageParams


class ProposalRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_proposal(self, proposal: Proposal) -> Proposal:
        """
        (C) 新增提案；重複提案會在 flush 時觸發 bid_key 的 UNIQUE (IntegrityError)
        """
        self.db.add(proposal)
        await self.db.flush()
        return proposal

    async def get_proposal_by_id(self, proposal_id: str) -> Optional[Proposal]:
        stmt = select(Proposal).execution_options(populate_existing=True).where(Proposal.proposal_id == proposal_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_active_proposal(self, posting_id: str, expert_id: str) -> Optional[Proposal]:
        """
        (R) 查詢專家對此案件尚未撤回的提案
        """
        stmt = select(Proposal).execution_options(populate_existing=True).where(Proposal.bid_key == make_bid_key(posting_id, expert_id))
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_proposals_by_posting(
        self, posting_id: str, params: PageParams
    ) -> Tuple[List[Proposal], int]:
        """
        (R) 發案方檢視案件的所有提案 (含專家資訊)
        """
        filters = [Proposal.posting_id == posting_id]
        total = (await self.db.execute(
            select(func.count(Proposal.proposal_id)).where(*filters)
        )).scalar_one()

        stmt = (
            select(Proposal).execution_options(populate_existing=True)
            .where(*filters)
            .options(selectinload(Proposal.expert))
            .order_by(Proposal.created_at.asc())
            .offset(params.offset)
            .limit(params.per_page)
        )
        result = await self.db.execute(stmt)
        return result.scalars().all(), total

    async def list_proposals_by_expert(
        self, expert_id: str, params: PageParams
    ) -> Tuple[List[Proposal], int]:
        filters = [Proposal.expert_id == expert_id]
        total = (await self.db.execute(
            select(func.count(Proposal.proposal_id)).where(*filters)
        )).scalar_one()

        stmt = (
            select(Proposal).execution_options(populate_existing=True)
            .where(*filters)
            .order_by(Proposal.updated_at.desc())
            .offset(params.offset)
            .limit(params.per_page)
        )
        result = await self.db.execute(stmt)
        return result.scalars().all(), total

    async def transition(
        self,
        proposal_id: str,
        from_statuses: Iterable[ProposalStatusEnum],
        **values,
    ) -> bool:
        """
        (U) 條件式更新提案狀態，回傳是否成功
        """
        stmt = (
            update(Proposal)
            .where(
                Proposal.proposal_id == proposal_id,
                Proposal.status.in_(list(from_statuses)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def reject_competing_proposals(
        self, posting_id: str, accepted_proposal_id: str, now: datetime
    ) -> int:
        """
        (U) 接受某份提案後，同案件其餘仍在競標中的提案一律改為 rejected
        """
        stmt = (
            update(Proposal)
            .where(
                Proposal.posting_id == posting_id,
                Proposal.proposal_id != accepted_proposal_id,
                Proposal.status.in_(list(OPEN_PROPOSAL_STATUSES)),
            )
            .values(
                status=ProposalStatusEnum.rejected,
                rejected_at=now,
                rejection_reason="another_proposal_accepted",
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount
