# app/repositories/engagement_repo.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.sql.expression import or_
from sqlalchemy import update, func
from typing import List, Optional, Tuple

from app.models.engagement import Engagement, EngagementActivity, EngagementStatusEnum
from app.utils.pagination import PageParams


class EngagementRepository:
    """
    封裝對 'engagements' 與 'engagement_activities' 資料表的操作
    """
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_engagement(self, engagement: Engagement) -> Engagement:
        self.db.add(engagement)
        await self.db.flush()
        return engagement

    async def get_engagement_by_id(self, engagement_id: str) -> Optional[Engagement]:
        stmt = select(Engagement).execution_options(populate_existing=True).where(Engagement.engagement_id == engagement_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_engagements_by_user(
        self,
        user_id: str,
        params: PageParams,
        status: Optional[EngagementStatusEnum] = None,
    ) -> Tuple[List[Engagement], int]:
        """
        (R) 某位使用者 (作為發案方 或 作為專家) 的所有專案
        """
        filters = [or_(Engagement.client_id == user_id, Engagement.expert_id == user_id)]
        if status:
            filters.append(Engagement.status == status)

        total = (await self.db.execute(
            select(func.count(Engagement.engagement_id)).where(*filters)
        )).scalar_one()

        stmt = (
            select(Engagement).execution_options(populate_existing=True)
            .where(*filters)
            .order_by(Engagement.updated_at.desc())
            .offset(params.offset)
            .limit(params.per_page)
        )
        result = await self.db.execute(stmt)
        return result.scalars().all(), total

    async def transition(
        self,
        engagement_id: str,
        expected_status: EngagementStatusEnum,
        expected_revisions_used: Optional[int] = None,
        **values,
    ) -> bool:
        """
        (U) 條件式狀態轉移：WHERE status = 讀到的狀態 (必要時再比對 revisions_used)。
        同時有兩個人操作同一個專案時，只有第一個會更新到資料。
        """
        conditions = [
            Engagement.engagement_id == engagement_id,
            Engagement.status == expected_status,
        ]
        if expected_revisions_used is not None:
            conditions.append(Engagement.revisions_used == expected_revisions_used)

        stmt = (
            update(Engagement)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def add_activity(self, activity: EngagementActivity) -> EngagementActivity:
        self.db.add(activity)
        await self.db.flush()
        return activity

    async def list_activities(self, engagement_id: str) -> List[EngagementActivity]:
        stmt = (
            select(EngagementActivity).execution_options(populate_existing=True)
            .where(EngagementActivity.engagement_id == engagement_id)
            .order_by(EngagementActivity.created_at.asc())
        )
        result = await self.db.execute(stmt)
        return result.scalars().all()
