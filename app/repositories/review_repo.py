# app/repositories/review_repo.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import update, func, case
from datetime import datetime
from typing import List, Optional, Tuple

from app.models.review import Review
from app.utils.pagination import PageParams


class ReviewRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_review(self, review: Review) -> Review:
        """
        (C) 新增評價；(engagement_id, reviewer_id) 重複時 flush 會丟 IntegrityError
        """
        self.db.add(review)
        await self.db.flush()
        return review

    async def get_review_by_id(self, review_id: str) -> Optional[Review]:
        stmt = select(Review).execution_options(populate_existing=True).where(Review.review_id == review_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_review_by_reviewer(self, engagement_id: str, reviewer_id: str) -> Optional[Review]:
        stmt = select(Review).execution_options(populate_existing=True).where(
            Review.engagement_id == engagement_id,
            Review.reviewer_id == reviewer_id,
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_public_reviews(
        self, reviewee_id: str, params: PageParams
    ) -> Tuple[List[Review], int]:
        filters = [Review.reviewee_id == reviewee_id, Review.is_public.is_(True)]
        total = (await self.db.execute(
            select(func.count(Review.review_id)).where(*filters)
        )).scalar_one()

        stmt = (
            select(Review).execution_options(populate_existing=True)
            .where(*filters)
            .order_by(Review.created_at.desc())
            .offset(params.offset)
            .limit(params.per_page)
        )
        result = await self.db.execute(stmt)
        return result.scalars().all(), total

    async def aggregate_for_reviewee(self, reviewee_id: str):
        """
        (R) 被評價者的統計，一次 SQL 聚合算出：
        總數、平均、1~5 星各自的數量、細項平均
        """
        stmt = select(
            func.count(Review.review_id).label("total"),
            func.avg(Review.rating).label("average"),
            *[
                func.sum(case((Review.rating == star, 1), else_=0)).label(f"star_{star}")
                for star in range(1, 6)
            ],
            func.avg(Review.communication_rating).label("communication"),
            func.avg(Review.quality_rating).label("quality"),
            func.avg(Review.timeliness_rating).label("timeliness"),
            func.avg(Review.value_rating).label("value"),
        ).where(Review.reviewee_id == reviewee_id)
        result = await self.db.execute(stmt)
        return result.one()

    async def increment_helpful(self, review_id: str) -> bool:
        """
        (U) helpful_count + 1，在資料庫端累加，不會因並行而少算
        """
        stmt = (
            update(Review)
            .where(Review.review_id == review_id)
            .values(helpful_count=Review.helpful_count + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def set_response(self, review_id: str, response: str, now: datetime) -> bool:
        """
        (U) 寫入被評價者的回覆；已回覆過則不更新
        """
        stmt = (
            update(Review)
            .where(Review.review_id == review_id, Review.response.is_(None))
            .values(response=response, response_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1
