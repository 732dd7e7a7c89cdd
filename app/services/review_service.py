# app/services/review_service.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from datetime import datetime
from typing import List, Optional, Tuple
import logging

from app.core.database import atomic
from app.core.exceptions import (
    ValidationError, NotEligibleError, NotFoundError, IllegalTransitionError, DuplicateReviewError,
)
from app.models.engagement import EngagementStatusEnum
from app.models.review import Review
from app.schemas.review_schema import ReviewCreate, ReviewSummary
from app.schemas.user_schema import Actor
from app.repositories.engagement_repo import EngagementRepository
from app.repositories.review_repo import ReviewRepository
from app.utils.pagination import PageParams

logger = logging.getLogger(__name__)

CONTENT_MIN_LENGTH = 20
CONTENT_MAX_LENGTH = 2000
RESPONSE_MIN_LENGTH = 10
RESPONSE_MAX_LENGTH = 1000
SUB_RATING_FIELDS = ("communication_rating", "quality_rating", "timeliness_rating", "value_rating")


def _validate_rating(value: Optional[int], field: str) -> None:
    if value is not None and not 1 <= value <= 5:
        raise ValidationError(f"{field} 必須介於 1 到 5 之間")


def validate_review_payload(data: ReviewCreate) -> None:
    content = (data.content or "").strip()
    if len(content) < CONTENT_MIN_LENGTH:
        raise ValidationError(f"評價內容至少需要 {CONTENT_MIN_LENGTH} 個字")
    if len(content) > CONTENT_MAX_LENGTH:
        raise ValidationError(f"評價內容不可超過 {CONTENT_MAX_LENGTH} 個字")
    if data.rating is None:
        raise ValidationError("請給予評分")
    _validate_rating(data.rating, "rating")
    for field in SUB_RATING_FIELDS:
        _validate_rating(getattr(data, field), field)
    if data.title is not None and len(data.title) > 255:
        raise ValidationError("標題不可超過 255 個字")


def _round(value) -> Optional[float]:
    return round(float(value), 2) if value is not None else None


class ReviewService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.review_repo = ReviewRepository(db)
        self.engagement_repo = EngagementRepository(db)

    async def _get_review(self, review_id: str) -> Review:
        review = await self.review_repo.get_review_by_id(review_id)
        if not review:
            raise NotFoundError("評價不存在")
        return review

    async def get_summary(self, reviewee_id: str) -> ReviewSummary:
        """
        被評價者的評價統計，每次都從原始評價即時聚合 (不存快取)
        """
        row = await self.review_repo.aggregate_for_reviewee(reviewee_id)
        total = row.total or 0
        return ReviewSummary(
            reviewee_id=reviewee_id,
            total_reviews=total,
            average_rating=_round(row.average) or 0.0,
            distribution={str(star): int(getattr(row, f"star_{star}") or 0) for star in range(1, 6)},
            average_communication=_round(row.communication),
            average_quality=_round(row.quality),
            average_timeliness=_round(row.timeliness),
            average_value=_round(row.value),
        )

    async def submit_review(self, data: ReviewCreate, actor: Actor) -> Tuple[Review, ReviewSummary]:
        """
        業務邏輯：專案完成後，當事人評價對方

        檢查順序：當事人且專案已完成 (NotEligibleError)
        -> 尚未評價過 (DuplicateReviewError) -> 內容與分數 (ValidationError)
        """
        try:
            async with atomic(self.db):
                engagement = await self.engagement_repo.get_engagement_by_id(data.engagement_id)
                if not engagement:
                    raise NotFoundError("專案不存在")
                if actor.user_id not in (engagement.client_id, engagement.expert_id):
                    raise NotEligibleError("只有專案當事人可以評價")
                if engagement.status != EngagementStatusEnum.completed:
                    raise NotEligibleError("專案完成後才能評價")

                if await self.review_repo.get_review_by_reviewer(data.engagement_id, actor.user_id):
                    raise DuplicateReviewError()

                validate_review_payload(data)

                reviewee_id = (
                    engagement.expert_id if actor.user_id == engagement.client_id else engagement.client_id
                )
                review = Review(
                    engagement_id=data.engagement_id,
                    reviewer_id=actor.user_id,
                    reviewee_id=reviewee_id,
                    rating=data.rating,
                    communication_rating=data.communication_rating,
                    quality_rating=data.quality_rating,
                    timeliness_rating=data.timeliness_rating,
                    value_rating=data.value_rating,
                    title=data.title,
                    content=data.content.strip(),
                    is_public=data.is_public,
                    helpful_count=0,
                )
                await self.review_repo.create_review(review)
        except IntegrityError:
            # 同時送出兩次評價，由 (engagement_id, reviewer_id) 的 UNIQUE 擋下
            raise DuplicateReviewError()

        summary = await self.get_summary(reviewee_id)
        logger.info(
            f"{actor.user_id} 評價專案 {data.engagement_id} ({data.rating} 星)，"
            f"{reviewee_id} 目前平均 {summary.average_rating} ({summary.total_reviews} 則)"
        )
        return review, summary

    async def respond(self, review_id: str, actor: Actor, text: str) -> Review:
        """
        被評價者回覆評價 (每則評價只能回覆一次)
        """
        text = (text or "").strip()
        async with atomic(self.db):
            review = await self._get_review(review_id)
            if review.reviewee_id != actor.user_id:
                raise NotEligibleError("只有被評價者可以回覆")
            if not RESPONSE_MIN_LENGTH <= len(text) <= RESPONSE_MAX_LENGTH:
                raise ValidationError(
                    f"回覆內容需介於 {RESPONSE_MIN_LENGTH} 到 {RESPONSE_MAX_LENGTH} 個字"
                )
            if not await self.review_repo.set_response(review_id, text, datetime.now()):
                raise IllegalTransitionError("此評價已經回覆過")
            await self.db.refresh(review)

        logger.info(f"評價 {review_id} 已被回覆")
        return review

    async def mark_helpful(self, review_id: str) -> Review:
        async with atomic(self.db):
            review = await self._get_review(review_id)
            await self.review_repo.increment_helpful(review_id)
            await self.db.refresh(review)
        return review

    async def list_reviews_for(self, reviewee_id: str, params: PageParams) -> Tuple[List[Review], int]:
        return await self.review_repo.list_public_reviews(reviewee_id, params)
