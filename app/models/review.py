# app/models/review.py
import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, TEXT, INT, Boolean, TIMESTAMP, ForeignKey, UniqueConstraint, CheckConstraint
)
from sqlalchemy.dialects.mysql import CHAR
from app.core.database import Base


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        # 同一個專案，每位當事人只能評價一次 (由資料庫保證)
        UniqueConstraint("engagement_id", "reviewer_id", name="uq_reviews_engagement_reviewer"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating"),
    )

    review_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    engagement_id = Column(CHAR(36), ForeignKey("engagements.engagement_id", ondelete="CASCADE"), nullable=False, index=True)
    reviewer_id = Column(CHAR(36), ForeignKey("users.user_id"), nullable=False, index=True)
    reviewee_id = Column(CHAR(36), ForeignKey("users.user_id"), nullable=False, index=True)

    rating = Column(INT, nullable=False)
    # 細項評分 (選填)
    communication_rating = Column(INT)
    quality_rating = Column(INT)
    timeliness_rating = Column(INT)
    value_rating = Column(INT)

    title = Column(String(255))
    content = Column(TEXT, nullable=False)
    is_public = Column(Boolean, default=True, nullable=False)
    helpful_count = Column(INT, default=0, nullable=False)

    # 被評價者的回覆
    response = Column(TEXT)
    response_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, default=datetime.now)
    updated_at = Column(TIMESTAMP, default=datetime.now, onupdate=datetime.now)
