# app/schemas/review_schema.py
from pydantic import Field
from typing import Dict, Optional
from datetime import datetime
from app.schemas.common_schema import CamelModel


class ReviewCreate(CamelModel):
    """
    評價內容的長度與分數範圍由 ReviewService 驗證：
    必須先確認「是否已評價過」，重複評價一律回 DuplicateReviewError。
    """
    engagement_id: str
    rating: int
    content: str
    title: Optional[str] = None
    communication_rating: Optional[int] = None
    quality_rating: Optional[int] = None
    timeliness_rating: Optional[int] = None
    value_rating: Optional[int] = None
    is_public: bool = True


class ReviewResponseCreate(CamelModel):
    response: str


class ReviewOut(CamelModel):
    review_id: str
    engagement_id: str
    reviewer_id: str
    reviewee_id: str
    rating: int
    communication_rating: Optional[int] = None
    quality_rating: Optional[int] = None
    timeliness_rating: Optional[int] = None
    value_rating: Optional[int] = None
    title: Optional[str] = None
    content: str
    is_public: bool
    helpful_count: int
    response: Optional[str] = None
    response_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ReviewSummary(CamelModel):
    """被評價者的評價統計：每次都由原始評價即時計算"""
    reviewee_id: str
    total_reviews: int = 0
    average_rating: float = 0.0
    # "1" ~ "5" 各星等的數量
    distribution: Dict[str, int] = Field(default_factory=lambda: {str(i): 0 for i in range(1, 6)})
    average_communication: Optional[float] = None
    average_quality: Optional[float] = None
    average_timeliness: Optional[float] = None
    average_value: Optional[float] = None


class ReviewSubmitOut(CamelModel):
    review: ReviewOut
    summary: ReviewSummary
