# app/schemas/engagement_schema.py
from pydantic import Field, field_validator
from typing import List, Literal, Optional, Union
from datetime import datetime

from app.models.engagement import EngagementStatusEnum
from app.schemas.common_schema import CamelModel
from app.utils import revision_ledger


class EngagementOut(CamelModel):
    engagement_id: str
    client_id: str
    expert_id: str
    posting_id: Optional[str] = None
    proposal_id: Optional[str] = None
    booking_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    price: int
    currency: str
    platform_fee: int
    expert_payout: int
    status: EngagementStatusEnum
    revisions_used: int
    # 整數上限，或 "unlimited"
    revisions_allowed: Union[int, Literal["unlimited"]]
    delivery_date: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    is_disputed: bool = False
    dispute_reason: Optional[str] = None
    resolution_outcome: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("revisions_allowed", mode="before")
    @classmethod
    def allowance_to_wire(cls, v):
        # 資料庫的 NULL 代表無限
        if v is None:
            return revision_ledger.UNLIMITED_WIRE_VALUE
        return v


# 專家交付
class DeliverRequest(CamelModel):
    message: str = Field(..., min_length=1, max_length=5000)
    attachments: List[str] = Field(default_factory=list, description="附件網址")


# 要求修改 / 提出爭議 / 取消
class ReasonRequest(CamelModel):
    reason: str = Field(..., min_length=1, max_length=2000)


# 平台仲裁
class ResolveRequest(CamelModel):
    outcome: Literal["completed", "refunded"]
    note: Optional[str] = Field(None, max_length=2000)


class ActivityOut(CamelModel):
    activity_id: str
    engagement_id: str
    actor_id: Optional[str] = None
    kind: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    message: Optional[str] = None
    attachments: List[str] = []
    created_at: Optional[datetime] = None

    @field_validator("attachments", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or []
