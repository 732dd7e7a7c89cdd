# app/models/engagement.py
# 專案 (UI 上稱 "Project")：接受提案 / 預約、或直接購買服務後成立的付費工作單位
import uuid
import enum
from datetime import datetime
from sqlalchemy import (
    Column, String, TEXT, BIGINT, INT, Boolean, TIMESTAMP, JSON, ForeignKey, Enum, CheckConstraint
)
from sqlalchemy.dialects.mysql import CHAR
from sqlalchemy.orm import relationship
from app.core.database import Base


class EngagementStatusEnum(str, enum.Enum):
    pending = "pending"         # 直接購買服務，尚未付款
    accepted = "accepted"       # 提案 / 預約已接受，尚未付款
    paid = "paid"
    in_progress = "in_progress"
    delivered = "delivered"
    revision = "revision"
    completed = "completed"
    cancelled = "cancelled"
    disputed = "disputed"
    refunded = "refunded"


TERMINAL_ENGAGEMENT_STATUSES = (
    EngagementStatusEnum.completed,
    EngagementStatusEnum.cancelled,
    EngagementStatusEnum.refunded,
)
# 尚未付款的狀態 (可建立結帳、可取消)
UNPAID_ENGAGEMENT_STATUSES = (EngagementStatusEnum.pending, EngagementStatusEnum.accepted)


class Engagement(Base):
    __tablename__ = "engagements"
    __table_args__ = (
        CheckConstraint("platform_fee + expert_payout = price", name="ck_engagements_fee_split"),
        CheckConstraint("revisions_used >= 0", name="ck_engagements_revisions_used"),
        # revisions_allowed 為 NULL 代表無限次
        CheckConstraint(
            "revisions_allowed IS NULL OR revisions_used <= revisions_allowed",
            name="ck_engagements_revision_limit",
        ),
    )

    engagement_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # --- 雙方 ---
    client_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True)
    expert_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True)

    # --- 來源 (提案 / 預約 / 直接購買服務時皆為 NULL) ---
    posting_id = Column(CHAR(36), ForeignKey("postings.posting_id", ondelete="RESTRICT"), nullable=True, index=True)
    proposal_id = Column(CHAR(36), ForeignKey("proposals.proposal_id", ondelete="RESTRICT"), unique=True, nullable=True)
    booking_id = Column(CHAR(36), ForeignKey("bookings.booking_id", ondelete="RESTRICT"), unique=True, nullable=True)

    title = Column(String(255), nullable=False)
    description = Column(TEXT)

    # --- 金額 (最小貨幣單位) ---
    price = Column(BIGINT, nullable=False)
    currency = Column(String(3), nullable=False)
    platform_fee = Column(BIGINT, nullable=False)
    expert_payout = Column(BIGINT, nullable=False)

    status = Column(
        Enum(EngagementStatusEnum, values_callable=lambda obj: [e.value for e in obj]),
        default=EngagementStatusEnum.accepted, nullable=False, index=True,
    )

    # --- 修改次數 ---
    revisions_used = Column(INT, default=0, nullable=False)
    revisions_allowed = Column(INT, nullable=True)

    delivery_date = Column(TIMESTAMP, nullable=True)
    paid_at = Column(TIMESTAMP, nullable=True)
    started_at = Column(TIMESTAMP, nullable=True)
    delivered_at = Column(TIMESTAMP, nullable=True)
    completed_at = Column(TIMESTAMP, nullable=True)
    cancelled_at = Column(TIMESTAMP, nullable=True)
    cancellation_reason = Column(TEXT)

    # --- 爭議 ---
    is_disputed = Column(Boolean, default=False, nullable=False)
    dispute_reason = Column(TEXT)
    resolution_outcome = Column(String(20))

    created_at = Column(TIMESTAMP, default=datetime.now)
    updated_at = Column(TIMESTAMP, default=datetime.now, onupdate=datetime.now)

    activities = relationship(
        "EngagementActivity",
        back_populates="engagement",
        order_by="EngagementActivity.created_at",
    )


class EngagementActivity(Base):
    """
    專案的歷程紀錄：每一次狀態轉移寫一筆，
    交付內容 (訊息 + 附件網址)、修改原因、爭議原因都記在這裡。
    """
    __tablename__ = "engagement_activities"

    activity_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    engagement_id = Column(CHAR(36), ForeignKey("engagements.engagement_id", ondelete="CASCADE"), nullable=False, index=True)
    actor_id = Column(CHAR(36), ForeignKey("users.user_id"), nullable=True)  # NULL = 系統 (金流回呼)
    kind = Column(String(50), nullable=False)
    from_status = Column(String(20))
    to_status = Column(String(20))
    message = Column(TEXT)
    attachments = Column(JSON, default=list)
    created_at = Column(TIMESTAMP, default=datetime.now)

    engagement = relationship("Engagement", back_populates="activities")
