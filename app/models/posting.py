# models/posting.py
import uuid
import enum
from datetime import datetime
from sqlalchemy import (
    Column, String, TEXT, BIGINT, Boolean, TIMESTAMP, JSON, ForeignKey, Enum, CheckConstraint
)
from sqlalchemy.dialects.mysql import CHAR
from sqlalchemy.orm import relationship
from app.core.database import Base


class PostingStatusEnum(str, enum.Enum):
    draft = "draft"
    open = "open"
    in_review = "in_review"   # 發案方暫停收件、評估提案中
    assigned = "assigned"     # 已接受提案，指派專家
    completed = "completed"
    cancelled = "cancelled"


class BudgetTypeEnum(str, enum.Enum):
    fixed = "fixed"
    hourly = "hourly"
    range = "range"


# 可被發案方編輯 / 關閉的狀態
EDITABLE_POSTING_STATUSES = (
    PostingStatusEnum.draft, PostingStatusEnum.open, PostingStatusEnum.in_review,
)
# 可接受提案的狀態
ACCEPTING_POSTING_STATUSES = (PostingStatusEnum.open, PostingStatusEnum.in_review)
TERMINAL_POSTING_STATUSES = (PostingStatusEnum.completed, PostingStatusEnum.cancelled)


class Posting(Base):
    # 發案方刊登的工作需求
    __tablename__ = "postings"
    __table_args__ = (
        # 只有 assigned / completed 狀態才會有指派的專家，反之亦然
        CheckConstraint(
            "(status IN ('assigned', 'completed') AND assigned_expert_id IS NOT NULL) OR "
            "(status NOT IN ('assigned', 'completed') AND assigned_expert_id IS NULL)",
            name="ck_postings_assigned_expert",
        ),
        CheckConstraint("budget_min IS NULL OR budget_min > 0", name="ck_postings_budget_min"),
    )

    posting_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    client_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    description = Column(TEXT, nullable=False)
    requirements = Column(TEXT)
    skills_required = Column(JSON, default=list)
    tools_required = Column(JSON, default=list)

    # 預算 (最小貨幣單位)
    budget_type = Column(Enum(BudgetTypeEnum, values_callable=lambda obj: [e.value for e in obj]), nullable=False)
    budget_min = Column(BIGINT)
    budget_max = Column(BIGINT)
    currency = Column(String(3), nullable=False, default="chf")

    deadline = Column(TIMESTAMP, nullable=True)
    is_urgent = Column(Boolean, default=False, nullable=False)

    status = Column(
        Enum(PostingStatusEnum, values_callable=lambda obj: [e.value for e in obj]),
        default=PostingStatusEnum.draft, nullable=False, index=True,
    )
    assigned_expert_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=True)
    assigned_at = Column(TIMESTAMP, nullable=True)
    completed_at = Column(TIMESTAMP, nullable=True)
    cancelled_at = Column(TIMESTAMP, nullable=True)
    cancellation_reason = Column(TEXT)

    created_at = Column(TIMESTAMP, default=datetime.now)
    updated_at = Column(TIMESTAMP, default=datetime.now, onupdate=datetime.now)

    # 關聯回 User (發案方)
    client = relationship("User", foreign_keys=[client_id], back_populates="postings")

    proposals = relationship(
        "Proposal",
        back_populates="posting",
        cascade="all, delete-orphan" # 刪除草稿時，一併刪除關聯提案
    )

    # proposal_count 於 models/proposal.py 以 column_property 掛上 (避免循環 import)
