# app/models/proposal.py
import uuid
import enum
from datetime import datetime
from sqlalchemy import Column, String, Text, BIGINT, INT, ForeignKey, TIMESTAMP, Enum, select, func
from sqlalchemy.dialects.mysql import CHAR
from sqlalchemy.orm import relationship, column_property
from app.core.database import Base
from app.models.posting import Posting


class ProposalStatusEnum(str, enum.Enum):
    pending = "pending"
    shortlisted = "shortlisted"
    accepted = "accepted"
    rejected = "rejected"
    withdrawn = "withdrawn"


# 仍在競標中的提案 (可被接受 / 拒絕 / 撤回)
OPEN_PROPOSAL_STATUSES = (ProposalStatusEnum.pending, ProposalStatusEnum.shortlisted)


def make_bid_key(posting_id: str, expert_id: str) -> str:
    """同一位專家對同一個案件只能有一份未撤回的提案"""
    return f"{posting_id}:{expert_id}"


class Proposal(Base):
    __tablename__ = "proposals"

    proposal_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    posting_id = Column(CHAR(36), ForeignKey("postings.posting_id", ondelete="CASCADE"), nullable=False, index=True)
    expert_id = Column(CHAR(36), ForeignKey("users.user_id"), nullable=False, index=True)

    cover_letter = Column(Text, nullable=False)
    proposed_price = Column(BIGINT, nullable=False)  # 最小貨幣單位
    currency = Column(String(3), nullable=False)
    proposed_duration = Column(INT)  # 預計天數

    status = Column(
        Enum(ProposalStatusEnum, values_callable=lambda obj: [e.value for e in obj]),
        default=ProposalStatusEnum.pending, nullable=False, index=True,
    )
    # 未撤回時為 "posting_id:expert_id"，撤回後清為 NULL；
    # UNIQUE 由資料庫保證不會重複提案 (NULL 不參與比較)
    bid_key = Column(String(80), unique=True, nullable=True)

    shortlisted_at = Column(TIMESTAMP, nullable=True)
    accepted_at = Column(TIMESTAMP, nullable=True)
    rejected_at = Column(TIMESTAMP, nullable=True)
    rejection_reason = Column(Text)
    withdrawn_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, default=datetime.now)
    updated_at = Column(TIMESTAMP, default=datetime.now, onupdate=datetime.now)

    # --- 建立關聯 (Relationships) ---
    posting = relationship("Posting", back_populates="proposals")
    expert = relationship("User", back_populates="proposals")


# 案件的提案數：即時計算未撤回的提案，不另外存欄位
Posting.proposal_count = column_property(
    select(func.count(Proposal.proposal_id))
    .where(
        Proposal.posting_id == Posting.posting_id,
        Proposal.status != ProposalStatusEnum.withdrawn,
    )
    .correlate_except(Proposal)
    .scalar_subquery()
)
