# app/models/payment.py
import uuid
import enum
from datetime import datetime
from sqlalchemy import Column, String, TEXT, BIGINT, TIMESTAMP, ForeignKey, Enum
from sqlalchemy.dialects.mysql import CHAR
from app.core.database import Base


class PaymentStatusEnum(str, enum.Enum):
    pending = "pending"
    succeeded = "succeeded"
    failed = "failed"
    refunded = "refunded"
    disputed = "disputed"


class PayoutStatusEnum(str, enum.Enum):
    pending = "pending"
    in_transit = "in_transit"
    paid = "paid"
    failed = "failed"


class Payment(Base):
    # 一次結帳 (託管付款) 的紀錄
    __tablename__ = "payments"

    payment_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    engagement_id = Column(CHAR(36), ForeignKey("engagements.engagement_id", ondelete="RESTRICT"), nullable=False, index=True)
    payer_id = Column(CHAR(36), ForeignKey("users.user_id"), nullable=False, index=True)
    payee_id = Column(CHAR(36), ForeignKey("users.user_id"), nullable=False, index=True)

    amount = Column(BIGINT, nullable=False)
    currency = Column(String(3), nullable=False)
    platform_fee = Column(BIGINT, nullable=False)
    net_amount = Column(BIGINT, nullable=False)

    status = Column(
        Enum(PaymentStatusEnum, values_callable=lambda obj: [e.value for e in obj]),
        default=PaymentStatusEnum.pending, nullable=False, index=True,
    )
    # 金流商的結帳工作階段 id，webhook 以此對應付款
    session_id = Column(String(255), unique=True, nullable=True)
    # 付款頁網址；發案方中途離開後重新結帳時沿用同一個工作階段
    redirect_url = Column(TEXT)
    failure_reason = Column(TEXT)

    paid_at = Column(TIMESTAMP, nullable=True)
    refunded_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, default=datetime.now)
    updated_at = Column(TIMESTAMP, default=datetime.now, onupdate=datetime.now)


class Payout(Base):
    # 撥款給專家的紀錄
    __tablename__ = "payouts"

    payout_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    expert_id = Column(CHAR(36), ForeignKey("users.user_id"), nullable=False, index=True)
    amount = Column(BIGINT, nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(
        Enum(PayoutStatusEnum, values_callable=lambda obj: [e.value for e in obj]),
        default=PayoutStatusEnum.pending, nullable=False,
    )
    gateway_payout_id = Column(String(255), unique=True, nullable=True)
    failure_reason = Column(TEXT)

    created_at = Column(TIMESTAMP, default=datetime.now)
    updated_at = Column(TIMESTAMP, default=datetime.now, onupdate=datetime.now)
