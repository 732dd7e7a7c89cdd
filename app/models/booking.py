# app/models/booking.py
# 發案方直接向某位專家提出的預約請求 (不經過刊登案件)
import uuid
import enum
from datetime import datetime
from sqlalchemy import Column, String, TEXT, BIGINT, TIMESTAMP, ForeignKey, Enum
from sqlalchemy.dialects.mysql import CHAR
from app.core.database import Base


class BookingStatusEnum(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    declined = "declined"
    cancelled = "cancelled"
    expired = "expired"


class Booking(Base):
    __tablename__ = "bookings"

    booking_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    client_id = Column(CHAR(36), ForeignKey("users.user_id"), nullable=False, index=True)
    expert_id = Column(CHAR(36), ForeignKey("users.user_id"), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    message = Column(TEXT, nullable=False)
    proposed_budget = Column(BIGINT, nullable=True)
    currency = Column(String(3), nullable=False)
    proposed_start_date = Column(TIMESTAMP, nullable=True)
    proposed_deadline = Column(TIMESTAMP, nullable=True)

    status = Column(
        Enum(BookingStatusEnum, values_callable=lambda obj: [e.value for e in obj]),
        default=BookingStatusEnum.pending, nullable=False, index=True,
    )
    expert_response = Column(TEXT)
    responded_at = Column(TIMESTAMP, nullable=True)
    expires_at = Column(TIMESTAMP, nullable=False)

    # 接受後成立的專案
    engagement_id = Column(CHAR(36), nullable=True)

    created_at = Column(TIMESTAMP, default=datetime.now)
    updated_at = Column(TIMESTAMP, default=datetime.now, onupdate=datetime.now)
