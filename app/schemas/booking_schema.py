# app/schemas/booking_schema.py
from pydantic import Field, field_validator
from typing import Optional
from datetime import datetime

from app.models.booking import BookingStatusEnum
from app.schemas.common_schema import CamelModel
from app.utils.money import normalize_currency


class BookingCreate(CamelModel):
    expert_id: str
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=20, max_length=2000)
    proposed_budget: Optional[int] = Field(None, gt=0)
    currency: str = "chf"
    proposed_start_date: Optional[datetime] = None
    proposed_deadline: Optional[datetime] = None

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return normalize_currency(v)


class BookingRespond(CamelModel):
    accept: bool
    response: Optional[str] = Field(None, max_length=2000)


class BookingOut(CamelModel):
    booking_id: str
    client_id: str
    expert_id: str
    title: str
    message: str
    proposed_budget: Optional[int] = None
    currency: str
    proposed_start_date: Optional[datetime] = None
    proposed_deadline: Optional[datetime] = None
    status: BookingStatusEnum
    expert_response: Optional[str] = None
    responded_at: Optional[datetime] = None
    expires_at: datetime
    engagement_id: Optional[str] = None
    created_at: Optional[datetime] = None
