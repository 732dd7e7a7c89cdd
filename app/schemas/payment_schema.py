# app/schemas/payment_schema.py
from pydantic import Field, field_validator, model_validator
from typing import Literal, Optional
from datetime import datetime

from app.models.payment import PaymentStatusEnum, PayoutStatusEnum
from app.schemas.common_schema import CamelModel
from app.utils.money import normalize_currency


class ServicePurchase(CamelModel):
    """直接購買專家的服務方案 (不經過刊登案件)"""
    expert_id: str
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: int = Field(..., gt=0)
    currency: str
    # 方案內含的修改次數，-1 代表無限
    revisions_included: int = Field(2, ge=-1)
    delivery_days: Optional[int] = Field(None, gt=0)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return normalize_currency(v)


class CheckoutCreate(CamelModel):
    # 二擇一：對既有專案付款，或直接購買服務
    engagement_id: Optional[str] = None
    service: Optional[ServicePurchase] = None
    amount: Optional[int] = Field(None, gt=0)
    currency: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        return normalize_currency(v) if v is not None else v

    @model_validator(mode="after")
    def exactly_one_reference(self):
        if (self.engagement_id is None) == (self.service is None):
            raise ValueError("engagementId 與 service 必須擇一提供")
        return self


class CheckoutSessionOut(CamelModel):
    session_id: str
    redirect_url: str
    payment_id: str
    engagement_id: str


class PaymentOut(CamelModel):
    payment_id: str
    engagement_id: str
    payer_id: str
    payee_id: str
    amount: int
    currency: str
    platform_fee: int
    net_amount: int
    status: PaymentStatusEnum
    session_id: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


# 金流商 webhook 通知
class PaymentWebhookEvent(CamelModel):
    session_id: str
    status: Literal["succeeded", "failed"]
    failure_reason: Optional[str] = None


class PayoutRequest(CamelModel):
    amount: int = Field(..., gt=0)
    currency: str

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return normalize_currency(v)


class PayoutOut(CamelModel):
    payout_id: str
    expert_id: str
    amount: int
    currency: str
    status: PayoutStatusEnum
    gateway_payout_id: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None


class BalanceOut(CamelModel):
    currency: str
    available: int
