# app/schemas/proposal_schema.py
from pydantic import Field, field_validator
from typing import Optional
from datetime import datetime

from app.models.proposal import ProposalStatusEnum
from app.schemas.common_schema import CamelModel
from app.schemas.user_schema import UserBrief
from app.utils.money import normalize_currency


# 專家提交提案 (Input)
class ProposalCreate(CamelModel):
    cover_letter: str = Field(..., min_length=1, max_length=5000)
    proposed_price: int = Field(..., gt=0, description="最小貨幣單位 (例如 cents)")
    currency: str
    proposed_duration: Optional[int] = Field(None, gt=0, description="預計天數")

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return normalize_currency(v)


# 發案方拒絕提案
class ProposalReject(CamelModel):
    reason: Optional[str] = Field(None, max_length=1000)


# 回傳給前端的提案資料 (Output)
class ProposalOut(CamelModel):
    proposal_id: str
    posting_id: str
    expert_id: str
    cover_letter: str
    proposed_price: int
    currency: str
    proposed_duration: Optional[int] = None
    status: ProposalStatusEnum
    shortlisted_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    withdrawn_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# 發案方檢視提案列表時，一併顯示專家資訊
class ProposalOutWithExpert(ProposalOut):
    expert: UserBrief
