# app/schemas/posting_schema.py
from pydantic import Field, field_validator
from typing import List, Literal, Optional
from datetime import datetime
from app.models.posting import BudgetTypeEnum, PostingStatusEnum
from app.schemas.common_schema import CamelModel
from app.utils.money import normalize_currency


# 1. 基礎欄位 (對應 Model)
class PostingBase(CamelModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    requirements: Optional[str] = None
    skills_required: List[str] = []
    tools_required: List[str] = []
    # 預算：fixed / hourly 以 budget_min 為金額，range 需同時有 min 與 max
    budget_type: BudgetTypeEnum
    budget_min: Optional[int] = Field(None, gt=0)
    budget_max: Optional[int] = Field(None, gt=0)
    currency: str = "chf"
    deadline: Optional[datetime] = None
    is_urgent: bool = False

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return normalize_currency(v)


# 2. 發案方刊登案件時的 Request Body
class PostingCreate(PostingBase):
    # 可先存草稿，或直接開放收件
    status: Literal["draft", "open"] = "draft"


# 3. 發案方更新案件 (所有欄位皆可選)
class PostingUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1)
    requirements: Optional[str] = None
    skills_required: Optional[List[str]] = None
    tools_required: Optional[List[str]] = None
    budget_type: Optional[BudgetTypeEnum] = None
    budget_min: Optional[int] = Field(None, gt=0)
    budget_max: Optional[int] = Field(None, gt=0)
    currency: Optional[str] = None
    deadline: Optional[datetime] = None
    is_urgent: Optional[bool] = None
    # 開放收件 <-> 暫停收件 (評估中)
    status: Optional[Literal["open", "in_review"]] = None

    # 省略代表不修改；這些欄位在資料表中不可為空，明確送 null 視為錯誤
    @field_validator(
        "title", "description", "skills_required", "tools_required", "budget_type", "currency", "is_urgent",
    )
    @classmethod
    def reject_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} 不可為 null")
        return v

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        return normalize_currency(v) if v is not None else v


# 4. 關閉案件
class PostingClose(CamelModel):
    reason: Optional[str] = Field(None, max_length=1000)


# 5. 回傳給前端的案件資料
class PostingOut(PostingBase):
    posting_id: str
    client_id: str
    status: PostingStatusEnum
    proposal_count: int = 0
    assigned_expert_id: Optional[str] = None
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
