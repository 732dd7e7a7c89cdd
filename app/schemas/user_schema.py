# app/schemas/user_schema.py
from pydantic import BaseModel, EmailStr, Field, field_validator, ConfigDict
import re
from app.models.user import UserRoleEnum
from typing import Optional
from app.schemas.common_schema import CamelModel

# Token 回應的格式
class Token(BaseModel):
    access_token: str
    token_type: str

# Token 內的資料
class TokenData(BaseModel):
    user_id: str
    role: str


class Actor(BaseModel):
    """
    每個業務操作都明確帶入「誰在做」(user_id + 角色)，
    service 不從任何全域狀態推斷身分。
    金流回呼等系統觸發的動作使用 Actor.system()。
    """
    model_config = ConfigDict(frozen=True)

    user_id: Optional[str] = None
    role: str

    @classmethod
    def system(cls) -> "Actor":
        return cls(user_id=None, role="system")

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(user_id=user.user_id, role=user.role.value)

    @property
    def is_system(self) -> bool:
        return self.role == "system"

    @property
    def is_admin(self) -> bool:
        return self.role == UserRoleEnum.admin.value


# 註冊請求 Body
class UserCreate(BaseModel):
    email: EmailStr
    # 密碼要求英數混合
    password: str = Field(..., min_length=8)
    full_name: Optional[str] = Field(None, max_length=255)
    role: UserRoleEnum

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        """
        驗證密碼是否至少8碼且包含英文和數字
        """
        if not re.search(r'(?=.*[a-zA-Z])(?=.*[0-9])', v):
            raise ValueError('密碼必須包含英文和數字')
        return v

    @field_validator('role')
    @classmethod
    def validate_role(cls, v: UserRoleEnum) -> UserRoleEnum:
        # 管理員帳號不開放自行註冊
        if v == UserRoleEnum.admin:
            raise ValueError('無法註冊管理員帳號')
        return v

# 註冊/查詢使用者的安全回應
class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    email: EmailStr
    full_name: Optional[str] = None
    role: UserRoleEnum
    is_active: bool

# 在提案列表等處顯示的精簡使用者資訊
class UserBrief(CamelModel):
    user_id: str
    full_name: Optional[str] = None
    role: UserRoleEnum
