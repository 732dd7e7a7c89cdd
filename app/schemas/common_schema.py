# app/schemas/common_schema.py
# 所有 API 共用的回應外層格式
from typing import Generic, List, Optional, TypeVar
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """
    對外 JSON 一律使用 camelCase (assignedExpertId、revisionsUsed...)，
    Python 端仍使用 snake_case；輸入兩種寫法都接受。
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# 單一物件回應：{ success, data, message? }
class ApiResponse(CamelModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None


# 分頁資訊
class PaginationMeta(CamelModel):
    current_page: int
    per_page: int
    total_items: int
    total_pages: int
    has_next: bool
    has_prev: bool


# 列表回應：{ data: [...], meta: {...} }
class PaginatedResponse(CamelModel, Generic[T]):
    data: List[T]
    meta: PaginationMeta
