# app/utils/pagination.py
from fastapi import Query
from pydantic import BaseModel
from app.schemas.common_schema import PaginationMeta

MAX_PER_PAGE = 100


class PageParams(BaseModel):
    page: int = 1
    per_page: int = 20

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


def page_params(
    page: int = Query(1, ge=1, description="頁碼 (從 1 開始)"),
    per_page: int = Query(20, ge=1, le=MAX_PER_PAGE, alias="perPage", description="每頁筆數"),
) -> PageParams:
    """FastAPI Dependency: 讀取 ?page=&perPage="""
    return PageParams(page=page, per_page=per_page)


def build_meta(params: PageParams, total_items: int) -> PaginationMeta:
    total_pages = (total_items + params.per_page - 1) // params.per_page if total_items else 0
    return PaginationMeta(
        current_page=params.page,
        per_page=params.per_page,
        total_items=total_items,
        total_pages=total_pages,
        has_next=params.page < total_pages,
        has_prev=params.page > 1,
    )
