# app/repositories/posting_repo.py

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import update, func
from typing import Iterable, List, Optional, Tuple

from app.models.posting import Posting, PostingStatusEnum
from app.utils.pagination import PageParams


class PostingRepository:
    """
    封裝對 'postings' 資料表的操作。
    Repository 只負責 SQL，不 commit；交易由 Service 以 atomic() 控制。
    """
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_posting(self, posting: Posting) -> Posting:
        self.db.add(posting)
        await self.db.flush()
        # 取回 proposal_count 等由 SQL 計算的欄位
        await self.db.refresh(posting)
        return posting

    async def get_posting_by_id(self, posting_id: str) -> Optional[Posting]:
        stmt = select(Posting).execution_options(populate_existing=True).where(Posting.posting_id == posting_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def _paginate(self, filters: list, params: PageParams) -> Tuple[List[Posting], int]:
        count_stmt = select(func.count(Posting.posting_id)).where(*filters)
        total = (await self.db.execute(count_stmt)).scalar_one()

        stmt = (
            select(Posting).execution_options(populate_existing=True)
            .where(*filters)
            .order_by(Posting.is_urgent.desc(), Posting.created_at.desc())
            .offset(params.offset)
            .limit(params.per_page)
        )
        result = await self.db.execute(stmt)
        return result.scalars().all(), total

    async def list_open_postings(
        self,
        params: PageParams,
        budget_type: Optional[str] = None,
        currency: Optional[str] = None,
        urgent_only: bool = False,
    ) -> Tuple[List[Posting], int]:
        """
        (R) 開放收件中的案件 (專家瀏覽用)
        """
        filters = [Posting.status == PostingStatusEnum.open]
        if budget_type:
            filters.append(Posting.budget_type == budget_type)
        if currency:
            filters.append(Posting.currency == currency)
        if urgent_only:
            filters.append(Posting.is_urgent.is_(True))
        return await self._paginate(filters, params)

    async def list_postings_by_client(
        self, client_id: str, params: PageParams, status: Optional[str] = None
    ) -> Tuple[List[Posting], int]:
        filters = [Posting.client_id == client_id]
        if status:
            filters.append(Posting.status == status)
        return await self._paginate(filters, params)

    async def transition(
        self,
        posting_id: str,
        from_statuses: Iterable[PostingStatusEnum],
        **values,
    ) -> bool:
        """
        (U) 條件式更新：只有在目前狀態屬於 from_statuses 時才寫入。
        回傳是否真的更新到一筆；False 代表狀態已被別人改掉。
        """
        stmt = (
            update(Posting)
            .where(
                Posting.posting_id == posting_id,
                Posting.status.in_(list(from_statuses)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def delete_posting(self, posting: Posting) -> None:
        await self.db.delete(posting)
        await self.db.flush()
