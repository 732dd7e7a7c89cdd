# app/repositories/user_repo.py
# 負責與使用者相關的資料庫操作
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from app.models.user import User, UserRoleEnum

class UserRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_email(self, email: str) -> User | None:
        """
        透過 email 查詢使用者
        """
        stmt = select(User).execution_options(populate_existing=True).where(User.email == email)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def create_user(self, user: User) -> User:
        """
        新增使用者 (由 service 決定何時 commit)
        """
        self.db.add(user)
        await self.db.flush()
        return user

    async def get_user_by_id(self, user_id: str) -> User | None:
        """
        透過 user_id 查詢使用者
        """
        stmt = select(User).execution_options(populate_existing=True).where(User.user_id == user_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_active_expert(self, user_id: str) -> User | None:
        """
        查詢可被預約 / 購買服務的專家
        """
        stmt = select(User).execution_options(populate_existing=True).where(
            User.user_id == user_id,
            User.role == UserRoleEnum.expert,
            User.is_active.is_(True),
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()
