# app/core/database.py
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine
from sqlalchemy.orm import sessionmaker, declarative_base
from app.core.config import settings


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    建立非同步引擎。

    SQLite (開發 / 測試) 預設的 deferred transaction 在兩個連線同時寫入時
    會直接回 "database is locked"，因此改為每個交易一開始就 BEGIN IMMEDIATE，
    讓並行的寫入者排隊，條件式 UPDATE 才能正確判斷誰先搶到。
    """
    engine = create_async_engine(
        database_url,
        pool_pre_ping=True, # 每次從連線池取連線前，先 PING 一次，確保連線有效
        echo=echo,
    )

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine.sync_engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            # 關閉 driver 自動送出的 BEGIN，由下面的 listener 接手
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_session_factory(bind: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# 建立非同步引擎與 Session
engine = build_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
AsyncSessionLocal = build_session_factory(engine)

# 建立 ORM Model 基底類別
Base = declarative_base()

# (重要) 取得 DB Session 的 Dependency
async def get_db() -> AsyncSession:
    """FastAPI Dependency: 取得非同步資料庫 session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def atomic(db: AsyncSession):
    """
    一個業務操作 = 一個交易。
    區塊正常結束就 commit；任何例外都先 rollback 再往外拋，
    不會留下只做一半的變更。
    """
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        raise
