# app/db/sql.py
from __future__ import annotations

from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.core.config import settings


def engine_options(dsn: str) -> dict[str, Any]:
    """
    Engine kwargs per backend. SQLite gets one connection per session and a
    driver busy-timeout; PostgreSQL gets a sized pool.
    """
    if dsn.startswith("sqlite"):
        return {
            "echo": settings.DB_ECHO,
            "poolclass": NullPool,
            "connect_args": {"timeout": settings.BOOKING_LOCK_TIMEOUT_MS / 1000},
        }
    return {
        "echo": settings.DB_ECHO,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_pre_ping": True,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
    }


engine = create_async_engine(settings.SQL_DSN, **engine_options(settings.SQL_DSN))

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
    class_=AsyncSession,
)


async def get_session() -> AsyncIterator[AsyncSession]:
    """
    Provide a DB session for each request.

    Services commit through app.db.transaction.unit_of_work; anything left
    uncommitted when the request fails is rolled back here.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """
    Initialize database tables
    """
    from app.db.base import Base
    import app.models  # noqa: F401  registers every table on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
