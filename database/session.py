"""
Async SQLAlchemy engine and session factory.
"""

from __future__ import annotations

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from config.settings import config
from database.models import Base


def _engine_kwargs(url: str) -> dict:
    # SQLite (tests, local dev): no pool sizing, one connection per session
    if url.startswith("sqlite"):
        return {"echo": False, "poolclass": NullPool}
    return {
        "echo": False,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_recycle": 3600,
    }


engine = create_async_engine(config.database_url, **_engine_kwargs(config.database_url))

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def create_tables() -> None:
    """Create any missing tables (idempotent)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency function — use in FastAPI `Depends(get_db_session)`."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
