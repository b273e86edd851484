"""Async SQLAlchemy engine and session factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from legal_chat.config import settings
from legal_chat.db.models import Base

logger = logging.getLogger(__name__)

engine: AsyncEngine | None = None
SessionLocal: async_sessionmaker[AsyncSession] | None = None


def init_engine(database_url: str | None = None, **engine_kwargs) -> AsyncEngine:
    """Create the engine and session factory used by the rest of the app."""
    global engine, SessionLocal

    url = database_url or settings.database_url
    engine = create_async_engine(url, **engine_kwargs)
    SessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)
    logger.info(f"Database engine initialized ({engine.url.drivername})")
    return engine


async def create_tables() -> None:
    if engine is None:
        raise RuntimeError("Database engine not initialized")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    global engine, SessionLocal

    if engine is not None:
        await engine.dispose()
    engine = None
    SessionLocal = None


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Yield a session that is always closed, rolling back on error."""
    if SessionLocal is None:
        raise RuntimeError("Database engine not initialized")

    async with SessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency wrapping :func:`session_scope`."""
    async with session_scope() as session:
        yield session
