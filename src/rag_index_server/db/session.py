"""
Database Session Management

Provides the async SQLAlchemy engine and session factory for PostgreSQL.
The engine is created on first use so the memory backend never needs a
database driver.
"""

from __future__ import annotations

from functools import lru_cache

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)

from ..config import settings
from .models import Base


@lru_cache
def get_async_engine() -> AsyncEngine:
    return create_async_engine(
        settings.database_url,
        echo=False,  # Set True for SQL debugging
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=get_async_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_models(engine: AsyncEngine | None = None) -> None:
    """
    Create the pgvector extension and all tables if they do not exist.
    """
    engine = engine or get_async_engine()
    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
