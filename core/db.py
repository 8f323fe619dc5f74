"""Async SQLAlchemy engine and session factory.

Services commit step by step and keep working with the loaded rows, so
sessions do not expire objects on commit.
"""
from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import Settings, get_settings


def engine_options(settings: Settings) -> dict[str, Any]:
    """Pool options for the configured database (SQLite has no sized pool)."""
    if settings.database_url.startswith("sqlite"):
        return {"echo": settings.db_echo}
    return {
        "echo": settings.db_echo,
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
    }


_settings = get_settings()

engine: AsyncEngine = create_async_engine(_settings.database_url, **engine_options(_settings))

SessionFactory: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
)
