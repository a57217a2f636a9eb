"""
Async SQLAlchemy engine and session factory builders.

Uses ``asyncpg`` as the PostgreSQL driver for non-blocking I/O.  Nothing
here is a process-wide singleton: the app factory (or a test) builds an
engine, wraps it in a session factory and hands that factory to the
services that need the store.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from brokerage.config import settings


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


def build_engine(database_url: Optional[str] = None, **kwargs) -> AsyncEngine:
    url = database_url or settings.database_url
    if not url.startswith("sqlite"):
        kwargs.setdefault("pool_size", settings.db_pool_size)
        kwargs.setdefault("max_overflow", settings.db_max_overflow)
    return create_async_engine(url, echo=False, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """
    Create all tables that do not exist yet.

    Used by the test fixtures; deployed databases are managed with the
    alembic migrations under ``migrations/``.
    """
    from . import models  # noqa: F401  (registers tables on Base.metadata)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
