"""Persistence: async engine, session factory, and Base for SQLAlchemy ORM.

Schema is managed by Alembic migrations in production; create_all() exists
for development and tests. Engine and session factory are created lazily
on first use so importing models does not trigger Settings validation.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from sellerops.core.config import get_settings
from sellerops.shared.telemetry.telemetry import get_telemetry

logger = logging.getLogger(__name__)

# Set by _ensure_engine() on first use; avoids get_settings() at import time.
engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


def create_session_factory(engine_: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine_,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def _ensure_engine() -> None:
    """Create engine and AsyncSessionLocal on first use."""
    global engine, AsyncSessionLocal
    if AsyncSessionLocal is not None:
        return
    settings = get_settings()
    kwargs: dict[str, Any] = {"echo": settings.database_echo, "pool_pre_ping": True}
    if settings.database_url.startswith("postgresql"):
        kwargs.update(
            pool_size=settings.db_pool_size if settings.db_pool_size is not None else 10,
            max_overflow=(
                settings.db_max_overflow if settings.db_max_overflow is not None else 20
            ),
            pool_recycle=3600,
            connect_args={"server_settings": {"jit": "off"}},
        )
    engine = create_async_engine(settings.database_url, **kwargs)
    AsyncSessionLocal = create_session_factory(engine)
    logger.info("Database engine created (%s)", engine.url.get_backend_name())
    telemetry = get_telemetry()
    if telemetry is not None:
        telemetry.instrument_engine(engine)


def get_engine() -> AsyncEngine:
    _ensure_engine()
    assert engine is not None
    return engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    _ensure_engine()
    assert AsyncSessionLocal is not None
    return AsyncSessionLocal


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """One session and one transaction: commit on success, roll back on exception."""
    async with session_factory() as session:
        async with session.begin():
            yield session


async def create_all(engine_: AsyncEngine | None = None) -> None:
    """Create all tables (development and tests; production uses Alembic)."""
    from sellerops.infrastructure.persistence import models  # noqa: F401

    target = engine_ or get_engine()
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    global engine, AsyncSessionLocal
    if engine is not None:
        await engine.dispose()
    engine = None
    AsyncSessionLocal = None
