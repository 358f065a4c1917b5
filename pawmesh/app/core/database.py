"""
Database layer — async SQLAlchemy 2.0 (asyncpg in production).

Provides:
    • Lazily-created async engine and session factory
    • Base model for ORM entities
    • Table creation / disposal for the application lifespan

The engine is only built when the SQL store backend is selected, so the
in-memory backend never needs a database driver.

Usage:
    from pawmesh.app.core.database import get_session_factory

    async with get_session_factory()() as session:
        ...
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from pawmesh.app.core.config import settings

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


def get_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Return the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        url = database_url or settings.DATABASE_URL
        kwargs = {"echo": settings.DATABASE_ECHO}
        if not url.startswith("sqlite"):
            kwargs.update(
                pool_size=settings.DATABASE_POOL_SIZE,
                max_overflow=settings.DATABASE_MAX_OVERFLOW,
            )
        _engine = create_async_engine(url, **kwargs)
    return _engine


def get_session_factory(
    engine: Optional[AsyncEngine] = None,
) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the given (or process-wide) engine."""
    global _session_factory
    if engine is not None:
        return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(), class_=AsyncSession, expire_on_commit=False,
        )
    return _session_factory


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Create all tables (dev/test only — use migrations in production)."""
    # Registers the ORM tables on Base.metadata
    from pawmesh.app.storage import tables  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def close_db() -> None:
    """Dispose engine connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database connections closed")
    _engine = None
    _session_factory = None
