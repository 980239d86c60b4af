"""
Database engine and session management.

The engine and session factory are built explicitly and handed to the
components that need them; nothing here is created at import time.
"""

from pathlib import Path
from typing import AsyncIterator, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from .config import Settings, get_settings

logger = structlog.get_logger()


class Base(DeclarativeBase):
    pass


def build_engine(
    settings: Optional[Settings] = None,
    url: Optional[str] = None,
    **kwargs,
) -> AsyncEngine:
    """Create the async engine for the configured database URL."""
    settings = settings or get_settings()
    url = url or settings.database_url

    # SQLite won't create missing parent directories
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database not in (None, "", ":memory:"):
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)

    return create_async_engine(
        url,
        echo=settings.database_echo,
        **kwargs,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Verify the connection and create any missing tables."""
    # Registers the mapped tables on Base.metadata
    from . import models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized", tables=sorted(Base.metadata.tables))
    except Exception as e:
        logger.error("Database initialization error", error=str(e))
        raise


async def session_scope(session_factory: async_sessionmaker) -> AsyncIterator[AsyncSession]:
    """Dependency to get a database session."""
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
