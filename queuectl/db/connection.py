"""
Database connection management.
Handles async SQLAlchemy engine and session creation.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from queuectl.config import get_settings
from queuectl.db.config_repository import ConfigRepository
from queuectl.db.models import Base
from queuectl.errors import StoreError

logger = logging.getLogger(__name__)

# Global engine instance
_engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def _engine_options(database_url: str) -> dict[str, Any]:
    """
    Build create_async_engine keyword arguments for a database URL.

    SQLite gets a busy timeout so concurrent writers wait for each other
    instead of failing with "database is locked". Server databases get a
    sized connection pool.
    """
    settings = get_settings()
    url = make_url(database_url)
    options: dict[str, Any] = {
        "echo": settings.log_level.upper() == "DEBUG",
    }

    if url.get_backend_name() == "sqlite":
        options["connect_args"] = {"timeout": settings.database_busy_timeout_seconds}
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    else:
        options["pool_size"] = settings.database_pool_size
        options["max_overflow"] = settings.database_max_overflow
        options["pool_pre_ping"] = True

    return options


def get_engine(database_url: str | None = None) -> AsyncEngine:
    """
    Get or create the async database engine.

    Args:
        database_url: Optional URL override. Defaults to the configured URL.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    global _engine
    if _engine is None:
        url = database_url or get_settings().database_url
        _engine = create_async_engine(url, **_engine_options(url))
    return _engine


async def init_db(database_url: str | None = None) -> None:
    """
    Initialize the database connection and session factory.
    Should be called on application startup.

    Args:
        database_url: Optional URL override, used by tests and the CLI.
    """
    global AsyncSessionLocal
    engine = get_engine(database_url)
    AsyncSessionLocal = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    logger.info("Database connection initialized", extra={"database_url": engine.url.render_as_string()})


async def create_schema() -> None:
    """
    Create missing tables and seed default config values.

    Safe to call repeatedly: existing tables and config values are left
    untouched. PostgreSQL deployments may use the alembic revision instead.
    """
    engine = get_engine()
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except SQLAlchemyError as e:
        raise StoreError(f"Failed to create schema: {e}") from e

    async with get_session_context() as session:
        seeded = await ConfigRepository(session).seed_defaults()

    if seeded:
        logger.info("Seeded default config", extra={"keys": seeded})


async def close_db() -> None:
    """
    Close the database connection.
    Should be called on application shutdown.
    """
    global _engine, AsyncSessionLocal
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        AsyncSessionLocal = None
        logger.info("Database connection closed")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get the initialized session factory.

    Raises:
        RuntimeError: If the database is not initialized.
    """
    if AsyncSessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return AsyncSessionLocal


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """
    Dependency for getting async database sessions.

    Yields:
        AsyncSession: An async database session.

    Raises:
        StoreError: If the transaction fails.
    """
    async with get_session_context() as session:
        yield session


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession]:
    """
    Context manager wrapping one transaction.

    Commits on normal exit and rolls back on any exception. Storage failures
    are re-raised as StoreError; other exceptions propagate unchanged.

    Yields:
        AsyncSession: An async database session.
    """
    session_factory = get_session_factory()

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise StoreError(str(e)) from e
        except Exception:
            await session.rollback()
            raise
