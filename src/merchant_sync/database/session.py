"""Engine and session plumbing for the merchant sync store."""

import os
import logging
from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import StaticPool

from . import models

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./merchant_sync.db"


def get_database_url() -> str:
    """
    Read DATABASE_URL and rewrite plain Postgres URLs to the asyncpg driver.
    Falls back to a local SQLite file.
    """
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        return DEFAULT_DATABASE_URL
    for prefix in ("postgresql://", "postgres://"):
        if db_url.startswith(prefix):
            return db_url.replace(prefix, "postgresql+asyncpg://", 1)
    return db_url


def create_async_engine(
    database_url: Optional[str] = None,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """
    Create an async SQLAlchemy engine.

    Args:
        database_url: Connection URL. If None, uses get_database_url().
        echo: If True, log all SQL statements.
        pool_size: Connections kept in the pool (ignored for SQLite).
        max_overflow: Extra connections beyond pool_size (ignored for SQLite).

    Returns:
        AsyncEngine instance.
    """
    url = database_url or get_database_url()

    # SQLite in-memory databases live and die with a single connection
    if url.startswith("sqlite"):
        return sa_create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return sa_create_async_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
    )


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``engine`` with the settings the sync writers expect."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_async_session_factory(
    engine: Optional[AsyncEngine] = None,
) -> async_sessionmaker[AsyncSession]:
    """
    Get the process-wide session factory, or a fresh one for ``engine``.

    Raises:
        RuntimeError: If no engine is given and init_db() has not run.
    """
    global _session_factory

    if engine is not None:
        return make_session_factory(engine)

    if _session_factory is None:
        if _engine is None:
            raise RuntimeError("Database not initialized. Call init_db() first.")
        _session_factory = make_session_factory(_engine)
    return _session_factory


async def create_tables(engine: AsyncEngine) -> None:
    """Create every table declared on the model metadata."""
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)


async def init_db(
    database_url: Optional[str] = None,
    echo: bool = False,
    create_schema: bool = True,
) -> AsyncEngine:
    """
    Initialize the global engine and optionally create tables.

    Production deployments run the Alembic migration instead of
    ``create_schema``.
    """
    global _engine, _session_factory

    logger.info("Initializing database connection...")
    _engine = create_async_engine(database_url, echo=echo)
    _session_factory = make_session_factory(_engine)

    if create_schema:
        await create_tables(_engine)
        logger.info("Database tables created successfully.")

    return _engine


async def close_db() -> None:
    """Dispose of the global engine."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database connection closed.")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a session that commits on success.

    Example:
        @router.get("/sync/logs")
        async def list_logs(db: AsyncSession = Depends(get_db)):
            ...
    """
    session_factory = get_async_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Session context manager for code running outside FastAPI.

    Example:
        async with get_db_context() as db:
            log = await db.get(SyncLog, run_id)
    """
    session_factory = get_async_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
