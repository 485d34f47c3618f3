"""
Canopy Backend - Database Session Management
==============================================

What:  Async SQLAlchemy engine, session factory, FastAPI dependency, and the
       startup connectivity probe.
How:   Session-per-request dependency that commits on success and rolls back
       on any error, so a rejected ledger mutation never reaches the store.
Who:   Route handlers via Depends(get_db_session); lifespan via wait_for_database().

Connection Pooling Strategy:
    pool_size=20, max_overflow=10, pool_pre_ping, pool_recycle=3600.
    SQLite (local runs and tests) ignores pool sizing, so those options are
    only passed for server databases.

Startup Probe:
    wait_for_database() retries SELECT 1 with exponential backoff + jitter
    (tenacity). This is the only retry in the service: writes that fail with
    a revision conflict are reported to the client, never replayed here.
"""

import logging
from typing import Any, AsyncGenerator, Dict

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from tenacity import (
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
    AsyncRetrying,
)

from canopy.config import settings

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return options


# ── Engine & Session Factory ──────────────────────────────────────────────
engine: AsyncEngine = create_async_engine(
    settings.database_url, **_engine_options(settings.database_url)
)

# expire_on_commit=False: documents are read after commit to build responses
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all ORM models; its metadata drives Alembic."""
    pass


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    How it works:
        1. Creates a new session from the factory
        2. Yields it to the route handler
        3. On success: commits the transaction
        4. On error: rolls back, then re-raises for the global handlers
        5. Always: closes the session
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def wait_for_database(target: AsyncEngine = engine) -> None:
    """
    Block startup until the database answers SELECT 1.

    Raises:
        OperationalError / OSError from the last attempt once
        db_connect_attempts is exhausted.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(settings.db_connect_attempts),
        wait=wait_exponential_jitter(initial=1, max=settings.db_connect_max_wait),
        retry=retry_if_exception_type((OperationalError, OSError)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            async with target.connect() as conn:
                await conn.execute(text("SELECT 1"))
    logger.info("Database reachable")


async def dispose_engine() -> None:
    """Close all pooled connections during application shutdown."""
    await engine.dispose()
