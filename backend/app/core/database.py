"""
Database access layer.

One pooled async engine per process, a session factory exposed as a
FastAPI dependency, and a retry wrapper for transient connection errors
(dropped connections, pool exhaustion, timeouts).
"""

import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from functools import lru_cache
from typing import TypeVar

from fastapi import Depends
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Backoff between retries: 1s, 2s, 4s ... capped at 5s
RETRY_BASE_DELAY = 1.0
RETRY_MAX_DELAY = 5.0


class Base(DeclarativeBase):
    pass


@lru_cache()
def get_engine() -> AsyncEngine:
    """Create the process-wide pooled engine."""
    settings = get_settings()
    return create_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        pool_pre_ping=True,
    )


@lru_cache()
def _default_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(get_engine(), expire_on_commit=False)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency returning the session factory (overridden in tests)."""
    return _default_session_factory()


def is_transient_error(error: BaseException) -> bool:
    """Whether a database error is worth retrying."""
    if isinstance(error, (OperationalError, InterfaceError)):
        return True
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return True
    return False


def retry_delay(attempt: int) -> float:
    """Exponential backoff delay in seconds for a 1-based attempt number."""
    return min(RETRY_BASE_DELAY * (2 ** (attempt - 1)), RETRY_MAX_DELAY)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int | None = None,
) -> T:
    """
    Run an awaitable operation, retrying transient database errors.

    Non-transient errors are raised immediately; transient ones are retried
    up to max_retries times with exponential backoff.
    """
    if max_retries is None:
        max_retries = get_settings().db_max_retries

    for attempt in range(1, max_retries + 1):
        try:
            return await operation()
        except DBAPIError as e:
            if not is_transient_error(e) or attempt >= max_retries:
                raise
            delay = retry_delay(attempt)
            logger.warning(
                "[DB] Transient error (attempt %d/%d), retrying in %.1fs: %s",
                attempt,
                max_retries,
                delay,
                e.__class__.__name__,
            )
            await asyncio.sleep(delay)

    raise RuntimeError("Operation failed after all retries")


async def get_db(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session with a live connection (acquired with retry)."""
    async with session_factory() as session:
        await run_with_retry(session.connection)
        yield session


async def check_database_connection(
    session_factory: async_sessionmaker[AsyncSession],
) -> bool:
    """Health check: run SELECT 1."""
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("[DB] Connection health check failed: %s", e)
        return False
