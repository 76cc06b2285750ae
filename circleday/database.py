"""
Database access for the reminder engine.

SQLAlchemy Core over asyncpg for the application, plus a plain psycopg2
URL for APScheduler's synchronous job store. Both come from DATABASE_URL;
`postgres://` and `postgresql://` forms are accepted.
"""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

_engine: AsyncEngine | None = None

_ASYNC_SCHEME = "postgresql+asyncpg://"
_SYNC_SCHEME = "postgresql://"


def _strip_scheme(url: str) -> str:
    for scheme in (_ASYNC_SCHEME, _SYNC_SCHEME, "postgres://"):
        if url.startswith(scheme):
            return url[len(scheme):]
    return url


def _get_database_url() -> str:
    """DATABASE_URL rewritten for asyncpg."""
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL environment variable must be set")
    return _ASYNC_SCHEME + _strip_scheme(database_url)


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            _get_database_url(),
            echo=os.environ.get("SQL_ECHO", "").lower() == "true",
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            pool_timeout=30,
            pool_recycle=1800,
            pool_pre_ping=True,  # delivery tasks hold no connection across long waits
        )
    return _engine


@asynccontextmanager
async def get_connection() -> AsyncGenerator[AsyncConnection, None]:
    """
    Read-only connection from the pool.

    Usage:
        async with get_connection() as conn:
            sends = await get_pending_scheduled_sends_for_today(conn, start, end)
    """
    async with get_engine().connect() as conn:
        yield conn


@asynccontextmanager
async def get_transaction() -> AsyncGenerator[AsyncConnection, None]:
    """
    Connection inside a transaction: commits on exit, rolls back on error.

    Usage:
        async with get_transaction() as conn:
            await mark_send_sent(conn, scheduled_send_id)
    """
    async with get_engine().begin() as conn:
        yield conn


async def close_engine() -> None:
    """Dispose the pool. Call on shutdown."""
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None


def is_configured() -> bool:
    return bool(os.environ.get("DATABASE_URL"))


def get_sync_database_url() -> str:
    """
    psycopg2 URL for the APScheduler job store, or "" when unset.

    A 5 second connect timeout keeps startup from hanging on an
    unreachable database.
    """
    database_url = os.environ.get("DATABASE_URL", "")
    if not database_url:
        return ""

    database_url = _SYNC_SCHEME + _strip_scheme(database_url)
    if "connect_timeout" not in database_url:
        database_url += ("&" if "?" in database_url else "?") + "connect_timeout=5"
    return database_url
