"""Engine construction and transaction scoping for the state store.

The URL scheme picks the backend:

* ``postgresql+asyncpg://`` gives a pooled PostgreSQL engine with
  server-side statement and lock timeouts.
* ``sqlite+aiosqlite://`` gives the local SQLite engine from
  :mod:`tenantry_core.state.sqlite_adapter`.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.engine import make_url
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tenantry_core.errors import TransientError

logger = logging.getLogger(__name__)

# Async driver -> synchronous driver used by Alembic.
_SYNC_DRIVERS: dict[str, str] = {
    "postgresql+asyncpg": "postgresql+psycopg",
    "postgresql": "postgresql+psycopg",
    "sqlite+aiosqlite": "sqlite",
}


def sync_database_url(database_url: str) -> str:
    """Return *database_url* with its async driver swapped for a sync one."""
    url = make_url(database_url)
    driver = _SYNC_DRIVERS.get(url.drivername)
    if driver is None:
        return database_url
    return url.set(drivername=driver).render_as_string(hide_password=False)


def get_engine(
    database_url: str,
    *,
    pool_size: int = 10,
    max_overflow: int = 20,
    statement_timeout_ms: int = 30_000,
    lock_timeout_ms: int = 10_000,
) -> AsyncEngine:
    """Create the async engine for *database_url*.

    Pool sizing and timeouts apply to PostgreSQL only.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        from tenantry_core.state.sqlite_adapter import get_local_engine

        return get_local_engine(url.database or ":memory:")

    engine = create_async_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_timeout=10,
        connect_args={
            "server_settings": {
                "statement_timeout": str(statement_timeout_ms),
                "lock_timeout": str(lock_timeout_ms),
            }
        },
    )
    logger.info("Created PostgreSQL engine (pool_size=%d, max_overflow=%d)", pool_size, max_overflow)
    return engine


@asynccontextmanager
async def unit_of_work(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Run one short transaction on a fresh session.

    Commits on clean exit and rolls back on any exception.  Connection-level
    failures (``OperationalError``, ``InterfaceError``) are re-raised as
    :class:`~tenantry_core.errors.TransientError` so callers can tell a
    retryable storage fault from a logic error.  Integrity violations and
    domain errors propagate unchanged.
    """
    session = session_factory()
    try:
        yield session
        await session.commit()
    except (OperationalError, InterfaceError) as exc:
        await session.rollback()
        logger.warning("Transaction aborted by storage failure: %s", exc)
        raise TransientError("Storage temporarily unavailable") from exc
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
