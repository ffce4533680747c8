"""SQLite backend for running Tenantry without PostgreSQL.

Uses the same ORM tables as production.  Differences that matter:

* one writer at a time, so there is no connection pool to tune;
* the schema comes from ``Base.metadata.create_all`` at startup, not Alembic;
* JSONB columns are stored as JSON text;
* foreign keys are off by default in SQLite and are switched on per
  connection here.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

logger = logging.getLogger(__name__)

_MEMORY = ":memory:"

_PRAGMAS: tuple[str, ...] = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA foreign_keys=ON",
    "PRAGMA synchronous=NORMAL",
)


def get_local_engine(db_path: Path | str = ".tenantry/state.db") -> AsyncEngine:
    """Return an aiosqlite engine for *db_path*.

    Missing parent directories are created.  ``":memory:"`` gives an
    ephemeral database.
    """
    if str(db_path) == _MEMORY:
        url = f"sqlite+aiosqlite:///{_MEMORY}"
    else:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite+aiosqlite:///{path}"

    engine = create_async_engine(url, connect_args={"check_same_thread": False})

    @event.listens_for(engine.sync_engine, "connect")
    def _apply_pragmas(dbapi_conn, _record) -> None:  # type: ignore[no-untyped-def]
        cursor = dbapi_conn.cursor()
        for pragma in _PRAGMAS:
            cursor.execute(pragma)
        cursor.close()

    logger.info("Created SQLite engine: %s", url)
    return engine
