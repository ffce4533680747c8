"""Tests for engine construction and the unit-of-work helper."""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker

from tenantry_core.errors import NotFoundError, TransientError
from tenantry_core.state.database import get_engine, unit_of_work
from tenantry_core.state.sqlite_adapter import get_local_engine
from tenantry_core.state.tables import Base, UserTable

# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------


class TestGetEngine:
    def test_sqlite_url_uses_local_engine(self, tmp_path: Path) -> None:
        engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'state.db'}")
        assert engine.url.database == str(tmp_path / "state.db")

    def test_bare_sqlite_url_is_in_memory(self) -> None:
        engine = get_engine("sqlite+aiosqlite://")
        assert engine.url.database == ":memory:"

    def test_local_engine_creates_parent_directories(self, tmp_path: Path) -> None:
        db_path = tmp_path / "nested" / "deep" / "state.db"
        get_local_engine(db_path)
        assert db_path.parent.exists()

    @pytest.mark.asyncio
    async def test_local_engine_enables_wal_and_foreign_keys(self, tmp_path: Path) -> None:
        engine = get_local_engine(tmp_path / "pragmas.db")
        async with engine.connect() as conn:
            journal = (await conn.execute(text("PRAGMA journal_mode"))).scalar()
            foreign_keys = (await conn.execute(text("PRAGMA foreign_keys"))).scalar()
        await engine.dispose()

        assert journal == "wal"
        assert foreign_keys == 1


# ---------------------------------------------------------------------------
# unit_of_work
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def factory(tmp_path: Path):
    engine = get_local_engine(tmp_path / "uow.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


async def _user_count(factory) -> int:
    async with factory() as session:
        return (await session.execute(text("SELECT count(*) FROM users"))).scalar_one()


class TestUnitOfWork:
    @pytest.mark.asyncio
    async def test_commits_on_clean_exit(self, factory) -> None:
        async with unit_of_work(factory) as session:
            session.add(UserTable(id="u1", email="a@example.com"))

        assert await _user_count(factory) == 1

    @pytest.mark.asyncio
    async def test_rolls_back_domain_errors_unchanged(self, factory) -> None:
        with pytest.raises(NotFoundError):
            async with unit_of_work(factory) as session:
                session.add(UserTable(id="u1", email="a@example.com"))
                await session.flush()
                raise NotFoundError("missing")

        assert await _user_count(factory) == 0

    @pytest.mark.asyncio
    async def test_integrity_errors_propagate(self, factory) -> None:
        async with unit_of_work(factory) as session:
            session.add(UserTable(id="u1", email="a@example.com"))

        with pytest.raises(IntegrityError):
            async with unit_of_work(factory) as session:
                session.add(UserTable(id="u2", email="a@example.com"))

        assert await _user_count(factory) == 1

    @pytest.mark.asyncio
    async def test_operational_errors_become_transient(self, factory) -> None:
        with pytest.raises(TransientError) as exc_info:
            async with unit_of_work(factory):
                raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.__cause__, OperationalError)
