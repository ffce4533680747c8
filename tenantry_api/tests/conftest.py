"""Shared fixtures for Tenantry API tests.

Provides an in-memory SQLite session factory, signed bearer tokens, a mock
Stripe gateway, and an ``AsyncClient`` bound to an application whose
dependencies point at those fixtures.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import UTC
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy import JSON, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.types import TypeDecorator

from tenantry_core.state.repository import (
    MembershipRepository,
    PlanRepository,
    TeamRepository,
    UserRepository,
)
from tenantry_core.state.tables import Base

from tenantry_api.config import APISettings
from tenantry_api.dependencies import get_session_factory, get_settings, get_stripe_gateway
from tenantry_api.main import create_app
from tenantry_api.security import TokenVerifier
from tenantry_api.services.stripe_gateway import StripeGateway

_TEST_TOKEN_SECRET = "test-secret-key-for-tenantry-tests"

# ---------------------------------------------------------------------------
# SQLite column patching
# ---------------------------------------------------------------------------


def _patch_columns_for_sqlite() -> None:
    """Substitute Postgres-specific column types for SQLite compatibility.

    * ``JSONB`` -> ``JSON``.
    * ``DateTime(timezone=True)`` -> a decorator that coerces the naive
      datetimes returned by SQLite back to UTC-aware.
    """

    class _UTCAwareDateTime(TypeDecorator):
        impl = DateTime
        cache_ok = True

        def process_result_value(self, value, dialect):  # type: ignore[override]
            if value is not None and value.tzinfo is None:
                return value.replace(tzinfo=UTC)
            return value

    for table in Base.metadata.tables.values():
        for column in table.columns:
            if isinstance(column.type, JSONB):
                column.type = JSON()
            elif isinstance(column.type, DateTime) and getattr(column.type, "timezone", False):
                column.type = _UTCAwareDateTime()


_patch_columns_for_sqlite()


# ---------------------------------------------------------------------------
# Settings and identity
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_settings() -> APISettings:
    """Return a settings object suitable for testing."""
    return APISettings(
        database_url="sqlite+aiosqlite://",
        platform_env="dev",
        cors_origins=["http://localhost:3000"],
        token_secret=SecretStr(_TEST_TOKEN_SECRET),
        billing_enabled=True,
        stripe_secret_key=SecretStr("sk_test_123"),
        stripe_webhook_secret=SecretStr("whsec_test"),
        stripe_price_id_reserved_domain="price_reserved",
        stripe_price_id_custom_domain="price_custom",
    )


@pytest.fixture()
def verifier() -> TokenVerifier:
    return TokenVerifier(SecretStr(_TEST_TOKEN_SECRET), issuer="tenantry")


@pytest.fixture()
def auth_headers(verifier: TokenVerifier):
    """Factory returning ``Authorization`` headers for a user id and email."""

    def _headers(sub: str = "owner-1", email: str = "owner@example.com") -> dict[str, str]:
        return {"Authorization": f"Bearer {verifier.sign(sub, email)}"}

    return _headers


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory over a fresh in-memory SQLite database."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


async def seed_team(
    session: AsyncSession,
    *,
    owner_id: str = "owner-1",
    owner_email: str = "owner@example.com",
    team_name: str = "Acme",
) -> str:
    """Insert an owner, a team and the owner membership; return the team id."""
    await UserRepository(session).ensure(owner_id, owner_email)
    team = await TeamRepository(session).create(team_name, owner_id)
    await MembershipRepository(session).create(owner_id, team.id, "owner")
    await session.commit()
    return team.id


async def seed_plan(
    session: AsyncSession,
    *,
    plan_id: str = "pro",
    price_id: str = "price_pro_monthly",
    yearly_price_id: str | None = "price_pro_yearly",
) -> str:
    await PlanRepository(session).create(
        plan_id,
        plan_id.capitalize(),
        stripe_price_id=price_id,
        stripe_price_id_yearly=yearly_price_id,
    )
    await session.commit()
    return plan_id


# ---------------------------------------------------------------------------
# Stripe
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_gateway() -> MagicMock:
    """A ``StripeGateway`` double whose network calls are ``AsyncMock``s."""
    gateway = MagicMock(spec=StripeGateway)
    gateway.retrieve_subscription = AsyncMock()
    gateway.create_subscription_item = AsyncMock()
    gateway.delete_subscription_item = AsyncMock(return_value=True)
    return gateway


def stripe_subscription(
    subscription_id: str = "sub_123",
    *,
    price_id: str = "price_pro_monthly",
    status: str = "active",
    period_start: int = 1_767_225_600,
    period_end: int = 1_769_904_000,
    cancel_at_period_end: bool = False,
    periods_on_items: bool = False,
) -> dict[str, Any]:
    """Build a Stripe subscription object as returned by the API."""
    item: dict[str, Any] = {"id": "si_base", "price": {"id": price_id}}
    subscription: dict[str, Any] = {
        "id": subscription_id,
        "object": "subscription",
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "items": {"data": [item]},
    }
    if periods_on_items:
        item["current_period_start"] = period_start
        item["current_period_end"] = period_end
    else:
        subscription["current_period_start"] = period_start
        subscription["current_period_end"] = period_end
    return subscription


def stripe_event(event_type: str, data_object: dict[str, Any], *, event_id: str = "evt_1") -> dict[str, Any]:
    return {"id": event_id, "type": event_type, "data": {"object": data_object}}


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(test_settings, session_factory, mock_gateway) -> AsyncGenerator[AsyncClient, None]:
    """``AsyncClient`` for an app wired to the in-memory database and mock gateway.

    The lifespan is not run; the overridden dependencies replace the engine
    it would create.
    """
    app = create_app(test_settings)
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_stripe_gateway] = lambda: mock_gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
