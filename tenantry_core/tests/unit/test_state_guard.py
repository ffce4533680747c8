"""Unit tests for StateGuard conditional transitions.

Uses an in-memory SQLite database via aiosqlite.  Covers:
- A transition from an expected state applies exactly once
- Replaying the same transition reports ALREADY_SATISFIED
- A row in a different state raises ConflictError carrying that state
- A missing row raises NotFoundError
- Extra values are written only when the transition applies
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import JSON, DateTime, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.types import TypeDecorator

from tenantry_core.errors import ConflictError, NotFoundError
from tenantry_core.state.guard import StateGuard, TransitionOutcome
from tenantry_core.state.repository import INVITATION_GUARD, SUBSCRIPTION_GUARD
from tenantry_core.state.tables import (
    Base,
    InvitationTable,
    PlanTable,
    SubscriptionTable,
    TeamTable,
    UserTable,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _patch_columns_for_sqlite() -> None:
    """Substitute Postgres-specific column types for SQLite compatibility."""

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


@pytest_asyncio.fixture
async def async_session():
    """Provide an async session backed by an in-memory SQLite database."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        yield session

    await engine.dispose()


async def _seed_invitation(session, *, status: str = "pending") -> InvitationTable:
    owner = UserTable(id="owner-1", email="owner@example.com")
    team = TeamTable(id="team-1", name="Acme", owner_id="owner-1")
    session.add_all([owner, team])
    await session.flush()
    invitation = InvitationTable(
        id="inv-1",
        team_id="team-1",
        inviter_id="owner-1",
        email="new@example.com",
        role="member",
        token="a" * 64,
        status=status,
        expires_at=datetime.now(UTC) + timedelta(days=7),
    )
    session.add(invitation)
    await session.flush()
    return invitation


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_transition_applies_from_expected_state(async_session) -> None:
    await _seed_invitation(async_session)

    result = await INVITATION_GUARD.transition(async_session, "inv-1", expected="pending", target="accepted")

    assert result.outcome is TransitionOutcome.APPLIED
    assert result.applied
    assert result.state == "accepted"
    assert await INVITATION_GUARD.current_state(async_session, "inv-1") == "accepted"


@pytest.mark.asyncio
async def test_replayed_transition_is_already_satisfied(async_session) -> None:
    await _seed_invitation(async_session)
    await INVITATION_GUARD.transition(async_session, "inv-1", expected="pending", target="cancelled")

    result = await INVITATION_GUARD.transition(async_session, "inv-1", expected="pending", target="cancelled")

    assert result.outcome is TransitionOutcome.ALREADY_SATISFIED
    assert not result.applied
    assert result.state == "cancelled"


@pytest.mark.asyncio
async def test_unexpected_state_raises_conflict_with_observed_state(async_session) -> None:
    await _seed_invitation(async_session, status="declined")

    with pytest.raises(ConflictError) as exc_info:
        await INVITATION_GUARD.transition(async_session, "inv-1", expected="pending", target="accepted")

    assert exc_info.value.observed_state == "declined"
    assert exc_info.value.to_response()["observed_state"] == "declined"
    assert await INVITATION_GUARD.current_state(async_session, "inv-1") == "declined"


@pytest.mark.asyncio
async def test_missing_row_raises_not_found(async_session) -> None:
    with pytest.raises(NotFoundError):
        await INVITATION_GUARD.transition(async_session, "missing", expected="pending", target="accepted")


@pytest.mark.asyncio
async def test_values_written_only_when_applied(async_session) -> None:
    async_session.add_all(
        [
            UserTable(id="u1", email="u1@example.com"),
            PlanTable(id="pro", name="Pro", stripe_price_id="price_pro"),
        ]
    )
    await async_session.flush()
    async_session.add(
        SubscriptionTable(
            user_id="u1",
            plan_id="pro",
            stripe_subscription_id="sub_1",
            status="canceled",
            cancel_at_period_end=False,
        )
    )
    await async_session.flush()

    with pytest.raises(ConflictError):
        await SUBSCRIPTION_GUARD.transition(
            async_session,
            "sub_1",
            expected=["active", "past_due"],
            target="active",
            values={"cancel_at_period_end": True},
        )

    row = (
        await async_session.execute(
            select(SubscriptionTable)
            .where(SubscriptionTable.stripe_subscription_id == "sub_1")
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert row.status == "canceled"
    assert row.cancel_at_period_end is False


@pytest.mark.asyncio
async def test_guard_accepts_several_expected_states(async_session) -> None:
    await _seed_invitation(async_session)
    guard = StateGuard(InvitationTable, entity="invitation")

    result = await guard.transition(
        async_session,
        "inv-1",
        expected={"pending", "expired"},
        target="cancelled",
    )

    assert result.applied
    assert guard.entity == "invitation"
