"""Repository classes providing CRUD access to the Tenantry state store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()`` (or relying on the ``unit_of_work`` context manager).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tenantry_core.models.billing import SubscriptionStatus
from tenantry_core.models.team import InvitationStatus, TeamRole
from tenantry_core.state.guard import StateGuard
from tenantry_core.state.tables import (
    InvitationTable,
    MembershipTable,
    PlanTable,
    SubscriptionItemTable,
    SubscriptionTable,
    TeamTable,
    UserTable,
)

logger = logging.getLogger(__name__)

# Guards for every status column mutated by external triggers.
INVITATION_GUARD = StateGuard(InvitationTable, entity="invitation")
SUBSCRIPTION_GUARD = StateGuard(
    SubscriptionTable,
    entity="subscription",
    key_column="stripe_subscription_id",
)


def normalise_email(email: str) -> str:
    """Canonical form used for storage and comparison."""
    return email.strip().lower()


def _dialect_name(session: AsyncSession) -> str:
    bind = session.get_bind()
    return str(getattr(getattr(bind, "dialect", None), "name", ""))


async def _dialect_upsert(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
    update_columns: list[str],
) -> Any:
    """Dialect-aware upsert: PostgreSQL ``ON CONFLICT DO UPDATE`` or SQLite equivalent.

    Parameters
    ----------
    session:
        The active async session.
    table:
        The SQLAlchemy table class to upsert into.
    values:
        Column-value mapping for the row to insert.
    index_elements:
        Column names forming the unique constraint for conflict detection.
    update_columns:
        Column names to update when a conflict occurs.

    Returns
    -------
    The execution result from ``session.execute()``.
    """
    stmt: Any
    if "postgresql" in _dialect_name(session):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=index_elements,
        set_={col: getattr(stmt.excluded, col) for col in update_columns},
    )
    return await session.execute(stmt)


async def _dialect_upsert_nothing(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
) -> Any:
    """Dialect-aware insert with ``ON CONFLICT DO NOTHING``.

    ``result.rowcount`` is 1 when the row was inserted and 0 when an
    existing row with the same key was kept.
    """
    stmt: Any
    if "postgresql" in _dialect_name(session):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)
    stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
    return await session.execute(stmt)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserRepository:
    """Lookups and billing-identity updates for users."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: str) -> UserTable | None:
        return await self._session.get(UserTable, user_id)

    async def get_by_email(self, email: str) -> UserTable | None:
        result = await self._session.execute(select(UserTable).where(UserTable.email == normalise_email(email)))
        return result.scalar_one_or_none()

    async def create(
        self,
        email: str,
        *,
        display_name: str | None = None,
        user_id: str | None = None,
    ) -> UserTable:
        row = UserTable(email=normalise_email(email), display_name=display_name)
        if user_id is not None:
            row.id = user_id
        self._session.add(row)
        await self._session.flush()
        return row

    async def ensure(self, user_id: str, email: str) -> UserTable:
        """Return the user row for *user_id*, mirroring it from token claims if absent.

        Users are provisioned by the identity service; the first
        authenticated write by a user records them locally.
        """
        row = await self.get(user_id)
        if row is not None:
            return row
        await _dialect_upsert_nothing(
            self._session,
            UserTable,
            values={"id": user_id, "email": normalise_email(email)},
            index_elements=["id"],
        )
        row = await self._session.get(UserTable, user_id, populate_existing=True)
        if row is None:
            raise RuntimeError(f"User {user_id} vanished after insert")
        return row

    async def set_stripe_customer_id(self, user_id: str, customer_id: str) -> bool:
        """Persist the Stripe customer id.  Returns ``False`` if the user is unknown."""
        result = await self._session.execute(
            update(UserTable)
            .where(UserTable.id == user_id)
            .values(stripe_customer_id=customer_id, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Teams and memberships
# ---------------------------------------------------------------------------


class TeamRepository:
    """Team rows."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, team_id: str) -> TeamTable | None:
        return await self._session.get(TeamTable, team_id)

    async def create(self, name: str, owner_id: str) -> TeamTable:
        row = TeamTable(name=name, owner_id=owner_id)
        self._session.add(row)
        await self._session.flush()
        return row


class MembershipRepository:
    """Membership rows keyed by the unique ``(user_id, team_id)`` pair."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: str, team_id: str) -> MembershipTable | None:
        result = await self._session.execute(
            select(MembershipTable)
            .where(MembershipTable.user_id == user_id, MembershipTable.team_id == team_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_role(self, user_id: str, team_id: str) -> str | None:
        result = await self._session.execute(
            select(MembershipTable.role).where(
                MembershipTable.user_id == user_id,
                MembershipTable.team_id == team_id,
            )
        )
        return result.scalar_one_or_none()

    async def create(self, user_id: str, team_id: str, role: TeamRole | str) -> MembershipTable:
        row = MembershipTable(user_id=user_id, team_id=team_id, role=TeamRole(role).value)
        self._session.add(row)
        await self._session.flush()
        return row

    async def get_or_create(
        self,
        user_id: str,
        team_id: str,
        role: TeamRole | str,
    ) -> tuple[MembershipTable, bool]:
        """Insert the membership unless one already exists for the pair.

        An existing row keeps its current role.

        Returns
        -------
        tuple
            ``(row, created)`` where *created* is ``True`` only if this call
            inserted the row.
        """
        result = await _dialect_upsert_nothing(
            self._session,
            MembershipTable,
            values={
                "user_id": user_id,
                "team_id": team_id,
                "role": TeamRole(role).value,
            },
            index_elements=["user_id", "team_id"],
        )
        created = result.rowcount == 1
        row = await self.get(user_id, team_id)
        if row is None:
            raise RuntimeError(f"Membership for user {user_id} in team {team_id} vanished after insert")
        return row, created

    async def update_role(self, user_id: str, team_id: str, role: TeamRole | str) -> bool:
        result = await self._session.execute(
            update(MembershipTable)
            .where(MembershipTable.user_id == user_id, MembershipTable.team_id == team_id)
            .values(role=TeamRole(role).value, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount > 0

    async def delete(self, user_id: str, team_id: str) -> bool:
        result = await self._session.execute(
            delete(MembershipTable)
            .where(MembershipTable.user_id == user_id, MembershipTable.team_id == team_id)
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount > 0

    async def email_is_member(self, team_id: str, email: str) -> bool:
        """Return ``True`` if a user with *email* already belongs to *team_id*."""
        result = await self._session.execute(
            select(MembershipTable.id)
            .join(UserTable, UserTable.id == MembershipTable.user_id)
            .where(
                MembershipTable.team_id == team_id,
                UserTable.email == normalise_email(email),
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def count_for_team(self, team_id: str) -> int:
        result = await self._session.execute(select(MembershipTable.id).where(MembershipTable.team_id == team_id))
        return len(result.all())


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


class InvitationRepository:
    """Invitation rows.  Status changes go through :data:`INVITATION_GUARD`."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, invitation_id: str) -> InvitationTable | None:
        return await self._session.get(InvitationTable, invitation_id)

    async def get_by_token(self, token: str) -> InvitationTable | None:
        result = await self._session.execute(
            select(InvitationTable).where(InvitationTable.token == token).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_pending(self, team_id: str, email: str) -> InvitationTable | None:
        result = await self._session.execute(
            select(InvitationTable).where(
                InvitationTable.team_id == team_id,
                InvitationTable.email == normalise_email(email),
                InvitationTable.status == InvitationStatus.PENDING.value,
            )
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        *,
        team_id: str,
        inviter_id: str,
        email: str,
        role: TeamRole | str,
        token: str,
        expires_at: datetime,
    ) -> InvitationTable:
        row = InvitationTable(
            team_id=team_id,
            inviter_id=inviter_id,
            email=normalise_email(email),
            role=TeamRole(role).value,
            token=token,
            status=InvitationStatus.PENDING.value,
            expires_at=expires_at,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_pending(self, team_id: str, *, now: datetime) -> list[InvitationTable]:
        """Pending invitations for *team_id* that have not yet expired, newest first."""
        result = await self._session.execute(
            select(InvitationTable)
            .where(
                InvitationTable.team_id == team_id,
                InvitationTable.status == InvitationStatus.PENDING.value,
                InvitationTable.expires_at > now,
            )
            .order_by(InvitationTable.created_at.desc())
        )
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


class PlanRepository:
    """Catalogue plans."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, plan_id: str) -> PlanTable | None:
        return await self._session.get(PlanTable, plan_id)

    async def get_by_price_id(self, price_id: str) -> PlanTable | None:
        """Match *price_id* against the monthly or yearly Stripe price."""
        result = await self._session.execute(
            select(PlanTable)
            .where(
                or_(
                    PlanTable.stripe_price_id == price_id,
                    PlanTable.stripe_price_id_yearly == price_id,
                )
            )
            .order_by(PlanTable.active.desc(), PlanTable.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        plan_id: str,
        name: str,
        *,
        stripe_price_id: str | None = None,
        stripe_price_id_yearly: str | None = None,
        price_monthly: float | None = None,
        price_yearly: float | None = None,
        features: dict[str, Any] | None = None,
    ) -> PlanTable:
        row = PlanTable(
            id=plan_id,
            name=name,
            stripe_price_id=stripe_price_id,
            stripe_price_id_yearly=stripe_price_id_yearly,
            price_monthly=price_monthly,
            price_yearly=price_yearly,
            features=features,
        )
        self._session.add(row)
        await self._session.flush()
        return row


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


class SubscriptionRepository:
    """Subscriptions keyed by the unique Stripe subscription id."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_stripe_id(self, stripe_subscription_id: str) -> SubscriptionTable | None:
        result = await self._session.execute(
            select(SubscriptionTable)
            .where(SubscriptionTable.stripe_subscription_id == stripe_subscription_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        *,
        stripe_subscription_id: str,
        user_id: str,
        plan_id: str,
        status: str,
        current_period_start: datetime | None,
        current_period_end: datetime | None,
        cancel_at_period_end: bool,
    ) -> SubscriptionTable:
        """Insert the subscription or overwrite the row with the same Stripe id."""
        values = {
            "stripe_subscription_id": stripe_subscription_id,
            "user_id": user_id,
            "plan_id": plan_id,
            "status": status,
            "current_period_start": current_period_start,
            "current_period_end": current_period_end,
            "cancel_at_period_end": cancel_at_period_end,
            "updated_at": datetime.now(UTC),
        }
        await _dialect_upsert(
            self._session,
            SubscriptionTable,
            values=values,
            index_elements=["stripe_subscription_id"],
            update_columns=[col for col in values if col != "stripe_subscription_id"],
        )
        row = await self.get_by_stripe_id(stripe_subscription_id)
        if row is None:
            raise RuntimeError(f"Subscription {stripe_subscription_id} vanished after upsert")
        return row

    async def find_latest_active(self, user_id: str) -> SubscriptionTable | None:
        """Most recently created ``active`` subscription for *user_id*."""
        result = await self._session.execute(
            select(SubscriptionTable)
            .where(
                SubscriptionTable.user_id == user_id,
                SubscriptionTable.status == SubscriptionStatus.ACTIVE.value,
            )
            .order_by(SubscriptionTable.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def count_by_stripe_id(self, stripe_subscription_id: str) -> int:
        result = await self._session.execute(
            select(SubscriptionTable.id).where(SubscriptionTable.stripe_subscription_id == stripe_subscription_id)
        )
        return len(result.all())


class SubscriptionItemRepository:
    """Add-on items attached to subscriptions."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_by_type_and_resource(
        self,
        subscription_id: str,
        item_types: str | Iterable[str],
        related_resource_id: str | None,
    ) -> SubscriptionItemTable | None:
        """Find an item by subscription, type (or any of several types) and resource."""
        if isinstance(item_types, str):
            item_types = [item_types]
        stmt = select(SubscriptionItemTable).where(
            SubscriptionItemTable.subscription_id == subscription_id,
            SubscriptionItemTable.item_type.in_(list(item_types)),
        )
        if related_resource_id is None:
            stmt = stmt.where(SubscriptionItemTable.related_resource_id.is_(None))
        else:
            stmt = stmt.where(SubscriptionItemTable.related_resource_id == related_resource_id)
        result = await self._session.execute(stmt.order_by(SubscriptionItemTable.created_at).limit(1))
        return result.scalar_one_or_none()

    async def create(
        self,
        *,
        subscription_id: str,
        stripe_subscription_item_id: str,
        stripe_price_id: str,
        item_type: str,
        related_resource_id: str | None,
        quantity: int = 1,
    ) -> SubscriptionItemTable:
        row = SubscriptionItemTable(
            subscription_id=subscription_id,
            stripe_subscription_item_id=stripe_subscription_item_id,
            stripe_price_id=stripe_price_id,
            item_type=item_type,
            related_resource_id=related_resource_id,
            quantity=quantity,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def delete(self, item_id: str) -> bool:
        result = await self._session.execute(
            delete(SubscriptionItemTable)
            .where(SubscriptionItemTable.id == item_id)
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount > 0

    async def list_for_subscription(self, subscription_id: str) -> list[SubscriptionItemTable]:
        result = await self._session.execute(
            select(SubscriptionItemTable)
            .where(SubscriptionItemTable.subscription_id == subscription_id)
            .order_by(SubscriptionItemTable.created_at)
        )
        return list(result.scalars().all())
