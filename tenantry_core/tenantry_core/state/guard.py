"""Conditional state transitions resolved by the database.

A :class:`StateGuard` issues a single ``UPDATE ... WHERE state IN
(:expected)`` and, when no row matches, re-reads the row to classify the
outcome:

* the row is gone -> :class:`~tenantry_core.errors.NotFoundError`
* the row already holds the target state -> ``ALREADY_SATISFIED``
* anything else -> :class:`~tenantry_core.errors.ConflictError` carrying
  the observed state

This is the only concurrency control used for invitations and
subscriptions.  Racing callers never hold in-process locks; the storage
engine's row-level write serialises them and the loser is reclassified.

Example::

    invitations = StateGuard(InvitationTable, entity="invitation")
    result = await invitations.transition(
        session, invitation_id, expected="pending", target="accepted"
    )
    if result.applied:
        ...
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tenantry_core.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


class TransitionOutcome(str, Enum):
    """How a guarded transition resolved."""

    APPLIED = "applied"
    ALREADY_SATISFIED = "already_satisfied"


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of :meth:`StateGuard.transition`."""

    outcome: TransitionOutcome
    state: str

    @property
    def applied(self) -> bool:
        """``True`` if this call performed the write."""
        return self.outcome is TransitionOutcome.APPLIED


def _normalise_states(expected: str | Enum | Iterable[str | Enum]) -> list[str]:
    if isinstance(expected, (str, Enum)):
        expected = [expected]
    return sorted({s.value if isinstance(s, Enum) else s for s in expected})


class StateGuard:
    """Guarded status column on one table.

    Parameters
    ----------
    table:
        ORM table class holding the state column.
    entity:
        Name used in log lines and error messages (``"invitation"``).
    key_column:
        Attribute name of the column identifying the row.
    state_column:
        Attribute name of the state column being transitioned.
    """

    def __init__(
        self,
        table: Any,
        *,
        entity: str,
        key_column: str = "id",
        state_column: str = "status",
    ) -> None:
        self._table = table
        self._entity = entity
        self._key = getattr(table, key_column)
        self._state = getattr(table, state_column)
        self._state_name = state_column

    @property
    def entity(self) -> str:
        return self._entity

    async def transition(
        self,
        session: AsyncSession,
        key: Any,
        *,
        expected: str | Enum | Iterable[str | Enum],
        target: str | Enum,
        values: Mapping[str, Any] | None = None,
    ) -> TransitionResult:
        """Move the row identified by *key* from *expected* to *target*.

        Parameters
        ----------
        session:
            Session whose transaction the write joins.  The caller owns
            commit and rollback.
        key:
            Value of the key column.
        expected:
            One prior state, or several, that the row must currently hold.
        target:
            State to write.
        values:
            Additional column values written together with the state, only
            when the transition applies.

        Returns
        -------
        TransitionResult
            ``APPLIED`` if this call changed the row, ``ALREADY_SATISFIED``
            if the row already holds *target*.

        Raises
        ------
        NotFoundError
            If no row has the given key.
        ConflictError
            If the row holds a state other than *expected* or *target*.
        """
        expected_states = _normalise_states(expected)
        target_state = target.value if isinstance(target, Enum) else target

        new_values: dict[str, Any] = dict(values or {})
        new_values[self._state_name] = target_state

        stmt = (
            update(self._table)
            .where(self._key == key, self._state.in_(expected_states))
            .values(**new_values)
            .execution_options(synchronize_session="evaluate")
        )
        result = await session.execute(stmt)
        if result.rowcount == 1:
            logger.debug(
                "%s %s: %s -> %s",
                self._entity,
                key,
                "|".join(expected_states),
                target_state,
            )
            return TransitionResult(TransitionOutcome.APPLIED, target_state)

        observed = await self.current_state(session, key)
        if observed is None:
            raise NotFoundError(f"{self._entity.capitalize()} not found")
        if observed == target_state:
            logger.info(
                "%s %s already %s; treating as satisfied",
                self._entity,
                key,
                target_state,
            )
            return TransitionResult(TransitionOutcome.ALREADY_SATISFIED, observed)
        raise ConflictError(
            f"{self._entity.capitalize()} is {observed}, expected {' or '.join(expected_states)}",
            observed_state=observed,
        )

    async def current_state(self, session: AsyncSession, key: Any) -> str | None:
        """Return the stored state for *key*, bypassing the identity map."""
        result = await session.execute(select(self._state).where(self._key == key))
        return result.scalar_one_or_none()
