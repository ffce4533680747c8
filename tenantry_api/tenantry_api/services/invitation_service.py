"""Team invitation lifecycle: create, accept, decline, cancel and inspect.

Every status change goes through :data:`~tenantry_core.state.INVITATION_GUARD`,
so two requests racing on the same invitation are serialised by the
database rather than by this process.  The service joins the caller's
transaction; the request-scoped session commits or rolls back as a whole.

Expiry is evaluated lazily.  Accept and decline report an invitation past
``expires_at`` as expired without rewriting the row; the stored status only
moves to ``expired`` when a new invitation for the same address replaces it.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenantry_core.errors import ConflictError, ExpiredError, ForbiddenError, NotFoundError
from tenantry_core.models.team import InvitationStatus, can_manage_team, parse_assignable_role
from tenantry_core.state.repository import (
    INVITATION_GUARD,
    InvitationRepository,
    MembershipRepository,
    TeamRepository,
    UserRepository,
    normalise_email,
)
from tenantry_core.state.tables import InvitationTable

logger = logging.getLogger(__name__)

DEFAULT_INVITATION_TTL = timedelta(days=7)

# 32 random bytes, hex encoded.
_TOKEN_BYTES = 32


def _as_utc(value: datetime) -> datetime:
    """SQLite returns naive datetimes; they are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _utcnow() -> datetime:
    return datetime.now(UTC)


class InvitationService:
    """Invitation operations for a single request.

    Parameters
    ----------
    session:
        Request-scoped session.  The caller owns commit and rollback.
    ttl:
        Lifetime of newly created invitations.
    clock:
        Returns the current UTC time.  Injected by tests.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        ttl: timedelta = DEFAULT_INVITATION_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session = session
        self._ttl = ttl
        self._clock = clock
        self._users = UserRepository(session)
        self._teams = TeamRepository(session)
        self._memberships = MembershipRepository(session)
        self._invitations = InvitationRepository(session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_expired(self, invitation: InvitationTable, now: datetime) -> bool:
        return now > _as_utc(invitation.expires_at)

    def _effective_status(self, invitation: InvitationTable, now: datetime) -> str:
        if invitation.status == InvitationStatus.PENDING.value and self._is_expired(invitation, now):
            return InvitationStatus.EXPIRED.value
        return invitation.status

    async def _require_manager(self, team_id: str, user_id: str) -> None:
        role = await self._memberships.get_role(user_id, team_id)
        if not can_manage_team(role):
            raise ForbiddenError("Only team owners and admins can manage invitations")

    async def _load_actionable(self, token: str, email: str) -> InvitationTable:
        """Fetch the invitation for *token* and check it can still be answered."""
        invitation = await self._invitations.get_by_token(token)
        if invitation is None:
            raise NotFoundError("Invitation not found")

        if invitation.status == InvitationStatus.EXPIRED.value:
            raise ExpiredError("Invitation has expired")
        if invitation.status != InvitationStatus.PENDING.value:
            raise ConflictError(
                f"Invitation is already {invitation.status}",
                observed_state=invitation.status,
            )
        if self._is_expired(invitation, self._clock()):
            raise ExpiredError("Invitation has expired")
        if normalise_email(email) != invitation.email:
            raise ForbiddenError("This invitation was sent to a different email address")
        return invitation

    @staticmethod
    def _serialize(invitation: InvitationTable, *, status: str | None = None) -> dict[str, Any]:
        return {
            "id": invitation.id,
            "team_id": invitation.team_id,
            "email": invitation.email,
            "role": invitation.role,
            "status": status or invitation.status,
            "inviter_id": invitation.inviter_id,
            "expires_at": _as_utc(invitation.expires_at).isoformat(),
            "created_at": _as_utc(invitation.created_at).isoformat() if invitation.created_at else None,
        }

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_invitation(
        self,
        *,
        team_id: str,
        inviter_id: str,
        email: str,
        role: str,
    ) -> dict[str, Any]:
        """Invite *email* to *team_id* with the given role.

        Returns
        -------
        dict
            The invitation including its ``token``; the caller delivers it
            to the invitee.

        Raises
        ------
        ValueError
            If *role* is not ``admin`` or ``member``.
        NotFoundError
            If the team does not exist.
        ForbiddenError
            If the inviter is not an owner or admin of the team.
        ConflictError
            If the address is already a member or already has a pending
            invitation.
        """
        offered_role = parse_assignable_role(role)
        email = normalise_email(email)

        team = await self._teams.get(team_id)
        if team is None:
            raise NotFoundError("Team not found")
        await self._require_manager(team_id, inviter_id)

        if await self._memberships.email_is_member(team_id, email):
            raise ConflictError("User is already a member of this team")

        now = self._clock()
        existing = await self._invitations.find_pending(team_id, email)
        if existing is not None:
            if not self._is_expired(existing, now):
                raise ConflictError("A pending invitation already exists for this email")
            # Retire the stale row so the pending-per-address index admits a new one.
            await INVITATION_GUARD.transition(
                self._session,
                existing.id,
                expected=InvitationStatus.PENDING,
                target=InvitationStatus.EXPIRED,
            )

        try:
            invitation = await self._invitations.create(
                team_id=team_id,
                inviter_id=inviter_id,
                email=email,
                role=offered_role,
                token=secrets.token_hex(_TOKEN_BYTES),
                expires_at=now + self._ttl,
            )
        except IntegrityError as exc:
            raise ConflictError("A pending invitation already exists for this email") from exc

        logger.info(
            "Invitation %s created for team %s by %s (role=%s)",
            invitation.id,
            team_id,
            inviter_id,
            offered_role.value,
        )
        body = self._serialize(invitation)
        body["token"] = invitation.token
        return body

    async def accept_invitation(self, token: str, *, user_id: str, email: str) -> dict[str, Any]:
        """Accept the invitation identified by *token* as the acting user.

        The membership insert and the ``pending -> accepted`` transition run
        in the caller's transaction.  A concurrent accept that already
        committed is reported as success without a second membership.

        Raises
        ------
        NotFoundError
            Unknown token.
        ConflictError
            The invitation is no longer pending.
        ExpiredError
            The invitation is past ``expires_at``.
        ForbiddenError
            The acting user's email differs from the invited address.
        """
        invitation = await self._load_actionable(token, email)
        await self._users.ensure(user_id, email)

        membership, created = await self._memberships.get_or_create(user_id, invitation.team_id, invitation.role)
        result = await INVITATION_GUARD.transition(
            self._session,
            invitation.id,
            expected=InvitationStatus.PENDING,
            target=InvitationStatus.ACCEPTED,
        )

        logger.info(
            "Invitation %s accepted by %s (%s, membership_created=%s)",
            invitation.id,
            user_id,
            result.outcome.value,
            created,
        )
        return {
            "invitation_id": invitation.id,
            "team_id": invitation.team_id,
            "user_id": user_id,
            "role": membership.role,
            "status": result.state,
            "membership_created": created,
            "outcome": result.outcome.value,
        }

    async def decline_invitation(self, token: str, *, user_id: str, email: str) -> dict[str, Any]:
        """Decline the invitation identified by *token*.  No membership is created."""
        invitation = await self._load_actionable(token, email)
        result = await INVITATION_GUARD.transition(
            self._session,
            invitation.id,
            expected=InvitationStatus.PENDING,
            target=InvitationStatus.DECLINED,
        )
        logger.info("Invitation %s declined by %s (%s)", invitation.id, user_id, result.outcome.value)
        return {
            "invitation_id": invitation.id,
            "team_id": invitation.team_id,
            "status": result.state,
            "outcome": result.outcome.value,
        }

    async def cancel_invitation(self, team_id: str, invitation_id: str, *, requestor_id: str) -> dict[str, Any]:
        """Withdraw a pending invitation.  Cancelling twice is a no-op."""
        await self._require_manager(team_id, requestor_id)
        invitation = await self._invitations.get(invitation_id)
        if invitation is None or invitation.team_id != team_id:
            raise NotFoundError("Invitation not found")

        result = await INVITATION_GUARD.transition(
            self._session,
            invitation_id,
            expected=InvitationStatus.PENDING,
            target=InvitationStatus.CANCELLED,
        )
        logger.info("Invitation %s cancelled by %s (%s)", invitation_id, requestor_id, result.outcome.value)
        return {
            "invitation_id": invitation_id,
            "team_id": team_id,
            "status": result.state,
            "outcome": result.outcome.value,
        }

    async def get_invitation_details(self, token: str) -> dict[str, Any]:
        """Public preview of an invitation, reporting its effective status."""
        invitation = await self._invitations.get_by_token(token)
        if invitation is None:
            raise NotFoundError("Invitation not found")
        team = await self._teams.get(invitation.team_id)
        status = self._effective_status(invitation, self._clock())
        return {
            "team_id": invitation.team_id,
            "team_name": team.name if team is not None else None,
            "email": invitation.email,
            "role": invitation.role,
            "status": status,
            "expires_at": _as_utc(invitation.expires_at).isoformat(),
        }

    async def list_pending_invitations(self, team_id: str, *, requestor_id: str) -> list[dict[str, Any]]:
        """Pending, unexpired invitations for *team_id*, newest first."""
        await self._require_manager(team_id, requestor_id)
        rows = await self._invitations.list_pending(team_id, now=self._clock())
        return [self._serialize(row) for row in rows]
