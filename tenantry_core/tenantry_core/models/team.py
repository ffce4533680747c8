"""Team membership roles and invitation lifecycle states."""

from __future__ import annotations

from enum import Enum


class TeamRole(str, Enum):
    """Role a user holds inside a team.

    Exactly one ``OWNER`` exists per team; it is assigned when the team is
    created and can never be granted through an invitation or role change.
    """

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


# Roles that may be offered by an invitation or assigned by a role change.
ASSIGNABLE_ROLES: frozenset[TeamRole] = frozenset({TeamRole.ADMIN, TeamRole.MEMBER})

# Roles allowed to invite, cancel invitations, and manage members.
MANAGER_ROLES: frozenset[TeamRole] = frozenset({TeamRole.OWNER, TeamRole.ADMIN})


def parse_assignable_role(raw: str) -> TeamRole:
    """Convert *raw* into an assignable :class:`TeamRole`.

    Raises
    ------
    ValueError
        If *raw* is not ``admin`` or ``member``.
    """
    message = f"Invalid role '{raw}'. Must be 'admin' or 'member'"
    try:
        role = TeamRole(raw.strip().lower())
    except ValueError:
        raise ValueError(message) from None
    if role not in ASSIGNABLE_ROLES:
        raise ValueError(message)
    return role


def can_manage_team(role: str | TeamRole | None) -> bool:
    """Return ``True`` if *role* may manage invitations and members."""
    if role is None:
        return False
    try:
        return TeamRole(role) in MANAGER_ROLES
    except ValueError:
        return False


class InvitationStatus(str, Enum):
    """Lifecycle state of a team invitation.

    ``PENDING`` is the only non-terminal state.
    """

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not InvitationStatus.PENDING
