"""Domain vocabulary for the Tenantry core."""

from tenantry_core.models.billing import (
    LIVE_SUBSCRIPTION_STATUSES,
    TERMINAL_SUBSCRIPTION_STATUSES,
    AddonType,
    SubscriptionStatus,
)
from tenantry_core.models.team import (
    ASSIGNABLE_ROLES,
    MANAGER_ROLES,
    InvitationStatus,
    TeamRole,
    can_manage_team,
    parse_assignable_role,
)

__all__ = [
    "ASSIGNABLE_ROLES",
    "AddonType",
    "InvitationStatus",
    "LIVE_SUBSCRIPTION_STATUSES",
    "MANAGER_ROLES",
    "SubscriptionStatus",
    "TERMINAL_SUBSCRIPTION_STATUSES",
    "TeamRole",
    "can_manage_team",
    "parse_assignable_role",
]
