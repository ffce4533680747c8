"""State persistence layer (PostgreSQL in production, SQLite locally)."""

from tenantry_core.state.database import get_engine, unit_of_work
from tenantry_core.state.guard import StateGuard, TransitionOutcome, TransitionResult
from tenantry_core.state.repository import (
    INVITATION_GUARD,
    SUBSCRIPTION_GUARD,
    InvitationRepository,
    MembershipRepository,
    PlanRepository,
    SubscriptionItemRepository,
    SubscriptionRepository,
    TeamRepository,
    UserRepository,
)

__all__ = [
    "INVITATION_GUARD",
    "InvitationRepository",
    "MembershipRepository",
    "PlanRepository",
    "SUBSCRIPTION_GUARD",
    "StateGuard",
    "SubscriptionItemRepository",
    "SubscriptionRepository",
    "TeamRepository",
    "TransitionOutcome",
    "TransitionResult",
    "UserRepository",
    "get_engine",
    "unit_of_work",
]
