"""Billing vocabulary shared by the webhook processor and add-on flows.

Subscription statuses mirror Stripe's own strings so that provider values
can be stored verbatim.  The groupings below decide which prior statuses a
webhook is allowed to move a subscription out of.
"""

from __future__ import annotations

from enum import Enum


class SubscriptionStatus(str, Enum):
    """Stripe subscription lifecycle states."""

    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    PAUSED = "paused"
    CANCELED = "canceled"


TERMINAL_SUBSCRIPTION_STATUSES: frozenset[str] = frozenset(
    {
        SubscriptionStatus.CANCELED.value,
        SubscriptionStatus.INCOMPLETE_EXPIRED.value,
    }
)

# Statuses a subscription can still leave.  Webhook writes only ever move a
# row out of one of these, so a late event cannot resurrect a terminal row.
LIVE_SUBSCRIPTION_STATUSES: frozenset[str] = frozenset(
    s.value for s in SubscriptionStatus if s.value not in TERMINAL_SUBSCRIPTION_STATUSES
)


class AddonType(str, Enum):
    """Billable add-on item types attached to a subscription."""

    RESERVED_DOMAIN = "reserved_domain"
    CUSTOM_DOMAIN = "custom_domain"
