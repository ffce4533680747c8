"""Reconcile local subscriptions from Stripe webhook events.

Stripe delivers events at least once and in no guaranteed order.  Handlers
are therefore written to be replayed safely:

* ``checkout.session.completed`` upserts by ``stripe_subscription_id``, so a
  redelivery overwrites the same row with the latest Stripe state.
* Every later status write goes through
  :data:`~tenantry_core.state.SUBSCRIPTION_GUARD` with an explicit set of
  statuses the row may leave.  A replayed event finds the row already in
  the target status; a late event for a canceled subscription observes a
  conflict and is ignored.

Each event runs in its own short transaction.  Stripe API calls happen
before the transaction opens.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantry_core.errors import ConflictError, DataIntegrityError, InvalidPayloadError, NotFoundError
from tenantry_core.models.billing import (
    LIVE_SUBSCRIPTION_STATUSES,
    TERMINAL_SUBSCRIPTION_STATUSES,
    SubscriptionStatus,
)
from tenantry_core.state.database import unit_of_work
from tenantry_core.state.repository import (
    SUBSCRIPTION_GUARD,
    PlanRepository,
    SubscriptionRepository,
    UserRepository,
)

from tenantry_api.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

_PROCESSED = {"status": "processed"}
_IGNORED = {"status": "ignored"}

# A late payment_failed must not pull an unpaid or paused subscription back to past_due.
_PAYMENT_FAILED_FROM: frozenset[str] = frozenset(
    {
        SubscriptionStatus.ACTIVE.value,
        SubscriptionStatus.TRIALING.value,
        SubscriptionStatus.INCOMPLETE.value,
    }
)
_INVOICE_PAID_FROM: frozenset[str] = LIVE_SUBSCRIPTION_STATUSES - {SubscriptionStatus.ACTIVE.value}


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def _ref_id(value: Any) -> str | None:
    """Return the id of a Stripe reference that may be expanded into an object."""
    if isinstance(value, dict):
        value = value.get("id")
    return value or None


def _from_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _first_item(subscription: dict[str, Any]) -> dict[str, Any] | None:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else None


def _first_price_id(subscription: dict[str, Any]) -> str | None:
    item = _first_item(subscription)
    if item is None:
        return None
    return _ref_id(item.get("price"))


def _period_bounds(subscription: dict[str, Any]) -> tuple[datetime | None, datetime | None]:
    """Billing period of *subscription*.

    Newer Stripe API versions carry the period on each item instead of on
    the subscription; fall back to the first item.
    """
    start = subscription.get("current_period_start")
    end = subscription.get("current_period_end")
    item = _first_item(subscription)
    if item is not None:
        if start is None:
            start = item.get("current_period_start")
        if end is None:
            end = item.get("current_period_end")
    return _from_timestamp(start), _from_timestamp(end)


def _invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    """Subscription referenced by *invoice*, across Stripe API versions."""
    subscription_id = _ref_id(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return _ref_id(details.get("subscription"))


class SubscriptionWebhookService:
    """Verify and apply Stripe subscription events.

    Parameters
    ----------
    session_factory:
        Factory for the short per-event transactions.
    gateway:
        Stripe adapter used for signature verification and to fetch the
        full subscription on checkout completion.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: StripeGateway,
    ) -> None:
        self._session_factory = session_factory
        self._gateway = gateway
        self._handlers = {
            "checkout.session.completed": self._handle_checkout_completed,
            "customer.subscription.updated": self._handle_subscription_updated,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.paid": self._handle_invoice_paid,
            "invoice.payment_failed": self._handle_invoice_payment_failed,
        }

    async def process(self, payload: bytes, signature: str | None) -> dict[str, str]:
        """Verify *payload* against *signature* and apply the event.

        Verification happens before any storage access.

        Raises
        ------
        UnverifiedError
            If the signature does not match.
        """
        event = self._gateway.construct_event(payload, signature)
        return await self.handle_event(event)

    async def handle_event(self, event: dict[str, Any]) -> dict[str, str]:
        """Dispatch a verified event to its handler.

        Returns
        -------
        dict
            ``{"status": "processed"}`` or ``{"status": "ignored"}``.
        """
        event_type = event.get("type", "")
        event_id = event.get("id")
        data_object = (event.get("data") or {}).get("object") or {}

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug("Unhandled Stripe event type: %s", event_type)
            return dict(_IGNORED)

        logger.info(
            "Processing Stripe event %s (%s)",
            event_id,
            event_type,
            extra={"event": {"id": event_id, "type": event_type}},
        )
        return dict(await handler(data_object))

    async def _transition(
        self,
        subscription_id: str,
        *,
        expected: frozenset[str],
        target: str,
        values: dict[str, Any] | None = None,
    ) -> dict[str, str]:
        """Guarded status write in its own transaction; unknown rows and conflicts are not errors."""
        async with unit_of_work(self._session_factory) as session:
            try:
                result = await SUBSCRIPTION_GUARD.transition(
                    session,
                    subscription_id,
                    expected=expected,
                    target=target,
                    values={**(values or {}), "updated_at": datetime.now(UTC)},
                )
            except NotFoundError:
                logger.info("No local subscription %s; nothing to update", subscription_id)
                return _IGNORED
            except ConflictError as exc:
                logger.warning(
                    "Subscription %s is %s; not moving it to %s",
                    subscription_id,
                    exc.observed_state,
                    target,
                )
                return _IGNORED

        logger.info("Subscription %s -> %s (%s)", subscription_id, target, result.outcome.value)
        return _PROCESSED

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_checkout_completed(self, checkout: dict[str, Any]) -> dict[str, str]:
        user_id = checkout.get("client_reference_id")
        customer_id = _ref_id(checkout.get("customer"))
        subscription_id = _ref_id(checkout.get("subscription"))
        if not (user_id and customer_id and subscription_id):
            raise InvalidPayloadError("Checkout session is missing client_reference_id, customer or subscription")

        subscription = await self._gateway.retrieve_subscription(subscription_id)
        price_id = _first_price_id(subscription)
        if price_id is None:
            raise InvalidPayloadError(f"Subscription {subscription_id} has no priced items")
        period_start, period_end = _period_bounds(subscription)

        async with unit_of_work(self._session_factory) as session:
            plan = await PlanRepository(session).get_by_price_id(price_id)
            if plan is None:
                logger.error(
                    "No plan matches Stripe price %s (subscription %s, user %s)",
                    price_id,
                    subscription_id,
                    user_id,
                )
                raise DataIntegrityError(f"No plan configured for price {price_id}")

            if not await UserRepository(session).set_stripe_customer_id(user_id, customer_id):
                logger.error("Checkout completed for unknown user %s (subscription %s)", user_id, subscription_id)
                raise DataIntegrityError(f"Unknown user {user_id}")

            await SubscriptionRepository(session).upsert(
                stripe_subscription_id=subscription_id,
                user_id=user_id,
                plan_id=plan.id,
                status=subscription.get("status") or SubscriptionStatus.ACTIVE.value,
                current_period_start=period_start,
                current_period_end=period_end,
                cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
            )

        logger.info("Subscription %s recorded for user %s on plan %s", subscription_id, user_id, plan.id)
        return _PROCESSED

    async def _handle_subscription_updated(self, subscription: dict[str, Any]) -> dict[str, str]:
        subscription_id = subscription.get("id")
        if not subscription_id:
            raise InvalidPayloadError("Subscription event is missing its id")

        async with unit_of_work(self._session_factory) as session:
            existing = await SubscriptionRepository(session).get_by_stripe_id(subscription_id)
            if existing is None:
                logger.info("Update for unknown subscription %s; ignoring", subscription_id)
                return _IGNORED

            plan_id = existing.plan_id
            price_id = _first_price_id(subscription)
            if price_id:
                plan = await PlanRepository(session).get_by_price_id(price_id)
                if plan is None:
                    logger.warning(
                        "No plan matches Stripe price %s; keeping plan %s for subscription %s",
                        price_id,
                        plan_id,
                        subscription_id,
                    )
                else:
                    plan_id = plan.id
            target = subscription.get("status") or existing.status

        period_start, period_end = _period_bounds(subscription)
        values: dict[str, Any] = {
            "plan_id": plan_id,
            "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
        }
        if period_start is not None:
            values["current_period_start"] = period_start
        if period_end is not None:
            values["current_period_end"] = period_end

        return await self._transition(
            subscription_id,
            expected=LIVE_SUBSCRIPTION_STATUSES,
            target=target,
            values=values,
        )

    async def _handle_subscription_deleted(self, subscription: dict[str, Any]) -> dict[str, str]:
        subscription_id = subscription.get("id")
        if not subscription_id:
            raise InvalidPayloadError("Subscription event is missing its id")

        target = subscription.get("status")
        if target not in TERMINAL_SUBSCRIPTION_STATUSES:
            target = SubscriptionStatus.CANCELED.value
        return await self._transition(subscription_id, expected=LIVE_SUBSCRIPTION_STATUSES, target=target)

    async def _handle_invoice_paid(self, invoice: dict[str, Any]) -> dict[str, str]:
        subscription_id = _invoice_subscription_id(invoice)
        if invoice.get("status") != "paid" or not subscription_id:
            logger.debug("Invoice %s is not a paid subscription invoice; ignoring", invoice.get("id"))
            return _IGNORED
        return await self._transition(
            subscription_id,
            expected=_INVOICE_PAID_FROM,
            target=SubscriptionStatus.ACTIVE.value,
        )

    async def _handle_invoice_payment_failed(self, invoice: dict[str, Any]) -> dict[str, str]:
        subscription_id = _invoice_subscription_id(invoice)
        if not subscription_id:
            logger.debug("Invoice %s has no subscription; ignoring", invoice.get("id"))
            return _IGNORED
        logger.warning(
            "Payment failed for customer %s (invoice %s, subscription %s)",
            _ref_id(invoice.get("customer")),
            invoice.get("id"),
            subscription_id,
        )
        return await self._transition(
            subscription_id,
            expected=_PAYMENT_FAILED_FROM,
            target=SubscriptionStatus.PAST_DUE.value,
        )
