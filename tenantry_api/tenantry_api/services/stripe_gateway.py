"""Thin adapter over the Stripe SDK used by the billing services.

The SDK is synchronous; every network call runs in a worker thread so the
event loop keeps serving requests.  Stripe errors are classified into the
reconciliation taxonomy here, so services never import ``stripe``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from tenantry_core.errors import DataIntegrityError, TransientError, UnverifiedError

from tenantry_api.config import APISettings

logger = logging.getLogger(__name__)

_RESOURCE_MISSING = "resource_missing"


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert a Stripe object (or plain mapping) to a plain ``dict``."""
    if type(obj) is dict:
        return obj
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


class StripeGateway:
    """Stripe operations needed for webhook reconciliation and add-ons.

    Parameters
    ----------
    settings:
        API settings holding the Stripe secret key and webhook secret.
    """

    def __init__(self, settings: APISettings) -> None:
        self._settings = settings

    def _get_stripe(self) -> Any:
        """Lazily import and configure the Stripe library."""
        import stripe

        stripe.api_key = self._settings.stripe_secret_key.get_secret_value()
        return stripe

    def _classify(self, stripe: Any, exc: Exception, action: str) -> Exception:
        if isinstance(exc, stripe.InvalidRequestError):
            logger.error("Stripe rejected %s: %s", action, exc)
            return DataIntegrityError(f"Billing provider rejected {action}")
        logger.warning("Stripe call failed during %s: %s", action, exc)
        return TransientError(f"Billing provider unavailable during {action}")

    def construct_event(self, payload: bytes, sig_header: str | None) -> dict[str, Any]:
        """Verify the webhook signature and return the decoded event.

        Raises
        ------
        UnverifiedError
            If the signature header is missing or invalid, or the payload is
            not valid JSON.
        TransientError
            If no webhook secret is configured; Stripe keeps retrying until
            the deployment is fixed.
        """
        if not sig_header:
            raise UnverifiedError("Missing Stripe signature")

        secret = self._settings.stripe_webhook_secret.get_secret_value()
        if not secret:
            logger.error("Stripe webhook received but API_STRIPE_WEBHOOK_SECRET is not configured")
            raise TransientError("Webhook configuration error")

        stripe = self._get_stripe()
        try:
            stripe.Webhook.construct_event(payload=payload, sig_header=sig_header, secret=secret)
        except ValueError as exc:
            raise UnverifiedError("Invalid payload") from exc
        except stripe.SignatureVerificationError as exc:
            logger.warning("Stripe webhook signature verification failed: %s", exc)
            raise UnverifiedError("Signature verification failed") from exc

        return json.loads(payload)

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        """Fetch the current state of a subscription, including its items."""
        stripe = self._get_stripe()
        try:
            subscription = await asyncio.to_thread(stripe.Subscription.retrieve, subscription_id)
        except stripe.StripeError as exc:
            raise self._classify(stripe, exc, f"retrieving subscription {subscription_id}") from exc
        return _to_dict(subscription)

    async def create_subscription_item(
        self,
        subscription_id: str,
        price_id: str,
        *,
        quantity: int = 1,
        metadata: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Attach a new priced item to a subscription."""
        stripe = self._get_stripe()
        try:
            item = await asyncio.to_thread(
                stripe.SubscriptionItem.create,
                subscription=subscription_id,
                price=price_id,
                quantity=quantity,
                metadata=metadata or {},
            )
        except stripe.StripeError as exc:
            raise self._classify(stripe, exc, f"adding item to {subscription_id}") from exc
        return _to_dict(item)

    async def delete_subscription_item(self, item_id: str) -> bool:
        """Remove an item from its subscription.

        Returns
        -------
        bool
            ``True`` if Stripe deleted the item, ``False`` if it was already
            gone (``resource_missing``).
        """
        stripe = self._get_stripe()
        try:
            await asyncio.to_thread(stripe.SubscriptionItem.delete, item_id)
        except stripe.InvalidRequestError as exc:
            if getattr(exc, "code", None) == _RESOURCE_MISSING:
                logger.info("Stripe subscription item %s already deleted", item_id)
                return False
            raise self._classify(stripe, exc, f"removing item {item_id}") from exc
        except stripe.StripeError as exc:
            raise self._classify(stripe, exc, f"removing item {item_id}") from exc
        return True
