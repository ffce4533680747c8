"""Billable add-ons attached to a user's active subscription.

Each operation runs in three phases so that no local transaction stays open
across a Stripe call:

1. read phase: resolve the subscription and check for duplicates,
2. remote phase: create or delete the Stripe subscription item,
3. write phase: record or remove the local item.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantry_core.errors import ConflictError, NotFoundError
from tenantry_core.models.billing import AddonType
from tenantry_core.state.database import unit_of_work
from tenantry_core.state.repository import SubscriptionItemRepository, SubscriptionRepository
from tenantry_core.state.tables import SubscriptionTable

from tenantry_api.config import APISettings
from tenantry_api.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

_ADDON_TYPES: tuple[str, ...] = tuple(t.value for t in AddonType)


class AddonService:
    """Add and remove subscription add-ons.

    Parameters
    ----------
    session_factory:
        Factory for the short read and write transactions.
    gateway:
        Stripe adapter.
    settings:
        Provides the Stripe price id for each add-on type.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: StripeGateway,
        settings: APISettings,
    ) -> None:
        self._session_factory = session_factory
        self._gateway = gateway
        self._settings = settings

    async def find_latest_active_subscription(self, user_id: str) -> SubscriptionTable | None:
        """Most recently created ``active`` subscription for *user_id*."""
        async with unit_of_work(self._session_factory) as session:
            return await SubscriptionRepository(session).find_latest_active(user_id)

    async def add_addon(self, user_id: str, item_type: str, resource_id: str | None = None) -> dict[str, Any]:
        """Attach a ``quantity=1`` add-on for *resource_id* to the active subscription.

        Raises
        ------
        ValueError
            If *item_type* is not a known add-on type.
        RuntimeError
            If no Stripe price is configured for the add-on type.
        NotFoundError
            If the user has no active subscription.
        ConflictError
            If the same add-on already exists for the resource.
        """
        try:
            addon_type = AddonType(item_type)
        except ValueError:
            raise ValueError(f"Unknown add-on type '{item_type}'. Must be one of: {', '.join(_ADDON_TYPES)}") from None

        price_id = self._settings.addon_price_id(addon_type)
        if not price_id:
            logger.error("No Stripe price configured for add-on %s", addon_type.value)
            raise RuntimeError(f"Stripe price for {addon_type.value} is not configured")

        async with unit_of_work(self._session_factory) as session:
            subscription = await SubscriptionRepository(session).find_latest_active(user_id)
            if subscription is None:
                raise NotFoundError("No active subscription")
            existing = await SubscriptionItemRepository(session).find_by_type_and_resource(
                subscription.id, addon_type.value, resource_id
            )
            if existing is not None:
                raise ConflictError(f"{addon_type.value} add-on already exists for this resource")

        item = await self._gateway.create_subscription_item(
            subscription.stripe_subscription_id,
            price_id,
            quantity=1,
            metadata={"item_type": addon_type.value, "resource_id": resource_id or ""},
        )

        async with unit_of_work(self._session_factory) as session:
            row = await SubscriptionItemRepository(session).create(
                subscription_id=subscription.id,
                stripe_subscription_item_id=item["id"],
                stripe_price_id=price_id,
                item_type=addon_type.value,
                related_resource_id=resource_id,
                quantity=1,
            )

        logger.info(
            "Add-on %s for resource %s attached to subscription %s (item %s)",
            addon_type.value,
            resource_id,
            subscription.stripe_subscription_id,
            item["id"],
        )
        return {
            "id": row.id,
            "item_type": row.item_type,
            "related_resource_id": row.related_resource_id,
            "stripe_subscription_item_id": row.stripe_subscription_item_id,
            "quantity": row.quantity,
        }

    async def remove_addon(self, user_id: str, resource_id: str) -> dict[str, Any]:
        """Detach the add-on (of either type) for *resource_id*.

        An item that Stripe reports as already deleted still has its local
        row removed.
        """
        async with unit_of_work(self._session_factory) as session:
            subscription = await SubscriptionRepository(session).find_latest_active(user_id)
            if subscription is None:
                raise NotFoundError("No active subscription")
            item = await SubscriptionItemRepository(session).find_by_type_and_resource(
                subscription.id, _ADDON_TYPES, resource_id
            )
            if item is None:
                raise NotFoundError("Add-on not found")
            item_id = item.id
            stripe_item_id = item.stripe_subscription_item_id
            item_type = item.item_type

        deleted_remotely = await self._gateway.delete_subscription_item(stripe_item_id)

        async with unit_of_work(self._session_factory) as session:
            await SubscriptionItemRepository(session).delete(item_id)

        logger.info(
            "Add-on %s for resource %s removed (item %s, remote_deleted=%s)",
            item_type,
            resource_id,
            stripe_item_id,
            deleted_remotely,
        )
        return {"resource_id": resource_id, "item_type": item_type, "removed": True}
