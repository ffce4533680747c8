"""Billing endpoints: Stripe webhook ingestion and subscription add-ons."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from tenantry_api.dependencies import ClaimsDep, GatewayDep, SessionFactoryDep, SettingsDep
from tenantry_api.schemas import (
    AddAddonRequest,
    AddonRemovedResponse,
    AddonResponse,
    WebhookResponse,
)
from tenantry_api.services.addon_service import AddonService
from tenantry_api.services.subscription_webhook_service import SubscriptionWebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


def _require_billing(settings: SettingsDep) -> None:
    if not settings.billing_enabled:
        raise HTTPException(status_code=404, detail="Billing is not enabled")


@router.post("/webhooks", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    settings: SettingsDep,
    session_factory: SessionFactoryDep,
    gateway: GatewayDep,
) -> dict[str, str]:
    """Handle incoming Stripe webhook events.

    This endpoint bypasses bearer authentication; the Stripe signature is
    verified before anything touches storage.  Signature and payload
    failures return 400; processing failures return 5xx so that Stripe
    redelivers the event.
    """
    if not settings.billing_enabled:
        return {"status": "billing_disabled"}

    body = await request.body()
    sig_header = request.headers.get("stripe-signature")

    service = SubscriptionWebhookService(session_factory, gateway)
    return await service.process(body, sig_header)


@router.post("/addons", response_model=AddonResponse, status_code=201)
async def add_addon(
    body: AddAddonRequest,
    settings: SettingsDep,
    session_factory: SessionFactoryDep,
    gateway: GatewayDep,
    claims: ClaimsDep,
) -> dict[str, Any]:
    """Attach an add-on to the caller's active subscription."""
    _require_billing(settings)
    service = AddonService(session_factory, gateway, settings)
    return await service.add_addon(claims.sub, body.item_type, body.resource_id)


@router.delete("/addons/{resource_id}", response_model=AddonRemovedResponse)
async def remove_addon(
    resource_id: str,
    settings: SettingsDep,
    session_factory: SessionFactoryDep,
    gateway: GatewayDep,
    claims: ClaimsDep,
) -> dict[str, Any]:
    """Detach the add-on billed for *resource_id*."""
    _require_billing(settings)
    service = AddonService(session_factory, gateway, settings)
    return await service.remove_addon(claims.sub, resource_id)
