"""Tests for the Stripe gateway: signature verification and error classification."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from unittest.mock import MagicMock, patch

import pytest
import stripe
from pydantic import SecretStr

from tenantry_core.errors import DataIntegrityError, TransientError, UnverifiedError

from tenantry_api.services.stripe_gateway import StripeGateway


def _signature_header(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{payload.decode('utf-8')}".encode()
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


@pytest.fixture()
def gateway(test_settings) -> StripeGateway:
    return StripeGateway(test_settings)


# ---------------------------------------------------------------------------
# construct_event
# ---------------------------------------------------------------------------


def test_valid_signature_returns_decoded_event(gateway) -> None:
    payload = json.dumps({"id": "evt_1", "type": "invoice.paid", "data": {"object": {}}}).encode()

    event = gateway.construct_event(payload, _signature_header(payload, "whsec_test"))

    assert event["id"] == "evt_1"
    assert isinstance(event, dict)


def test_wrong_secret_is_unverified(gateway) -> None:
    payload = b'{"id": "evt_1", "type": "invoice.paid"}'

    with pytest.raises(UnverifiedError):
        gateway.construct_event(payload, _signature_header(payload, "whsec_other"))


def test_missing_signature_is_unverified(gateway) -> None:
    with pytest.raises(UnverifiedError):
        gateway.construct_event(b"{}", None)


def test_malformed_payload_is_unverified(gateway) -> None:
    with patch("stripe.Webhook.construct_event", side_effect=ValueError("bad json")):
        with pytest.raises(UnverifiedError):
            gateway.construct_event(b"not json", "t=1,v1=abc")


def test_missing_webhook_secret_is_transient(test_settings) -> None:
    settings = test_settings.model_copy(update={"stripe_webhook_secret": SecretStr("")})

    with pytest.raises(TransientError):
        StripeGateway(settings).construct_event(b"{}", "t=1,v1=abc")


# ---------------------------------------------------------------------------
# Remote calls
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_retrieve_subscription_converts_stripe_object(gateway) -> None:
    stripe_obj = MagicMock()
    stripe_obj.to_dict.return_value = {"id": "sub_1", "status": "active"}

    with patch("stripe.Subscription.retrieve", return_value=stripe_obj) as retrieve:
        result = await gateway.retrieve_subscription("sub_1")

    retrieve.assert_called_once_with("sub_1")
    assert result == {"id": "sub_1", "status": "active"}


@pytest.mark.asyncio
async def test_connection_error_is_transient(gateway) -> None:
    with patch("stripe.SubscriptionItem.create", side_effect=stripe.APIConnectionError("network down")):
        with pytest.raises(TransientError):
            await gateway.create_subscription_item("sub_1", "price_1")


@pytest.mark.asyncio
async def test_rejected_request_is_data_integrity_error(gateway) -> None:
    error = stripe.InvalidRequestError("No such price", "price", code="resource_missing")
    with patch("stripe.SubscriptionItem.create", side_effect=error):
        with pytest.raises(DataIntegrityError):
            await gateway.create_subscription_item("sub_1", "price_missing")


@pytest.mark.asyncio
async def test_delete_treats_resource_missing_as_success(gateway) -> None:
    error = stripe.InvalidRequestError("No such subscription item", "id", code="resource_missing")
    with patch("stripe.SubscriptionItem.delete", side_effect=error):
        assert await gateway.delete_subscription_item("si_gone") is False


@pytest.mark.asyncio
async def test_delete_success_and_other_failures(gateway) -> None:
    with patch("stripe.SubscriptionItem.delete", return_value={"id": "si_1", "deleted": True}) as delete:
        assert await gateway.delete_subscription_item("si_1") is True
    delete.assert_called_once_with("si_1")

    with patch("stripe.SubscriptionItem.delete", side_effect=stripe.APIError("boom")):
        with pytest.raises(TransientError):
            await gateway.delete_subscription_item("si_1")
