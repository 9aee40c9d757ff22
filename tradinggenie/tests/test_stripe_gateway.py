"""
Test the Stripe gateway.

Signature checks run through the real stripe library with a locally
computed header; API calls are patched.
"""
import hashlib
import hmac
import json
import time

import pytest
import stripe

from tradinggenie.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    invoice_subscription_id,
    subscription_from_object,
)
from tradinggenie.features.billing.stripe_provider import StripeGateway

WEBHOOK_SECRET = "whsec_test_secret"


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    ts = timestamp if timestamp is not None else int(time.time())
    signed = f"{ts}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


@pytest.fixture
def gateway():
    return StripeGateway("sk_test_123", WEBHOOK_SECRET)


def _payload(event_type="customer.subscription.deleted"):
    return json.dumps({
        "id": "evt_1",
        "type": event_type,
        "data": {"object": {"id": "sub_1", "status": "canceled"}},
    }).encode()


def test_requires_secret_key():
    with pytest.raises(BillingProviderError):
        StripeGateway("", WEBHOOK_SECRET)


def test_construct_event_with_valid_signature(gateway):
    payload = _payload()
    event = gateway.construct_event(payload, _sign(payload))
    assert event.event_id == "evt_1"
    assert event.event_type == "customer.subscription.deleted"
    assert event.data == {"id": "sub_1", "status": "canceled"}


def test_construct_event_rejects_wrong_secret(gateway):
    payload = _payload()
    with pytest.raises(BillingWebhookError):
        gateway.construct_event(payload, _sign(payload, secret="whsec_other"))


def test_construct_event_rejects_tampered_body(gateway):
    payload = _payload()
    header = _sign(payload)
    with pytest.raises(BillingWebhookError):
        gateway.construct_event(payload.replace(b"canceled", b"active__"), header)


def test_construct_event_rejects_stale_timestamp(gateway):
    payload = _payload()
    with pytest.raises(BillingWebhookError):
        gateway.construct_event(payload, _sign(payload, timestamp=int(time.time()) - 3600))


def test_construct_event_requires_header(gateway):
    with pytest.raises(BillingWebhookError):
        gateway.construct_event(_payload(), None)


def test_construct_event_requires_webhook_secret():
    gw = StripeGateway("sk_test_123", None)
    payload = _payload()
    with pytest.raises(BillingWebhookError):
        gw.construct_event(payload, _sign(payload))


def test_construct_event_rejects_non_json(gateway):
    payload = b"not json"
    with pytest.raises(BillingWebhookError):
        gateway.construct_event(payload, _sign(payload))


def test_create_checkout_session_params(gateway, monkeypatch):
    captured = {}

    class _Session:
        id = "cs_test_abc"

    def fake_create(**params):
        captured.update(params)
        return _Session()

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)

    session_id = gateway.create_checkout_session(
        price_id="price_pro",
        customer_email="a@x.com",
        success_url="https://genie.example/success",
        cancel_url="https://genie.example/pricing",
        metadata={"plan": "professional"},
        trial_days=7,
    )
    assert session_id == "cs_test_abc"
    assert captured["mode"] == "subscription"
    assert captured["line_items"] == [{"price": "price_pro", "quantity": 1}]
    assert captured["customer_email"] == "a@x.com"
    assert captured["metadata"] == {"plan": "professional"}
    assert captured["subscription_data"] == {"trial_period_days": 7}


def test_create_checkout_session_without_trial(gateway, monkeypatch):
    captured = {}

    class _Session:
        id = "cs_test_abc"

    def fake_create(**params):
        captured.update(params)
        return _Session()

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    gateway.create_checkout_session("price_pro", "a@x.com", "s", "c")
    assert "subscription_data" not in captured


def test_create_checkout_session_wraps_stripe_errors(gateway, monkeypatch):
    def boom(**params):
        raise stripe.InvalidRequestError("No such price", "price")

    monkeypatch.setattr(stripe.checkout.Session, "create", boom)
    with pytest.raises(BillingProviderError):
        gateway.create_checkout_session("price_missing", "a@x.com", "s", "c")


def test_retrieve_subscription(gateway, monkeypatch):
    monkeypatch.setattr(
        stripe.Subscription,
        "retrieve",
        lambda sub_id: {
            "id": sub_id,
            "customer": "cus_1",
            "status": "active",
            "current_period_start": 1_700_000_000,
            "current_period_end": 1_702_592_000,
            "cancel_at_period_end": False,
        },
    )
    sub = gateway.retrieve_subscription("sub_1")
    assert sub.subscription_id == "sub_1"
    assert sub.status == "active"
    assert int(sub.current_period_end.timestamp()) == 1_702_592_000
    assert sub.current_period_end.tzinfo is not None


def test_retrieve_subscription_wraps_stripe_errors(gateway, monkeypatch):
    def boom(sub_id):
        raise stripe.APIConnectionError("network down")

    monkeypatch.setattr(stripe.Subscription, "retrieve", boom)
    with pytest.raises(BillingProviderError):
        gateway.retrieve_subscription("sub_1")


def test_subscription_period_read_from_items():
    sub = subscription_from_object({
        "id": "sub_1",
        "status": "active",
        "items": {"data": [{"current_period_start": 1_700_000_000, "current_period_end": 1_702_592_000}]},
    })
    assert int(sub.current_period_start.timestamp()) == 1_700_000_000
    assert int(sub.current_period_end.timestamp()) == 1_702_592_000
    assert sub.cancel_at_period_end is False


def test_invoice_subscription_id_shapes():
    assert invoice_subscription_id({"subscription": "sub_1"}) == "sub_1"
    assert invoice_subscription_id({"subscription": {"id": "sub_2"}}) == "sub_2"
    assert invoice_subscription_id({"parent": {"subscription_details": {"subscription": "sub_3"}}}) == "sub_3"
    assert invoice_subscription_id({}) is None
