"""
Test checkout session creation.

Uses the fake gateway (no real Stripe calls).
"""
import asyncio
import threading

import pytest

from tradinggenie.core.config import Settings
from tradinggenie.core.errors import UnknownPlanError, ValidationError
from tradinggenie.features.billing.checkout import CheckoutService
from tradinggenie.features.billing.provider import BillingProviderError
from tradinggenie.features.plans.catalog import PLAN_TAGS, build_plan_catalog
from tradinggenie.features.subscribers.store import SubscriberStore
from tradinggenie.tests.mocks import FakeGateway, ThreadRecordingStore


@pytest.fixture
def store():
    return SubscriberStore()


def _service(gateway, store, **settings_overrides):
    cfg = Settings(_env_file=None, **settings_overrides)
    return CheckoutService(
        gateway=gateway,
        store=store,
        catalog=build_plan_catalog(cfg),
        frontend_url="https://genie.example/",
        trial_days=cfg.TRIAL_DAYS,
    )


def _create(service, plan="professional", email="a@x.com", interval="monthly"):
    return asyncio.run(service.create_session(plan, email, "alice", "1001", interval=interval))


@pytest.mark.parametrize("plan", PLAN_TAGS)
def test_every_plan_returns_session_id(plan, store):
    gateway = FakeGateway()
    session_id = _create(_service(gateway, store), plan=plan)
    assert session_id == "cs_test_1"
    assert gateway.sessions[0]["metadata"]["plan"] == plan


def test_same_email_twice_creates_one_user(store):
    gateway = FakeGateway()
    service = _service(gateway, store)
    _create(service)
    _create(service)
    assert store.count_users() == 1
    assert gateway.sessions[0]["metadata"]["user_id"] == gateway.sessions[1]["metadata"]["user_id"]


def test_unknown_plan_creates_no_user(store):
    gateway = FakeGateway()
    with pytest.raises(UnknownPlanError):
        _create(_service(gateway, store), plan="platinum")
    assert store.count_users() == 0
    assert gateway.sessions == []


def test_session_params(store):
    gateway = FakeGateway()
    _create(_service(gateway, store, STRIPE_PRICE_PROFESSIONAL="price_pro"))
    session = gateway.sessions[0]
    user = store.get_user_by_email("a@x.com")

    assert session["price_id"] == "price_pro"
    assert session["customer_email"] == "a@x.com"
    assert session["success_url"] == "https://genie.example/success?session_id={CHECKOUT_SESSION_ID}"
    assert session["cancel_url"] == "https://genie.example/pricing"
    assert session["metadata"] == {
        "user_id": user["id"],
        "plan": "professional",
        "telegram_username": "alice",
        "telegram_chat_id": "1001",
    }
    assert session["trial_days"] == 0


def test_trial_days_passed_through(store):
    gateway = FakeGateway()
    _create(_service(gateway, store, TRIAL_DAYS=7))
    assert gateway.sessions[0]["trial_days"] == 7


def test_yearly_interval_uses_yearly_price(store):
    gateway = FakeGateway()
    _create(_service(gateway, store, STRIPE_PRICE_STARTER_YEARLY="price_starter_year"), plan="starter", interval="yearly")
    assert gateway.sessions[0]["price_id"] == "price_starter_year"


def test_yearly_interval_without_price_is_rejected(store):
    gateway = FakeGateway()
    with pytest.raises(ValidationError):
        _create(_service(gateway, store), plan="starter", interval="yearly")
    assert store.count_users() == 0


def test_invalid_interval_is_rejected(store):
    with pytest.raises(ValidationError):
        _create(_service(FakeGateway(), store), interval="weekly")


def test_gateway_failure_propagates(store):
    gateway = FakeGateway()
    gateway.fail_checkout = True
    with pytest.raises(BillingProviderError):
        _create(_service(gateway, store))


def test_store_calls_run_off_the_event_loop():
    store = ThreadRecordingStore()
    service = _service(FakeGateway(), store)

    async def run():
        await service.create_session("starter", "a@x.com", "alice", "1001")
        return threading.get_ident()

    loop_thread = asyncio.run(run())
    assert store.threads
    assert loop_thread not in store.threads
