"""Tests for the subscriber store (SQLite in-memory)."""
from datetime import datetime, timezone

import pytest

from tradinggenie.features.subscribers.store import SubscriberStore


@pytest.fixture
def store():
    return SubscriberStore()


def test_upsert_creates_user_once(store):
    user, created = store.upsert_user_by_email("a@x.com", "alice", "1001")
    assert created is True
    assert user["email"] == "a@x.com"
    assert user["subscription"]["status"] is None

    again, created_again = store.upsert_user_by_email("a@x.com", "alice2", "2002")
    assert created_again is False
    assert again["id"] == user["id"]
    # existing user keeps its stored telegram identifiers
    assert again["telegram_chat_id"] == "1001"
    assert store.count_users() == 1


def test_upsert_normalizes_email(store):
    user, _ = store.upsert_user_by_email("  A@X.com ", "alice", "1001")
    same, created = store.upsert_user_by_email("a@x.com", "alice", "1001")
    assert created is False
    assert same["id"] == user["id"]


def test_upsert_race_returns_winner(store, monkeypatch):
    """A concurrent insert that wins the unique constraint is read back, not duplicated."""
    winner, _ = store.upsert_user_by_email("race@x.com", "first", "1")

    real_lookup = store.get_user_by_email
    calls = {"n": 0}

    def stale_then_real(email):
        calls["n"] += 1
        if calls["n"] == 1:
            return None  # simulate the select running before the other insert committed
        return real_lookup(email)

    monkeypatch.setattr(store, "get_user_by_email", stale_then_real)

    user, created = store.upsert_user_by_email("race@x.com", "second", "2")
    assert created is False
    assert user["id"] == winner["id"]
    assert store.count_users() == 1


def test_activate_and_find_by_subscription(store):
    user, _ = store.upsert_user_by_email("a@x.com", "alice", "1001")
    end = datetime(2030, 1, 1, tzinfo=timezone.utc)
    assert store.activate_subscription(user["id"], "professional", "cus_1", "sub_1", end) is True

    found = store.find_user_by_subscription("sub_1")
    assert found["id"] == user["id"]
    assert found["subscription"]["plan"] == "professional"
    assert found["subscription"]["status"] == "active"
    assert found["subscription"]["stripe_customer_id"] == "cus_1"


def test_activate_unknown_user_returns_false(store):
    assert store.activate_subscription("missing", "starter", "cus_1", "sub_1", None) is False


def test_find_by_subscription_handles_missing_id(store):
    assert store.find_user_by_subscription(None) is None
    assert store.find_user_by_subscription("sub_unknown") is None


def test_update_subscription_state_touches_user_and_record(store):
    user, _ = store.upsert_user_by_email("a@x.com", "alice", "1001")
    store.activate_subscription(user["id"], "starter", "cus_1", "sub_1", None)
    store.create_subscription_record(user["id"], "starter", "active", "sub_1")

    end = datetime(2031, 6, 1, tzinfo=timezone.utc)
    store.update_subscription_state(user["id"], "sub_1", "past_due", current_period_end=end, cancel_at_period_end=True)

    refreshed = store.get_user(user["id"])
    assert refreshed["subscription"]["status"] == "past_due"
    assert refreshed["subscription"]["current_period_end"].replace(tzinfo=None) == end.replace(tzinfo=None)

    (record,) = store.list_subscription_records(user_id=user["id"])
    assert record["status"] == "past_due"
    assert record["cancel_at_period_end"] is True


def test_update_without_period_keeps_existing_period(store):
    user, _ = store.upsert_user_by_email("a@x.com", "alice", "1001")
    end = datetime(2030, 1, 1, tzinfo=timezone.utc)
    store.activate_subscription(user["id"], "starter", "cus_1", "sub_1", end)
    store.create_subscription_record(user["id"], "starter", "active", "sub_1", current_period_end=end)

    store.update_subscription_state(user["id"], "sub_1", "cancelled")

    refreshed = store.get_user(user["id"])
    assert refreshed["subscription"]["current_period_end"] is not None
    (record,) = store.list_subscription_records(stripe_subscription_id="sub_1")
    assert record["current_period_end"] is not None
    assert record["cancel_at_period_end"] is False


def test_list_users_by_status(store):
    a, _ = store.upsert_user_by_email("a@x.com", "alice", "1")
    b, _ = store.upsert_user_by_email("b@x.com", "bob", "2")
    store.activate_subscription(a["id"], "starter", "cus_a", "sub_a", None)
    store.activate_subscription(b["id"], "enterprise", "cus_b", "sub_b", None)
    store.update_subscription_state(b["id"], "sub_b", "cancelled")

    active = store.list_users_by_status("active")
    assert [u["email"] for u in active] == ["a@x.com"]
    assert [u["email"] for u in store.list_users_with_subscription()] == ["a@x.com", "b@x.com"]


def test_subscription_records_newest_first(store):
    user, _ = store.upsert_user_by_email("a@x.com", "alice", "1")
    first = store.create_subscription_record(user["id"], "starter", "cancelled", "sub_old")
    second = store.create_subscription_record(user["id"], "professional", "active", "sub_new")

    records = store.list_subscription_records(user_id=user["id"])
    assert [r["id"] for r in records] == [second, first]
    assert store.has_subscription_record("sub_old") is True
    assert store.has_subscription_record("sub_other") is False
