"""
Admin read models for subscribers.

- Active subscriber listing with a per-plan breakdown
- Subscription history for one user
- Recent webhook failures
"""
from typing import Any, Dict

from tradinggenie.core.errors import NotFoundError
from tradinggenie.features.billing.failures import WebhookFailureReporter
from tradinggenie.features.plans.catalog import PlanCatalog
from tradinggenie.features.subscribers.store import SubscriberStore


def _public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": user["id"],
        "email": user["email"],
        "telegram_username": user["telegram_username"],
        "subscription": user["subscription"],
        "created_at": user["created_at"],
    }


def list_active_subscribers(store: SubscriberStore, catalog: PlanCatalog) -> Dict[str, Any]:
    users = store.list_users_by_status("active")
    breakdown = {tag: 0 for tag in catalog.tags()}
    for user in users:
        plan = user["subscription"]["plan"]
        if plan in breakdown:
            breakdown[plan] += 1
    return {
        "users": [_public_user(u) for u in users],
        "stats": {
            "total_subscribers": len(users),
            "plan_breakdown": breakdown,
        },
    }


def get_subscription_history(store: SubscriberStore, user_id: str) -> Dict[str, Any]:
    user = store.get_user(user_id)
    if not user:
        raise NotFoundError("User not found")
    return {
        "user": user,
        "subscriptions": store.list_subscription_records(user_id=user_id),
    }


def list_webhook_failures(failures: WebhookFailureReporter, limit: int = 100) -> Dict[str, Any]:
    return {"failures": failures.list_recent(limit=limit)}
