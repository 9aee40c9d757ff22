"""
Subscription reconciliation job.

Compares the stored subscription status of every subscriber against Stripe.
Webhook handlers swallow their failures, so this is how drift gets found
(and optionally fixed).

Usage:
    python -m tradinggenie.features.billing.reconcile_job
    python -m tradinggenie.features.billing.reconcile_job --fix --limit 50
"""
from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from tradinggenie.features.billing.provider import BillingProviderError, PaymentGateway
from tradinggenie.features.subscribers.store import SubscriberStore

logger = logging.getLogger("tradinggenie.billing")

# Stored statuses carry either spelling: updated events copy Stripe's,
# the cancellation handler writes the local one
_STATUS_ALIASES = {"canceled": "cancelled"}


def normalize_status(status):
    return _STATUS_ALIASES.get(status, status)


def run_reconcile_job(store: SubscriberStore, gateway: PaymentGateway, fix: bool = False, limit: int = 100) -> Dict[str, Any]:
    started_at = datetime.now(timezone.utc)
    issues = []
    corrections = 0

    subscribers = store.list_users_with_subscription(limit=limit)
    for user in subscribers:
        summary = user["subscription"]
        subscription_id = summary["stripe_subscription_id"]
        try:
            remote = gateway.retrieve_subscription(subscription_id)
        except BillingProviderError as e:
            issues.append({
                "type": "gateway_error",
                "user_id": user["id"],
                "subscription_id": subscription_id,
                "error": str(e),
            })
            continue

        remote_status = normalize_status(remote.status)
        stored_status = normalize_status(summary["status"])
        if remote_status and remote_status != stored_status:
            issues.append({
                "type": "status_drift",
                "user_id": user["id"],
                "subscription_id": subscription_id,
                "stored_status": summary["status"],
                "gateway_status": remote_status,
            })
            if fix:
                store.update_subscription_state(
                    user_id=user["id"],
                    stripe_subscription_id=subscription_id,
                    status=remote_status,
                    current_period_end=remote.current_period_end,
                    cancel_at_period_end=remote.cancel_at_period_end,
                )
                corrections += 1

    logger.info(
        "reconcile.finished",
        extra={"checked": len(subscribers), "issues_found": len(issues), "corrections_applied": corrections},
    )
    return {
        "checked": len(subscribers),
        "issues_found": len(issues),
        "corrections_applied": corrections,
        "issues": issues,
        "timestamp": started_at.isoformat(),
    }


def main() -> None:
    from tradinggenie.core.config import settings
    from tradinggenie.core.database import create_all_tables
    from tradinggenie.core.logging import configure_logging
    from tradinggenie.features.billing.service import build_services

    parser = argparse.ArgumentParser(description="Reconcile stored subscriptions with Stripe")
    parser.add_argument("--fix", action="store_true", help="Rewrite drifted subscriptions")
    parser.add_argument("--limit", type=int, default=100, help="Maximum subscribers to check")
    args = parser.parse_args()

    configure_logging(settings.ENV)
    create_all_tables()
    services = build_services(settings)
    if services.gateway is None:
        print("[reconcile] Billing disabled (STRIPE_SECRET_KEY not set). Exiting.")
        return

    report = run_reconcile_job(services.store, services.gateway, fix=args.fix, limit=args.limit)
    print(json.dumps(report, indent=2, default=str))


if __name__ == "__main__":
    main()
