"""
Webhook failure channel.

Webhook handlers acknowledge every verified event, so failures inside a
handler never reach Stripe. They are written here instead so reconciliation
tooling and the admin API can find them.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, insert

from tradinggenie.core.database import get_db_session, webhook_failures
from tradinggenie.core.logging import log_event

logger = logging.getLogger("tradinggenie.billing")

HANDLER_ERROR = "handler_error"
NOTIFICATION_FAILED = "notification_failed"
DUPLICATE_DELIVERY = "duplicate_delivery"


class WebhookFailureReporter:
    """Persists handler failures and flagged anomalies to `webhook_failures`."""

    def record(
        self,
        kind: str,
        *,
        event_id: Optional[str],
        event_type: str,
        stripe_subscription_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        log_event(
            "warning",
            "webhook.failure_recorded",
            event_id=event_id,
            event_type=event_type,
            error_code=kind,
            extra={"stripe_subscription_id": stripe_subscription_id, "error": error},
        )
        try:
            with get_db_session() as session:
                session.execute(
                    insert(webhook_failures).values(
                        event_id=event_id,
                        event_type=event_type,
                        stripe_subscription_id=stripe_subscription_id,
                        kind=kind,
                        error=(error or "")[:2000] or None,
                        created_at=datetime.now(timezone.utc),
                    )
                )
                session.commit()
        except Exception:
            # The reporter must not turn an acknowledged webhook into a 500
            logger.exception("webhook.failure_record_failed", extra={"event_id": event_id, "kind": kind})

    def list_recent(self, limit: int = 100) -> List[Dict[str, Any]]:
        with get_db_session() as session:
            rows = session.execute(
                select(webhook_failures)
                .order_by(webhook_failures.c.created_at.desc(), webhook_failures.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [dict(r._mapping) for r in rows]
