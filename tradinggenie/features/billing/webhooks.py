"""
Stripe webhook dispatcher.

1. Verify signature (the only failure returned to Stripe)
2. Route on event type to one handler
3. Update the subscriber store
4. Notify the subscriber on Telegram

Handler failures are logged, written to the failure channel and
acknowledged. Stripe treats an acknowledged delivery as final, so nothing
here is retried.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from tradinggenie.core.errors import NotFoundError, SignatureInvalidError
from tradinggenie.core.logging import log_event
from tradinggenie.features.billing.failures import (
    DUPLICATE_DELIVERY,
    HANDLER_ERROR,
    NOTIFICATION_FAILED,
    WebhookFailureReporter,
)
from tradinggenie.features.billing.provider import (
    BillingWebhookError,
    PaymentGateway,
    WebhookEvent,
    invoice_subscription_id,
    subscription_from_object,
)
from tradinggenie.features.notifications.telegram import (
    TelegramNotifier,
    cancellation_message,
    payment_failed_message,
    welcome_message,
)
from tradinggenie.features.plans.catalog import PlanCatalog
from tradinggenie.features.subscribers.store import SubscriberStore

logger = logging.getLogger("tradinggenie.billing")

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
PAYMENT_FAILED = "invoice.payment_failed"


@dataclass
class WebhookOutcome:
    event_id: str
    event_type: str
    handled: bool
    error: Optional[str] = None


class WebhookDispatcher:
    def __init__(
        self,
        gateway: PaymentGateway,
        store: SubscriberStore,
        notifier: TelegramNotifier,
        catalog: PlanCatalog,
        failures: WebhookFailureReporter,
    ):
        self.gateway = gateway
        self.store = store
        self.notifier = notifier
        self.catalog = catalog
        self.failures = failures
        self._handlers: Dict[str, Callable[[WebhookEvent], Awaitable[None]]] = {
            CHECKOUT_COMPLETED: self.handle_checkout_completed,
            SUBSCRIPTION_UPDATED: self.handle_subscription_updated,
            SUBSCRIPTION_DELETED: self.handle_subscription_deleted,
            PAYMENT_FAILED: self.handle_payment_failed,
        }

    async def dispatch(self, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        """
        Verify and process one webhook delivery.

        Raises:
            SignatureInvalidError: signature or payload rejected; no state touched
        """
        try:
            event = self.gateway.construct_event(payload, signature)
        except BillingWebhookError as e:
            logger.warning("webhook.signature_invalid", extra={"error_message": str(e)})
            raise SignatureInvalidError(f"Webhook Error: {e}")

        handler = self._handlers.get(event.event_type)
        if handler is None:
            logger.info("webhook.ignored", extra={"event_id": event.event_id, "event_type": event.event_type})
            return WebhookOutcome(event.event_id, event.event_type, handled=False)

        try:
            await handler(event)
        except Exception as exc:
            logger.exception(
                "webhook.handler_failed",
                extra={"event_id": event.event_id, "event_type": event.event_type},
            )
            await asyncio.to_thread(
                self.failures.record,
                HANDLER_ERROR,
                event_id=event.event_id,
                event_type=event.event_type,
                stripe_subscription_id=_subscription_ref(event),
                error=f"{exc.__class__.__name__}: {exc}",
            )
            return WebhookOutcome(event.event_id, event.event_type, handled=True, error=str(exc))

        return WebhookOutcome(event.event_id, event.event_type, handled=True)

    async def _notify(self, event: WebhookEvent, chat_id: Optional[str], text: str, subscription_id: Optional[str]) -> bool:
        delivered = await self.notifier.send_message(chat_id, text)
        if not delivered:
            await asyncio.to_thread(
                self.failures.record,
                NOTIFICATION_FAILED,
                event_id=event.event_id,
                event_type=event.event_type,
                stripe_subscription_id=subscription_id,
                error=f"telegram delivery to chat {chat_id} failed",
            )
        return delivered

    async def handle_checkout_completed(self, event: WebhookEvent) -> None:
        session = event.data
        metadata = session.get("metadata") or {}
        user_id = metadata.get("user_id")
        plan = metadata.get("plan")
        telegram_username = metadata.get("telegram_username")
        telegram_chat_id = metadata.get("telegram_chat_id")
        subscription_id = session.get("subscription")

        if not user_id or not plan:
            raise ValueError("checkout session metadata missing user_id or plan")
        if not subscription_id:
            raise ValueError("checkout session has no subscription")

        if await asyncio.to_thread(self.store.has_subscription_record, subscription_id):
            # Redelivery is not deduplicated; a second record is still written
            await asyncio.to_thread(
                self.failures.record,
                DUPLICATE_DELIVERY,
                event_id=event.event_id,
                event_type=event.event_type,
                stripe_subscription_id=subscription_id,
                error="subscription record already exists for this subscription id",
            )

        subscription = await asyncio.to_thread(self.gateway.retrieve_subscription, subscription_id)

        activated = await asyncio.to_thread(
            self.store.activate_subscription,
            user_id=user_id,
            plan=plan,
            stripe_customer_id=session.get("customer") or subscription.customer_id,
            stripe_subscription_id=subscription_id,
            current_period_end=subscription.current_period_end,
        )
        if not activated:
            raise NotFoundError(f"User {user_id} not found")

        await asyncio.to_thread(
            self.store.create_subscription_record,
            user_id=user_id,
            plan=plan,
            status="active",
            stripe_subscription_id=subscription_id,
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
        )

        await self._notify(
            event,
            telegram_chat_id,
            welcome_message(plan, self.catalog.feature_list(plan)),
            subscription_id,
        )

        log_event(
            "info",
            "subscription.activated",
            user_id=user_id,
            event_id=event.event_id,
            event_type=event.event_type,
            extra={"plan": plan, "telegram_username": telegram_username},
        )

    async def handle_subscription_updated(self, event: WebhookEvent) -> None:
        subscription = subscription_from_object(event.data)
        user = await asyncio.to_thread(self.store.find_user_by_subscription, subscription.subscription_id)
        if not user:
            logger.info("webhook.unknown_subscription", extra={"event_id": event.event_id, "event_type": event.event_type})
            return
        if not subscription.status:
            raise ValueError("subscription event has no status")

        await asyncio.to_thread(
            self.store.update_subscription_state,
            user_id=user["id"],
            stripe_subscription_id=subscription.subscription_id,
            status=subscription.status,
            current_period_end=subscription.current_period_end,
            cancel_at_period_end=subscription.cancel_at_period_end,
        )
        log_event(
            "info",
            "subscription.updated",
            user_id=user["id"],
            event_id=event.event_id,
            event_type=event.event_type,
            extra={"status": subscription.status},
        )

    async def handle_subscription_deleted(self, event: WebhookEvent) -> None:
        subscription_id = event.data.get("id")
        user = await asyncio.to_thread(self.store.find_user_by_subscription, subscription_id)
        if not user:
            logger.info("webhook.unknown_subscription", extra={"event_id": event.event_id, "event_type": event.event_type})
            return

        await asyncio.to_thread(
            self.store.update_subscription_state,
            user_id=user["id"],
            stripe_subscription_id=subscription_id,
            status="cancelled",
        )
        await self._notify(event, user["telegram_chat_id"], cancellation_message(), subscription_id)
        log_event("info", "subscription.cancelled", user_id=user["id"], event_id=event.event_id, event_type=event.event_type)

    async def handle_payment_failed(self, event: WebhookEvent) -> None:
        subscription_id = invoice_subscription_id(event.data)
        user = await asyncio.to_thread(self.store.find_user_by_subscription, subscription_id)
        if not user:
            logger.info("webhook.unknown_subscription", extra={"event_id": event.event_id, "event_type": event.event_type})
            return

        await self._notify(event, user["telegram_chat_id"], payment_failed_message(), subscription_id)
        log_event("info", "payment.failed_notice", user_id=user["id"], event_id=event.event_id, event_type=event.event_type)


def _subscription_ref(event: WebhookEvent) -> Optional[str]:
    data = event.data or {}
    if event.event_type == CHECKOUT_COMPLETED:
        return data.get("subscription")
    if event.event_type == PAYMENT_FAILED:
        return invoice_subscription_id(data)
    return data.get("id")
