"""Checkout session creation."""
from __future__ import annotations

import asyncio
import logging

from tradinggenie.core.errors import ValidationError
from tradinggenie.core.logging import log_event
from tradinggenie.features.billing.provider import PaymentGateway
from tradinggenie.features.plans.catalog import BILLING_INTERVALS, PlanCatalog
from tradinggenie.features.subscribers.store import SubscriberStore

logger = logging.getLogger("tradinggenie.billing")


class CheckoutService:
    def __init__(
        self,
        gateway: PaymentGateway,
        store: SubscriberStore,
        catalog: PlanCatalog,
        frontend_url: str,
        trial_days: int = 0,
    ):
        self.gateway = gateway
        self.store = store
        self.catalog = catalog
        self.frontend_url = frontend_url.rstrip("/")
        self.trial_days = trial_days

    async def create_session(
        self,
        plan: str,
        email: str,
        telegram_username: str,
        telegram_chat_id: str,
        interval: str = "monthly",
    ) -> str:
        """
        Start a Stripe checkout for `plan` and return the session id.

        The plan is validated before the user is touched, so an unknown plan
        never creates a user.

        Raises:
            UnknownPlanError: plan tag not in the catalog
            ValidationError: no price configured for the interval
            BillingProviderError: Stripe rejected the session
        """
        plan_cfg = self.catalog.get(plan)
        if interval not in BILLING_INTERVALS:
            raise ValidationError(f"Invalid billing interval: {interval}")
        price_id = plan_cfg.price_id_for(interval)
        if not price_id:
            raise ValidationError(f"No {interval} price configured for plan: {plan}")

        user, created = await asyncio.to_thread(
            self.store.upsert_user_by_email, email, telegram_username, telegram_chat_id
        )

        session_id = await asyncio.to_thread(
            self.gateway.create_checkout_session,
            price_id=price_id,
            customer_email=user["email"],
            success_url=f"{self.frontend_url}/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{self.frontend_url}/pricing",
            metadata={
                "user_id": user["id"],
                "plan": plan,
                "telegram_username": telegram_username,
                "telegram_chat_id": telegram_chat_id,
            },
            trial_days=self.trial_days,
        )

        log_event(
            "info",
            "checkout.session_created",
            user_id=user["id"],
            extra={"plan": plan, "interval": interval, "new_user": created},
        )
        return session_id
