"""
Stripe payment gateway implementation.

Implements the PaymentGateway protocol using the Stripe API.
Handles webhook signature verification and event decoding.
"""
import json
from typing import Dict, Any, Optional

import stripe

from tradinggenie.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    GatewaySubscription,
    WebhookEvent,
    subscription_from_object,
)


class StripeGateway:
    """Stripe implementation of PaymentGateway protocol."""

    def __init__(self, secret_key: str, webhook_secret: Optional[str] = None):
        """
        Initialize Stripe gateway.

        Args:
            secret_key: Stripe secret key
            webhook_secret: Stripe webhook signing secret
        """
        if not secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        stripe.api_key = secret_key

    def create_checkout_session(
        self,
        price_id: str,
        customer_email: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
        trial_days: int = 0,
    ) -> str:
        """Create Stripe checkout session."""
        params: Dict[str, Any] = {
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": "subscription",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer_email": customer_email,
            "metadata": metadata or {},
        }
        if trial_days > 0:
            params["subscription_data"] = {"trial_period_days": trial_days}
        try:
            session = stripe.checkout.Session.create(**params)
            return session.id
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}")

    def retrieve_subscription(self, subscription_id: str) -> GatewaySubscription:
        """Retrieve a Stripe subscription."""
        if not subscription_id:
            raise BillingProviderError("Missing subscription id")
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription retrieval failed: {e}")
        return subscription_from_object(subscription)

    def construct_event(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        """Verify Stripe webhook signature and decode the event."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")
        if not signature:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
            )
            event = json.loads(body)
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}")

        if not isinstance(event, dict) or "type" not in event:
            raise BillingWebhookError("Invalid payload: missing event type")

        return WebhookEvent(
            event_id=event.get("id", ""),
            event_type=event["type"],
            data=(event.get("data") or {}).get("object") or {},
        )
