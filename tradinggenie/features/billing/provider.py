"""
Payment gateway protocol.

Defines the interface the checkout service and webhook dispatcher use to
talk to the payment provider (Stripe). Keeps Stripe SDK types out of the
business logic.
"""
from typing import Protocol, Dict, Any, Optional, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass
class WebhookEvent:
    """A verified webhook event envelope."""
    event_id: str
    event_type: str
    data: Dict[str, Any] = field(default_factory=dict)  # event.data.object


@dataclass
class GatewaySubscription:
    """The parts of a provider subscription this service stores."""
    subscription_id: str
    customer_id: Optional[str]
    status: Optional[str]
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool = False


def from_timestamp(value: Any) -> Optional[datetime]:
    """Unix seconds to an aware UTC datetime."""
    if value is None or value == "":
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _field(obj: Any, key: str) -> Any:
    try:
        return obj[key]
    except (KeyError, TypeError, IndexError):
        return None


def period_bounds(subscription: Mapping[str, Any]) -> tuple:
    """
    Return (current_period_start, current_period_end) as unix seconds.

    Newer Stripe API versions carry the period on subscription items rather
    than on the subscription itself.
    """
    start = _field(subscription, "current_period_start")
    end = _field(subscription, "current_period_end")
    if start is None or end is None:
        first_item = _field(_field(_field(subscription, "items"), "data"), 0)
        if first_item is not None:
            start = start if start is not None else _field(first_item, "current_period_start")
            end = end if end is not None else _field(first_item, "current_period_end")
    return start, end


def subscription_from_object(obj: Mapping[str, Any]) -> GatewaySubscription:
    start, end = period_bounds(obj)
    return GatewaySubscription(
        subscription_id=_field(obj, "id"),
        customer_id=_field(obj, "customer"),
        status=_field(obj, "status"),
        current_period_start=from_timestamp(start),
        current_period_end=from_timestamp(end),
        cancel_at_period_end=bool(_field(obj, "cancel_at_period_end")),
    )


def invoice_subscription_id(invoice: Mapping[str, Any]) -> Optional[str]:
    """Subscription referenced by an invoice, across Stripe API versions."""
    sub = _field(invoice, "subscription")
    if sub:
        return sub if isinstance(sub, str) else _field(sub, "id")
    details = _field(_field(invoice, "parent"), "subscription_details")
    return _field(details, "subscription")


class PaymentGateway(Protocol):
    """
    Protocol for payment gateways.

    Implementations must handle:
    - Checkout session creation
    - Subscription retrieval
    - Webhook signature verification and decoding
    """

    def create_checkout_session(
        self,
        price_id: str,
        customer_email: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
        trial_days: int = 0,
    ) -> str:
        """
        Create a subscription-mode checkout session.

        Returns:
            Checkout session id

        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def retrieve_subscription(self, subscription_id: str) -> GatewaySubscription:
        """
        Fetch the authoritative subscription object.

        Raises:
            BillingProviderError: If retrieval fails
        """
        ...

    def construct_event(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        """
        Verify webhook signature and decode the event envelope.

        Raises:
            BillingWebhookError: If signature invalid or payload undecodable
        """
        ...


class BillingProviderError(Exception):
    """Base exception for payment gateway errors."""
    pass


class BillingWebhookError(BillingProviderError):
    """Exception for webhook verification errors."""
    pass
