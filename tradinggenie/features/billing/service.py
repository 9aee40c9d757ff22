"""
Billing service container.

Builds the gateway, store, notifier and the two orchestrators once at
startup. Stripe is optional: without STRIPE_SECRET_KEY the checkout service
and webhook dispatcher are absent and their endpoints answer 503.
"""
from dataclasses import dataclass
from typing import Optional

from starlette.requests import Request

from tradinggenie.core.config import Settings
from tradinggenie.core.errors import BillingDisabledError
from tradinggenie.features.billing.checkout import CheckoutService
from tradinggenie.features.billing.failures import WebhookFailureReporter
from tradinggenie.features.billing.provider import PaymentGateway
from tradinggenie.features.billing.stripe_provider import StripeGateway
from tradinggenie.features.billing.webhooks import WebhookDispatcher
from tradinggenie.features.notifications.telegram import TelegramNotifier
from tradinggenie.features.plans.catalog import PlanCatalog, build_plan_catalog
from tradinggenie.features.subscribers.store import SubscriberStore


def billing_enabled(cfg: Settings) -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(cfg.STRIPE_SECRET_KEY)


@dataclass
class BillingServices:
    catalog: PlanCatalog
    store: SubscriberStore
    notifier: TelegramNotifier
    failures: WebhookFailureReporter
    gateway: Optional[PaymentGateway] = None
    checkout: Optional[CheckoutService] = None
    dispatcher: Optional[WebhookDispatcher] = None

    def require_checkout(self) -> CheckoutService:
        if self.checkout is None:
            raise BillingDisabledError("Stripe is not configured. Set STRIPE_SECRET_KEY environment variable.")
        return self.checkout

    def require_dispatcher(self) -> WebhookDispatcher:
        if self.dispatcher is None:
            raise BillingDisabledError("Stripe is not configured. Set STRIPE_SECRET_KEY environment variable.")
        return self.dispatcher

    def require_gateway(self) -> PaymentGateway:
        if self.gateway is None:
            raise BillingDisabledError("Stripe is not configured. Set STRIPE_SECRET_KEY environment variable.")
        return self.gateway


def wire_services(
    cfg: Settings,
    gateway: Optional[PaymentGateway],
    notifier: Optional[TelegramNotifier] = None,
    store: Optional[SubscriberStore] = None,
) -> BillingServices:
    """Assemble services around an already-built gateway (tests pass fakes here)."""
    catalog = build_plan_catalog(cfg)
    store = store or SubscriberStore()
    notifier = notifier or TelegramNotifier(cfg.TELEGRAM_BOT_TOKEN, api_base=cfg.TELEGRAM_API_BASE)
    failures = WebhookFailureReporter()
    services = BillingServices(catalog=catalog, store=store, notifier=notifier, failures=failures, gateway=gateway)
    if gateway is not None:
        services.checkout = CheckoutService(
            gateway=gateway,
            store=store,
            catalog=catalog,
            frontend_url=cfg.FRONTEND_URL,
            trial_days=cfg.TRIAL_DAYS,
        )
        services.dispatcher = WebhookDispatcher(
            gateway=gateway,
            store=store,
            notifier=notifier,
            catalog=catalog,
            failures=failures,
        )
    return services


def build_services(cfg: Settings) -> BillingServices:
    gateway = None
    if billing_enabled(cfg):
        gateway = StripeGateway(cfg.STRIPE_SECRET_KEY, cfg.STRIPE_WEBHOOK_SECRET)
    return wire_services(cfg, gateway)


def get_billing_services(request: Request) -> BillingServices:
    """FastAPI dependency: the container built in the app lifespan."""
    return request.app.state.billing
