"""
Billing API routes.

- POST /api/create-checkout-session: Create Stripe checkout session
- POST /api/webhook: Handle Stripe webhooks
- GET  /api/plans: Plan catalog for the pricing page
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, ConfigDict, Field

from tradinggenie.core.errors import AppError
from tradinggenie.features.billing.provider import BillingProviderError
from tradinggenie.features.billing.service import BillingServices, get_billing_services

logger = logging.getLogger("tradinggenie.billing")

router = APIRouter(tags=["billing"])


class CheckoutRequest(BaseModel):
    """Request to create checkout session."""
    model_config = ConfigDict(populate_by_name=True)

    plan: str
    email: str = Field(..., min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    telegram_username: str = Field(..., alias="telegramUsername", min_length=1, max_length=100)
    telegram_chat_id: str = Field(..., alias="telegramChatId", min_length=1, max_length=100)
    interval: str = "monthly"


class CheckoutResponse(BaseModel):
    """Response with checkout session id."""
    sessionId: str


class WebhookAck(BaseModel):
    received: bool


class PlanView(BaseModel):
    tag: str
    name: str
    monthly_price: int
    yearly_price: int
    features: List[str]
    popular: bool
    yearly_available: bool


class PlansResponse(BaseModel):
    plans: List[PlanView]


@router.post("/create-checkout-session", response_model=CheckoutResponse)
async def create_checkout_session(
    body: CheckoutRequest,
    services: BillingServices = Depends(get_billing_services),
):
    """
    Create Stripe checkout session.

    Returns:
        {"sessionId": "cs_..."}

    Errors:
        400: Unknown plan or interval
        503: Billing disabled (STRIPE_SECRET_KEY not set)
        500: Stripe API error
    """
    checkout = services.require_checkout()
    try:
        session_id = await checkout.create_session(
            plan=body.plan,
            email=body.email,
            telegram_username=body.telegram_username,
            telegram_chat_id=body.telegram_chat_id,
            interval=body.interval,
        )
    except BillingProviderError:
        logger.exception("checkout.session_failed", extra={"plan": body.plan})
        raise AppError("Failed to create checkout session", code="checkout_failed", status_code=500)
    return {"sessionId": session_id}


@router.post("/webhook", response_model=WebhookAck)
async def handle_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    services: BillingServices = Depends(get_billing_services),
):
    """
    Handle Stripe webhook events.

    Signature verification uses STRIPE_WEBHOOK_SECRET. Every verified event
    is acknowledged, including ones whose handler failed.

    Errors:
        400: Invalid signature or payload
        503: Billing disabled
    """
    dispatcher = services.require_dispatcher()

    # Raw body is required for signature verification
    body = await request.body()
    await dispatcher.dispatch(body, stripe_signature)
    return {"received": True}


@router.get("/plans", response_model=PlansResponse)
def list_plans(services: BillingServices = Depends(get_billing_services)):
    return {
        "plans": [
            PlanView(
                tag=p.tag,
                name=p.name,
                monthly_price=p.monthly_price,
                yearly_price=p.yearly_price,
                features=list(p.features),
                popular=p.popular,
                yearly_available=bool(p.yearly_price_id),
            )
            for p in services.catalog
        ]
    }
