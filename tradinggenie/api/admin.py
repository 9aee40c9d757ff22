"""
Admin routes.
Requires X-Admin-Key header when ADMIN_KEY is configured.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from tradinggenie.core.admin_auth import AdminActor, require_admin
from tradinggenie.features.billing import admin_service
from tradinggenie.features.billing.reconcile_job import run_reconcile_job
from tradinggenie.features.billing.service import BillingServices, get_billing_services

logger = logging.getLogger("tradinggenie.admin")

router = APIRouter(prefix="/admin", tags=["admin"])


# ============================================================================
# Pydantic Models
# ============================================================================

class SubscriptionSummary(BaseModel):
    plan: Optional[str] = None
    status: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
    created_at: Optional[datetime] = None


class SubscriberItem(BaseModel):
    id: str
    email: str
    telegram_username: str
    subscription: SubscriptionSummary
    created_at: Optional[datetime] = None


class SubscriberStats(BaseModel):
    total_subscribers: int
    plan_breakdown: Dict[str, int]


class SubscribersResponse(BaseModel):
    users: List[SubscriberItem]
    stats: SubscriberStats


class UserDetail(SubscriberItem):
    telegram_chat_id: str


class SubscriptionRecordItem(BaseModel):
    id: int
    user_id: str
    plan: str
    status: str
    stripe_subscription_id: str
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool
    created_at: Optional[datetime] = None


class SubscriptionHistoryResponse(BaseModel):
    user: UserDetail
    subscriptions: List[SubscriptionRecordItem]


class WebhookFailureItem(BaseModel):
    id: int
    event_id: Optional[str] = None
    event_type: str
    stripe_subscription_id: Optional[str] = None
    kind: str
    error: Optional[str] = None
    created_at: Optional[datetime] = None


class WebhookFailuresResponse(BaseModel):
    failures: List[WebhookFailureItem]


# ============================================================================
# Endpoints
# ============================================================================

@router.get("/subscribers", response_model=SubscribersResponse)
def list_subscribers(
    actor: AdminActor = Depends(require_admin),
    services: BillingServices = Depends(get_billing_services),
):
    """Active subscribers, newest first, with a per-plan breakdown."""
    return admin_service.list_active_subscribers(services.store, services.catalog)


@router.get("/subscription/{user_id}", response_model=SubscriptionHistoryResponse)
def get_user_subscription(
    user_id: str,
    actor: AdminActor = Depends(require_admin),
    services: BillingServices = Depends(get_billing_services),
):
    """One user's summary and subscription records. 404 for unknown users."""
    return admin_service.get_subscription_history(services.store, user_id)


@router.get("/webhook-failures", response_model=WebhookFailuresResponse)
def list_webhook_failures(
    limit: int = Query(100, ge=1, le=500),
    actor: AdminActor = Depends(require_admin),
    services: BillingServices = Depends(get_billing_services),
):
    return admin_service.list_webhook_failures(services.failures, limit=limit)


@router.post("/reconcile")
def reconcile(
    fix: bool = Query(False),
    limit: int = Query(100, ge=1, le=1000),
    actor: AdminActor = Depends(require_admin),
    services: BillingServices = Depends(get_billing_services),
) -> Dict[str, Any]:
    """Compare stored subscription status with Stripe; `fix=true` rewrites drift."""
    gateway = services.require_gateway()
    logger.info("admin.reconcile", extra={"actor": actor.actor_id, "fix": fix})
    return run_reconcile_job(services.store, gateway, fix=fix, limit=limit)
