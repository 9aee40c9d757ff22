"""
Health endpoints.

Lightweight checks for operational monitoring; no secrets are exposed.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from tradinggenie.core.config import settings
from tradinggenie.core.database import check_connection

logger = logging.getLogger("tradinggenie")

router = APIRouter(tags=["health"])
root_router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.APP_VERSION,
    }


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: database connectivity."""
    if not check_connection():
        logger.error("[readyz] database unreachable")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})
    return {"status": "ok"}
