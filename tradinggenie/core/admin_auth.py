"""
Admin authentication.

Admin routes accept a shared secret in the X-Admin-Key header. When
ADMIN_KEY is not configured the routes are open (a warning is logged at
startup by validate_config).
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from tradinggenie.core.config import settings
from tradinggenie.core.errors import PermissionError

logger = logging.getLogger("tradinggenie.admin")


@dataclass
class AdminActor:
    """Represents an authenticated admin caller."""
    actor_id: str  # "admin_key:<hash>" or "anonymous"
    auth_mechanism: str = "x_admin_key"


def get_admin_key() -> Optional[str]:
    return settings.ADMIN_KEY


def require_admin(request: Request) -> AdminActor:
    """FastAPI dependency guarding admin routes."""
    expected_key = get_admin_key()
    if not expected_key:
        return AdminActor(actor_id="anonymous", auth_mechanism="none")

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or not hmac.compare_digest(header_key, expected_key):
        logger.warning("admin.auth_failed", extra={"path": request.url.path})
        raise PermissionError("Invalid or missing X-Admin-Key header")

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(actor_id=f"admin_key:{key_hash}")
