"""Telegram bot notifications.

Fire-and-forget delivery: `send_message` never raises to the caller.
"""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from tradinggenie.core.errors import DeliveryFailedError

logger = logging.getLogger("tradinggenie.notifications")

TELEGRAM_TIMEOUT_SECONDS = 10
PRODUCT_NAME = "Trading Genie"


def welcome_message(plan: str, feature_list: str) -> str:
    return (
        f"🎉 Welcome to {PRODUCT_NAME} {plan.upper()} Plan!\n\n"
        "Your subscription is now active. You'll start receiving trading signals immediately.\n\n"
        "📊 Plan Features:\n"
        f"{feature_list}"
    )


def cancellation_message() -> str:
    return (
        f"❌ Your {PRODUCT_NAME} subscription has been cancelled.\n\n"
        "You can resubscribe anytime to continue receiving trading signals."
    )


def payment_failed_message() -> str:
    return (
        "⚠️ Payment Failed\n\n"
        f"Your {PRODUCT_NAME} subscription payment has failed. "
        "Please update your payment method to continue receiving signals."
    )


class TelegramNotifier:
    """Posts messages through the Telegram Bot API sendMessage method."""

    def __init__(
        self,
        bot_token: Optional[str],
        api_base: str = "https://api.telegram.org",
        timeout: float = TELEGRAM_TIMEOUT_SECONDS,
    ):
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    def _endpoint(self) -> str:
        return f"{self.api_base}/bot{self.bot_token}/sendMessage"

    async def _post(self, chat_id: str, text: str) -> None:
        payload = {"chat_id": chat_id, "text": text, "parse_mode": "HTML"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self._endpoint(), json=payload)
        except httpx.HTTPError as exc:
            raise DeliveryFailedError(f"Telegram request failed: {exc.__class__.__name__}") from exc
        if response.status_code < 200 or response.status_code >= 300:
            raise DeliveryFailedError(f"Telegram API error: {response.status_code}")

    async def send_message(self, chat_id: Optional[str], text: str) -> bool:
        """Send `text` to `chat_id`. Returns False on any delivery failure."""
        if not self.bot_token:
            logger.warning("telegram.skipped", extra={"reason": "bot_token_missing"})
            return False
        if not chat_id:
            logger.warning("telegram.skipped", extra={"reason": "chat_id_missing"})
            return False

        try:
            await self._post(str(chat_id), text)
        except DeliveryFailedError as exc:
            # Error text never includes the endpoint URL, which embeds the token
            logger.error("telegram.delivery_failed", extra={"chat_id": chat_id, "error_message": exc.message})
            return False

        logger.info("telegram.sent", extra={"chat_id": chat_id})
        return True
