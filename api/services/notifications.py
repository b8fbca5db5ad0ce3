"""
Notification Service — Send subscription messages to customers via Telegram Bot API.

Failures are logged but NEVER raise — fire-and-forget. Workflows queue
messages while their transaction is open and flush after commit, so a
rolled-back step sends nothing and a failed send never undoes a step.
"""

import logging
from collections.abc import Awaitable, Callable

import httpx

from config import settings

logger = logging.getLogger(__name__)

Notifier = Callable[[int | None, str], Awaitable[bool]]


# ── Templates ──────────────────────────────────────────────

MSG_PAUSED_LOW_BALANCE = (
    "⏸️ Your subscription has been paused because your wallet balance is too low. "
    "Please top up your wallet to resume."
)
MSG_PAUSED_OUT_OF_STOCK = (
    "⏸️ Your subscription has been paused because the product is out of stock."
)
MSG_PAUSED_NEXT_CYCLE_FUNDS = (
    "⚠️ Not enough wallet balance for your next subscription payment. "
    "Please top up your wallet."
)
MSG_DELIVERY_SCHEDULED_WALLET = "📅 Your subscription delivery is scheduled for {date}."
MSG_DELIVERY_SCHEDULED_COD = (
    "📅 Your subscription delivery is scheduled for {date}. "
    "Please pay on receipt (Cash on Delivery)."
)
MSG_RENEWED = "✅ Your subscription has been renewed successfully."
MSG_SUBSCRIBED = "🎉 You are subscribed to {plan}. First renewal on {date}."
MSG_ACTION_CONFIRMED = {
    "PAUSED": "⏸️ Your subscription has been paused.",
    "CANCELLED": "❌ Your subscription has been cancelled.",
    "ACTIVE": "▶️ Your subscription has been resumed.",
}


def _clean(message: str) -> str:
    return " ".join(message.split())


async def send_telegram_message(chat_id: int, text: str, parse_mode: str = "HTML") -> bool:
    """Send a message to a Telegram user."""
    token = settings.TELEGRAM_BOT_TOKEN
    if not token:
        logger.warning("TELEGRAM_BOT_TOKEN not configured — dropping notification for %s", chat_id)
        return False

    url = f"https://api.telegram.org/bot{token}/sendMessage"
    async with httpx.AsyncClient(timeout=10.0) as client:
        resp = await client.post(url, json={
            "chat_id": chat_id,
            "text": text,
            "parse_mode": parse_mode,
        })
    if resp.status_code != 200:
        logger.warning(
            "Notification failed: chat_id=%s, status=%s, body=%s",
            chat_id, resp.status_code, resp.text[:200],
        )
        return False
    return True


async def notify_customer(telegram_id: int | None, message: str) -> bool:
    """Fire-and-forget customer notification."""
    if telegram_id is None:
        logger.info("Customer has no Telegram ID, skipping notification: %s", message[:80])
        return False
    try:
        return await send_telegram_message(telegram_id, _clean(message))
    except Exception as e:
        logger.error("Notification error: telegram_id=%s, error=%s", telegram_id, e)
        return False


class NotificationQueue:
    """Messages held back until the surrounding transaction commits."""

    def __init__(self, notify: Notifier | None = None):
        self._notify = notify or notify_customer
        self._pending: list[tuple[int | None, str]] = []

    def add(self, telegram_id: int | None, message: str) -> None:
        self._pending.append((telegram_id, _clean(message)))

    async def flush(self) -> int:
        """Send everything queued; returns how many sends succeeded."""
        pending, self._pending = self._pending, []
        sent = 0
        for telegram_id, message in pending:
            try:
                if await self._notify(telegram_id, message):
                    sent += 1
            except Exception as e:
                logger.error("Notification error: telegram_id=%s, error=%s", telegram_id, e)
        return sent
