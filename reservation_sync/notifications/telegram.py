"""
Best-effort Telegram message for every new reservation.

Never raises: an unconfigured bot or an unreachable API is logged and
reported back with ``needs_configuration`` so the dashboard can show an
admin-only hint. The reservation write never waits on, or depends on,
this call.
"""

import logging
from datetime import datetime
from typing import Optional, Sequence, TypedDict

import httpx

from reservation_sync.config import settings
from reservation_sync.schemas.reservation_schema import Reservation

logger = logging.getLogger(__name__)


class NotificationResult(TypedDict):
    """Outcome of a notification attempt."""

    success: bool
    message: str
    needs_configuration: bool


def format_reservation_message(reservation: Reservation, language: Optional[str] = None) -> str:
    """Build the message text sent to the admin chats."""
    lines = [
        "🎉 New Reservation!",
        "",
        f"👤 Name: {reservation.name}",
        f"📱 Phone: {reservation.phone}",
        f"📅 Date: {reservation.date}",
        f"⏰ Time: {reservation.time_slot}",
    ]
    if language:
        lines.append(f"🌐 Language: {language}")
    created = reservation.created_at or datetime.now()
    lines += [
        "",
        f"Received {created.strftime('%d/%m/%Y %H:%M')}.",
        "This reservation is currently pending confirmation.",
    ]
    return "\n".join(lines)


class TelegramNotifier:
    """Sends reservation messages through the Telegram Bot API."""

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_ids: Optional[Sequence[str]] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        cfg = settings.notifications
        self._token = bot_token if bot_token is not None else cfg.telegram_bot_token
        self._chat_ids = tuple(chat_ids) if chat_ids is not None else cfg.telegram_chat_ids
        self._api_base = (api_base or cfg.telegram_api_base).rstrip("/")
        self._timeout = timeout if timeout is not None else cfg.timeout_sec
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._token) and bool(self._chat_ids)

    async def notify_new_reservation(
        self, reservation: Reservation, language: Optional[str] = None
    ) -> NotificationResult:
        if not self.is_configured:
            logger.info("Telegram notification skipped: bot token or chat ids not configured")
            return {
                "success": False,
                "message": "Telegram is not configured",
                "needs_configuration": True,
            }

        text = format_reservation_message(reservation, language)
        url = f"{self._api_base}/bot{self._token}/sendMessage"
        failures: list[str] = []
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                for chat_id in self._chat_ids:
                    response = await client.post(url, json={"chat_id": chat_id, "text": text})
                    body = _json_or_empty(response)
                    if response.status_code != 200 or not body.get("ok"):
                        description = body.get("description") or f"HTTP {response.status_code}"
                        logger.warning("Telegram rejected message to %s: %s", chat_id, description)
                        failures.append(description)
        except httpx.HTTPError as exc:
            logger.error("Telegram API unreachable: %s", exc)
            return {
                "success": False,
                "message": f"Telegram API unreachable: {exc}",
                "needs_configuration": True,
            }

        if failures:
            return {
                "success": False,
                "message": "; ".join(failures),
                "needs_configuration": False,
            }
        logger.info("Telegram notification sent for reservation %s", reservation.id)
        return {
            "success": True,
            "message": "Telegram notification sent successfully",
            "needs_configuration": False,
        }


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
