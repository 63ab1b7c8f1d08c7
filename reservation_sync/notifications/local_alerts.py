"""Local (desktop/browser) alerts for new reservations, gated on permission.

Only admins get alerts, and only once the host has granted permission.
Nothing in the sync core depends on an alert being shown.
"""

import logging
from enum import Enum
from typing import Protocol

from reservation_sync.schemas.reservation_schema import Reservation
from reservation_sync.session import SessionContext

logger = logging.getLogger(__name__)


class NotificationPermission(str, Enum):
    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"


class AlertHost(Protocol):
    """Host environment capable of showing local alerts."""

    def permission(self) -> str:
        ...

    async def request_permission(self) -> str:
        ...

    def show(self, title: str, body: str) -> None:
        ...


class LocalAlertGate:
    """Shows a local alert for new reservations when allowed to."""

    def __init__(self, host: AlertHost, session: SessionContext) -> None:
        self._host = host
        self._session = session

    def permission(self) -> NotificationPermission:
        try:
            return NotificationPermission(self._host.permission())
        except ValueError:
            logger.warning("Host reported unknown alert permission %r", self._host.permission())
            return NotificationPermission.DENIED

    async def ensure_permission(self) -> NotificationPermission:
        """Ask the host for permission if an admin has not decided yet."""
        current = self.permission()
        if not self._session.is_admin or current != NotificationPermission.DEFAULT:
            return current
        try:
            granted = NotificationPermission(await self._host.request_permission())
        except ValueError:
            logger.warning("Host returned an unknown permission value")
            return NotificationPermission.DENIED
        logger.info("Local alert permission: %s", granted.value)
        return granted

    def alert_new_reservation(self, reservation: Reservation) -> bool:
        if not self._session.is_admin:
            logger.debug("Local alerts are only shown to admins")
            return False
        if self.permission() != NotificationPermission.GRANTED:
            logger.debug("Local alert permission not granted")
            return False
        try:
            self._host.show(
                "New Reservation!",
                f"{reservation.name} has booked for {reservation.date} at {reservation.time_slot}",
            )
        except Exception:
            logger.exception("Error showing local alert")
            return False
        return True
