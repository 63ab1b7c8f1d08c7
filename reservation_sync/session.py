"""Staff session context.

Passed explicitly to everything that needs to know whether a staff
member is signed in (the dashboard, the REST backend, local alerts),
with one place that starts it at login and ends it at logout or when
the remote system rejects the token.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from reservation_sync.config import settings

logger = logging.getLogger(__name__)

LOGIN_PATH = "/admin"

Clock = Callable[[], datetime]


class SessionExpiredError(Exception):
    """Raised when an operation requires a session that is absent or expired."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionContext:
    """Authentication state for one staff member."""

    def __init__(self, ttl: Optional[timedelta] = None, clock: Clock = _utcnow) -> None:
        self._ttl = ttl if ttl is not None else timedelta(hours=settings.session.ttl_hours)
        self._clock = clock
        self._access_token: Optional[str] = None
        self._is_admin = False
        self._expires_at: Optional[datetime] = None

    def begin(self, access_token: str, is_admin: bool = True, ttl: Optional[timedelta] = None) -> None:
        """Start a session after a successful login."""
        if not access_token:
            raise ValueError("access_token must not be empty")
        self._access_token = access_token
        self._is_admin = is_admin
        self._expires_at = self._clock() + (ttl if ttl is not None else self._ttl)
        logger.info("Staff session started (admin=%s)", is_admin)

    def extend(self) -> None:
        """Push the expiry out by another full TTL."""
        if self._access_token is not None:
            self._expires_at = self._clock() + self._ttl

    def end(self) -> None:
        """Clear the session. Safe to call when already ended."""
        if self._access_token is not None:
            logger.info("Staff session ended")
        self._access_token = None
        self._is_admin = False
        self._expires_at = None

    @property
    def is_authenticated(self) -> bool:
        return (
            self._access_token is not None
            and self._expires_at is not None
            and self._clock() < self._expires_at
        )

    @property
    def is_admin(self) -> bool:
        return self._is_admin and self.is_authenticated

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token if self.is_authenticated else None

    @property
    def expires_at(self) -> Optional[datetime]:
        return self._expires_at

    def require(self) -> str:
        """Return the access token or raise SessionExpiredError."""
        token = self.access_token
        if token is None:
            raise SessionExpiredError("Staff session is missing or expired")
        return token
