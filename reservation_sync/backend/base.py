"""
Contracts consumed from the hosted database / realtime service.

The sync core only depends on these protocols. ``backend.memory`` gives
an in-process implementation for tests and the console demo;
``backend.rest`` talks to the hosted REST surface over HTTP.
"""

from typing import Any, Callable, Optional, Protocol

from reservation_sync.schemas.feed_schema import ChannelStatus

Row = dict[str, Any]
PayloadCallback = Callable[[Any], None]
StatusCallback = Callable[[ChannelStatus], None]


class BackendError(Exception):
    """A remote call failed (rejected, timed out, or unreachable)."""


class AuthenticationError(BackendError):
    """The remote system refused the session's credentials."""


class ReservationBackend(Protocol):
    """Remote reservations collection."""

    async def fetch_all(self) -> list[Row]:
        """All rows, ordered by creation time descending."""
        ...

    async def fetch_one(self, reservation_id: str) -> Optional[Row]:
        """A single row, or None when it no longer exists."""
        ...

    async def update(self, reservation_id: str, fields: Row) -> None:
        """Partial update keyed by id."""
        ...

    async def create(self, fields: Row) -> Row:
        """Insert a row and return it with its assigned id and created_at."""
        ...


class FeedSubscription(Protocol):
    async def close(self) -> None:
        ...


class ChangeFeed(Protocol):
    """Push channel of insert/update/delete events on the reservations table."""

    async def subscribe(
        self, on_payload: PayloadCallback, on_status: StatusCallback
    ) -> FeedSubscription:
        """Open a channel. Status changes arrive through ``on_status``."""
        ...
