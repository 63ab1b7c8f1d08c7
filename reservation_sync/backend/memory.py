"""
In-process reservations backend and change feed.

Stands in for the hosted database and its realtime channel in tests and
the console demo. Writes publish the same INSERT/UPDATE/DELETE payloads
the hosted service would, and a few knobs inject the failures the sync
core has to survive: rejected writes, stale reads from a lagging replica,
and expired sessions.
"""

import asyncio
import copy
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from reservation_sync.backend.base import (
    AuthenticationError,
    BackendError,
    PayloadCallback,
    Row,
    StatusCallback,
)
from reservation_sync.schemas.feed_schema import ChannelStatus

logger = logging.getLogger(__name__)


class InMemorySubscription:
    """One open channel on an InMemoryChangeFeed."""

    def __init__(
        self, feed: "InMemoryChangeFeed", on_payload: PayloadCallback, on_status: StatusCallback
    ) -> None:
        self._feed = feed
        self.on_payload = on_payload
        self.on_status = on_status
        self.closed = False

    async def close(self) -> None:
        await asyncio.sleep(0)
        if not self.closed:
            self.closed = True
            self._feed._detach(self)


class InMemoryChangeFeed:
    """Push channel that fans payloads out to every open subscription.

    With ``auto_ack`` the channel reports SUBSCRIBED as soon as it opens;
    without it, tests drive the status explicitly via ``emit_status``.
    """

    def __init__(self, auto_ack: bool = True) -> None:
        self.auto_ack = auto_ack
        self.fail_next_subscribe = False
        self.subscribe_count = 0
        self._subscriptions: list[InMemorySubscription] = []

    async def subscribe(
        self, on_payload: PayloadCallback, on_status: StatusCallback
    ) -> InMemorySubscription:
        await asyncio.sleep(0)
        if self.fail_next_subscribe:
            self.fail_next_subscribe = False
            raise BackendError("Realtime service unreachable")
        subscription = InMemorySubscription(self, on_payload, on_status)
        self._subscriptions.append(subscription)
        self.subscribe_count += 1
        if self.auto_ack:
            on_status(ChannelStatus.SUBSCRIBED)
        return subscription

    @property
    def active_subscriptions(self) -> list[InMemorySubscription]:
        return list(self._subscriptions)

    def publish(self, payload: Any) -> None:
        for subscription in list(self._subscriptions):
            subscription.on_payload(payload)

    def emit_status(self, status: ChannelStatus) -> None:
        for subscription in list(self._subscriptions):
            subscription.on_status(status)

    def _detach(self, subscription: InMemorySubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)


class InMemoryBackend:
    """Reservations table held in a dict, ordered newest-created first on fetch."""

    def __init__(self, feed: Optional[InMemoryChangeFeed] = None) -> None:
        self.feed = feed
        self._rows: dict[str, Row] = {}
        self._previous: dict[str, Row] = {}
        self._clock = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)
        self.fail_writes = 0
        self.fail_reads = 0
        self.stale_reads = 0
        self.session_expired = False
        self.calls: list[tuple[str, str, Row]] = []

    # --- seeding / inspection ---

    def seed(self, row: Row) -> Row:
        """Insert a row directly, without publishing a change event."""
        stored = self._complete(row)
        self._rows[stored["id"]] = stored
        return copy.deepcopy(stored)

    def row(self, reservation_id: str) -> Optional[Row]:
        stored = self._rows.get(reservation_id)
        return copy.deepcopy(stored) if stored is not None else None

    def write_count(self, reservation_id: Optional[str] = None) -> int:
        return sum(
            1 for op, rid, _ in self.calls
            if op == "update" and (reservation_id is None or rid == reservation_id)
        )

    # --- ReservationBackend ---

    async def fetch_all(self) -> list[Row]:
        await asyncio.sleep(0)
        self._check_session()
        self._maybe_fail_read()
        self.calls.append(("fetch_all", "", {}))
        rows = sorted(self._rows.values(), key=lambda r: r["created_at"], reverse=True)
        return copy.deepcopy(rows)

    async def fetch_one(self, reservation_id: str) -> Optional[Row]:
        await asyncio.sleep(0)
        self._check_session()
        self._maybe_fail_read()
        self.calls.append(("fetch_one", reservation_id, {}))
        if self.stale_reads > 0 and reservation_id in self._previous:
            self.stale_reads -= 1
            logger.debug("Serving stale read for %s", reservation_id)
            return copy.deepcopy(self._previous[reservation_id])
        return self.row(reservation_id)

    async def update(self, reservation_id: str, fields: Row) -> None:
        await asyncio.sleep(0)
        self._check_session()
        self.calls.append(("update", reservation_id, dict(fields)))
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise BackendError(f"Write to {reservation_id} rejected")
        stored = self._rows.get(reservation_id)
        if stored is None:
            raise BackendError(f"Reservation {reservation_id} not found")
        old = copy.deepcopy(stored)
        self._previous[reservation_id] = old
        stored.update(fields)
        self._publish("UPDATE", new=stored, old=old)

    async def create(self, fields: Row) -> Row:
        await asyncio.sleep(0)
        self.calls.append(("create", "", dict(fields)))
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise BackendError("Insert rejected")
        stored = self._complete(fields)
        self._rows[stored["id"]] = stored
        self._publish("INSERT", new=stored, old={})
        return copy.deepcopy(stored)

    # --- simulated external changes ---

    async def delete(self, reservation_id: str) -> None:
        await asyncio.sleep(0)
        stored = self._rows.pop(reservation_id, None)
        if stored is not None:
            self._publish("DELETE", new={}, old={"id": reservation_id})

    def _complete(self, row: Row) -> Row:
        stored = dict(row)
        stored["id"] = str(stored.get("id") or uuid.uuid4().hex[:8])
        if not stored.get("created_at"):
            self._clock += timedelta(minutes=1)
            stored["created_at"] = self._clock.isoformat()
        stored.setdefault("status", "Pending")
        return stored

    def _publish(self, event_type: str, new: Row, old: Row) -> None:
        if self.feed is not None:
            self.feed.publish(
                {"eventType": event_type, "new": copy.deepcopy(new), "old": copy.deepcopy(old)}
            )

    def _check_session(self) -> None:
        if self.session_expired:
            raise AuthenticationError("JWT expired")

    def _maybe_fail_read(self) -> None:
        if self.fail_reads > 0:
            self.fail_reads -= 1
            raise BackendError("Read timed out")
