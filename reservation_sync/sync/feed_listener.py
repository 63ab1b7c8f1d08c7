"""
Change feed listener that keeps the reservation store in step with the
remote table.

Maintains at most one live subscription. Every payload goes through a
single typed ``dispatch`` and ends up as a store upsert or remove;
malformed payloads are logged and dropped without touching the
subscription. Connection handling:

- no acknowledgment within the ack timeout -> disconnected, warning, no retry
- CHANNEL_ERROR once the listener has connected -> one reconnect after a
  fixed delay, repeated for as long as the listener runs
- stop() invalidates all callbacks of the current subscription before
  anything is awaited, then cancels timers and closes the channel

Usage:
    listener = ChangeFeedListener(store, feed, notices, mutator=mutator)
    handle = await listener.start()
    ...
    await handle.stop()
"""

import asyncio
from collections import deque
from functools import partial
from typing import Any, Callable, Optional

from reservation_sync.backend.base import BackendError, ChangeFeed, FeedSubscription
from reservation_sync.config import settings
from reservation_sync.logging_context import get_sync_logger
from reservation_sync.notifications.notices import NoticeBoard
from reservation_sync.schemas.feed_schema import (
    ChangeEvent,
    ChangeEventType,
    ChannelStatus,
    ConnectionState,
)
from reservation_sync.schemas.reservation_schema import Reservation, ReservationDataError
from reservation_sync.sync.status_mutator import StatusMutator
from reservation_sync.sync.store import ReservationStore

logger = get_sync_logger(__name__)

NewReservationHook = Callable[[Reservation], None]

STATE_TRACE_LIMIT = 200


class ListenerHandle:
    """Returned by ``ChangeFeedListener.start``; the only way to stop listening."""

    def __init__(self, listener: "ChangeFeedListener") -> None:
        self._listener = listener

    @property
    def state(self) -> ConnectionState:
        return self._listener.state

    @property
    def is_connected(self) -> bool:
        return self._listener.state == ConnectionState.CONNECTED

    async def stop(self) -> None:
        await self._listener.stop()


class ChangeFeedListener:
    """Translates change feed events into store mutations."""

    def __init__(
        self,
        store: ReservationStore,
        feed: ChangeFeed,
        notices: Optional[NoticeBoard] = None,
        mutator: Optional[StatusMutator] = None,
        *,
        on_new_reservation: Optional[NewReservationHook] = None,
        ack_timeout_sec: Optional[float] = None,
        reconnect_delay_sec: Optional[float] = None,
    ) -> None:
        self._store = store
        self._feed = feed
        self._notices = notices if notices is not None else NoticeBoard()
        self._mutator = mutator
        self._on_new_reservation = on_new_reservation
        self._ack_timeout = (
            ack_timeout_sec if ack_timeout_sec is not None else settings.sync.ack_timeout_sec
        )
        self._reconnect_delay = (
            reconnect_delay_sec
            if reconnect_delay_sec is not None
            else settings.sync.reconnect_delay_sec
        )

        self._state = ConnectionState.DISCONNECTED
        self._state_trace: deque[ConnectionState] = deque(maxlen=STATE_TRACE_LIMIT)
        self._subscription: Optional[FeedSubscription] = None
        self._generation = 0
        self._stopped = True
        self._has_connected = False
        self._announced = False
        self._ack_timer: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self.reconnect_attempts = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def get_state_trace(self) -> list[str]:
        """Return ordered list of connection states visited."""
        return [state.value for state in self._state_trace]

    # --- lifecycle ---

    async def start(self) -> ListenerHandle:
        """Open the subscription, replacing any existing one."""
        self._stopped = False
        self._cancel_reconnect()
        await self._open()
        return ListenerHandle(self)

    async def stop(self) -> None:
        """Tear down the subscription. Safe to call repeatedly."""
        if self._stopped and self._subscription is None:
            return
        self._stopped = True
        self._generation += 1
        self._cancel_ack_timer()
        self._cancel_reconnect()
        if self._state != ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)
        await self._close_subscription()
        logger.info("Change feed listener stopped")

    async def _open(self) -> None:
        await self._close_subscription()
        self._cancel_ack_timer()
        self._generation += 1
        generation = self._generation
        self._set_state(ConnectionState.CONNECTING)
        self._ack_timer = asyncio.get_running_loop().create_task(
            self._ack_watchdog(generation)
        )

        try:
            subscription = await self._feed.subscribe(
                partial(self._on_payload, generation),
                partial(self._on_status, generation),
            )
        except BackendError as exc:
            logger.error("Failed to set up change feed subscription: %s", exc)
            if generation == self._generation:
                self._notices.error("Failed to set up real-time updates")
                self._handle_channel_error(generation)
            return

        if self._stopped or generation != self._generation:
            # stop() or a newer start() won the race; this channel is orphaned
            await _close_quietly(subscription)
            return
        self._subscription = subscription
        logger.debug("Change feed subscription %d opened", generation)

    async def _close_subscription(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await _close_quietly(subscription)

    # --- timers ---

    async def _ack_watchdog(self, generation: int) -> None:
        await asyncio.sleep(self._ack_timeout)
        if generation != self._generation or self._state != ConnectionState.CONNECTING:
            return
        logger.warning("Change feed not acknowledged within %.1fs", self._ack_timeout)
        self._set_state(ConnectionState.DISCONNECTED)
        self._notices.warning(
            "Real-time updates unavailable", "Refresh the dashboard to reconnect."
        )

    def _schedule_reconnect(self) -> None:
        if self.reconnect_pending or self._stopped:
            return
        logger.info("Reconnecting to change feed in %.1fs", self._reconnect_delay)
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_later())

    async def _reconnect_later(self) -> None:
        await asyncio.sleep(self._reconnect_delay)
        self._reconnect_task = None
        if self._stopped:
            return
        self.reconnect_attempts += 1
        logger.info("Attempting to reconnect after error (attempt %d)", self.reconnect_attempts)
        try:
            await self._open()
        except Exception:
            logger.exception("Unexpected error while reconnecting to change feed")
            if self._stopped:
                return
            self._cancel_ack_timer()
            self._set_state(ConnectionState.DISCONNECTED)
            self._schedule_reconnect()

    def _cancel_ack_timer(self) -> None:
        timer, self._ack_timer = self._ack_timer, None
        if timer is not None and not timer.done():
            timer.cancel()

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # --- transport callbacks ---

    def _on_status(self, generation: int, status: Any) -> None:
        if generation != self._generation or self._stopped:
            logger.debug("Ignoring status %s from a torn-down subscription", status)
            return
        try:
            status = ChannelStatus(status)
        except ValueError:
            logger.warning("Unknown channel status %r", status)
            return

        logger.debug("Change feed status: %s", status.value)
        if status == ChannelStatus.SUBSCRIBED:
            self._cancel_ack_timer()
            self._has_connected = True
            self._set_state(ConnectionState.CONNECTED)
            if not self._announced:
                self._announced = True
                self._notices.success("Real-time updates activated")
        elif status == ChannelStatus.TIMED_OUT:
            self._cancel_ack_timer()
            self._set_state(ConnectionState.DISCONNECTED)
            self._notices.warning(
                "Real-time updates unavailable", "Refresh the dashboard to reconnect."
            )
        elif status == ChannelStatus.CLOSED:
            self._cancel_ack_timer()
            self._set_state(ConnectionState.DISCONNECTED)
        elif status == ChannelStatus.CHANNEL_ERROR:
            self._notices.error("Connection error with real-time service")
            self._handle_channel_error(generation)

    def _handle_channel_error(self, generation: int) -> None:
        self._cancel_ack_timer()
        self._set_state(ConnectionState.DISCONNECTED)
        if self._has_connected:
            self._schedule_reconnect()
        else:
            logger.warning("Change feed failed before connecting; not retrying")

    def _on_payload(self, generation: int, payload: Any) -> None:
        if generation != self._generation or self._stopped:
            logger.debug("Ignoring event from a torn-down subscription")
            return
        try:
            event = ChangeEvent.from_payload(payload)
        except ReservationDataError as exc:
            logger.warning("Dropping malformed change event: %s", exc)
            return
        self.dispatch(event)

    # --- dispatch ---

    def dispatch(self, event: ChangeEvent) -> None:
        """Apply one change event to the store."""
        try:
            if event.event_type == ChangeEventType.DELETE:
                self._apply_delete(event.deleted_id())
            else:
                record = Reservation.from_wire(event.new)
                if event.event_type == ChangeEventType.INSERT:
                    self._apply_insert(record)
                else:
                    self._apply_update(record)
        except ReservationDataError as exc:
            logger.warning("Dropping %s event: %s", event.event_type.value, exc)

    def _apply_insert(self, record: Reservation) -> None:
        is_new = self._store.upsert(record)
        if not is_new:
            logger.debug("Insert for known reservation %s applied silently", record.id)
            return
        logger.info("New reservation received: %s", record.id)
        self._notices.success(
            f"New reservation from {record.name}",
            f"For {record.date} at {record.time_slot}",
        )
        if self._on_new_reservation is not None:
            try:
                self._on_new_reservation(record)
            except Exception:
                logger.exception("New reservation hook failed for %s", record.id)

    def _apply_update(self, record: Reservation) -> None:
        previous = self._store.get(record.id)
        self._store.upsert(record)
        if previous is None or previous.status == record.status:
            return
        if self._mutator is not None and self._mutator.pending_status(record.id) == record.status:
            return
        self._notices.info(
            "Reservation status updated",
            f"{record.name}: {previous.status.value} -> {record.status.value}",
        )

    def _apply_delete(self, reservation_id: str) -> None:
        if self._store.remove(reservation_id):
            logger.info("Reservation %s deleted remotely", reservation_id)
            self._notices.info("A reservation has been deleted")

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        self._state_trace.append(state)


async def _close_quietly(subscription: FeedSubscription) -> None:
    try:
        await subscription.close()
    except BackendError as exc:
        logger.warning("Error removing change feed subscription: %s", exc)
