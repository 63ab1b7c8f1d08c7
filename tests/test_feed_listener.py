"""Tests for the change feed listener: dispatch, acknowledgment, reconnects, teardown."""

import asyncio

import pytest

from reservation_sync.backend.memory import InMemoryBackend, InMemoryChangeFeed
from reservation_sync.notifications.notices import NoticeLevel
from reservation_sync.schemas.feed_schema import (
    ChangeEvent,
    ChangeEventType,
    ChannelStatus,
    ConnectionState,
)
from reservation_sync.schemas.reservation_schema import Reservation, ReservationStatus
from reservation_sync.sync.feed_listener import ChangeFeedListener
from reservation_sync.sync.status_mutator import MutationOutcome, StatusMutator
from tests.conftest import make_reservation, make_row

ACK_TIMEOUT = 0.05
RECONNECT_DELAY = 0.05


def _listener(store, feed, notices, **kwargs) -> ChangeFeedListener:
    kwargs.setdefault("ack_timeout_sec", ACK_TIMEOUT)
    kwargs.setdefault("reconnect_delay_sec", RECONNECT_DELAY)
    return ChangeFeedListener(store, feed, notices, **kwargs)


class _HeldBackend(InMemoryBackend):
    """Parks every write until ``release`` is set."""

    def __init__(self, feed) -> None:
        super().__init__(feed)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def update(self, reservation_id, fields):
        self.entered.set()
        await self.release.wait()
        await super().update(reservation_id, fields)


class _BrokenOnceFeed(InMemoryChangeFeed):
    """Raises an unexpected error from the next subscribe when asked to."""

    def __init__(self) -> None:
        super().__init__()
        self.break_next = False

    async def subscribe(self, on_payload, on_status):
        if self.break_next:
            self.break_next = False
            raise RuntimeError("socket closed mid-handshake")
        return await super().subscribe(on_payload, on_status)


def _insert(**row) -> dict:
    return {"eventType": "INSERT", "new": make_row(**row), "old": {}}


def _update(**row) -> dict:
    return {"eventType": "UPDATE", "new": make_row(**row), "old": {"id": row.get("reservation_id", "1")}}


def _delete(reservation_id: str) -> dict:
    return {"eventType": "DELETE", "new": {}, "old": {"id": reservation_id}}


class TestConnect:
    @pytest.mark.asyncio
    async def test_start_connects(self, store, feed, notices):
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        assert handle.is_connected
        assert listener.get_state_trace() == ["connecting", "connected"]
        assert notices.titles(NoticeLevel.SUCCESS) == ["Real-time updates activated"]
        assert feed.subscribe_count == 1
        await handle.stop()

    @pytest.mark.asyncio
    async def test_ack_timeout_disconnects_without_retry(self, store, notices):
        feed = InMemoryChangeFeed(auto_ack=False)
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        assert listener.state == ConnectionState.CONNECTING
        await asyncio.sleep(ACK_TIMEOUT * 3)
        assert listener.state == ConnectionState.DISCONNECTED
        assert notices.titles(NoticeLevel.WARNING) == ["Real-time updates unavailable"]
        assert not listener.reconnect_pending
        assert feed.subscribe_count == 1
        await handle.stop()

    @pytest.mark.asyncio
    async def test_late_ack_before_timeout(self, store, notices):
        feed = InMemoryChangeFeed(auto_ack=False)
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        feed.emit_status(ChannelStatus.SUBSCRIBED)
        await asyncio.sleep(ACK_TIMEOUT * 3)
        assert listener.state == ConnectionState.CONNECTED
        assert notices.titles(NoticeLevel.WARNING) == []
        await handle.stop()

    @pytest.mark.asyncio
    async def test_subscribe_failure_reported(self, store, feed, notices):
        feed.fail_next_subscribe = True
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        assert handle.state == ConnectionState.DISCONNECTED
        assert notices.titles(NoticeLevel.ERROR) == ["Failed to set up real-time updates"]
        assert not listener.reconnect_pending
        await handle.stop()

    @pytest.mark.asyncio
    async def test_timed_out_status(self, store, feed, notices):
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        feed.emit_status(ChannelStatus.TIMED_OUT)
        assert listener.state == ConnectionState.DISCONNECTED
        assert "Real-time updates unavailable" in notices.titles(NoticeLevel.WARNING)
        assert not listener.reconnect_pending
        await handle.stop()

    @pytest.mark.asyncio
    async def test_closed_status(self, store, feed, notices):
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        feed.emit_status(ChannelStatus.CLOSED)
        assert listener.state == ConnectionState.DISCONNECTED
        assert notices.titles(NoticeLevel.ERROR) == []
        await handle.stop()


class TestReconnect:
    @pytest.mark.asyncio
    async def test_channel_error_reconnects_once(self, store, feed, notices):
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        feed.emit_status(ChannelStatus.CHANNEL_ERROR)
        assert listener.state == ConnectionState.DISCONNECTED
        assert listener.reconnect_pending
        await asyncio.sleep(RECONNECT_DELAY * 3)
        assert listener.state == ConnectionState.CONNECTED
        assert feed.subscribe_count == 2
        assert len(feed.active_subscriptions) == 1
        assert listener.get_state_trace() == [
            "connecting", "connected", "disconnected", "connecting", "connected",
        ]
        assert notices.titles(NoticeLevel.ERROR) == ["Connection error with real-time service"]
        assert notices.titles(NoticeLevel.SUCCESS) == ["Real-time updates activated"]
        await handle.stop()

    @pytest.mark.asyncio
    async def test_repeated_errors_schedule_one_reconnect(self, store, feed, notices):
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        feed.emit_status(ChannelStatus.CHANNEL_ERROR)
        feed.emit_status(ChannelStatus.CHANNEL_ERROR)
        feed.emit_status(ChannelStatus.CHANNEL_ERROR)
        await asyncio.sleep(RECONNECT_DELAY * 3)
        assert feed.subscribe_count == 2
        assert listener.reconnect_attempts == 1
        await handle.stop()

    @pytest.mark.asyncio
    async def test_failed_reconnect_keeps_trying(self, store, feed, notices):
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        feed.fail_next_subscribe = True
        feed.emit_status(ChannelStatus.CHANNEL_ERROR)
        await asyncio.sleep(RECONNECT_DELAY * 5)
        assert listener.reconnect_attempts == 2
        assert listener.state == ConnectionState.CONNECTED
        assert feed.subscribe_count == 2
        await handle.stop()

    @pytest.mark.asyncio
    async def test_unexpected_reconnect_failure_keeps_trying(self, store, notices):
        feed = _BrokenOnceFeed()
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        feed.break_next = True
        feed.emit_status(ChannelStatus.CHANNEL_ERROR)
        await asyncio.sleep(RECONNECT_DELAY * 5)
        assert listener.reconnect_attempts == 2
        assert listener.state == ConnectionState.CONNECTED
        assert len(feed.active_subscriptions) == 1
        await handle.stop()

    @pytest.mark.asyncio
    async def test_error_before_first_connect_not_retried(self, store, notices):
        feed = InMemoryChangeFeed(auto_ack=False)
        listener = _listener(store, feed, notices, ack_timeout_sec=5.0)
        handle = await listener.start()
        feed.emit_status(ChannelStatus.CHANNEL_ERROR)
        assert listener.state == ConnectionState.DISCONNECTED
        assert not listener.reconnect_pending
        await asyncio.sleep(RECONNECT_DELAY * 3)
        assert feed.subscribe_count == 1
        await handle.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_reconnect(self, store, feed, notices):
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        feed.emit_status(ChannelStatus.CHANNEL_ERROR)
        await handle.stop()
        assert not listener.reconnect_pending
        await asyncio.sleep(RECONNECT_DELAY * 3)
        assert feed.subscribe_count == 1
        assert listener.state == ConnectionState.DISCONNECTED


class TestDispatch:
    @pytest.mark.asyncio
    async def test_insert_adds_at_head_and_notifies(self, store, feed, notices):
        store.replace_all([make_reservation("1")])
        added = []
        listener = _listener(store, feed, notices, on_new_reservation=added.append)
        handle = await listener.start()
        feed.publish(_insert(reservation_id="9", name="Karim Tazi"))
        assert store.ids() == ["9", "1"]
        assert "New reservation from Karim Tazi" in notices.titles(NoticeLevel.SUCCESS)
        assert [r.id for r in added] == ["9"]
        await handle.stop()

    @pytest.mark.asyncio
    async def test_insert_for_known_id_is_silent(self, store, feed, notices):
        store.replace_all([make_reservation("1")])
        added = []
        listener = _listener(store, feed, notices, on_new_reservation=added.append)
        handle = await listener.start()
        feed.publish(_insert(reservation_id="1"))
        assert len(store) == 1
        assert added == []
        assert not any(t.startswith("New reservation") for t in notices.titles())
        await handle.stop()

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_drop_insert(self, store, feed, notices):
        def broken_hook(_):
            raise RuntimeError("alert host gone")

        listener = _listener(store, feed, notices, on_new_reservation=broken_hook)
        handle = await listener.start()
        feed.publish(_insert(reservation_id="9"))
        assert "9" in store
        await handle.stop()

    @pytest.mark.asyncio
    async def test_update_replaces_in_place(self, store, feed, notices):
        store.replace_all([make_reservation("1"), make_reservation("2")])
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        feed.publish(_update(reservation_id="2", status="Confirmed"))
        assert store.ids() == ["1", "2"]
        assert store.get("2").status == ReservationStatus.CONFIRMED
        assert notices.titles(NoticeLevel.INFO) == ["Reservation status updated"]
        await handle.stop()

    @pytest.mark.asyncio
    async def test_update_without_status_change_is_silent(self, store, feed, notices):
        store.replace_all([make_reservation("1")])
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        feed.publish(_update(reservation_id="1", name="Amina I."))
        assert store.get("1").name == "Amina I."
        assert notices.titles(NoticeLevel.INFO) == []
        await handle.stop()

    @pytest.mark.asyncio
    async def test_echo_of_in_flight_status_is_silent(self, store, feed, notices):
        backend = _HeldBackend(feed)
        store.replace_all([Reservation.from_wire(backend.seed(make_row("1")))])
        mutator = StatusMutator(
            store, backend, notices, retry_backoff_sec=0.01, verify_after_write=False
        )
        listener = _listener(store, feed, notices, mutator=mutator)
        handle = await listener.start()

        editing = asyncio.get_running_loop().create_task(
            mutator.set_status("1", ReservationStatus.CONFIRMED)
        )
        await backend.entered.wait()
        feed.publish(_update(reservation_id="1", status="Canceled"))
        assert store.get("1").status == ReservationStatus.CANCELED
        assert notices.titles(NoticeLevel.INFO) == ["Reservation status updated"]

        backend.release.set()
        assert await editing == MutationOutcome.SAVED
        assert store.get("1").status == ReservationStatus.CONFIRMED
        assert notices.titles(NoticeLevel.INFO) == ["Reservation status updated"]
        await handle.stop()

    @pytest.mark.asyncio
    async def test_update_for_unknown_id_inserts(self, store, feed, notices):
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        feed.publish(_update(reservation_id="7", status="Canceled"))
        assert "7" in store
        assert notices.titles(NoticeLevel.INFO) == []
        await handle.stop()

    @pytest.mark.asyncio
    async def test_delete_removes_and_notifies(self, store, feed, notices):
        store.replace_all([make_reservation("1"), make_reservation("2")])
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        feed.publish(_delete("1"))
        assert store.ids() == ["2"]
        assert notices.titles(NoticeLevel.INFO) == ["A reservation has been deleted"]
        await handle.stop()

    @pytest.mark.asyncio
    async def test_delete_unknown_id_is_noop(self, store, feed, notices):
        store.replace_all([make_reservation("1")])
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        feed.publish(_delete("99"))
        assert store.ids() == ["1"]
        assert notices.titles(NoticeLevel.INFO) == []
        await handle.stop()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        "not a dict",
        None,
        {"eventType": "TRUNCATE"},
        {"eventType": "INSERT", "new": {"id": "9"}},
        {"eventType": "UPDATE", "new": {"id": "1", "name": "X", "status": "Archived"}},
        {"eventType": "DELETE", "old": {}},
    ])
    async def test_malformed_payload_dropped(self, store, feed, notices, payload):
        store.replace_all([make_reservation("1")])
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        feed.publish(payload)
        assert store.snapshot() == [make_reservation("1")]
        assert listener.state == ConnectionState.CONNECTED
        feed.publish(_insert(reservation_id="2"))
        assert "2" in store
        await handle.stop()

    def test_dispatch_typed_event(self, store):
        listener = ChangeFeedListener(store, InMemoryChangeFeed())
        listener.dispatch(ChangeEvent(event_type=ChangeEventType.INSERT, new=make_row("5")))
        assert store.ids() == ["5"]
        listener.dispatch(ChangeEvent(event_type=ChangeEventType.DELETE, old={"id": "5"}))
        assert len(store) == 0


class TestTeardown:
    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, store, feed, notices):
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        await handle.stop()
        await handle.stop()
        await listener.stop()
        assert listener.state == ConnectionState.DISCONNECTED
        assert feed.active_subscriptions == []

    @pytest.mark.asyncio
    async def test_no_callbacks_after_stop(self, store, feed, notices):
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        subscription = feed.active_subscriptions[0]
        await handle.stop()
        notices.drain()

        subscription.on_payload(_insert(reservation_id="9"))
        subscription.on_status(ChannelStatus.CHANNEL_ERROR)
        assert "9" not in store
        assert notices.history == []
        assert not listener.reconnect_pending

    @pytest.mark.asyncio
    async def test_stop_during_ack_wait_suppresses_warning(self, store, notices):
        feed = InMemoryChangeFeed(auto_ack=False)
        listener = _listener(store, feed, notices)
        handle = await listener.start()
        await handle.stop()
        await asyncio.sleep(ACK_TIMEOUT * 3)
        assert notices.titles(NoticeLevel.WARNING) == []

    @pytest.mark.asyncio
    async def test_restart_replaces_subscription(self, store, feed, notices):
        listener = _listener(store, feed, notices)
        await listener.start()
        first = feed.active_subscriptions[0]
        handle = await listener.start()
        assert first.closed
        assert len(feed.active_subscriptions) == 1

        first.on_payload(_insert(reservation_id="9"))
        assert "9" not in store
        feed.publish(_insert(reservation_id="10"))
        assert store.ids() == ["10"]
        await handle.stop()
