"""
Staff dashboard controller.

Owns one ReservationStore and wires the three producers into it: full
fetches, the change feed listener, and the status mutator. The displayed
list and stats are derived on every read from the store plus the current
filter inputs.

Usage:
    dashboard = Dashboard(backend, feed, session, notices)
    await dashboard.mount()
    dashboard.set_status_filter(ReservationStatus.CONFIRMED)
    rows = dashboard.visible
    await dashboard.update_status("42", ReservationStatus.CANCELED)
    await dashboard.unmount()
"""

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Union

from reservation_sync.backend.base import (
    AuthenticationError,
    BackendError,
    ChangeFeed,
    ReservationBackend,
)
from reservation_sync.config import SyncConfig, settings
from reservation_sync.notifications.local_alerts import LocalAlertGate
from reservation_sync.notifications.notices import NoticeBoard
from reservation_sync.schemas.feed_schema import ConnectionState
from reservation_sync.schemas.reservation_schema import (
    Reservation,
    ReservationDataError,
    ReservationStats,
    ReservationStatus,
    ReservationUpdate,
)
from reservation_sync.session import LOGIN_PATH, SessionContext
from reservation_sync.sync.feed_listener import ChangeFeedListener, ListenerHandle
from reservation_sync.sync.status_mutator import MutationOutcome, StatusMutator
from reservation_sync.sync.store import ReservationStore
from reservation_sync.sync.views import (
    SortOrder,
    StatusFilter,
    ViewQuery,
    calculate_stats,
    derive_view,
)

logger = logging.getLogger(__name__)


@dataclass
class DashboardState:
    """Loading / error / navigation flags shown around the list."""
    is_loading: bool = False
    error: Optional[str] = None
    last_refreshed: Optional[datetime] = None
    last_changed: Optional[datetime] = None
    redirect_to: Optional[str] = None


class Dashboard:
    """Reservation list with live updates and optimistic staff edits."""

    def __init__(
        self,
        backend: ReservationBackend,
        feed: ChangeFeed,
        session: SessionContext,
        notices: Optional[NoticeBoard] = None,
        alert_gate: Optional[LocalAlertGate] = None,
        sync_config: Optional[SyncConfig] = None,
    ) -> None:
        cfg = sync_config if sync_config is not None else settings.sync
        self._backend = backend
        self._session = session
        self._alert_gate = alert_gate
        self.notices = notices if notices is not None else NoticeBoard()
        self.store = ReservationStore()
        self.state = DashboardState()
        self.query = ViewQuery()

        self.mutator = StatusMutator(
            self.store,
            backend,
            self.notices,
            max_write_attempts=cfg.max_write_attempts,
            retry_backoff_sec=cfg.retry_backoff_sec,
            verify_delay_sec=cfg.verify_delay_sec,
            verify_after_write=cfg.verify_after_write,
        )
        self.listener = ChangeFeedListener(
            self.store,
            feed,
            self.notices,
            mutator=self.mutator,
            on_new_reservation=self._on_new_reservation,
            ack_timeout_sec=cfg.ack_timeout_sec,
            reconnect_delay_sec=cfg.reconnect_delay_sec,
        )
        self._handle: Optional[ListenerHandle] = None
        self._unmounted = False
        self._unsubscribe_store = self.store.subscribe(self._on_store_changed)

    # --- lifecycle ---

    async def mount(self) -> bool:
        """Load reservations and start live updates. False when redirected to login."""
        if not self._session.is_authenticated:
            self._redirect_to_login("Please sign in to view reservations.")
            return False
        await self.refresh()
        if self._unmounted or self.state.redirect_to is not None:
            return False
        if self._alert_gate is not None:
            await self._alert_gate.ensure_permission()
            if self._unmounted:
                return False
        handle = await self.listener.start()
        if self._unmounted:
            return False
        self._handle = handle
        logger.info("Dashboard mounted with %d reservations", len(self.store))
        return True

    async def unmount(self) -> None:
        """Stop live updates and cancel pending retry/verification timers."""
        self._unmounted = True
        self._handle = None
        await self.listener.stop()
        self.mutator.close()
        self._unsubscribe_store()
        logger.info("Dashboard unmounted")

    async def refresh(self) -> None:
        """Re-fetch everything, keeping in-flight optimistic edits on top."""
        self.state.is_loading = True
        self.state.error = None
        try:
            rows = await self._backend.fetch_all()
        except AuthenticationError as exc:
            if self._unmounted:
                return
            logger.warning("Fetch refused, session expired: %s", exc)
            self.state.is_loading = False
            self._redirect_to_login("Your session has expired. Please sign in again.")
            return
        except BackendError as exc:
            if self._unmounted:
                return
            logger.error("Error fetching reservations: %s", exc)
            self.state.is_loading = False
            self.state.error = "Failed to load reservations"
            self.notices.error("Failed to load reservations")
            return

        if self._unmounted:
            logger.debug("Discarding fetch result: dashboard unmounted")
            return
        records: list[Reservation] = []
        for row in rows:
            try:
                records.append(Reservation.from_wire(row))
            except ReservationDataError as exc:
                logger.warning("Skipping invalid reservation row: %s", exc)
        self.store.replace_all(records)
        self._reapply_pending()

        self.state.is_loading = False
        self.state.last_refreshed = datetime.now(timezone.utc)
        logger.info("Loaded %d reservations (%d rows skipped)", len(records), len(rows) - len(records))

    # --- derived view ---

    @property
    def visible(self) -> list[Reservation]:
        return derive_view(self.store.snapshot(), self.query)

    @property
    def stats(self) -> ReservationStats:
        return calculate_stats(self.store)

    @property
    def connection_state(self) -> ConnectionState:
        return self.listener.state

    @property
    def is_live(self) -> bool:
        return self.listener.state == ConnectionState.CONNECTED

    def set_search_query(self, query: str) -> None:
        self.query = dataclasses.replace(self.query, search_query=query)

    def set_status_filter(self, status: StatusFilter) -> None:
        self.query = dataclasses.replace(self.query, status_filter=status)

    def set_date_filter(self, date: Optional[str]) -> None:
        self.query = dataclasses.replace(self.query, date_filter=date)

    def set_sort_order(self, order: Union[SortOrder, str]) -> None:
        self.query = dataclasses.replace(self.query, sort_order=SortOrder(order))

    # --- edits ---

    async def update_status(
        self, reservation_id: str, status: Union[ReservationStatus, str]
    ) -> MutationOutcome:
        return await self.mutator.set_status(reservation_id, status)

    async def update_reservation(self, reservation_id: str, **fields: Any) -> MutationOutcome:
        """Edit name/phone/date/time_slot/status. Raises pydantic.ValidationError on bad input."""
        return await self.mutator.update_fields(reservation_id, ReservationUpdate(**fields))

    # --- internals ---

    def _reapply_pending(self) -> None:
        for reservation_id in self.mutator.tracker.busy_ids():
            pending = self.mutator.pending_changes(reservation_id)
            current = self.store.get(reservation_id)
            if pending is not None and current is not None and not pending.matches(current):
                self.store.upsert(pending.apply_to(current))

    def _redirect_to_login(self, message: str) -> None:
        self._session.end()
        self.state.redirect_to = LOGIN_PATH
        self.notices.error("Session expired", message)

    def _on_new_reservation(self, reservation: Reservation) -> None:
        if self._alert_gate is not None:
            self._alert_gate.alert_new_reservation(reservation)

    def _on_store_changed(self) -> None:
        self.state.last_changed = datetime.now(timezone.utc)
