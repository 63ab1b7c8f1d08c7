"""
Optimistic reservation edits with bounded retries and write verification.

A staff action is applied to the store immediately, then written to the
remote system. Failed writes are retried with linearly increasing
backoff; once every attempt has failed the optimistic value is reverted.
A successful write is optionally verified by re-reading the record after
a short delay, and a diverging remote value gets exactly one corrective
write while the local value stays authoritative.

Only one write sequence runs per reservation at a time. The in-flight
check happens before the first await, so a second call for the same id
issued while the first is running is a no-op.

Usage:
    mutator = StatusMutator(store, backend, notices)
    outcome = await mutator.set_status("42", ReservationStatus.CONFIRMED)
"""

import asyncio
from enum import Enum
from typing import Optional, Union

from reservation_sync.backend.base import AuthenticationError, BackendError, ReservationBackend
from reservation_sync.config import settings
from reservation_sync.logging_context import get_sync_logger, reservation_scope
from reservation_sync.notifications.notices import NoticeBoard
from reservation_sync.schemas.reservation_schema import (
    Reservation,
    ReservationDataError,
    ReservationStatus,
    ReservationUpdate,
)
from reservation_sync.sync.mutation_state import MutationStateMachine, MutationTrigger
from reservation_sync.sync.store import ReservationStore

logger = get_sync_logger(__name__)


class MutationOutcome(str, Enum):
    """How a single write sequence ended."""
    SKIPPED = "skipped"
    NOT_FOUND = "not_found"
    SAVED = "saved"
    VERIFIED = "verified"
    CORRECTED = "corrected"
    UNCONFIRMED = "unconfirmed"
    REVERTED = "reverted"
    DISCARDED = "discarded"


class StatusMutator:
    """Applies optimistic edits to the store and drives them to the remote system."""

    def __init__(
        self,
        store: ReservationStore,
        backend: ReservationBackend,
        notices: Optional[NoticeBoard] = None,
        tracker: Optional[MutationStateMachine] = None,
        *,
        max_write_attempts: Optional[int] = None,
        retry_backoff_sec: Optional[float] = None,
        verify_delay_sec: Optional[float] = None,
        verify_after_write: Optional[bool] = None,
    ) -> None:
        cfg = settings.sync
        self._store = store
        self._backend = backend
        self._notices = notices if notices is not None else NoticeBoard()
        self._tracker = tracker if tracker is not None else MutationStateMachine()
        self._max_attempts = max_write_attempts if max_write_attempts is not None else cfg.max_write_attempts
        self._backoff = retry_backoff_sec if retry_backoff_sec is not None else cfg.retry_backoff_sec
        self._verify_delay = verify_delay_sec if verify_delay_sec is not None else cfg.verify_delay_sec
        self._verify = verify_after_write if verify_after_write is not None else cfg.verify_after_write
        self._pending: dict[str, ReservationUpdate] = {}
        self._closed = asyncio.Event()

    @property
    def tracker(self) -> MutationStateMachine:
        return self._tracker

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def is_busy(self, reservation_id: str) -> bool:
        return self._tracker.is_busy(reservation_id)

    def pending_changes(self, reservation_id: str) -> Optional[ReservationUpdate]:
        """The optimistic edit currently in flight for ``reservation_id``."""
        return self._pending.get(reservation_id)

    def pending_status(self, reservation_id: str) -> Optional[ReservationStatus]:
        update = self._pending.get(reservation_id)
        return update.status if update is not None else None

    def close(self) -> None:
        """Stop all pending pauses. Results still arriving are discarded."""
        if not self._closed.is_set():
            logger.debug("Status mutator closed with %d sequences in flight", len(self._pending))
        self._closed.set()

    async def set_status(
        self, reservation_id: str, status: Union[ReservationStatus, str]
    ) -> MutationOutcome:
        """Change a reservation's status optimistically and persist it."""
        return await self.update_fields(
            reservation_id, ReservationUpdate(status=ReservationStatus(status))
        )

    async def update_fields(
        self, reservation_id: str, update: ReservationUpdate
    ) -> MutationOutcome:
        """Apply ``update`` optimistically, write it, then verify or revert."""
        if self._closed.is_set():
            logger.debug("Ignoring edit of %s: mutator is closed", reservation_id)
            return MutationOutcome.DISCARDED
        if self._tracker.is_busy(reservation_id):
            logger.info("Skipping update for %s: already in progress", reservation_id)
            return MutationOutcome.SKIPPED
        known_good = self._store.get(reservation_id)
        if known_good is None:
            logger.warning("Cannot update %s: not in store", reservation_id)
            return MutationOutcome.NOT_FOUND

        with reservation_scope(reservation_id):
            self._tracker.transition(reservation_id, MutationTrigger.WRITE_STARTED)
            self._pending[reservation_id] = update
            optimistic = update.apply_to(known_good)
            self._store.upsert(optimistic)
            logger.info("Optimistic update applied: %s", update.to_wire())
            try:
                return await self._run(reservation_id, update, known_good, optimistic)
            finally:
                self._pending.pop(reservation_id, None)
                if self._tracker.is_busy(reservation_id):
                    self._tracker.transition(reservation_id, MutationTrigger.ABANDONED)

    async def _run(
        self,
        reservation_id: str,
        update: ReservationUpdate,
        known_good: Reservation,
        optimistic: Reservation,
    ) -> MutationOutcome:
        written = await self._write_with_retries(reservation_id, update)
        if self._closed.is_set():
            logger.info("Discarding write result: mutator closed")
            return MutationOutcome.DISCARDED

        if not written:
            self._tracker.transition(reservation_id, MutationTrigger.RETRIES_EXHAUSTED)
            if not await self._revert(reservation_id, known_good, optimistic):
                return MutationOutcome.DISCARDED
            self._tracker.transition(reservation_id, MutationTrigger.REVERT_FINISHED)
            self._notices.error(
                "Failed to update reservation",
                f"{known_good.name}: {_describe(update)} could not be saved and was reverted.",
            )
            return MutationOutcome.REVERTED

        if not self._verify:
            self._tracker.transition(reservation_id, MutationTrigger.WRITE_SETTLED)
            self._announce(update, MutationOutcome.SAVED)
            return MutationOutcome.SAVED

        self._tracker.transition(reservation_id, MutationTrigger.WRITE_ACKNOWLEDGED)
        outcome = await self._verify_write(reservation_id, update)
        if outcome == MutationOutcome.DISCARDED:
            return outcome
        self._tracker.transition(reservation_id, MutationTrigger.VERIFY_FINISHED)
        self._announce(update, outcome)
        return outcome

    async def _write_with_retries(self, reservation_id: str, update: ReservationUpdate) -> bool:
        fields = update.to_wire()
        for attempt in range(1, self._max_attempts + 1):
            try:
                await self._backend.update(reservation_id, fields)
            except AuthenticationError as exc:
                logger.error("Write rejected, session no longer valid: %s", exc)
                return False
            except BackendError as exc:
                logger.warning(
                    "Write attempt %d/%d failed: %s", attempt, self._max_attempts, exc
                )
                if attempt < self._max_attempts and not await self._pause(attempt * self._backoff):
                    return False
                continue
            if attempt > 1:
                logger.info("Write succeeded on attempt %d", attempt)
            return True
        logger.error("All %d write attempts failed", self._max_attempts)
        return False

    async def _verify_write(
        self, reservation_id: str, update: ReservationUpdate
    ) -> MutationOutcome:
        if not await self._pause(self._verify_delay):
            return MutationOutcome.DISCARDED
        try:
            row = await self._backend.fetch_one(reservation_id)
        except BackendError as exc:
            logger.warning("Verification read failed, keeping local value: %s", exc)
            return MutationOutcome.UNCONFIRMED
        if self._closed.is_set():
            return MutationOutcome.DISCARDED
        if row is None:
            logger.warning("Reservation disappeared before verification")
            return MutationOutcome.UNCONFIRMED

        try:
            remote: Optional[Reservation] = Reservation.from_wire(row)
        except ReservationDataError as exc:
            logger.warning("Verification read returned bad data: %s", exc)
            remote = None
        if remote is not None and update.matches(remote):
            logger.debug("Remote value verified")
            return MutationOutcome.VERIFIED

        logger.warning(
            "Remote value diverged after write (remote status=%s); issuing corrective write",
            remote.status.value if remote is not None else "?",
        )
        corrected = True
        try:
            await self._backend.update(reservation_id, update.to_wire())
        except BackendError as exc:
            logger.error("Corrective write failed: %s", exc)
            corrected = False
        if self._closed.is_set():
            return MutationOutcome.DISCARDED
        self._reassert(reservation_id, update)
        return MutationOutcome.CORRECTED if corrected else MutationOutcome.UNCONFIRMED

    async def _revert(
        self, reservation_id: str, known_good: Reservation, optimistic: Reservation
    ) -> bool:
        """Roll the store back after exhausted retries. False if closed meanwhile."""
        try:
            row = await self._backend.fetch_one(reservation_id)
        except BackendError as exc:
            logger.warning("Re-fetch for revert failed, restoring last known value: %s", exc)
        else:
            if self._closed.is_set():
                return False
            if row is None:
                logger.info("Reservation no longer exists remotely; removing")
                self._store.remove(reservation_id)
                return True
            try:
                self._store.upsert(Reservation.from_wire(row))
                logger.info("Reverted to remote value")
                return True
            except ReservationDataError as exc:
                logger.warning("Re-fetched row unusable, restoring last known value: %s", exc)

        if self._closed.is_set():
            return False
        if self._store.get(reservation_id) == optimistic:
            self._store.upsert(known_good)
            logger.info("Restored last known-good record")
        else:
            logger.info("Record changed since optimistic write; leaving newer value")
        return True

    def _reassert(self, reservation_id: str, update: ReservationUpdate) -> None:
        current = self._store.get(reservation_id)
        if current is not None and not update.matches(current):
            self._store.upsert(update.apply_to(current))
            logger.info("Re-applied local value over stale remote state")

    async def _pause(self, delay: float) -> bool:
        """Wait ``delay`` seconds unless closed first. False when closed."""
        if delay > 0 and not self._closed.is_set():
            try:
                await asyncio.wait_for(self._closed.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        return not self._closed.is_set()

    def _announce(self, update: ReservationUpdate, outcome: MutationOutcome) -> None:
        if outcome == MutationOutcome.UNCONFIRMED:
            self._notices.warning(
                _success_title(update), "The server has not confirmed this change yet."
            )
        else:
            self._notices.success(_success_title(update))


def _describe(update: ReservationUpdate) -> str:
    if update.status is not None and len(update.changes()) == 1:
        return f"status '{update.status.value}'"
    return "changes to " + ", ".join(sorted(update.changes()))


def _success_title(update: ReservationUpdate) -> str:
    if update.status is not None and len(update.changes()) == 1:
        return f"Status updated to {update.status.value}"
    return "Reservation updated"
