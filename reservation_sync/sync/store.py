"""
In-memory reservation store, the single source of truth for the dashboard.

Holds an ordered sequence of Reservation records (newest-created first)
and exposes exactly three mutation entry points: replace_all, upsert, and
remove. Every producer (fetch, change feed, optimistic writes) goes
through these so the one-record-per-id guarantee always holds.

Usage:
    store = ReservationStore()
    store.replace_all(fetched)
    store.upsert(updated)
    store.remove("42")
"""

import logging
from typing import Callable, Iterable, Iterator, Optional

from reservation_sync.schemas.reservation_schema import Reservation

logger = logging.getLogger(__name__)

StoreListener = Callable[[], None]


class ReservationStore:
    """Ordered, id-unique collection of reservations."""

    def __init__(self, records: Optional[Iterable[Reservation]] = None) -> None:
        self._records: list[Reservation] = []
        self._listeners: list[StoreListener] = []
        if records is not None:
            self.replace_all(records)

    # --- mutations ---

    def replace_all(self, records: Iterable[Reservation]) -> None:
        """Discard current contents and install ``records`` in the given order.

        A repeated id keeps its first occurrence; later copies are dropped.
        """
        seen: set[str] = set()
        installed: list[Reservation] = []
        for record in records:
            if record.id in seen:
                logger.warning("Dropping duplicate reservation %s from replace_all", record.id)
                continue
            seen.add(record.id)
            installed.append(record)
        self._records = installed
        logger.debug("Store replaced with %d reservations", len(installed))
        self._notify()

    def upsert(self, record: Reservation) -> bool:
        """Replace the record with the same id, or insert it at the head.

        Returns:
            True if the record was inserted, False if it replaced one.
        """
        index = self._index_of(record.id)
        if index is None:
            self._records.insert(0, record)
            self._notify()
            return True
        self._records[index] = record
        self._notify()
        return False

    def remove(self, reservation_id: str) -> bool:
        """Drop the record with ``reservation_id``. No-op when absent."""
        index = self._index_of(reservation_id)
        if index is None:
            return False
        del self._records[index]
        self._notify()
        return True

    # --- reads ---

    def get(self, reservation_id: str) -> Optional[Reservation]:
        index = self._index_of(reservation_id)
        return None if index is None else self._records[index]

    def snapshot(self) -> list[Reservation]:
        """Return a copy of the current ordered contents."""
        return list(self._records)

    def ids(self) -> list[str]:
        return [record.id for record in self._records]

    def __contains__(self, reservation_id: object) -> bool:
        return any(record.id == reservation_id for record in self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Reservation]:
        return iter(list(self._records))

    # --- change notification ---

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Call ``listener`` after every mutation. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Store listener failed")

    def _index_of(self, reservation_id: str) -> Optional[int]:
        for index, record in enumerate(self._records):
            if record.id == reservation_id:
                return index
        return None
