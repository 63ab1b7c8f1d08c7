"""Reservation ID logging context for tracing one mutation across modules.

Provides a reservation-aware logger that attaches the id of the record
being mutated to every log message, so a single status change can be
followed through the optimistic write, retries, verification, and any
change feed echo.

Usage:
    from reservation_sync.logging_context import get_sync_logger, reservation_scope

    logger = get_sync_logger(__name__)
    with reservation_scope("42"):
        logger.info("Writing status")  # → [42] Writing status
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

_reservation_id: ContextVar[str] = ContextVar("reservation_id", default="-")


def set_reservation_id(reservation_id: str) -> None:
    """Set the correlation ID for the current async context."""
    _reservation_id.set(reservation_id)


def get_reservation_id() -> str:
    """Retrieve the current correlation ID."""
    return _reservation_id.get()


@contextmanager
def reservation_scope(reservation_id: str) -> Iterator[None]:
    """Bind ``reservation_id`` for the duration of the block, then restore."""
    token = _reservation_id.set(reservation_id)
    try:
        yield
    finally:
        _reservation_id.reset(token)


class ReservationIdFilter(logging.Filter):
    """Injects reservation_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "reservation_id"):
            record.reservation_id = _reservation_id.get()  # type: ignore[attr-defined]
        return True


def get_sync_logger(name: str) -> logging.Logger:
    """Return a logger with the ReservationIdFilter attached.

    The filter adds ``reservation_id`` to each record so formatters can
    include ``%(reservation_id)s`` in their format string.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, ReservationIdFilter) for f in logger.filters):
        logger.addFilter(ReservationIdFilter())
    return logger
