"""
Derived dashboard list: filtering, date sorting, and per-status stats.

Everything here is a pure function of its inputs. The dashboard sorts by
appointment date (``DD/MM/YYYY``), not by creation time; equal dates keep
their input order, which is the store's newest-created-first order.
Malformed dates sort as the earliest possible date, so they land at the
bottom under NEWEST and at the top under OLDEST.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, Optional, Sequence, Union

from reservation_sync.schemas.reservation_schema import (
    Reservation,
    ReservationStats,
    ReservationStatus,
)
from reservation_sync.utils import parse_display_date

ALL_STATUSES = "All"

StatusFilter = Union[ReservationStatus, str]


class SortOrder(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"


@dataclass(frozen=True)
class ViewQuery:
    """The dashboard's current filter and sort inputs."""
    search_query: str = ""
    status_filter: StatusFilter = ALL_STATUSES
    date_filter: Optional[str] = None
    sort_order: SortOrder = SortOrder.NEWEST


def matches_search(record: Reservation, search_query: str) -> bool:
    if not search_query:
        return True
    needle = search_query.casefold()
    return needle in record.name.casefold() or needle in record.phone.casefold()


def matches_status(record: Reservation, status_filter: StatusFilter) -> bool:
    if status_filter == ALL_STATUSES:
        return True
    return record.status == ReservationStatus(status_filter)


def matches_date(record: Reservation, date_filter: Optional[str]) -> bool:
    return not date_filter or record.date == date_filter


def apply_filters(
    records: Iterable[Reservation],
    search_query: str = "",
    status_filter: StatusFilter = ALL_STATUSES,
    date_filter: Optional[str] = None,
) -> list[Reservation]:
    """Keep records matching all three predicates, preserving input order."""
    return [
        record for record in records
        if matches_search(record, search_query)
        and matches_status(record, status_filter)
        and matches_date(record, date_filter)
    ]


def _date_key(record: Reservation) -> date:
    return parse_display_date(record.date) or date.min


def sort_by_date(
    records: Sequence[Reservation], order: SortOrder = SortOrder.NEWEST
) -> list[Reservation]:
    """Stable sort on appointment date."""
    return sorted(records, key=_date_key, reverse=SortOrder(order) == SortOrder.NEWEST)


def derive_view(records: Sequence[Reservation], query: ViewQuery) -> list[Reservation]:
    filtered = apply_filters(
        records, query.search_query, query.status_filter, query.date_filter
    )
    return sort_by_date(filtered, query.sort_order)


def calculate_stats(records: Iterable[Reservation]) -> ReservationStats:
    stats = {status: 0 for status in ReservationStatus}
    total = 0
    for record in records:
        stats[record.status] += 1
        total += 1
    return ReservationStats(
        total=total,
        confirmed=stats[ReservationStatus.CONFIRMED],
        pending=stats[ReservationStatus.PENDING],
        canceled=stats[ReservationStatus.CANCELED],
        not_responding=stats[ReservationStatus.NOT_RESPONDING],
    )
