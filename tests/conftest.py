"""Shared test fixtures and helpers."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from reservation_sync.backend.memory import InMemoryBackend, InMemoryChangeFeed
from reservation_sync.notifications.notices import NoticeBoard
from reservation_sync.schemas.reservation_schema import Reservation, ReservationStatus
from reservation_sync.session import SessionContext
from reservation_sync.sync.store import ReservationStore

# Small enough that a full retry/verify sequence finishes in well under a second
FAST = dict(
    max_write_attempts=3,
    retry_backoff_sec=0.01,
    verify_delay_sec=0.02,
)


@pytest.fixture
def store():
    return ReservationStore()


@pytest.fixture
def feed():
    return InMemoryChangeFeed()


@pytest.fixture
def backend(feed):
    return InMemoryBackend(feed)


@pytest.fixture
def notices():
    return NoticeBoard()


@pytest.fixture
def session():
    ctx = SessionContext(ttl=timedelta(hours=1))
    ctx.begin("test-token", is_admin=True)
    return ctx


def make_row(
    reservation_id: str = "1",
    name: str = "Amina Idrissi",
    phone: str = "0612345678",
    date: str = "10/05/2024",
    time_slot: str = "8h00-11h00",
    status: str = "Pending",
    created_at: Optional[str] = None,
    **extra,
) -> dict:
    """Helper to create a wire row with sensible defaults."""
    row = {
        "id": reservation_id,
        "name": name,
        "phone": phone,
        "date": date,
        "time_slot": time_slot,
        "status": status,
    }
    if created_at is not None:
        row["created_at"] = created_at
    row.update(extra)
    return row


def make_reservation(
    reservation_id: str = "1",
    name: str = "Amina Idrissi",
    phone: str = "0612345678",
    date: str = "10/05/2024",
    time_slot: str = "8h00-11h00",
    status: ReservationStatus = ReservationStatus.PENDING,
    created_at: Optional[datetime] = None,
) -> Reservation:
    """Helper to create a Reservation."""
    return Reservation(
        id=reservation_id,
        name=name,
        phone=phone,
        date=date,
        time_slot=time_slot,
        status=status,
        created_at=created_at or datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc),
    )


def seed_backend(backend: InMemoryBackend, *rows: dict) -> None:
    for row in rows:
        backend.seed(row)


class FakeAlertHost:
    """Records local alerts instead of showing them."""

    def __init__(self, permission: str = "default", answer: str = "granted") -> None:
        self._permission = permission
        self._answer = answer
        self.requests = 0
        self.shown: list[tuple[str, str]] = []

    def permission(self) -> str:
        return self._permission

    async def request_permission(self) -> str:
        self.requests += 1
        self._permission = self._answer
        return self._answer

    def show(self, title: str, body: str) -> None:
        self.shown.append((title, body))
