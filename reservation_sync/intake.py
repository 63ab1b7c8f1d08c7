"""
Customer-side reservation submission.

Validation happens in ``NewReservation``; this module adds the weekday
slot rules, writes the row, and fires the outbound notification in the
background. The notification is never awaited by the write path and its
failure never fails the submission.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from reservation_sync.backend.base import ReservationBackend
from reservation_sync.notifications.notices import NoticeBoard, NoticeLevel
from reservation_sync.notifications.telegram import NotificationResult, TelegramNotifier
from reservation_sync.schemas.reservation_schema import TIME_SLOTS, NewReservation, Reservation
from reservation_sync.session import SessionContext
from reservation_sync.utils import parse_display_date

logger = logging.getLogger(__name__)

SATURDAY = 5
SUNDAY = 6

_background_tasks: set[asyncio.Task] = set()


class SlotUnavailableError(ValueError):
    """Raised when the chosen time slot is closed on the chosen day."""


def available_time_slots(date: str) -> list[str]:
    """Slots open on ``date``: all on weekdays, mornings on Saturday, none on Sunday."""
    parsed = parse_display_date(date)
    if parsed is None:
        return []
    weekday = parsed.weekday()
    if weekday == SUNDAY:
        return []
    if weekday == SATURDAY:
        return [TIME_SLOTS[0]]
    return list(TIME_SLOTS)


@dataclass
class SubmissionResult:
    reservation: Reservation
    notification: Optional["asyncio.Task[NotificationResult]"] = None


async def submit_reservation(
    backend: ReservationBackend,
    form: NewReservation,
    notifier: Optional[TelegramNotifier] = None,
    notices: Optional[NoticeBoard] = None,
    session: Optional[SessionContext] = None,
) -> SubmissionResult:
    """
    Create a Pending reservation from a validated form.

    Raises:
        SlotUnavailableError: If the slot is closed on that weekday.
        BackendError: If the reservation could not be written.
        ReservationDataError: If the backend returned an unusable row.
    """
    if form.time_slot not in available_time_slots(form.date):
        raise SlotUnavailableError(f"{form.time_slot} is not available on {form.date}")

    row = await backend.create(form.to_wire())
    reservation = Reservation.from_wire(row)
    logger.info("Reservation %s created for %s on %s", reservation.id, form.date, form.time_slot)

    task = None
    if notifier is not None:
        task = asyncio.get_running_loop().create_task(
            _notify(notifier, reservation, form.language, notices, session)
        )
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
    return SubmissionResult(reservation=reservation, notification=task)


async def _notify(
    notifier: TelegramNotifier,
    reservation: Reservation,
    language: Optional[str],
    notices: Optional[NoticeBoard],
    session: Optional[SessionContext],
) -> NotificationResult:
    try:
        result = await notifier.notify_new_reservation(reservation, language)
    except Exception as exc:
        logger.exception("Reservation notification failed for %s", reservation.id)
        result = {"success": False, "message": str(exc), "needs_configuration": False}

    if (
        not result["success"]
        and result["needs_configuration"]
        and notices is not None
        and session is not None
        and session.is_admin
    ):
        notices.push(
            NoticeLevel.WARNING,
            "Telegram notifications need configuration",
            "Set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_IDS to receive new reservation messages.",
            admin_only=True,
        )
    return result
