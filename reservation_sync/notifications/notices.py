"""User-visible, non-modal notices (the dashboard's toasts).

The sync core never talks to a UI directly; it pushes notices here and
whatever renders the dashboard drains or subscribes to them.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)

NOTICE_LIMIT = 500


class NoticeLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notice:
    level: NoticeLevel
    title: str
    description: str = ""
    admin_only: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NoticeBoard:
    """Collects notices in order and fans them out to subscribers.

    Only the most recent ``limit`` notices are kept for ``history``.
    """

    def __init__(self, limit: int = NOTICE_LIMIT) -> None:
        self._notices: deque[Notice] = deque(maxlen=limit)
        self._subscribers: list[Callable[[Notice], None]] = []

    def push(
        self,
        level: NoticeLevel,
        title: str,
        description: str = "",
        admin_only: bool = False,
    ) -> Notice:
        notice = Notice(level=level, title=title, description=description, admin_only=admin_only)
        self._notices.append(notice)
        logger.debug("Notice (%s): %s %s", level.value, title, description)
        for subscriber in list(self._subscribers):
            try:
                subscriber(notice)
            except Exception:
                logger.exception("Notice subscriber failed")
        return notice

    def success(self, title: str, description: str = "") -> Notice:
        return self.push(NoticeLevel.SUCCESS, title, description)

    def info(self, title: str, description: str = "") -> Notice:
        return self.push(NoticeLevel.INFO, title, description)

    def warning(self, title: str, description: str = "") -> Notice:
        return self.push(NoticeLevel.WARNING, title, description)

    def error(self, title: str, description: str = "") -> Notice:
        return self.push(NoticeLevel.ERROR, title, description)

    def subscribe(self, subscriber: Callable[[Notice], None]) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    @property
    def history(self) -> list[Notice]:
        return list(self._notices)

    def titles(self, level: Optional[NoticeLevel] = None) -> list[str]:
        """Titles of recorded notices, optionally filtered by level."""
        return [n.title for n in self._notices if level is None or n.level == level]

    def drain(self) -> list[Notice]:
        """Return and clear all recorded notices."""
        drained = list(self._notices)
        self._notices.clear()
        return drained
