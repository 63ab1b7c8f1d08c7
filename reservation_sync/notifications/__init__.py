from reservation_sync.notifications.local_alerts import (
    AlertHost,
    LocalAlertGate,
    NotificationPermission,
)
from reservation_sync.notifications.notices import Notice, NoticeBoard, NoticeLevel
from reservation_sync.notifications.telegram import NotificationResult, TelegramNotifier

__all__ = [
    "Notice",
    "NoticeBoard",
    "NoticeLevel",
    "TelegramNotifier",
    "NotificationResult",
    "LocalAlertGate",
    "AlertHost",
    "NotificationPermission",
]
