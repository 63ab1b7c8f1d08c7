from reservation_sync.backend.base import (
    AuthenticationError,
    BackendError,
    ChangeFeed,
    FeedSubscription,
    ReservationBackend,
)
from reservation_sync.backend.memory import InMemoryBackend, InMemoryChangeFeed

__all__ = [
    "ReservationBackend",
    "ChangeFeed",
    "FeedSubscription",
    "BackendError",
    "AuthenticationError",
    "InMemoryBackend",
    "InMemoryChangeFeed",
]
