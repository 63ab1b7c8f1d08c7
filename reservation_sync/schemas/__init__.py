from reservation_sync.schemas.feed_schema import (
    ChangeEvent,
    ChangeEventType,
    ChannelStatus,
    ConnectionState,
)
from reservation_sync.schemas.reservation_schema import (
    TIME_SLOTS,
    NewReservation,
    Reservation,
    ReservationDataError,
    ReservationStats,
    ReservationStatus,
    ReservationUpdate,
)

__all__ = [
    "Reservation",
    "ReservationStatus",
    "ReservationUpdate",
    "NewReservation",
    "ReservationStats",
    "ReservationDataError",
    "TIME_SLOTS",
    "ChangeEvent",
    "ChangeEventType",
    "ChannelStatus",
    "ConnectionState",
]
