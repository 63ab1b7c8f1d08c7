"""Change feed payloads and channel status models."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from reservation_sync.schemas.reservation_schema import ReservationDataError


class ChangeEventType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChannelStatus(str, Enum):
    """Status values reported by the realtime transport."""
    SUBSCRIBED = "SUBSCRIBED"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"
    CHANNEL_ERROR = "CHANNEL_ERROR"


class ConnectionState(str, Enum):
    """Listener-side view of the subscription."""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ChangeEvent(BaseModel):
    """A single row-level change on the reservations table.

    ``new`` carries the post-image for inserts and updates; ``old``
    carries at least the primary key for deletes.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_type: ChangeEventType = Field(alias="eventType")
    new: dict[str, Any] = Field(default_factory=dict)
    old: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "ChangeEvent":
        if not isinstance(payload, dict):
            raise ReservationDataError(
                f"Expected an event mapping, got {type(payload).__name__}"
            )
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise ReservationDataError(f"Invalid change event: {exc.errors()}") from exc

    def deleted_id(self) -> str:
        """Primary key of a deleted row."""
        raw = self.old.get("id")
        if raw is None or raw == "":
            raise ReservationDataError("Delete event without an id")
        return str(raw)
