"""Reservation data models and the wire translation boundary.

Wire rows use the hosted table's column names (``time_slot``,
``created_at``) and may carry extra bookkeeping columns; everything that
enters the sync core passes through ``Reservation.from_wire`` first.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from reservation_sync.utils import is_valid_phone, normalize_phone, parse_display_date


class ReservationStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    CANCELED = "Canceled"
    NOT_RESPONDING = "Not Responding"


TIME_SLOTS: tuple[str, ...] = ("8h00-11h00", "11h00-14h00", "14h00-16h00")

EDITABLE_FIELDS: tuple[str, ...] = ("name", "phone", "date", "time_slot", "status")


class ReservationDataError(ValueError):
    """Raised when a row or event payload cannot be turned into a Reservation."""


def _check_phone(value: str) -> str:
    cleaned = normalize_phone(value)
    if not is_valid_phone(cleaned):
        raise ValueError("phone must contain 9 or 10 digits")
    return cleaned


def _check_date(value: str) -> str:
    if parse_display_date(value) is None:
        raise ValueError("date must be a valid DD/MM/YYYY date")
    return value.strip()


def _check_time_slot(value: str) -> str:
    if value not in TIME_SLOTS:
        raise ValueError(f"time_slot must be one of {list(TIME_SLOTS)}")
    return value


class Reservation(BaseModel):
    """A single reservation as held by the store. Immutable."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    name: str
    phone: str
    date: str
    time_slot: str
    status: ReservationStatus
    created_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("id", "name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @classmethod
    def from_wire(cls, row: Any) -> "Reservation":
        """Build a Reservation from a wire row.

        Raises:
            ReservationDataError: If the row is not a mapping, is missing a
                required column, or carries an unrecognized status.
        """
        if not isinstance(row, dict):
            raise ReservationDataError(f"Expected a row mapping, got {type(row).__name__}")
        try:
            return cls.model_validate(row)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'row'}: {err['msg']}"
                for err in exc.errors()
            )
            raise ReservationDataError(
                f"Invalid reservation row (id={row.get('id')!r}): {problems}"
            ) from exc

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class NewReservation(BaseModel):
    """Validated customer form submission."""

    name: str
    phone: str
    date: str
    time_slot: str
    language: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be empty")
        return value

    @field_validator("phone")
    @classmethod
    def _phone(cls, value: str) -> str:
        return _check_phone(value)

    @field_validator("date")
    @classmethod
    def _date(cls, value: str) -> str:
        return _check_date(value)

    @field_validator("time_slot")
    @classmethod
    def _time_slot(cls, value: str) -> str:
        return _check_time_slot(value)

    def to_wire(self) -> dict[str, Any]:
        """Row to insert. New reservations always start Pending."""
        return {
            "name": self.name,
            "phone": self.phone,
            "date": self.date,
            "time_slot": self.time_slot,
            "status": ReservationStatus.PENDING.value,
        }


class ReservationUpdate(BaseModel):
    """Partial staff edit. Only the fields that are set are written."""

    name: Optional[str] = None
    phone: Optional[str] = None
    date: Optional[str] = None
    time_slot: Optional[str] = None
    status: Optional[ReservationStatus] = None

    @field_validator("name")
    @classmethod
    def _name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("name must not be empty")
        return value

    @field_validator("phone")
    @classmethod
    def _phone(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _check_phone(value)

    @field_validator("date")
    @classmethod
    def _date(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _check_date(value)

    @field_validator("time_slot")
    @classmethod
    def _time_slot(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _check_time_slot(value)

    @model_validator(mode="after")
    def _at_least_one(self) -> "ReservationUpdate":
        if not self.changes():
            raise ValueError("an update must change at least one field")
        return self

    def changes(self) -> dict[str, Any]:
        """Set fields as in-memory values (status stays an enum)."""
        return {name: value for name, value in self if value is not None}

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def apply_to(self, record: Reservation) -> Reservation:
        """Return ``record`` with these changes merged in."""
        return record.model_copy(update=self.changes())

    def matches(self, record: Reservation) -> bool:
        """True when ``record`` already carries every change in this update."""
        return all(getattr(record, name) == value for name, value in self.changes().items())


class ReservationStats(BaseModel):
    """Per-status counts shown above the dashboard list."""

    total: int = 0
    confirmed: int = 0
    pending: int = 0
    canceled: int = 0
    not_responding: int = 0
