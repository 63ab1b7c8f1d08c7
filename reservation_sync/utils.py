"""Shared utilities used across the reservation sync package."""

import re
from datetime import date, datetime
from typing import Optional

DISPLAY_DATE_FORMAT = "%d/%m/%Y"
MIN_PHONE_DIGITS = 9
MAX_PHONE_DIGITS = 10

_DISPLAY_DATE_RE = re.compile(r"^\d{2}/\d{2}/\d{4}$")


def normalize_phone(value: str) -> str:
    """Normalize a phone number by stripping everything except digits.

    Examples:
        >>> normalize_phone("06 12 34 56 78")
        '0612345678'
        >>> normalize_phone("(061) 234-567")
        '061234567'
    """
    return re.sub(r"[^\d]", "", value.strip())


def is_valid_phone(value: str) -> bool:
    """True for a bare digit string of 9 or 10 digits."""
    return value.isdigit() and MIN_PHONE_DIGITS <= len(value) <= MAX_PHONE_DIGITS


def parse_display_date(value: Optional[str]) -> Optional[date]:
    """Parse a ``DD/MM/YYYY`` string, returning None when it is malformed.

    Examples:
        >>> parse_display_date("10/05/2024")
        datetime.date(2024, 5, 10)
        >>> parse_display_date("2024-05-10") is None
        True
    """
    if not value or not _DISPLAY_DATE_RE.match(value.strip()):
        return None
    try:
        return datetime.strptime(value.strip(), DISPLAY_DATE_FORMAT).date()
    except ValueError:
        return None


def format_display_date(value: date) -> str:
    return value.strftime(DISPLAY_DATE_FORMAT)
