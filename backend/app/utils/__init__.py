"""Utility functions for the EduTrack backend."""

import math
import re
from datetime import datetime, timezone
from typing import Optional, Union

_TZ_SUFFIX = re.compile(r"(Z|[+-]\d{2}:?\d{2})$")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialise a datetime as an ISO-8601 UTC string for storage."""
    if value is None:
        return None
    return ensure_utc(value).isoformat()


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse a stored timestamp (ISO string or datetime) into aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return ensure_utc(value)


def parse_local_datetime(value: str, default_offset: str) -> datetime:
    """
    Parse a datetime string coming from the admin UI.

    Strings without an explicit offset are interpreted in ``default_offset``
    (e.g. "+05:30"), since the deploy form sends local wall-clock times.
    """
    value = value.strip()
    if not _TZ_SUFFIX.search(value):
        value = f"{value}{default_offset}"
    try:
        return parse_datetime(value)
    except ValueError:
        raise ValueError(f"Invalid date format: {value}")


def normalize_phone(phone: str) -> str:
    """Strip everything but digits from a phone number."""
    return re.sub(r"\D", "", phone or "")


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


def format_percentage(obtained: float, total: float) -> int:
    """Whole-number percentage; a zero total yields 0."""
    if total == 0:
        return 0
    return round_half_up((obtained / total) * 100)
