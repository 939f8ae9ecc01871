"""
Deployment & eligibility resolver.

Classifies a (student, test, attempt) triple at a point in time. The order of
the checks matters: a student who joined the batch after a test opened must
come out as ``not_enrolled`` rather than ``expired`` so analytics do not
count the test as missed.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from .exceptions import AlreadyExpiredError, ValidationError


class Availability(str, Enum):
    UPCOMING = "upcoming"
    AVAILABLE = "available"
    EXPIRED = "expired"
    NOT_ENROLLED = "not_enrolled"
    COMPLETED = "completed"


def joined_after(joined_at: Optional[datetime], boundary: Optional[datetime]) -> bool:
    """True when the student joined after the boundary (the test start)."""
    return joined_at is not None and boundary is not None and joined_at > boundary


def classify(
    joined_at: Optional[datetime],
    start_time: Optional[datetime],
    end_time: Optional[datetime],
    attempt_status: Optional[str],
    now: datetime,
) -> Availability:
    """
    Classify a test for one student.

    Args:
        joined_at: when the student was added to the roster
        start_time / end_time: the deployment window (either may be open)
        attempt_status: None when no attempt exists, else "in_progress" / "completed"
        now: evaluation time
    """
    if attempt_status == "completed":
        return Availability.COMPLETED

    # a started attempt stays addressable so the student can finish it
    if attempt_status == "in_progress":
        return Availability.AVAILABLE

    if start_time and now < start_time:
        return Availability.UPCOMING

    if not end_time or now <= end_time:
        return Availability.AVAILABLE

    if joined_after(joined_at, start_time):
        return Availability.NOT_ENROLLED

    return Availability.EXPIRED


def ensure_can_start(start_time: Optional[datetime], end_time: Optional[datetime], now: datetime):
    """Raise unless a brand-new attempt may be opened at ``now``."""
    if start_time and now < start_time:
        raise ValidationError("Test has not started yet")
    if end_time and now > end_time:
        raise AlreadyExpiredError("Test window has closed")


def results_pending(show_results_immediately: bool, end_time: Optional[datetime], now: datetime) -> bool:
    """Results are held back until the end of the window when not shown immediately."""
    if show_results_immediately or end_time is None:
        return False
    return now < end_time


def results_hidden(
    show_results: bool,
    show_results_immediately: bool,
    end_time: Optional[datetime],
    now: datetime,
) -> bool:
    """Score fields are withheld from the student when results are off or still pending."""
    return not show_results or results_pending(show_results_immediately, end_time, now)
