"""Timestamp parsing and iteration window helpers."""

from datetime import datetime, timedelta, timezone
from typing import Optional

MS_PER_HOUR = 3_600_000
SECONDS_PER_DAY = 86_400

# GitLab formats: "2025-07-25T15:03:00Z", "2025-07-25T15:03:00.123+02:00", "2025-07-25"
_FORMATS = [
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d",
]


def parse_datetime(value) -> Optional[datetime]:
    """Parse a GitLab timestamp into an aware UTC datetime.

    Bare dates and naive timestamps are taken to be UTC. Returns None for
    empty or unparseable input.
    """
    if not value:
        return None

    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = None
        for fmt in _FORMATS:
            try:
                parsed = datetime.strptime(value, fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as ISO 8601 with a trailing Z."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def window_bounds(iteration) -> tuple:
    """Return the half-open [start, end) window covered by an iteration.

    The due date is a whole day, so the window ends at midnight after it.
    """
    start = parse_datetime(iteration.start_date)
    due = parse_datetime(iteration.due_date)
    start = start.replace(hour=0, minute=0, second=0, microsecond=0)
    end = due.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
    return start, end


def window_days(iteration) -> int:
    """Number of calendar days in the iteration, both endpoints included."""
    start, end = window_bounds(iteration)
    return max(1, round((end - start).total_seconds() / SECONDS_PER_DAY))


def in_window(instant: Optional[datetime], start: datetime, end: datetime) -> bool:
    if instant is None:
        return False
    return start <= instant < end


def days_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / SECONDS_PER_DAY


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() * 1000 / MS_PER_HOUR
