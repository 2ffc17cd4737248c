# ==============================================================================
# Time Helpers
# ==============================================================================
"""
Time helpers shared by the tracker and the analytics engines.

Event timestamps are Unix milliseconds (UTC). Cohort bookkeeping works on
calendar dates, bucketed to the Monday of their ISO week.
"""

import time
from datetime import date, datetime, timedelta, timezone

DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    """Current wall-clock time as Unix milliseconds."""
    return int(time.time() * 1000)


def ms_to_datetime(timestamp: int) -> datetime:
    """Convert Unix milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(timestamp / 1000.0, tz=timezone.utc)


def ms_to_date(timestamp: int) -> date:
    """Calendar date (UTC) of a Unix millisecond timestamp."""
    return ms_to_datetime(timestamp).date()


def week_start(day: date) -> date:
    """Monday of the ISO week containing ``day``."""
    return day - timedelta(days=day.weekday())


def iso_week_label(day: date) -> str:
    """ISO week label, e.g. ``2024-W07``."""
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


def parse_date(value: str | date | datetime) -> date:
    """
    Accept an ISO date string, a date or a datetime and return a date.

    Raises:
        ValueError: For any other type, or a string that is not an ISO date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Expected an ISO date, got {type(value).__name__}")
    return date.fromisoformat(value[:10])
