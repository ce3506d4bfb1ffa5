"""
Time Span - hour windows and sleep duration arithmetic
"""

from datetime import date, datetime, timezone, tzinfo
from typing import Optional, Tuple

MINUTES_PER_DAY = 24 * 60


def is_in_window(hour: int, window: Tuple[int, int]) -> bool:
    """
    Check whether ``hour`` falls inside an inclusive hour window.

    A window whose start is after its end crosses midnight, so (21, 3)
    covers 21:00 through 03:59.
    """
    start, end = window
    if start <= end:
        return start <= hour <= end
    return hour >= start or hour <= end


def duration_minutes(sleep_instant: datetime, wake_instant: datetime) -> int:
    """Elapsed minutes between two instants, rounded, never negative."""
    elapsed = to_storage(wake_instant) - to_storage(sleep_instant)
    return max(0, round(elapsed.total_seconds() / 60))


def clock_span_minutes(start: Tuple[int, int], end: Tuple[int, int]) -> int:
    """
    Minutes from one (hour, minute) clock time to the next occurrence of another.

    Only for bare clock times with no date attached: 23:50 -> 07:00 is 430.
    """
    start_minutes = start[0] * 60 + start[1]
    end_minutes = end[0] * 60 + end[1]
    return (end_minutes - start_minutes) % MINUTES_PER_DAY


def to_storage(instant: datetime) -> datetime:
    """Normalise an instant to naive UTC. Naive input is taken as UTC already."""
    if instant.tzinfo is None:
        return instant
    return instant.astimezone(timezone.utc).replace(tzinfo=None)


def from_storage(value: Optional[datetime], tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """Turn a stored naive-UTC value back into an aware datetime in ``tz``."""
    if value is None:
        return None
    aware = value.replace(tzinfo=timezone.utc)
    return aware.astimezone(tz) if tz is not None else aware


def localize(instant: datetime, tz: Optional[tzinfo]) -> datetime:
    """Express an instant in ``tz``. Naive input is read as wall-clock time in ``tz``."""
    if tz is None:
        return instant
    if instant.tzinfo is None:
        return instant.replace(tzinfo=tz)
    return instant.astimezone(tz)


def local_hour(instant: datetime, tz: Optional[tzinfo] = None) -> int:
    return localize(instant, tz).hour


def local_day(instant: datetime, tz: Optional[tzinfo] = None) -> date:
    return localize(instant, tz).date()


def format_minutes(minutes: int) -> str:
    """480 -> '8h 0m'"""
    hours, rest = divmod(int(minutes), 60)
    return f"{hours}h {rest}m"
