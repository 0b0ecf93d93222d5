import re
from datetime import date, datetime, time
from typing import Optional

MINUTES_IN_DAY = 24 * 60

_HHMM_RE = re.compile(r'^\s*(\d{1,2}):(\d{2})(?::(\d{2}))?\s*$')


def parse_hhmm(value) -> Optional[int]:
    """Parse "HH:MM" (or "HH:MM:SS", or a time/datetime) to minute of day.

    Returns None for anything unparsable or out of range instead of raising;
    callers decide what a missing value defaults to.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.hour * 60 + value.minute
    if isinstance(value, time):
        return value.hour * 60 + value.minute
    m = _HHMM_RE.match(str(value))
    if not m:
        return None
    hours, minutes = int(m.group(1)), int(m.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


def format_hhmm(minutes: Optional[int], wrap: bool = True) -> Optional[str]:
    if minutes is None:
        return None
    if wrap:
        minutes %= MINUTES_IN_DAY
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def iso_weekday(d: date) -> int:
    """Monday = 1 .. Sunday = 7."""
    return d.isoweekday()


def in_effective_range(d: date, effective_from: date, effective_to: Optional[date]) -> bool:
    """Half-open [effective_from, effective_to); open-ended when effective_to is None."""
    if d < effective_from:
        return False
    return effective_to is None or d < effective_to


def overlaps_window(effective_from: date, effective_to: Optional[date],
                    window_from: date, window_to: date) -> bool:
    """Does [effective_from, effective_to) intersect the inclusive window?"""
    if effective_from > window_to:
        return False
    return effective_to is None or effective_to > window_from
