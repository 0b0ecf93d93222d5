from datetime import date
from typing import Optional

from ..models import WeeklyExclusion
from .timeutil import in_effective_range, iso_weekday


def find_weekly_exclusion(exclusions, d: date) -> Optional[WeeklyExclusion]:
    """Select the weekly exclusion governing date d, if any.

    Matches on ISO weekday and the half-open effective range. Overlapping
    records are a write-side data error; the first match in the given order is
    returned and the overlap is left alone.
    """
    if not exclusions:
        return None
    weekday = iso_weekday(d)
    for exclusion in exclusions:
        if exclusion.weekday != weekday:
            continue
        if in_effective_range(d, exclusion.effective_from, exclusion.effective_to):
            return exclusion
    return None
