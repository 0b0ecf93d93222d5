import logging
from collections import defaultdict
from datetime import date
from typing import Iterable, Optional

from ..models import (
    WEEKDAY_KEYS,
    FixedSchedule,
    FlexSchedule,
    PatternDay,
    PatternWindow,
    ResolvedSchedule,
    ScheduleFields,
    ScheduleSource,
    ScheduleType,
    ShiftSchedule,
    WeeklyExclusion,
    WeeklyPattern,
)
from .timeutil import MINUTES_IN_DAY, in_effective_range, overlaps_window, parse_hhmm
from .weekly_exclusions import find_weekly_exclusion

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE = FixedSchedule(start_time=8 * 60, end_time=17 * 60, break_minutes=60, grace_minutes=0)

MAX_PATTERN_WINDOWS = 3
DEFAULT_CHUNK_SIZE = 200


class _Malformed(ValueError):
    pass


def _time(value, fallback: int) -> int:
    """Stored "HH:MM" to minutes; blank means "use the default", garbage is an error."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return fallback
    minutes = parse_hhmm(value)
    if minutes is None:
        raise _Malformed(f"unparsable time {value!r}")
    return minutes


def _minutes(value, fallback: Optional[int]) -> Optional[int]:
    if value is None:
        return fallback
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        raise _Malformed(f"unparsable minutes {value!r}")


def expand_window(window: PatternWindow) -> list[PatternWindow]:
    """Split a window wrapping midnight into two same-day segments."""
    if window.start == window.end:
        return []
    if window.end > window.start:
        return [window]
    return [PatternWindow(window.start, MINUTES_IN_DAY), PatternWindow(0, window.end)]


def validate_pattern_day(day: PatternDay) -> Optional[str]:
    """Return a human-readable problem with one weekday's pattern, or None."""
    if not day.windows:
        if day.required_minutes > 0:
            return "Add at least one window to enforce required minutes."
        return None
    if day.required_minutes < 0:
        return "Required minutes must be zero or greater."
    if len(day.windows) > MAX_PATTERN_WINDOWS:
        return f"At most {MAX_PATTERN_WINDOWS} windows per day."
    segments = []
    for window in day.windows:
        expanded = expand_window(window)
        if not expanded:
            return "Start and end must not be the same."
        segments.extend(expanded)
    segments.sort(key=lambda s: (s.start, s.end))
    for prev, curr in zip(segments, segments[1:]):
        if curr.start < prev.end:
            return "Windows for this day overlap."
    return None


def parse_weekly_pattern(raw) -> Optional[WeeklyPattern]:
    """Build a WeeklyPattern from its stored JSON form.

    Unusable windows are skipped; a weekday whose windows fail validation is
    dropped (and therefore unconstrained) with a warning.
    """
    if not isinstance(raw, dict):
        return None
    days = []
    for key in WEEKDAY_KEYS:
        day_raw = raw.get(key)
        if not isinstance(day_raw, dict):
            continue
        windows = []
        for window_raw in day_raw.get('windows') or []:
            if not isinstance(window_raw, dict):
                continue
            start = parse_hhmm(window_raw.get('start'))
            end = parse_hhmm(window_raw.get('end'))
            if start is None or end is None:
                continue
            windows.append(PatternWindow(start, end))
        required_raw = day_raw.get('requiredMinutes', day_raw.get('required_minutes', 0))
        try:
            required = int(required_raw or 0)
        except (TypeError, ValueError):
            required = 0
        if not windows and required <= 0:
            continue
        day = PatternDay(windows=tuple(windows), required_minutes=required)
        problem = validate_pattern_day(day)
        if problem:
            logger.warning("Ignoring weekly pattern for %s: %s", key, problem)
            continue
        days.append((key, day))
    return WeeklyPattern(days=tuple(days)) if days else None


def normalize_schedule(record: Optional[ScheduleFields]):
    """Turn a raw schedule record into a fully-defaulted typed schedule.

    Returns (schedule, ok). ok is False when the record was malformed and the
    default schedule was substituted.
    """
    if record is None:
        return DEFAULT_SCHEDULE, True

    type_name = (record.type or 'FIXED').strip().upper()
    try:
        schedule_type = ScheduleType(type_name)
        break_minutes = _minutes(record.break_minutes, 60)
        grace_minutes = _minutes(record.grace_minutes, 0)

        if schedule_type is ScheduleType.FLEX:
            return FlexSchedule(
                core_start=_time(record.core_start, 10 * 60),
                core_end=_time(record.core_end, 15 * 60),
                bandwidth_start=_time(record.bandwidth_start, 6 * 60),
                bandwidth_end=_time(record.bandwidth_end, 20 * 60),
                required_daily_minutes=_minutes(record.required_daily_minutes, 480),
                break_minutes=break_minutes,
                grace_minutes=grace_minutes,
                weekly_pattern=parse_weekly_pattern(record.weekly_pattern),
            ), True

        if schedule_type is ScheduleType.SHIFT:
            return ShiftSchedule(
                shift_start=_time(record.shift_start, 22 * 60),
                shift_end=_time(record.shift_end, 6 * 60),
                break_minutes=break_minutes,
                grace_minutes=grace_minutes,
                required_minutes=_minutes(record.required_daily_minutes, None),
            ), True

        return FixedSchedule(
            start_time=_time(record.start_time, 8 * 60),
            end_time=_time(record.end_time, 17 * 60),
            break_minutes=break_minutes,
            grace_minutes=grace_minutes,
        ), True
    except ValueError as exc:
        logger.warning("Malformed schedule record %s, using default: %s",
                       getattr(record, 'id', '?'), exc)
        return DEFAULT_SCHEDULE, False


class ScheduleSnapshot:
    """In-memory index of every schedule record relevant to one evaluation run.

    Built once by preload_schedules(); afterwards every lookup is a dict hit
    and never touches persistence.
    """

    def __init__(self, work_schedules, exceptions, exclusions, date_from: date, date_to: date):
        self.date_from = date_from
        self.date_to = date_to
        self._exceptions = {}
        self._schedules = defaultdict(list)
        self._exclusions = defaultdict(list)
        self._covered = set()
        self._resolved = {}

        for exc in exceptions:
            key = (exc.employee_id, exc.exception_date)
            # first one wins when the store holds duplicates for a date
            if key not in self._exceptions:
                self._exceptions[key] = exc
            self._covered.add(exc.employee_id)

        for schedule in work_schedules:
            self._schedules[schedule.employee_id].append(schedule)
            if overlaps_window(schedule.effective_from, schedule.effective_to, date_from, date_to):
                self._covered.add(schedule.employee_id)
        for items in self._schedules.values():
            # stable: ties on effective_from keep store order
            items.sort(key=lambda s: s.effective_from, reverse=True)

        for exclusion in exclusions:
            self._exclusions[exclusion.employee_id].append(exclusion)

    def resolve(self, employee_id: Optional[str], d: date) -> ResolvedSchedule:
        if not employee_id:
            return ResolvedSchedule(DEFAULT_SCHEDULE, ScheduleSource.NOMAPPING)

        key = (employee_id, d)
        cached = self._resolved.get(key)
        if cached is not None:
            return cached

        resolved = None
        exc = self._exceptions.get(key)
        if exc is not None:
            schedule, ok = normalize_schedule(exc)
            resolved = ResolvedSchedule(schedule, ScheduleSource.EXCEPTION if ok else ScheduleSource.DEFAULT)
        else:
            for record in self._schedules.get(employee_id, ()):
                if in_effective_range(d, record.effective_from, record.effective_to):
                    schedule, ok = normalize_schedule(record)
                    resolved = ResolvedSchedule(
                        schedule, ScheduleSource.WORKSCHEDULE if ok else ScheduleSource.DEFAULT)
                    break
        if resolved is None:
            resolved = ResolvedSchedule(DEFAULT_SCHEDULE, ScheduleSource.DEFAULT)

        self._resolved[key] = resolved
        return resolved

    def weekly_exclusion(self, employee_id: Optional[str], d: date) -> Optional[WeeklyExclusion]:
        if not employee_id:
            return None
        return find_weekly_exclusion(self._exclusions.get(employee_id), d)

    def has_coverage(self, employee_id: Optional[str]) -> bool:
        return bool(employee_id) and employee_id in self._covered


def _chunks(items: list, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


def preload_schedules(
    repository,
    employee_ids: Iterable[str],
    date_from: date,
    date_to: date,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> ScheduleSnapshot:
    """Fetch everything overlapping [date_from, date_to] for the given employees.

    Issues three queries per chunk of at most chunk_size ids. Repository errors
    propagate: partial schedule data would corrupt every verdict of the run.
    """
    ids = sorted({e for e in employee_ids if e})
    work_schedules, exceptions, exclusions = [], [], []
    for chunk in _chunks(ids, max(1, chunk_size)):
        work_schedules.extend(repository.fetch_work_schedules(chunk, date_from, date_to))
        exceptions.extend(repository.fetch_schedule_exceptions(chunk, date_from, date_to))
        exclusions.extend(repository.fetch_weekly_exclusions(chunk, date_from, date_to))

    logger.info(
        "Preloaded %d schedules, %d exceptions, %d weekly exclusions for %d employees (%s..%s)",
        len(work_schedules), len(exceptions), len(exclusions), len(ids), date_from, date_to,
    )
    return ScheduleSnapshot(work_schedules, exceptions, exclusions, date_from, date_to)


def resolve_schedule_for(repository, employee_id: Optional[str], d: date) -> ResolvedSchedule:
    """Single-day lookup; batch callers must use preload_schedules() instead."""
    snapshot = preload_schedules(repository, [employee_id] if employee_id else [], d, d)
    return snapshot.resolve(employee_id, d)
