"""Pure time-math for one employee-day.

Every function here works on minute-of-day integers and never performs I/O.
Schedule variants are dispatched explicitly by their type tag, one evaluator
per variant.
"""
from datetime import date
from typing import Optional

from ..models import (
    DayStatus,
    DayVerdict,
    ExclusionMode,
    FixedSchedule,
    FlexSchedule,
    PatternDay,
    PatternWindow,
    ScheduleType,
    ShiftSchedule,
    WeeklyExclusion,
)
from .schedule_resolver import expand_window
from .timeutil import MINUTES_IN_DAY, iso_weekday, parse_hhmm


def normalize_punch_times(values) -> list[int]:
    """Parse, de-duplicate and sort punch clock-times; garbage is dropped."""
    minutes = set()
    for value in values or ():
        if isinstance(value, int) and not isinstance(value, bool):
            parsed = value if 0 <= value < MINUTES_IN_DAY else None
        else:
            parsed = parse_hhmm(value)
        if parsed is not None:
            minutes.add(parsed)
    return sorted(minutes)


def _expected_start(start: int, ignore_until: Optional[int]) -> int:
    if ignore_until is None:
        return start
    return max(start, ignore_until)


def _no_punches(required: Optional[int], start, end, grace) -> DayVerdict:
    needs_minutes = bool(required)
    return DayVerdict(
        status=DayStatus.NO_PUNCHES,
        worked_minutes=0,
        is_late=False,
        late_minutes=None,
        is_undertime=needs_minutes,
        undertime_minutes=required if needs_minutes else 0,
        required_minutes=required,
        schedule_start=start,
        schedule_end=end,
        grace_minutes=grace,
    )


def _paired_presence(times: list[int]) -> list[tuple]:
    """Read sorted punches as in/out pairs; a trailing unpaired punch is dropped."""
    return [(times[i], times[i + 1]) for i in range(0, len(times) - 1, 2)]


def evaluate_fixed(d: date, times: list[int], schedule: FixedSchedule,
                   ignore_until: Optional[int] = None) -> DayVerdict:
    start = _expected_start(schedule.start_time, ignore_until)
    required = max(0, schedule.end_time - schedule.start_time - schedule.break_minutes)
    if not times:
        return _no_punches(required, start, schedule.end_time, schedule.grace_minutes)

    earliest, latest = times[0], times[-1]
    worked = max(0, latest - earliest - schedule.break_minutes)
    late = max(0, earliest - (start + schedule.grace_minutes))
    return DayVerdict(
        status=DayStatus.EVALUATED,
        worked_minutes=worked,
        is_late=late > 0,
        late_minutes=late,
        is_undertime=worked < required,
        undertime_minutes=max(0, required - worked),
        required_minutes=required,
        schedule_start=start,
        schedule_end=schedule.end_time,
        grace_minutes=schedule.grace_minutes,
    )


def evaluate_pattern_day(times: list[int], day: PatternDay,
                         ignore_until: Optional[int] = None) -> DayVerdict:
    """FLEX day governed by a weekly pattern: presence only counts inside windows.

    There is no lateness on such days, only undertime against the pattern's
    required minutes. No break is deducted.
    """
    segments = sorted(
        (seg for window in day.windows for seg in expand_window(window)),
        key=lambda s: (s.start, s.end),
    )
    start = _expected_start(segments[0].start, ignore_until)
    end = segments[-1].end
    required = day.required_minutes

    if not times:
        verdict = _no_punches(required, start, end, 0)
        verdict.weekly_pattern_applied = True
        return verdict

    counted = []
    for presence_start, presence_end in _paired_presence(times):
        for seg in segments:
            lo = max(presence_start, seg.start)
            hi = min(presence_end, seg.end)
            if hi > lo:
                counted.append(PatternWindow(lo, hi))
    counted.sort(key=lambda s: (s.start, s.end))
    worked = sum(seg.end - seg.start for seg in counted)

    return DayVerdict(
        status=DayStatus.EVALUATED,
        worked_minutes=worked,
        is_late=False,
        late_minutes=0,
        is_undertime=worked < required,
        undertime_minutes=max(0, required - worked),
        required_minutes=required,
        schedule_start=start,
        schedule_end=end,
        grace_minutes=0,
        weekly_pattern_applied=True,
        pattern_presence=counted,
    )


def evaluate_flex(d: date, times: list[int], schedule: FlexSchedule,
                  ignore_until: Optional[int] = None) -> DayVerdict:
    if schedule.weekly_pattern is not None:
        day = schedule.weekly_pattern.for_weekday(iso_weekday(d))
        if day is not None and day.windows:
            return evaluate_pattern_day(times, day, ignore_until)

    core_start = _expected_start(schedule.core_start, ignore_until)
    required = schedule.required_daily_minutes
    if not times:
        return _no_punches(required, core_start, schedule.core_end, schedule.grace_minutes)

    core_length = max(0, schedule.core_end - schedule.core_start)
    effective_start = max(times[0], schedule.bandwidth_start)
    effective_end = min(times[-1], schedule.bandwidth_end)

    if effective_end <= effective_start:
        # punches exist but none inside the bandwidth: core missed entirely
        return DayVerdict(
            status=DayStatus.EVALUATED,
            worked_minutes=0,
            is_late=core_length > 0,
            late_minutes=core_length,
            is_undertime=required > 0,
            undertime_minutes=required,
            required_minutes=required,
            schedule_start=core_start,
            schedule_end=schedule.core_end,
            grace_minutes=schedule.grace_minutes,
        )

    worked = max(0, effective_end - effective_start - schedule.break_minutes)
    present_in_core = min(effective_end, schedule.core_end) > max(effective_start, schedule.core_start)
    late = max(0, effective_start - (core_start + schedule.grace_minutes))
    if not present_in_core:
        late = max(late, core_length)

    return DayVerdict(
        status=DayStatus.EVALUATED,
        worked_minutes=worked,
        is_late=late > 0,
        late_minutes=late,
        is_undertime=worked < required,
        undertime_minutes=max(0, required - worked),
        required_minutes=required,
        schedule_start=core_start,
        schedule_end=schedule.core_end,
        grace_minutes=schedule.grace_minutes,
    )


def unroll_shift_times(times: list[int], schedule: ShiftSchedule) -> list[int]:
    """Place clock-times of an overnight shift on one continuous axis.

    Times before the off-duty midpoint belong to the morning after the shift
    started and get +24h.
    """
    if not schedule.is_overnight:
        return list(times)
    pivot = schedule.pivot
    return sorted(t + MINUTES_IN_DAY if t < pivot else t for t in times)


def evaluate_shift(d: date, times: list[int], schedule: ShiftSchedule,
                   ignore_until: Optional[int] = None) -> DayVerdict:
    shift_end = schedule.shift_end
    if schedule.is_overnight:
        shift_end += MINUTES_IN_DAY
        if ignore_until is not None and ignore_until < schedule.pivot:
            ignore_until += MINUTES_IN_DAY
    times = unroll_shift_times(times, schedule)
    start = _expected_start(schedule.shift_start, ignore_until)
    required = schedule.required_minutes

    if not times:
        return _no_punches(required, start, shift_end, schedule.grace_minutes)

    worked = max(0, times[-1] - times[0] - schedule.break_minutes)
    late = max(0, times[0] - (start + schedule.grace_minutes))
    is_undertime = required is not None and worked < required
    return DayVerdict(
        status=DayStatus.EVALUATED,
        worked_minutes=worked,
        is_late=late > 0,
        late_minutes=late,
        is_undertime=is_undertime,
        undertime_minutes=max(0, required - worked) if required is not None else 0,
        required_minutes=required,
        schedule_start=start,
        schedule_end=shift_end,
        grace_minutes=schedule.grace_minutes,
    )


_EVALUATORS = {
    ScheduleType.FIXED: evaluate_fixed,
    ScheduleType.FLEX: evaluate_flex,
    ScheduleType.SHIFT: evaluate_shift,
}


def evaluate_day(d: date, times, schedule, exclusion: Optional[WeeklyExclusion] = None) -> DayVerdict:
    """Verdict for one employee-day.

    times are minute-of-day values or "HH:MM" strings in any order. For an
    overnight SHIFT, the next morning's punches are passed as plain clock-times
    and recognised by unroll_shift_times().
    """
    minutes = normalize_punch_times(times)

    ignore_until = None
    applied_mode = None
    if exclusion is not None:
        if exclusion.mode is ExclusionMode.EXCUSED:
            applied_mode = ExclusionMode.EXCUSED
        elif exclusion.ignore_until is not None:
            ignore_until = exclusion.ignore_until
            applied_mode = ExclusionMode.IGNORE_LATE_UNTIL

    verdict = _EVALUATORS[schedule.type](d, minutes, schedule, ignore_until)
    verdict.weekly_exclusion_mode = applied_mode

    if applied_mode is ExclusionMode.EXCUSED:
        verdict.status = DayStatus.EXCUSED
        verdict.is_late = False
        verdict.is_undertime = False
        verdict.late_minutes = 0
        verdict.undertime_minutes = 0
    return verdict
