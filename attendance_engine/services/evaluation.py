import logging
from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Optional

from ..models import (
    EvaluatedDay,
    EvaluationResult,
    IdentityCandidate,
    RawPunchEntry,
    ScheduleType,
    ShiftSchedule,
)
from .aggregator import summarize_per_employee
from .day_evaluator import evaluate_day, normalize_punch_times, unroll_shift_times
from .identity import IdentityReconciler
from .tokens import BioToken
from .schedule_resolver import DEFAULT_CHUNK_SIZE, expand_window, preload_schedules
from .timeutil import format_hhmm, iso_weekday, parse_hhmm

logger = logging.getLogger(__name__)


@dataclass
class EvaluationSettings:
    pad_length: int = 0
    chunk_size: int = DEFAULT_CHUNK_SIZE

    @classmethod
    def from_config(cls, config) -> 'EvaluationSettings':
        return cls(
            pad_length=int(config.get('BIOMETRICS_TOKEN_PAD_LENGTH', 0) or 0),
            chunk_size=int(config.get('PRELOAD_CHUNK_SIZE', DEFAULT_CHUNK_SIZE) or DEFAULT_CHUNK_SIZE),
        )


@dataclass
class _DayInput:
    raw_token: str
    date: date
    day: int
    minutes: list
    files: list
    hint: Optional[IdentityCandidate] = None


def _entry_minutes(entry: RawPunchEntry) -> list[int]:
    values = list(entry.all_times or [])
    for punch in entry.punches or []:
        minute = punch.minute_of_day
        values.append(minute if minute is not None else parse_hhmm(punch.time))
    values.extend(v for v in (entry.earliest, entry.latest) if v)
    return normalize_punch_times(values)


def _entry_files(entry: RawPunchEntry) -> set:
    files = set(entry.source_files or [])
    for punch in entry.punches or []:
        files.update(punch.files or [])
    return files


def token_key(raw, pad_length: int = 0) -> str:
    """Key a device token is grouped under: normalized, or raw when that is empty."""
    token = BioToken.parse(raw, pad_length)
    return token.normalized or token.raw


def merge_entries(entries: list, reconciler: IdentityReconciler) -> dict:
    """Group raw entries by (token key, date), merging punches and files.

    The same device token can show up in several uploaded files for one day.
    """
    merged = {}
    for entry in entries:
        token = reconciler.parse(entry.employee_token)
        key = token.normalized or token.raw
        slot = merged.get((key, entry.date))
        minutes = _entry_minutes(entry)
        files = _entry_files(entry)
        if slot is None:
            hint = None
            if entry.resolved_employee_id:
                hint = IdentityCandidate(
                    employee_id=entry.resolved_employee_id,
                    employee_name=entry.employee_name or '',
                    office_id=entry.office_id,
                    office_name=entry.office_name,
                )
            merged[(key, entry.date)] = _DayInput(
                raw_token=token.raw,
                date=entry.date,
                day=entry.day or entry.date.day,
                minutes=minutes,
                files=sorted(files),
                hint=hint,
            )
        else:
            slot.minutes = sorted(set(slot.minutes) | set(minutes))
            slot.files = sorted(set(slot.files) | files)
    return merged


def evaluate_entries(
    entries: list,
    repository,
    settings: Optional[EvaluationSettings] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> EvaluationResult:
    """Run one evaluation: reconcile, preload, evaluate, aggregate.

    Token-to-employee mappings are resolved once up front and stay fixed for
    the whole run. Entries dated outside [date_from, date_to] only lend their
    punches to overnight shifts; they never get a row of their own.
    Persistence errors propagate to the caller.
    """
    if not entries:
        return EvaluationResult(per_day=[], per_employee=[])

    settings = settings or EvaluationSettings()
    reconciler = IdentityReconciler(repository, settings.pad_length, settings.chunk_size)
    merged = merge_entries(entries, reconciler)

    hints = {key: slot.hint for (key, _), slot in merged.items() if slot.hint is not None}
    identities = reconciler.reconcile(sorted({slot.raw_token for slot in merged.values()}), hints)

    employee_ids = {r.employee_id for r in identities.values() if r.employee_id}
    all_dates = [d for _, d in merged]
    # one extra day so an overnight shift on the last date sees its own schedule window
    snapshot = preload_schedules(
        repository, employee_ids, min(all_dates), max(all_dates) + timedelta(days=1), settings.chunk_size,
    )

    dates_by_token = {}
    for key, d in merged:
        dates_by_token.setdefault(key, []).append(d)

    rows = []
    consumed = set()
    for key in sorted(dates_by_token):
        identity = identities[key]
        for d in sorted(dates_by_token[key]):
            if not _in_window(d, date_from, date_to):
                continue
            slot = merged[(key, d)]
            rows.append(_evaluate_slot(key, slot, identity, snapshot, merged, consumed))

    rows.sort(key=lambda r: (r.date, r.employee_name, r.normalized_token))
    per_employee = summarize_per_employee(rows, snapshot.has_coverage)
    logger.info("Evaluated %d employee-days for %d tokens (%d employees)",
                len(rows), len(dates_by_token), len(per_employee))
    return EvaluationResult(per_day=rows, per_employee=per_employee, identities=identities)


def _in_window(d: date, date_from: Optional[date], date_to: Optional[date]) -> bool:
    return (date_from is None or d >= date_from) and (date_to is None or d <= date_to)


def _day_start(schedule, d: date) -> int:
    """Earliest minute the day's own schedule expects an arrival."""
    if schedule.type is ScheduleType.SHIFT:
        return schedule.shift_start
    if schedule.type is ScheduleType.FLEX:
        day = schedule.weekly_pattern.for_weekday(iso_weekday(d)) if schedule.weekly_pattern else None
        if day is not None and day.windows:
            return min(seg.start for window in day.windows for seg in expand_window(window))
        return schedule.bandwidth_start
    return schedule.start_time


def borrow_limit(shift: ShiftSchedule, next_schedule, next_day: date) -> int:
    """Punches on next_day before this minute may end last night's shift.

    Up to the shift's own pivot, but never into the next day's schedule: when
    the next day starts after the shift ends, the gap is split halfway.
    """
    if next_schedule.type is ScheduleType.SHIFT and next_schedule.is_overnight:
        return min(shift.pivot, next_schedule.pivot)
    next_start = _day_start(next_schedule, next_day)
    if next_start <= shift.shift_end:
        return min(shift.pivot, next_start)
    return min(shift.pivot, shift.shift_end + (next_start - shift.shift_end) // 2)


def _evaluate_slot(key, slot: _DayInput, identity, snapshot, merged, consumed) -> EvaluatedDay:
    d = slot.date
    resolved = snapshot.resolve(identity.employee_id, d)
    schedule = resolved.schedule
    times = [t for t in slot.minutes if (key, d, t) not in consumed]
    borrowed = []

    if schedule.type is ScheduleType.SHIFT and schedule.is_overnight:
        # Night shift pairing: tonight's punches from this date, the end of the
        # shift from tomorrow morning.
        pivot = schedule.pivot
        stray = [t for t in times if t < pivot]
        if stray:
            logger.warning("Ignoring %d stray morning punches for %s on %s", len(stray), key, d)
        times = [t for t in times if t >= pivot]
        next_day = d + timedelta(days=1)
        tomorrow = merged.get((key, next_day))
        if tomorrow is not None:
            limit = borrow_limit(schedule, snapshot.resolve(identity.employee_id, next_day).schedule, next_day)
            for t in tomorrow.minutes:
                if t < limit and (key, next_day, t) not in consumed:
                    borrowed.append(t)
                    consumed.add((key, next_day, t))

    exclusion = snapshot.weekly_exclusion(identity.employee_id, d)
    verdict = evaluate_day(d, times + borrowed, schedule, exclusion)

    axis = unroll_shift_times(sorted(times + borrowed), schedule) if schedule.type is ScheduleType.SHIFT \
        else sorted(times)
    return EvaluatedDay(
        employee_token=slot.raw_token,
        normalized_token=key,
        employee_id=identity.employee_id,
        employee_name=identity.employee_name,
        office_id=identity.office_id,
        office_name=identity.office_name,
        identity_status=identity.status,
        candidate_count=len(identity.candidates),
        date=d,
        day=slot.day,
        earliest=format_hhmm(axis[0]) if axis else None,
        latest=format_hhmm(axis[-1]) if axis else None,
        all_times=[format_hhmm(t) for t in sorted(times)],
        borrowed_times=[format_hhmm(t) for t in sorted(borrowed)],
        source_files=list(slot.files),
        schedule_type=schedule.type,
        schedule_source=resolved.source,
        verdict=verdict,
        weekly_exclusion_id=exclusion.id if exclusion is not None else None,
    )


def reevaluate_token(
    sessions,
    session_id: str,
    token: str,
    employee_id: str,
    repository,
    settings: Optional[EvaluationSettings] = None,
) -> EvaluationResult:
    """Recompute only one token's days after an operator picked its employee.

    The chosen employee is passed as an identity hint, so the result does not
    depend on whether the manual mapping has been persisted yet.
    """
    settings = settings or EvaluationSettings()
    session = sessions.require(session_id)
    key = token_key(token, settings.pad_length)
    entries = [replace(e, resolved_employee_id=employee_id) for e in session.entries_for(key)]
    result = evaluate_entries(entries, repository, settings, session.date_from, session.date_to)
    sessions.update_token(session_id, key, result, employee_id=employee_id)
    return result
