from typing import Callable, Optional

from ..models import (
    DayStatus,
    EmployeeSummary,
    IdentityStatus,
    ScheduleCoverage,
    ScheduleSource,
)

_CONFIGURED_SOURCES = (ScheduleSource.EXCEPTION, ScheduleSource.WORKSCHEDULE)


def summary_key(row) -> str:
    """Resolved employees fold by id; unresolved tokens stay separate."""
    if row.employee_id:
        return row.employee_id
    return f"token:{row.normalized_token or row.employee_token}"


def summarize_per_employee(
    per_day: list,
    has_coverage: Optional[Callable[[Optional[str]], bool]] = None,
) -> list[EmployeeSummary]:
    """Fold evaluated days into one summary per employee (or unresolved token).

    has_coverage(employee_id) reports whether any schedule data existed for
    the employee in the window. Without it, coverage is inferred from the days
    themselves (a day resolved from an exception or work schedule, or from a
    weekly pattern).
    """
    summaries = {}
    for row in per_day:
        key = summary_key(row)
        summary = summaries.get(key)
        if summary is None:
            summary = EmployeeSummary(
                key=key,
                employee_id=row.employee_id,
                employee_name=row.employee_name,
                employee_tokens=[],
                office_name=row.office_name,
                identity_status=row.identity_status,
            )
            summaries[key] = summary

        token = row.normalized_token or row.employee_token
        if token not in summary.employee_tokens:
            summary.employee_tokens.append(token)
        if row.identity_status is IdentityStatus.AMBIGUOUS:
            summary.identity_status = IdentityStatus.AMBIGUOUS

        verdict = row.verdict
        summary.days_evaluated += 1
        if row.has_punches:
            summary.days_present += 1
        elif verdict.status is not DayStatus.EXCUSED and (verdict.required_minutes or 0) > 0:
            summary.absent_days += 1
        if verdict.is_late:
            summary.late_days += 1
            summary.late_minutes += verdict.late_minutes or 0
        if verdict.is_undertime:
            summary.undertime_days += 1
            summary.undertime_minutes += verdict.undertime_minutes or 0

        if row.schedule_type.value not in summary.schedule_types:
            summary.schedule_types.append(row.schedule_type.value)
        if row.schedule_source.value not in summary.schedule_sources:
            summary.schedule_sources.append(row.schedule_source.value)
        if row.schedule_source in _CONFIGURED_SOURCES or verdict.weekly_pattern_applied:
            summary.coverage = ScheduleCoverage.CONFIGURED

    for summary in summaries.values():
        summary.employee_tokens.sort()
        summary.schedule_types.sort()
        summary.schedule_sources.sort()
        if has_coverage is not None and has_coverage(summary.employee_id):
            summary.coverage = ScheduleCoverage.CONFIGURED

    return sorted(summaries.values(), key=lambda s: (s.employee_name, s.key))
