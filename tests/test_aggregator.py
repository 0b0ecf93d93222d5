from datetime import date

from attendance_engine.models import (
    ExclusionMode,
    IdentityStatus,
    ScheduleCoverage,
    WeeklyExclusion,
)
from attendance_engine.services.aggregator import summarize_per_employee, summary_key
from attendance_engine.services.evaluation import evaluate_entries

MONDAY = date(2024, 3, 4)
TUESDAY = date(2024, 3, 5)
WEDNESDAY = date(2024, 3, 6)


def _summary(result, key):
    return next(s for s in result.per_employee if s.key == key)


def test_counts_late_undertime_and_absence(repository, make_entry):
    result = evaluate_entries([
        make_entry('1001', MONDAY, '08:11', '17:00'),
        make_entry('1001', TUESDAY, '08:00', '17:00'),
        make_entry('1001', WEDNESDAY),
    ], repository)
    summary = _summary(result, 'emp-3')

    assert summary.days_evaluated == 3
    assert summary.days_present == 2
    assert summary.absent_days == 1
    assert summary.late_days == 1
    assert summary.late_minutes == 1
    # Monday is 11 minutes short, Wednesday the whole day
    assert summary.undertime_days == 2
    assert summary.undertime_minutes == 11 + 480
    assert summary.late_rate == 50.0
    assert summary.coverage is ScheduleCoverage.CONFIGURED
    assert summary.schedule_types == ['FIXED']
    assert summary.schedule_sources == ['WORKSCHEDULE']


def test_employee_without_schedules_has_no_coverage(repository, make_entry):
    result = evaluate_entries([make_entry('0007', MONDAY, '08:00', '17:00')], repository)
    summary = _summary(result, 'emp-2')
    assert summary.coverage is ScheduleCoverage.NONE
    assert summary.to_dict()['scheduleCoverage'] == 'none'
    assert summary.to_dict()['hasScheduleCoverage'] is False
    assert summary.identity_status is IdentityStatus.AMBIGUOUS


def test_unresolved_tokens_are_summarized_separately(repository, make_entry):
    result = evaluate_entries([
        make_entry('9999', MONDAY, '08:00'),
        make_entry('8888', MONDAY, '08:00'),
    ], repository)
    keys = sorted(s.key for s in result.per_employee)
    assert keys == ['token:8888', 'token:9999']


def test_excused_day_is_not_absent(repository, make_entry):
    repository.weekly_exclusions.append(WeeklyExclusion(
        id='wx', employee_id='emp-3', weekday=3, mode=ExclusionMode.EXCUSED, effective_from=date(2024, 1, 1),
    ))
    result = evaluate_entries([make_entry('1001', WEDNESDAY)], repository)
    summary = _summary(result, 'emp-3')
    assert summary.absent_days == 0
    assert summary.undertime_days == 0
    assert result.per_day[0].to_dict()['weeklyExclusionApplied'] == 'EXCUSED'


def test_tokens_of_one_employee_fold_together(repository, make_entry):
    result = evaluate_entries([
        make_entry('0007', MONDAY, '08:00', '17:00', resolved_employee_id='emp-3'),
        make_entry('1001', TUESDAY, '08:00', '17:00'),
    ], repository)
    summary = _summary(result, 'emp-3')
    assert summary.employee_tokens == ['0007', '1001']
    assert summary.days_present == 2


def test_summary_key_and_rates_without_days():
    class Row:
        employee_id = None
        normalized_token = 'ABC'
        employee_token = 'abc'

    assert summary_key(Row()) == 'token:ABC'
    assert summarize_per_employee([]) == []
