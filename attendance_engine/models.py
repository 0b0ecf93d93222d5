from dataclasses import dataclass, field
from datetime import date, datetime
from typing import ClassVar, Optional, Union
from enum import Enum

from .services.timeutil import format_hhmm


class ScheduleType(Enum):
    FIXED = "FIXED"
    FLEX = "FLEX"
    SHIFT = "SHIFT"


class ScheduleSource(Enum):
    EXCEPTION = "EXCEPTION"
    WORKSCHEDULE = "WORKSCHEDULE"
    DEFAULT = "DEFAULT"
    NOMAPPING = "NOMAPPING"


class ExclusionMode(Enum):
    EXCUSED = "EXCUSED"
    IGNORE_LATE_UNTIL = "IGNORE_LATE_UNTIL"


class IdentityStatus(Enum):
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    AMBIGUOUS = "ambiguous"


class DayStatus(Enum):
    EVALUATED = "evaluated"
    EXCUSED = "excused"
    NO_PUNCHES = "no_punches"


class ScheduleCoverage(Enum):
    CONFIGURED = "configured"
    NONE = "none"


WEEKDAY_KEYS = ('mon', 'tue', 'wed', 'thu', 'fri', 'sat', 'sun')


# --- Raw records as authored by the administrative collaborators ---

@dataclass
class ScheduleFields:
    """Type-specific schedule fields shared by work schedules and exceptions.

    Times are "HH:MM" strings exactly as stored; normalization happens in the
    schedule resolver.
    """
    type: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    grace_minutes: Optional[int] = None
    break_minutes: Optional[int] = None
    core_start: Optional[str] = None
    core_end: Optional[str] = None
    bandwidth_start: Optional[str] = None
    bandwidth_end: Optional[str] = None
    required_daily_minutes: Optional[int] = None
    shift_start: Optional[str] = None
    shift_end: Optional[str] = None
    weekly_pattern: Optional[dict] = None


@dataclass
class WorkScheduleRecord(ScheduleFields):
    id: str = ''
    employee_id: str = ''
    effective_from: date = date.min
    effective_to: Optional[date] = None  # exclusive, None = open-ended


@dataclass
class ScheduleExceptionRecord(ScheduleFields):
    id: str = ''
    employee_id: str = ''
    exception_date: date = date.min


@dataclass
class WeeklyExclusion:
    id: str
    employee_id: str
    weekday: int  # 1 = Monday .. 7 = Sunday
    mode: ExclusionMode
    effective_from: date
    effective_to: Optional[date] = None
    ignore_until: Optional[int] = None  # minute of day


@dataclass
class EmployeeRecord:
    id: str
    employee_no: Optional[str]
    last_name: str = ''
    first_name: str = ''
    middle_name: Optional[str] = None
    suffix: Optional[str] = None
    office_id: Optional[str] = None
    office_name: Optional[str] = None
    updated_at: datetime = datetime.min
    is_active: bool = True


# --- Normalized schedules (tagged union) ---

@dataclass(frozen=True)
class PatternWindow:
    start: int
    end: int


@dataclass(frozen=True)
class PatternDay:
    windows: tuple  # of PatternWindow, as configured (may wrap midnight)
    required_minutes: int


@dataclass(frozen=True)
class WeeklyPattern:
    days: tuple  # of (weekday_key, PatternDay) pairs

    def for_weekday(self, weekday: int) -> Optional[PatternDay]:
        key = WEEKDAY_KEYS[weekday - 1]
        for day_key, day in self.days:
            if day_key == key:
                return day
        return None

    def has_windows(self) -> bool:
        return any(day.windows for _, day in self.days)


@dataclass(frozen=True)
class FixedSchedule:
    type: ClassVar[ScheduleType] = ScheduleType.FIXED
    start_time: int = 8 * 60
    end_time: int = 17 * 60
    break_minutes: int = 60
    grace_minutes: int = 0


@dataclass(frozen=True)
class FlexSchedule:
    type: ClassVar[ScheduleType] = ScheduleType.FLEX
    core_start: int = 10 * 60
    core_end: int = 15 * 60
    bandwidth_start: int = 6 * 60
    bandwidth_end: int = 20 * 60
    required_daily_minutes: int = 480
    break_minutes: int = 60
    grace_minutes: int = 0
    weekly_pattern: Optional[WeeklyPattern] = None


@dataclass(frozen=True)
class ShiftSchedule:
    type: ClassVar[ScheduleType] = ScheduleType.SHIFT
    shift_start: int = 22 * 60
    shift_end: int = 6 * 60
    break_minutes: int = 60
    grace_minutes: int = 0
    required_minutes: Optional[int] = None

    @property
    def is_overnight(self) -> bool:
        return self.shift_end <= self.shift_start

    @property
    def pivot(self) -> int:
        """Minute of day splitting "end of last night" from "start of tonight".

        Midpoint of the off-duty gap; only meaningful for overnight shifts.
        """
        return self.shift_end + (self.shift_start - self.shift_end) // 2


Schedule = Union[FixedSchedule, FlexSchedule, ShiftSchedule]


@dataclass(frozen=True)
class ResolvedSchedule:
    schedule: Schedule
    source: ScheduleSource


# --- Punch input ---

@dataclass
class Punch:
    time: str
    minute_of_day: int
    source: str = 'original'
    files: list = field(default_factory=list)


@dataclass
class RawPunchEntry:
    employee_token: str
    date: date
    day: int
    all_times: list = field(default_factory=list)  # "HH:MM" strings
    earliest: Optional[str] = None
    latest: Optional[str] = None
    punches: list = field(default_factory=list)  # Punch
    source_files: list = field(default_factory=list)
    resolved_employee_id: Optional[str] = None
    employee_name: Optional[str] = None
    office_id: Optional[str] = None
    office_name: Optional[str] = None


# --- Identity ---

@dataclass
class IdentityCandidate:
    employee_id: str
    employee_name: str
    office_id: Optional[str]
    office_name: Optional[str]

    def to_dict(self) -> dict:
        return {
            'employeeId': self.employee_id,
            'employeeName': self.employee_name,
            'officeId': self.office_id,
            'officeName': self.office_name,
        }


@dataclass
class IdentityResolution:
    token: str
    status: IdentityStatus
    employee_id: Optional[str]
    employee_name: str
    office_id: Optional[str]
    office_name: str
    candidates: list = field(default_factory=list)  # IdentityCandidate
    manual: bool = False

    def to_dict(self) -> dict:
        return {
            'token': self.token,
            'status': self.status.value,
            'employeeId': self.employee_id,
            'employeeName': self.employee_name,
            'officeId': self.office_id,
            'officeName': self.office_name,
            'candidates': [c.to_dict() for c in self.candidates],
            'manual': self.manual,
        }


# --- Evaluation output ---

@dataclass
class DayVerdict:
    status: DayStatus
    worked_minutes: int
    is_late: bool
    late_minutes: Optional[int]
    is_undertime: bool
    undertime_minutes: Optional[int]
    required_minutes: Optional[int]
    schedule_start: Optional[int]
    schedule_end: Optional[int]
    grace_minutes: Optional[int]
    weekly_pattern_applied: bool = False
    pattern_presence: list = field(default_factory=list)  # PatternWindow
    weekly_exclusion_mode: Optional[ExclusionMode] = None


@dataclass
class EvaluatedDay:
    employee_token: str
    normalized_token: str
    employee_id: Optional[str]
    employee_name: str
    office_id: Optional[str]
    office_name: str
    identity_status: IdentityStatus
    candidate_count: int
    date: date
    day: int
    earliest: Optional[str]
    latest: Optional[str]
    all_times: list
    borrowed_times: list
    source_files: list
    schedule_type: ScheduleType
    schedule_source: ScheduleSource
    verdict: DayVerdict
    weekly_exclusion_id: Optional[str] = None

    @property
    def has_punches(self) -> bool:
        return bool(self.all_times or self.borrowed_times)

    def to_dict(self) -> dict:
        v = self.verdict
        return {
            'employeeToken': self.employee_token,
            'normalizedToken': self.normalized_token,
            'employeeId': self.employee_id,
            'employeeName': self.employee_name,
            'officeId': self.office_id,
            'officeName': self.office_name,
            'identityStatus': self.identity_status.value,
            'candidateCount': self.candidate_count,
            'dateISO': self.date.isoformat(),
            'day': self.day,
            'earliest': self.earliest,
            'latest': self.latest,
            'allTimes': list(self.all_times),
            'borrowedTimes': list(self.borrowed_times),
            'sourceFiles': list(self.source_files),
            'scheduleType': self.schedule_type.value,
            'scheduleSource': self.schedule_source.value,
            'status': v.status.value,
            'workedMinutes': v.worked_minutes,
            'workedHHMM': format_hhmm(v.worked_minutes, wrap=False),
            'isLate': v.is_late,
            'lateMinutes': v.late_minutes,
            'isUndertime': v.is_undertime,
            'undertimeMinutes': v.undertime_minutes,
            'requiredMinutes': v.required_minutes,
            'scheduleStart': format_hhmm(v.schedule_start),
            'scheduleEnd': format_hhmm(v.schedule_end),
            'scheduleGraceMinutes': v.grace_minutes,
            'weeklyPatternApplied': v.weekly_pattern_applied,
            'weeklyPatternPresence': [
                {'start': format_hhmm(seg.start), 'end': format_hhmm(seg.end)}
                for seg in v.pattern_presence
            ],
            'weeklyExclusionApplied': v.weekly_exclusion_mode.value if v.weekly_exclusion_mode else None,
            'weeklyExclusionId': self.weekly_exclusion_id,
        }


@dataclass
class EmployeeSummary:
    key: str
    employee_id: Optional[str]
    employee_name: str
    employee_tokens: list
    office_name: str
    identity_status: IdentityStatus
    days_evaluated: int = 0
    days_present: int = 0
    absent_days: int = 0
    late_days: int = 0
    late_minutes: int = 0
    undertime_days: int = 0
    undertime_minutes: int = 0
    schedule_types: list = field(default_factory=list)
    schedule_sources: list = field(default_factory=list)
    coverage: ScheduleCoverage = ScheduleCoverage.NONE

    @property
    def late_rate(self) -> float:
        return round(self.late_days / self.days_present * 100, 1) if self.days_present else 0.0

    @property
    def undertime_rate(self) -> float:
        return round(self.undertime_days / self.days_present * 100, 1) if self.days_present else 0.0

    def to_dict(self) -> dict:
        return {
            'key': self.key,
            'employeeId': self.employee_id,
            'employeeName': self.employee_name,
            'employeeTokens': list(self.employee_tokens),
            'officeName': self.office_name,
            'identityStatus': self.identity_status.value,
            'daysEvaluated': self.days_evaluated,
            'daysPresent': self.days_present,
            'absentDays': self.absent_days,
            'lateDays': self.late_days,
            'lateMinutes': self.late_minutes,
            'undertimeDays': self.undertime_days,
            'undertimeMinutes': self.undertime_minutes,
            'lateRate': self.late_rate,
            'undertimeRate': self.undertime_rate,
            'scheduleTypes': list(self.schedule_types),
            'scheduleSources': list(self.schedule_sources),
            'scheduleCoverage': self.coverage.value,
            'hasScheduleCoverage': self.coverage is ScheduleCoverage.CONFIGURED,
        }


@dataclass
class EvaluationResult:
    per_day: list  # EvaluatedDay
    per_employee: list  # EmployeeSummary
    identities: dict = field(default_factory=dict)  # normalized token -> IdentityResolution

    def to_dict(self) -> dict:
        return {
            'perDay': [row.to_dict() for row in self.per_day],
            'perEmployee': [row.to_dict() for row in self.per_employee],
        }
