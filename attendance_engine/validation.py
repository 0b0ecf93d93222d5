"""Request-boundary checks for the JSON payloads accepted by the API.

Payloads are described as pydantic models. Every problem pydantic finds is
reported at once, as a list of {field, message} pairs.
"""
from datetime import date
from typing import Annotated, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StringConstraints,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import Punch, RawPunchEntry
from .services.timeutil import MINUTES_IN_DAY, format_hhmm, parse_hhmm

MAX_ENTRIES = 50000


def _check_clock(value: str) -> str:
    if parse_hhmm(value) is None:
        raise ValueError('Must be a time in HH:MM format.')
    return value.strip()


def _iso_date(value):
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError('Must be a date in YYYY-MM-DD format.')
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise ValueError('Must be a date in YYYY-MM-DD format.')


Text = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
ClockTime = Annotated[str, AfterValidator(_check_clock)]
IsoDate = Annotated[date, BeforeValidator(_iso_date)]


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PunchIn(_Payload):
    time: Optional[str] = None
    minute_of_day: Optional[int] = Field(default=None, alias='minuteOfDay', ge=0, lt=MINUTES_IN_DAY, strict=True)
    source: Optional[str] = None
    files: Optional[list[str]] = None

    @model_validator(mode='after')
    def _needs_a_time(self) -> 'PunchIn':
        if self.minute_of_day is None and parse_hhmm(self.time) is None:
            raise ValueError('Needs minuteOfDay or a time in HH:MM format.')
        return self

    def to_punch(self) -> Punch:
        minute = self.minute_of_day if self.minute_of_day is not None else parse_hhmm(self.time)
        return Punch(
            time=self.time.strip() if self.time else format_hhmm(minute),
            minute_of_day=minute,
            source=self.source or 'original',
            files=list(self.files or []),
        )


class PunchEntryIn(_Payload):
    employee_token: Text = Field(alias='employeeToken')
    date_iso: IsoDate = Field(alias='dateISO')
    day: Optional[int] = Field(default=None, ge=1, le=31, strict=True)
    earliest: Optional[str] = None
    latest: Optional[str] = None
    all_times: Optional[list[ClockTime]] = Field(default=None, alias='allTimes')
    punches: Optional[list[PunchIn]] = None
    source_files: Optional[list[str]] = Field(default=None, alias='sourceFiles')
    resolved_employee_id: Optional[str] = Field(default=None, alias='resolvedEmployeeId')
    employee_name: Optional[str] = Field(default=None, alias='employeeName')
    office_id: Optional[str] = Field(default=None, alias='officeId')
    office_name: Optional[str] = Field(default=None, alias='officeName')

    @field_validator('earliest', 'latest')
    @classmethod
    def _blank_or_clock(cls, value):
        if value is None or not value.strip():
            return None
        return _check_clock(value)

    @field_validator('resolved_employee_id', 'employee_name', 'office_id', 'office_name')
    @classmethod
    def _blank_is_none(cls, value):
        if value is None:
            return None
        return value.strip() or None

    def to_entry(self) -> RawPunchEntry:
        return RawPunchEntry(
            employee_token=self.employee_token,
            date=self.date_iso,
            day=self.day or self.date_iso.day,
            all_times=list(self.all_times or []),
            earliest=self.earliest,
            latest=self.latest,
            punches=[p.to_punch() for p in self.punches or []],
            source_files=list(self.source_files or []),
            resolved_employee_id=self.resolved_employee_id,
            employee_name=self.employee_name,
            office_id=self.office_id,
            office_name=self.office_name,
        )


class EvaluateRequest(_Payload):
    entries: list[PunchEntryIn] = Field(max_length=MAX_ENTRIES)
    create_session: bool = Field(default=False, alias='createSession', strict=True)
    date_from: Optional[IsoDate] = Field(default=None, alias='dateFrom')
    date_to: Optional[IsoDate] = Field(default=None, alias='dateTo')

    @model_validator(mode='after')
    def _ordered_window(self) -> 'EvaluateRequest':
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError('dateFrom must not be after dateTo.')
        return self

    def to_entries(self) -> list[RawPunchEntry]:
        return [entry.to_entry() for entry in self.entries]


class TokensRequest(_Payload):
    tokens: list[str]


class MappingRequest(_Payload):
    token: Text
    employee_id: Text = Field(alias='employeeId')
    session_id: Optional[Text] = Field(default=None, alias='sessionId')


def _field_path(loc) -> str:
    path = ''
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path or 'body'


def _validate(model, payload):
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError([
            {'field': _field_path(err['loc']), 'message': err['msg']}
            for err in exc.errors()
        ]) from exc


def parse_evaluate_payload(payload) -> EvaluateRequest:
    return _validate(EvaluateRequest, payload)


def parse_tokens_payload(payload) -> list[str]:
    return _validate(TokensRequest, payload).tokens


def parse_mapping_payload(payload):
    """Returns (token, employee_id, session_id)."""
    request = _validate(MappingRequest, payload)
    return request.token, request.employee_id, request.session_id
