"""Persistence collaborators consumed by the engine.

Both implementations expose the same read API. Every method takes a bounded
list of identifiers; chunking is the caller's job.
"""
import logging
from datetime import date, datetime
from functools import wraps

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from .db import (
    Employee,
    IdentityMapRow,
    Office,
    ScheduleExceptionRow,
    WeeklyExclusionRow,
    WorkScheduleRow,
    utcnow,
)
from .errors import PersistenceError
from .models import (
    EmployeeRecord,
    ExclusionMode,
    ScheduleExceptionRecord,
    WeeklyExclusion,
    WorkScheduleRecord,
)
from .services.timeutil import overlaps_window, parse_hhmm

logger = logging.getLogger(__name__)

_SCHEDULE_FIELDS = (
    'type', 'start_time', 'end_time', 'grace_minutes', 'break_minutes',
    'core_start', 'core_end', 'bandwidth_start', 'bandwidth_end',
    'required_daily_minutes', 'shift_start', 'shift_end', 'weekly_pattern',
)


class InMemoryRepository:
    """Plain-list store used in tests and when no database is configured."""

    def __init__(self, employees=None, work_schedules=None, exceptions=None,
                 weekly_exclusions=None, identity_mappings=None):
        self.employees = list(employees or [])
        self.work_schedules = list(work_schedules or [])
        self.exceptions = list(exceptions or [])
        self.weekly_exclusions = list(weekly_exclusions or [])
        self.identity_mappings = dict(identity_mappings or {})
        self.calls = []

    def _log_call(self, name, size):
        self.calls.append((name, size))

    def fetch_work_schedules(self, employee_ids, date_from: date, date_to: date):
        self._log_call('fetch_work_schedules', len(employee_ids))
        ids = set(employee_ids)
        return [s for s in self.work_schedules
                if s.employee_id in ids
                and overlaps_window(s.effective_from, s.effective_to, date_from, date_to)]

    def fetch_schedule_exceptions(self, employee_ids, date_from: date, date_to: date):
        self._log_call('fetch_schedule_exceptions', len(employee_ids))
        ids = set(employee_ids)
        return [e for e in self.exceptions
                if e.employee_id in ids and date_from <= e.exception_date <= date_to]

    def fetch_weekly_exclusions(self, employee_ids, date_from: date, date_to: date):
        self._log_call('fetch_weekly_exclusions', len(employee_ids))
        ids = set(employee_ids)
        return [x for x in self.weekly_exclusions
                if x.employee_id in ids
                and overlaps_window(x.effective_from, x.effective_to, date_from, date_to)]

    def find_employees_by_prefixes(self, prefixes):
        self._log_call('find_employees_by_prefixes', len(prefixes))
        wanted = [p.upper() for p in prefixes if p]
        return [e for e in self.employees
                if e.employee_no and any(e.employee_no.strip().upper().startswith(p) for p in wanted)]

    def get_employees(self, ids):
        self._log_call('get_employees', len(ids))
        wanted = set(ids)
        return [e for e in self.employees if e.id in wanted]

    def fetch_identity_mappings(self, tokens):
        self._log_call('fetch_identity_mappings', len(tokens))
        return {t: self.identity_mappings[t] for t in tokens if t in self.identity_mappings}

    def save_identity_mapping(self, token: str, employee_id: str):
        self.identity_mappings[token] = employee_id


def _wrap_errors(method):
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"{method.__name__} failed: {exc}") from exc
    return wrapper


def _schedule_fields(row) -> dict:
    return {name: getattr(row, name) for name in _SCHEDULE_FIELDS}


def _employee_record(employee: Employee, office_name) -> EmployeeRecord:
    return EmployeeRecord(
        id=employee.id,
        employee_no=employee.employee_no,
        last_name=employee.last_name or '',
        first_name=employee.first_name or '',
        middle_name=employee.middle_name,
        suffix=employee.suffix,
        office_id=employee.office_id,
        office_name=office_name,
        updated_at=employee.updated_at or datetime.min,
        is_active=employee.is_active,
    )


class SqlRepository:
    """Reads from the SQLAlchemy models in db.py."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    @_wrap_errors
    def fetch_work_schedules(self, employee_ids, date_from: date, date_to: date):
        stmt = (
            select(WorkScheduleRow)
            .where(WorkScheduleRow.employee_id.in_(list(employee_ids)))
            .where(WorkScheduleRow.effective_from <= date_to)
            .where(or_(WorkScheduleRow.effective_to.is_(None), WorkScheduleRow.effective_to > date_from))
            .order_by(WorkScheduleRow.employee_id, WorkScheduleRow.seq, WorkScheduleRow.id)
        )
        with self.session_factory() as session:
            return [
                WorkScheduleRecord(
                    id=row.id,
                    employee_id=row.employee_id,
                    effective_from=row.effective_from,
                    effective_to=row.effective_to,
                    **_schedule_fields(row),
                )
                for row in session.scalars(stmt)
            ]

    @_wrap_errors
    def fetch_schedule_exceptions(self, employee_ids, date_from: date, date_to: date):
        stmt = (
            select(ScheduleExceptionRow)
            .where(ScheduleExceptionRow.employee_id.in_(list(employee_ids)))
            .where(ScheduleExceptionRow.exception_date.between(date_from, date_to))
            .order_by(ScheduleExceptionRow.employee_id, ScheduleExceptionRow.exception_date,
                      ScheduleExceptionRow.id)
        )
        with self.session_factory() as session:
            return [
                ScheduleExceptionRecord(
                    id=row.id,
                    employee_id=row.employee_id,
                    exception_date=row.exception_date,
                    **_schedule_fields(row),
                )
                for row in session.scalars(stmt)
            ]

    @_wrap_errors
    def fetch_weekly_exclusions(self, employee_ids, date_from: date, date_to: date):
        stmt = (
            select(WeeklyExclusionRow)
            .where(WeeklyExclusionRow.employee_id.in_(list(employee_ids)))
            .where(WeeklyExclusionRow.effective_from <= date_to)
            .where(or_(WeeklyExclusionRow.effective_to.is_(None), WeeklyExclusionRow.effective_to > date_from))
            .order_by(WeeklyExclusionRow.employee_id, WeeklyExclusionRow.seq, WeeklyExclusionRow.id)
        )
        result = []
        with self.session_factory() as session:
            for row in session.scalars(stmt):
                try:
                    mode = ExclusionMode((row.mode or '').strip().upper())
                except ValueError:
                    logger.warning("Skipping weekly exclusion %s with unknown mode %r", row.id, row.mode)
                    continue
                result.append(WeeklyExclusion(
                    id=row.id,
                    employee_id=row.employee_id,
                    weekday=row.weekday,
                    mode=mode,
                    effective_from=row.effective_from,
                    effective_to=row.effective_to,
                    ignore_until=parse_hhmm(row.ignore_until),
                ))
        return result

    @_wrap_errors
    def find_employees_by_prefixes(self, prefixes):
        wanted = [p.upper() for p in prefixes if p]
        if not wanted:
            return []
        employee_no = func.upper(func.trim(Employee.employee_no))
        stmt = (
            select(Employee, Office.name)
            .outerjoin(Office, Employee.office_id == Office.id)
            .where(or_(*[employee_no.startswith(p, autoescape=True) for p in wanted]))
            .order_by(Employee.id)
        )
        with self.session_factory() as session:
            return [_employee_record(employee, office_name) for employee, office_name in session.execute(stmt)]

    @_wrap_errors
    def get_employees(self, ids):
        stmt = (
            select(Employee, Office.name)
            .outerjoin(Office, Employee.office_id == Office.id)
            .where(Employee.id.in_(list(ids)))
            .order_by(Employee.id)
        )
        with self.session_factory() as session:
            return [_employee_record(employee, office_name) for employee, office_name in session.execute(stmt)]

    @_wrap_errors
    def fetch_identity_mappings(self, tokens):
        stmt = select(IdentityMapRow).where(IdentityMapRow.token.in_(list(tokens)))
        with self.session_factory() as session:
            return {row.token: row.employee_id for row in session.scalars(stmt)}

    @_wrap_errors
    def save_identity_mapping(self, token: str, employee_id: str):
        with self.session_factory() as session:
            row = session.get(IdentityMapRow, token)
            if row is None:
                session.add(IdentityMapRow(token=token, employee_id=employee_id))
            else:
                row.employee_id = employee_id
                row.updated_at = utcnow()
            session.commit()
        logger.info("Saved manual identity mapping %s -> %s", token, employee_id)
