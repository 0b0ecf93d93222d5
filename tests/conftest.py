from datetime import date, datetime

import pytest

from attendance_engine.models import (
    EmployeeRecord,
    RawPunchEntry,
    WorkScheduleRecord,
)
from attendance_engine.repository import InMemoryRepository


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_employee():
    def factory(id, employee_no, last_name='Doe', first_name='John', updated_at=datetime(2024, 1, 1), **kwargs):
        kwargs.setdefault('office_id', 'off-1')
        kwargs.setdefault('office_name', 'Main Office')
        return EmployeeRecord(
            id=id,
            employee_no=employee_no,
            last_name=last_name,
            first_name=first_name,
            updated_at=updated_at,
            **kwargs,
        )
    return factory


@pytest.fixture
def make_entry():
    def factory(token, d, *times, files=('log.xlsx',), **kwargs):
        times = list(times)
        return RawPunchEntry(
            employee_token=token,
            date=d,
            day=d.day,
            all_times=times,
            earliest=times[0] if times else None,
            latest=times[-1] if times else None,
            source_files=list(files),
            **kwargs,
        )
    return factory


@pytest.fixture
def repository(make_employee):
    """Two employees sharing device token 0007, one with a plain token and a schedule."""
    return InMemoryRepository(
        employees=[
            make_employee('emp-1', '0007,E-2', 'Santos', 'Ana', updated_at=datetime(2024, 1, 2)),
            make_employee('emp-2', '0007,E-3', 'Reyes', 'Ben', updated_at=datetime(2024, 2, 1)),
            make_employee('emp-3', '1001', 'Cruz', 'Carla', middle_name='Lopez'),
        ],
        work_schedules=[
            WorkScheduleRecord(
                id='ws-1', employee_id='emp-3', effective_from=date(2024, 1, 1),
                type='FIXED', start_time='08:00', end_time='17:00', grace_minutes=10, break_minutes=60,
            ),
        ],
    )
