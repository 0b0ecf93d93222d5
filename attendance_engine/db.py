"""SQLAlchemy storage for employees, schedules and manual identity mappings.

The engine itself only reads these tables (plus the manual-mapping upsert);
they are maintained by the HR side of the system.
"""
from datetime import date, datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    create_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class Office(Base):
    __tablename__ = "offices"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    employees: Mapped[list["Employee"]] = relationship(back_populates="office")


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    # device token plus optional annotations, e.g. "0007,E-2"
    employee_no: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    last_name: Mapped[str] = mapped_column(String(255), nullable=False, default='')
    first_name: Mapped[str] = mapped_column(String(255), nullable=False, default='')
    middle_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    suffix: Mapped[str | None] = mapped_column(String(32), nullable=True)
    office_id: Mapped[str | None] = mapped_column(
        ForeignKey("offices.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    office: Mapped[Office | None] = relationship(back_populates="employees")


class _ScheduleColumns:
    type: Mapped[str] = mapped_column(String(16), nullable=False, default='FIXED')
    start_time: Mapped[str | None] = mapped_column(String(8), nullable=True)
    end_time: Mapped[str | None] = mapped_column(String(8), nullable=True)
    grace_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    break_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    core_start: Mapped[str | None] = mapped_column(String(8), nullable=True)
    core_end: Mapped[str | None] = mapped_column(String(8), nullable=True)
    bandwidth_start: Mapped[str | None] = mapped_column(String(8), nullable=True)
    bandwidth_end: Mapped[str | None] = mapped_column(String(8), nullable=True)
    required_daily_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    shift_start: Mapped[str | None] = mapped_column(String(8), nullable=True)
    shift_end: Mapped[str | None] = mapped_column(String(8), nullable=True)
    weekly_pattern: Mapped[dict | None] = mapped_column(JSON, nullable=True)


class WorkScheduleRow(_ScheduleColumns, Base):
    __tablename__ = "work_schedules"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), index=True)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    # insertion order breaks ties between schedules starting on the same day
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class ScheduleExceptionRow(_ScheduleColumns, Base):
    __tablename__ = "schedule_exceptions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), index=True)
    exception_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)


class WeeklyExclusionRow(Base):
    __tablename__ = "weekly_exclusions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), index=True)
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)
    mode: Mapped[str] = mapped_column(String(32), nullable=False)
    ignore_until: Mapped[str | None] = mapped_column(String(8), nullable=True)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class IdentityMapRow(Base):
    __tablename__ = "biometric_identity_map"

    token: Mapped[str] = mapped_column(String(128), primary_key=True)
    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


def make_engine(url: str, echo: bool = False):
    if url == 'sqlite://' or (url.startswith('sqlite') and ':memory:' in url):
        # one shared connection, otherwise every session sees an empty database
        return create_engine(
            url,
            echo=echo,
            connect_args={'check_same_thread': False},
            poolclass=StaticPool,
        )
    return create_engine(url, echo=echo, pool_pre_ping=True)


def make_session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine):
    Base.metadata.create_all(engine)
