from collections import defaultdict
from datetime import date, time, datetime
from typing import Optional

from openpyxl import load_workbook

from ..models import Punch, RawPunchEntry
from .timeutil import format_hhmm

HEADER_ALIASES = {
    'employee': ('employee id', 'emp id', 'ac-no.', 'ac-no', 'badge no', 'bio id'),
    'date': ('date',),
    'time': ('time',),
}


def _find_columns(cells) -> Optional[dict]:
    labels = {str(val).strip().lower(): i for i, val in enumerate(cells) if val is not None}
    columns = {}
    for key, aliases in HEADER_ALIASES.items():
        for alias in aliases:
            if alias in labels:
                columns[key] = labels[alias]
                break
    return columns if len(columns) == len(HEADER_ALIASES) else None


def _parse_date(value) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    for fmt in ('%Y-%m-%d', '%m/%d/%Y'):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _parse_time(value) -> Optional[int]:
    if isinstance(value, datetime):
        return value.hour * 60 + value.minute
    if isinstance(value, time):
        return value.hour * 60 + value.minute
    text = str(value).strip()
    for fmt in ('%H:%M:%S', '%H:%M'):
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        return parsed.hour * 60 + parsed.minute
    return None


def read_punch_log(filepath: str, source_name: str,
                   date_from: Optional[date] = None,
                   date_to: Optional[date] = None) -> list[RawPunchEntry]:
    """Read a device XLSX export into one RawPunchEntry per (token, date).

    Looks for the header row (Employee ID, Date, Time) in the first rows of the
    active sheet. Rows with a missing or unparsable cell are skipped. When a
    date range is given, one extra day after it is kept so overnight shifts
    ending on the morning after the range can still be paired.
    """
    wb = load_workbook(filepath, read_only=True, data_only=True)
    try:
        ws = wb.active

        header_row = None
        columns = None
        for row_idx, cells in enumerate(ws.iter_rows(min_row=1, max_row=5, values_only=True), start=1):
            columns = _find_columns(cells)
            if columns is not None:
                header_row = row_idx
                break

        if header_row is None:
            raise ValueError("Could not find header row with 'Employee ID', 'Date' and 'Time' columns")

        emp_col, date_col, time_col = columns['employee'], columns['date'], columns['time']
        buffer_to = date_to.toordinal() + 1 if date_to else None

        minutes_by_key = defaultdict(set)
        for row in ws.iter_rows(min_row=header_row + 1, values_only=True):
            emp_raw = row[emp_col] if emp_col < len(row) else None
            date_raw = row[date_col] if date_col < len(row) else None
            time_raw = row[time_col] if time_col < len(row) else None
            if emp_raw is None or date_raw is None or time_raw is None:
                continue

            # Excel keeps numeric ids as floats
            if isinstance(emp_raw, float) and emp_raw.is_integer():
                emp_raw = int(emp_raw)
            token = str(emp_raw).strip()
            punch_date = _parse_date(date_raw)
            minute = _parse_time(time_raw)
            if not token or punch_date is None or minute is None:
                continue
            if date_from and punch_date < date_from:
                continue
            if buffer_to and punch_date.toordinal() > buffer_to:
                continue
            minutes_by_key[(token, punch_date)].add(minute)
    finally:
        wb.close()

    entries = []
    for (token, punch_date), minutes in sorted(minutes_by_key.items()):
        ordered = sorted(minutes)
        times = [format_hhmm(m) for m in ordered]
        entries.append(RawPunchEntry(
            employee_token=token,
            date=punch_date,
            day=punch_date.day,
            all_times=times,
            earliest=times[0],
            latest=times[-1],
            punches=[Punch(time=t, minute_of_day=m, files=[source_name]) for t, m in zip(times, ordered)],
            source_files=[source_name],
        ))
    return entries
