import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel

from core.settings import APP_TIMEZONE
from models.attendance_record import AttendanceRecord, AttendanceType
from models.shift import Shift
from services.attendance_store import AttendanceStore
from utils.shift_window import MINUTES_PER_DAY, closest_shift_by_entry, parse_hhmm
from utils.timezone_helpers import from_utc_to_local, local_day_bounds

logger = logging.getLogger(__name__)


class DaySummary(BaseModel):
    day: date
    shift_id: Optional[str] = None
    shift_name: Optional[str] = None
    total_to_work: str
    total_worked: str
    hours_owed: str
    overtime: str
    records: List[AttendanceRecord]


def format_minutes(minutes: float) -> str:
    """Signed minutes -> "[-]HH:MM"."""
    sign = "-" if minutes < 0 else ""
    total = int(round(abs(minutes)))
    return f"{sign}{total // 60:02d}:{total % 60:02d}"


def _span(start: Optional[str], end: Optional[str]) -> int:
    start_minutes = parse_hhmm(start)
    end_minutes = parse_hhmm(end)
    if start_minutes is None or end_minutes is None:
        return 0
    return (end_minutes - start_minutes) % MINUTES_PER_DAY


def expected_minutes(shift: Optional[Shift]) -> int:
    """Shift duration minus its break, both allowed to cross midnight."""
    if shift is None:
        return 0
    duration = _span(shift.entry_time, shift.exit_time)
    break_minutes = _span(shift.break_start_time, shift.break_end_time) if shift.has_break else 0
    return duration - break_minutes


def worked_minutes(records_asc: Sequence[AttendanceRecord]) -> float:
    """First EXIT minus first ENTRY, minus paired break intervals.

    Zero until the day has both an ENTRY and an EXIT.
    """
    entry = next((r for r in records_asc if r.type == AttendanceType.ENTRY.value), None)
    exit_ = next((r for r in records_asc if r.type == AttendanceType.EXIT.value), None)
    if entry is None or exit_ is None:
        return 0

    worked = (exit_.timestamp - entry.timestamp).total_seconds() / 60
    starts = [r for r in records_asc if r.type == AttendanceType.BREAK_START.value]
    ends = [r for r in records_asc if r.type == AttendanceType.BREAK_END.value]
    for start, end in zip(starts, ends):
        pause = (end.timestamp - start.timestamp).total_seconds() / 60
        if pause > 0:
            worked -= pause
    return worked


def summarize_days(
    records: Sequence[AttendanceRecord], shifts: Sequence[Shift], tz: str = APP_TIMEZONE
) -> List[DaySummary]:
    """Group records by local calendar day (newest day first) and balance each day."""
    if not records or not shifts:
        return []

    by_day: Dict[date, List[AttendanceRecord]] = defaultdict(list)
    for record in records:
        by_day[from_utc_to_local(record.timestamp, tz).date()].append(record)

    summaries = []
    for day in sorted(by_day, reverse=True):
        day_records = sorted(by_day[day], key=lambda r: r.timestamp)
        entry = next((r for r in day_records if r.type == AttendanceType.ENTRY.value), None)

        if entry is not None:
            shift = closest_shift_by_entry(shifts, from_utc_to_local(entry.timestamp, tz))
        else:
            shift = shifts[0]

        to_work = expected_minutes(shift)
        worked = worked_minutes(day_records)
        difference = worked - to_work

        summaries.append(
            DaySummary(
                day=day,
                shift_id=shift.id if shift else None,
                shift_name=shift.name if shift else None,
                total_to_work=format_minutes(to_work),
                total_worked=format_minutes(worked),
                hours_owed=format_minutes(difference) if difference < 0 else "00:00",
                overtime=format_minutes(difference) if difference > 0 else "00:00",
                records=list(reversed(day_records)),
            )
        )
    return summaries


def employee_history(
    store: AttendanceStore,
    employee_id: str,
    shifts: Sequence[Shift],
    start: date,
    end: date,
    tz: str = APP_TIMEZONE,
) -> List[DaySummary]:
    range_start, _ = local_day_bounds(start, tz)
    _, range_end = local_day_bounds(end, tz)
    records = store.records_between(employee_id, range_start, range_end)
    logger.info(f"[HISTORY] {len(records)} records for {employee_id} between {start} and {end}")
    return summarize_days(records, shifts, tz)
