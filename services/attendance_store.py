import logging
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from core.settings import APP_TIMEZONE
from models.attendance_record import AttendanceRecord
from utils.timezone_helpers import ensure_timezone_aware, local_day_bounds

logger = logging.getLogger(__name__)

LIVE_QUERY_LIMIT = 10

Snapshot = List[AttendanceRecord]
Listener = Callable[[Snapshot], None]


def _to_utc(dt: datetime) -> datetime:
    return ensure_timezone_aware(dt).astimezone(timezone.utc)


def _normalize(record: AttendanceRecord) -> AttendanceRecord:
    # SQLite returns naive datetimes; everything is written as UTC
    record.timestamp = ensure_timezone_aware(record.timestamp)
    return record


class AttendanceStore:
    """Append-only attendance timeline backed by SQLModel.

    Subscribers registered through `subscribe` get the newest-first snapshot
    for one employee immediately and again after every append for that
    employee (eventually consistent "today's records" feed).
    """

    def __init__(self, engine: Engine, tz: str = APP_TIMEZONE):
        self.engine = engine
        self.tz = tz
        self._listeners: Dict[str, List[tuple]] = defaultdict(list)
        self._lock = threading.Lock()

    # --- Writes ---

    def add(self, record: AttendanceRecord) -> AttendanceRecord:
        record.timestamp = _to_utc(record.timestamp)
        with Session(self.engine) as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            session.expunge(record)
        _normalize(record)
        logger.info(
            f"[ATTENDANCE_STORE] ✅ Saved {record.type} for employee {record.employee_id} (id={record.id})"
        )
        self._publish(record.employee_id)
        return record

    def delete_for_employee(self, employee_id: str) -> int:
        with Session(self.engine) as session:
            records = session.exec(
                select(AttendanceRecord).where(AttendanceRecord.employee_id == employee_id)
            ).all()
            for record in records:
                session.delete(record)
            session.commit()
            deleted = len(records)
        logger.info(f"[ATTENDANCE_STORE] 🗑️ Deleted {deleted} records of employee {employee_id}")
        self._publish(employee_id)
        return deleted

    def delete_for_company(self, company_id: str) -> int:
        with Session(self.engine) as session:
            records = session.exec(
                select(AttendanceRecord).where(AttendanceRecord.company_id == company_id)
            ).all()
            employee_ids = {record.employee_id for record in records}
            for record in records:
                session.delete(record)
            session.commit()
            deleted = len(records)
        logger.info(f"[ATTENDANCE_STORE] 🗑️ Deleted {deleted} records of company {company_id}")
        for employee_id in employee_ids:
            self._publish(employee_id)
        return deleted

    # --- Reads (newest first) ---

    def latest_for_employee(self, employee_id: str, limit: int = LIVE_QUERY_LIMIT) -> Snapshot:
        with Session(self.engine) as session:
            records = session.exec(
                select(AttendanceRecord)
                .where(AttendanceRecord.employee_id == employee_id)
                .order_by(AttendanceRecord.timestamp.desc())
                .limit(limit)
            ).all()
            return [_normalize(r) for r in records]

    def records_between(self, employee_id: str, start: datetime, end: datetime) -> Snapshot:
        with Session(self.engine) as session:
            records = session.exec(
                select(AttendanceRecord)
                .where(AttendanceRecord.employee_id == employee_id)
                .where(AttendanceRecord.timestamp >= _to_utc(start))
                .where(AttendanceRecord.timestamp <= _to_utc(end))
                .order_by(AttendanceRecord.timestamp.desc())
            ).all()
            return [_normalize(r) for r in records]

    def todays_records(self, employee_id: str, now: datetime) -> Snapshot:
        start, end = local_day_bounds(now, self.tz)
        return self.records_between(employee_id, start, end)

    # --- Live query ---

    def subscribe(
        self, employee_id: str, listener: Listener, limit: int = LIVE_QUERY_LIMIT
    ) -> Callable[[], None]:
        entry = (listener, limit)
        with self._lock:
            self._listeners[employee_id].append(entry)
        listener(self.latest_for_employee(employee_id, limit))

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._listeners.get(employee_id, []):
                    self._listeners[employee_id].remove(entry)

        return unsubscribe

    def _publish(self, employee_id: str) -> None:
        with self._lock:
            listeners = list(self._listeners.get(employee_id, []))
        for listener, limit in listeners:
            try:
                listener(self.latest_for_employee(employee_id, limit))
            except Exception as e:
                logger.error(f"[ATTENDANCE_STORE] ❌ Listener for {employee_id} failed: {e}")


def todays_snapshot(snapshot: Snapshot, now: datetime, tz: str = APP_TIMEZONE) -> Snapshot:
    """Filter a newest-first live snapshot down to the local calendar day of `now`."""
    start, end = local_day_bounds(now, tz)
    return [r for r in snapshot if start <= ensure_timezone_aware(r.timestamp) <= end]


class TodaysRecordsView:
    """Latest locally known snapshot of one employee's records.

    The sequencer reads from this view without re-querying; a write from
    another device may not be visible yet.
    """

    def __init__(self, store: AttendanceStore, employee_id: str):
        self._snapshot: Snapshot = []
        self._unsubscribe = store.subscribe(employee_id, self._on_snapshot)

    def _on_snapshot(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot

    def today(self, now: datetime, tz: Optional[str] = None) -> Snapshot:
        return todays_snapshot(self._snapshot, now, tz or APP_TIMEZONE)

    def close(self) -> None:
        self._unsubscribe()
