import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from core.errors import RecordError
from core.settings import APP_TIMEZONE
from models.attendance_record import AttendanceRecord, AttendanceType
from models.employee import Employee
from models.location import ServiceLocation
from models.shift import Shift
from services.attendance_store import AttendanceStore
from utils.geofence import Coordinate, distance_meters
from utils.punctuality import score_punctuality
from utils.timezone_helpers import from_utc_to_local

logger = logging.getLogger(__name__)

# ENTRY -> BREAK_START -> BREAK_END -> EXIT -> ENTRY (a new cycle the same day)
TRANSITIONS = {
    AttendanceType.ENTRY: AttendanceType.BREAK_START,
    AttendanceType.BREAK_START: AttendanceType.BREAK_END,
    AttendanceType.BREAK_END: AttendanceType.EXIT,
    AttendanceType.EXIT: AttendanceType.ENTRY,
}


def next_action(todays_records_desc: Sequence[AttendanceRecord]) -> AttendanceType:
    """The single legal next event given today's records, newest first."""
    if not todays_records_desc:
        return AttendanceType.ENTRY

    last_type = todays_records_desc[0].type
    try:
        return TRANSITIONS[AttendanceType(last_type)]
    except ValueError:
        # Corrupt / unknown type: start a fresh cycle rather than block the employee
        logger.warning(f"[SEQUENCER] ⚠️ Unrecognized attendance type '{last_type}', defaulting to ENTRY")
        return AttendanceType.ENTRY


@dataclass
class RecordOutcome:
    record: Optional[AttendanceRecord] = None
    error: Optional[RecordError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AttendanceSequencer:
    """Validates and appends one attendance event for an identified employee.

    "Today's records" come from the latest locally known snapshot (the live
    feed). There is no compare-and-swap against storage: if another device
    wrote in between, the stale type is still written. At-most-once per
    verification cycle is the flow's job, not the database's.
    """

    def __init__(self, store: AttendanceStore, tz: str = APP_TIMEZONE):
        self.store = store
        self.tz = tz

    def next_action_for(self, employee_id: str, now: datetime) -> AttendanceType:
        return next_action(self.store.todays_records(employee_id, now))

    def record(
        self,
        employee: Optional[Employee],
        location: Optional[ServiceLocation],
        shift: Optional[Shift],
        attendance_type: AttendanceType,
        coordinate: Optional[Coordinate],
        photo: Optional[str],
        now: datetime,
        todays_records: Optional[Sequence[AttendanceRecord]] = None,
    ) -> RecordOutcome:
        # Preconditions: any failure returns before touching storage
        if employee is None:
            return RecordOutcome(error=RecordError.NOT_IDENTIFIED)
        if location is None:
            return RecordOutcome(error=RecordError.MISSING_LOCATION)
        if shift is None:
            return RecordOutcome(error=RecordError.MISSING_SHIFT)
        if coordinate is None:
            return RecordOutcome(error=RecordError.POSITION_UNAVAILABLE)

        if todays_records is None:
            try:
                todays_records = self.store.todays_records(employee.id, now)
            except SQLAlchemyError as e:
                logger.error(f"[SEQUENCER] ❌ Failed to read today's records for {employee.id}: {e}")
                return RecordOutcome(error=RecordError.PERSISTENCE_ERROR)
        expected = next_action(todays_records)
        if AttendanceType(attendance_type) != expected:
            logger.warning(
                f"[SEQUENCER] ❌ {employee.id}: requested {attendance_type}, next legal action is {expected.value}"
            )
            return RecordOutcome(error=RecordError.SEQUENCE_MISMATCH)

        local_now = from_utc_to_local(now, self.tz)
        punctuality = score_punctuality(expected, local_now, shift)

        record = AttendanceRecord(
            employee_id=employee.id,
            employee_name=employee.name,
            company_id=employee.company_id,
            location_id=location.id,
            location_name=location.name,
            timestamp=now,
            type=expected.value,
            latitude=coordinate.latitude,
            longitude=coordinate.longitude,
            distance_meters=distance_meters(coordinate, location.coordinate),
            photo_snapshot=photo,
            verified=True,
            score=punctuality.score,
            punctuality_status=punctuality.status.value,
            punctuality_message=punctuality.message,
        )

        try:
            saved = self.store.add(record)
        except SQLAlchemyError as e:
            logger.error(f"[SEQUENCER] ❌ Failed to persist {expected.value} for {employee.id}: {e}")
            return RecordOutcome(error=RecordError.PERSISTENCE_ERROR)

        logger.info(
            f"[SEQUENCER] ✅ {employee.name} {expected.value} at {local_now:%H:%M} "
            f"({punctuality.status.value} {punctuality.score})"
        )
        return RecordOutcome(record=saved)
