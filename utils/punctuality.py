from dataclasses import dataclass
from datetime import datetime, time
from typing import Optional, Union

from models.attendance_record import AttendanceType, PunctualityStatus
from models.shift import Shift
from utils.shift_window import MINUTES_PER_DAY, minutes_of_day, parse_hhmm

# Late arrival / early departure still counted as GOOD within this window
TOLERANCE_MINUTES = 10
# PERFECT results further than this from the target mention the offset
ANNOTATION_THRESHOLD_MINUTES = 5

PERFECT_SCORE = 100
GOOD_SCORE = 80
LATE_SCORE = 10

ARRIVAL_TYPES = (AttendanceType.ENTRY, AttendanceType.BREAK_END)


@dataclass(frozen=True)
class PunctualityResult:
    score: int
    status: PunctualityStatus
    message: str


NEUTRAL_RESULT = PunctualityResult(0, PunctualityStatus.NEUTRAL, "")


def _target_time(attendance_type: AttendanceType, shift: Shift) -> Optional[str]:
    if attendance_type == AttendanceType.ENTRY:
        return shift.entry_time
    if attendance_type == AttendanceType.EXIT:
        return shift.exit_time
    if attendance_type == AttendanceType.BREAK_START:
        return shift.break_start_time
    if attendance_type == AttendanceType.BREAK_END:
        return shift.break_end_time
    return None


def score_punctuality(
    attendance_type: AttendanceType,
    at: Union[datetime, time],
    shift: Optional[Shift],
) -> PunctualityResult:
    """Score an attendance event against the selected shift.

    Pure: `at` is the local wall-clock time of the event, nothing here reads
    the clock.
    """
    if shift is None:
        return NEUTRAL_RESULT

    entry = parse_hhmm(shift.entry_time)
    if entry is None:
        return NEUTRAL_RESULT

    target = parse_hhmm(_target_time(AttendanceType(attendance_type), shift))
    if target is None:
        return NEUTRAL_RESULT

    now_minutes = minutes_of_day(at)
    exit_ = parse_hhmm(shift.exit_time)

    # Overnight shift: move both onto one virtual day starting at entry
    if exit_ is not None and exit_ < entry:
        if target < entry:
            target += MINUTES_PER_DAY
        if now_minutes < entry:
            now_minutes += MINUTES_PER_DAY

    diff = now_minutes - target

    if attendance_type in ARRIVAL_TYPES:
        if diff <= 0:
            message = (
                f"Early by {abs(diff)} min"
                if diff < -ANNOTATION_THRESHOLD_MINUTES
                else "On time"
            )
            return PunctualityResult(PERFECT_SCORE, PunctualityStatus.PERFECT, message)
        if diff <= TOLERANCE_MINUTES:
            return PunctualityResult(
                GOOD_SCORE,
                PunctualityStatus.GOOD,
                f"Late by {diff} min (within tolerance)",
            )
        return PunctualityResult(LATE_SCORE, PunctualityStatus.LATE, f"Late by {diff} min")

    # Departures (EXIT, BREAK_START) mirror the arrival rules
    if diff >= 0:
        message = f"+{diff} min" if diff > ANNOTATION_THRESHOLD_MINUTES else "On time"
        return PunctualityResult(PERFECT_SCORE, PunctualityStatus.PERFECT, message)
    if diff >= -TOLERANCE_MINUTES:
        return PunctualityResult(
            GOOD_SCORE,
            PunctualityStatus.GOOD,
            f"{abs(diff)} min early (within tolerance)",
        )
    return PunctualityResult(LATE_SCORE, PunctualityStatus.LATE, f"Left {abs(diff)} min early")
