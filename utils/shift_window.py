import re
from datetime import datetime, time
from typing import List, Optional, Sequence, Union

from models.shift import Shift

MINUTES_PER_DAY = 24 * 60

# A shift is offered from 2h before its entry until 1h after its exit
GRACE_BEFORE_MINUTES = 120
GRACE_AFTER_MINUTES = 60

_HHMM = re.compile(r"^\d{2}:\d{2}$")


def parse_hhmm(value: Optional[str]) -> Optional[int]:
    """Return minutes since midnight for an "HH:MM" string, else None."""
    if not value or not _HHMM.match(value):
        return None
    hours, minutes = (int(part) for part in value.split(":"))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


def minutes_of_day(now: Union[datetime, time]) -> int:
    return now.hour * 60 + now.minute


def is_shift_active(
    shift: Shift,
    now_minutes: int,
    grace_before: int = GRACE_BEFORE_MINUTES,
    grace_after: int = GRACE_AFTER_MINUTES,
) -> bool:
    entry = parse_hhmm(shift.entry_time)
    exit_ = parse_hhmm(shift.exit_time)

    # Malformed shifts are never filtered out
    if entry is None or exit_ is None:
        return True

    window_start = (entry - grace_before) % MINUTES_PER_DAY
    window_end = (exit_ + grace_after) % MINUTES_PER_DAY

    if window_start > window_end:
        # Window wraps past midnight, e.g. 20:00 - 07:00
        return now_minutes >= window_start or now_minutes <= window_end
    return window_start <= now_minutes <= window_end


def active_shifts(
    shifts: Sequence[Shift],
    now: Union[datetime, time],
    grace_before: int = GRACE_BEFORE_MINUTES,
    grace_after: int = GRACE_AFTER_MINUTES,
) -> List[Shift]:
    """Shifts plausibly active at the given local time, in input order."""
    now_minutes = minutes_of_day(now)
    return [
        shift
        for shift in shifts
        if is_shift_active(shift, now_minutes, grace_before, grace_after)
    ]


def closest_shift_by_entry(
    shifts: Sequence[Shift], entry_at: Union[datetime, time]
) -> Optional[Shift]:
    """Best-guess shift for a recorded ENTRY: nearest entry time, wrapping at 24h.

    Shifts without a parseable entry time are skipped; ties keep the first.
    """
    entry_minutes = minutes_of_day(entry_at)
    closest = None
    min_diff = None
    for shift in shifts:
        shift_entry = parse_hhmm(shift.entry_time)
        if shift_entry is None:
            continue
        diff = abs(entry_minutes - shift_entry)
        if diff > MINUTES_PER_DAY // 2:
            diff = MINUTES_PER_DAY - diff
        if min_diff is None or diff < min_diff:
            min_diff = diff
            closest = shift
    return closest
