from datetime import time

import pytest

from models.shift import Shift
from utils.shift_window import active_shifts, closest_shift_by_entry, parse_hhmm

DAY = Shift(id="day", name="Day", entry_time="09:00", exit_time="17:00")
NIGHT = Shift(id="night", name="Night", entry_time="22:00", exit_time="06:00")


@pytest.mark.parametrize(
    "value, expected",
    [("09:00", 540), ("00:00", 0), ("23:59", 1439), ("9:00", None), ("24:00", None), ("12:60", None), ("", None), (None, None)],
)
def test_parse_hhmm(value, expected):
    assert parse_hhmm(value) == expected


@pytest.mark.parametrize(
    "now, active",
    [(time(7, 1), True), (time(6, 59), False), (time(17, 59), True), (time(18, 1), False), (time(12, 0), True)],
)
def test_day_shift_grace_windows(now, active):
    assert (active_shifts([DAY], now) == [DAY]) is active


@pytest.mark.parametrize("now, active", [(time(23, 59), True), (time(5, 0), True), (time(12, 0), False)])
def test_overnight_shift_wraps_midnight(now, active):
    assert (active_shifts([NIGHT], now) == [NIGHT]) is active


def test_malformed_shifts_are_always_active_and_order_is_kept():
    broken = Shift(id="broken", name="Broken", entry_time="9h", exit_time=None)
    assert active_shifts([broken, DAY, NIGHT], time(12, 0)) == [broken, DAY]
    assert active_shifts([NIGHT, broken], time(3, 0)) == [NIGHT, broken]


def test_grace_windows_are_parameters():
    assert active_shifts([DAY], time(8, 30), grace_before=15) == []
    assert active_shifts([DAY], time(8, 50), grace_before=15) == [DAY]


def test_closest_shift_by_entry_wraps_around_midnight():
    late = Shift(id="late", name="Late", entry_time="23:30", exit_time="07:30")
    noon = Shift(id="noon", name="Noon", entry_time="12:00", exit_time="20:00")
    assert closest_shift_by_entry([noon, late], time(0, 10)) is late
    assert closest_shift_by_entry([DAY, NIGHT], time(21, 50)) is NIGHT
    assert closest_shift_by_entry([DAY, NIGHT], time(9, 20)) is DAY


def test_closest_shift_skips_unparseable_and_ties_keep_first():
    broken = Shift(id="broken", name="Broken", entry_time="soon", exit_time="17:00")
    a = Shift(id="a", name="A", entry_time="08:00", exit_time="16:00")
    b = Shift(id="b", name="B", entry_time="10:00", exit_time="18:00")
    assert closest_shift_by_entry([broken, a, b], time(9, 0)) is a
    assert closest_shift_by_entry([broken], time(9, 0)) is None
