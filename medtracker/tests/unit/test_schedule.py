# tests/unit/test_schedule.py
from datetime import time

import pytest

from medtracker.core.errors import InvalidSchedule
from medtracker.core.schedule import (
    EVERYDAY,
    NO_DAYS,
    WEEKDAYS,
    WEEKENDS,
    DaysOfWeek,
    Frequency,
    Schedule,
    Weekday,
    make_schedule,
    parse_time_of_day,
)


def test_bitmask_interop():
    assert EVERYDAY.bitmask == 127
    assert WEEKDAYS.bitmask == 31
    assert WEEKENDS.bitmask == 96
    assert DaysOfWeek.from_bitmask(31) == WEEKDAYS
    assert DaysOfWeek.from_bitmask(0) == NO_DAYS
    assert Weekday.MONDAY.bit == 1
    assert Weekday.SUNDAY.bit == 64


@pytest.mark.parametrize("mask", [-1, 128, "31"])
def test_bitmask_out_of_range(mask):
    with pytest.raises(InvalidSchedule):
        DaysOfWeek.from_bitmask(mask)


def test_from_names_accepts_short_and_long_names():
    d = DaysOfWeek.from_names(["Mon", "tuesday", " SUN "])
    assert list(d) == [Weekday.MONDAY, Weekday.TUESDAY, Weekday.SUNDAY]
    with pytest.raises(InvalidSchedule):
        DaysOfWeek.from_names(["funday"])


def test_day_set_edits_return_new_values():
    d = WEEKDAYS.with_day(Weekday.SATURDAY)
    assert Weekday.SATURDAY in d
    assert Weekday.SATURDAY not in WEEKDAYS
    assert d.without_day(Weekday.SATURDAY) == WEEKDAYS
    assert WEEKENDS.toggled(Weekday.SUNDAY) == DaysOfWeek.of(Weekday.SATURDAY)
    assert WEEKDAYS.is_weekdays_only and WEEKENDS.is_weekends_only
    assert EVERYDAY.is_everyday and not WEEKDAYS.is_everyday
    assert not NO_DAYS and len(EVERYDAY) == 7


def test_parse_time_of_day():
    assert parse_time_of_day("08:00") == time(8, 0)
    assert parse_time_of_day(" 7:05 ") == time(7, 5)


@pytest.mark.parametrize("bad", ["8", "24:00", "12:60", "noon", ""])
def test_parse_time_of_day_rejects_bad_input(bad):
    with pytest.raises(InvalidSchedule) as ei:
        parse_time_of_day(bad)
    assert ei.value.code == "bad_time"


def test_make_schedule_derives_frequency():
    s = make_schedule("a", "08:00")
    assert s.frequency is Frequency.DAILY and s.days == EVERYDAY
    w = make_schedule("b", "08:00", days=["mon", "fri"])
    assert w.frequency is Frequency.WEEKLY
    m = make_schedule("c", "21:30", days=31)
    assert m.days == WEEKDAYS


def test_enabled_schedule_without_days_is_rejected():
    with pytest.raises(InvalidSchedule) as ei:
        make_schedule("a", "08:00", days=[])
    assert ei.value.code == "no_days"


def test_disabled_schedule_may_have_no_days():
    s = make_schedule("a", "08:00", days=0, is_enabled=False)
    assert not s.generates_occurrences


def test_daily_requires_all_days():
    with pytest.raises(InvalidSchedule):
        make_schedule("a", "08:00", days=["mon"], frequency="daily")


def test_time_of_day_must_be_whole_minutes():
    with pytest.raises(InvalidSchedule):
        Schedule("a", time(8, 0, 30)).validate()


def test_frequency_parse():
    assert Frequency.parse("As-Needed") is Frequency.AS_NEEDED
    with pytest.raises(InvalidSchedule):
        Frequency.parse("hourly")


def test_as_needed_generates_no_occurrences():
    s = make_schedule("prn", "12:00", frequency="as-needed")
    assert not s.generates_occurrences


def test_edits_produce_new_values():
    s = make_schedule("a", "08:00")
    w = s.with_days(DaysOfWeek.of(Weekday.MONDAY, Weekday.TUESDAY))
    assert w.frequency is Frequency.WEEKLY
    assert s.frequency is Frequency.DAILY
    assert s.disabled().is_enabled is False
    assert s.disabled().enabled().is_enabled is True
    assert s.with_time(time(9, 15)).time_of_day == time(9, 15)


def test_description():
    s = make_schedule("a", "08:00", days=["mon", "tue"])
    assert s.description == "08:00 - Mon, Tue"
