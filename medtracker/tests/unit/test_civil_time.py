# tests/unit/test_civil_time.py
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from medtracker.core.civil_time import (
    CivilTimeKind,
    Resolution,
    classify,
    convert_civil,
    day_bounds,
    describe_zone,
    ensure_instant,
    format_offset,
    offset_between,
    resolve,
    resolve_zone,
    to_civil,
    to_instant,
    utc_offset,
)
from medtracker.core.errors import UnknownZone

UTC = timezone.utc
NY = "America/New_York"


def test_resolve_zone_accepts_names_and_zoneinfo():
    assert resolve_zone("Asia/Tokyo").key == "Asia/Tokyo"
    z = ZoneInfo("Europe/Kyiv")
    assert resolve_zone(z) is z


@pytest.mark.parametrize("bad", ["Mars/Olympus_Mons", "", "   ", None, 42, "../etc/passwd"])
def test_unknown_zone_raises(bad):
    with pytest.raises(UnknownZone):
        resolve_zone(bad)


def test_to_civil_and_back_in_regular_time():
    t = datetime(2026, 6, 15, 12, 0, tzinfo=UTC)
    civil = to_civil(t, "Asia/Tokyo")
    assert civil == datetime(2026, 6, 15, 21, 0)
    assert civil.tzinfo is None
    assert to_instant(civil, "Asia/Tokyo") == t


def test_instants_are_normalised_to_utc():
    t = datetime(2026, 6, 15, 21, 0, tzinfo=ZoneInfo("Asia/Tokyo"))
    assert ensure_instant(t).tzinfo is UTC
    assert ensure_instant(t) == datetime(2026, 6, 15, 12, 0, tzinfo=UTC)


def test_naive_datetime_is_not_an_instant():
    with pytest.raises(ValueError):
        ensure_instant(datetime(2026, 1, 1, 8, 0))


def test_spring_forward_gap_moves_past_the_gap():
    civil = datetime(2026, 3, 8, 2, 30)
    assert classify(civil, NY) is CivilTimeKind.GAP
    r = resolve(civil, NY)
    assert r.resolution is Resolution.SHIFTED_PAST_GAP
    assert r.instant == datetime(2026, 3, 8, 7, 30, tzinfo=UTC)
    # reads 03:30 EDT on the wall
    assert to_civil(r.instant, NY) == datetime(2026, 3, 8, 3, 30)


def test_spring_forward_resolution_is_stable():
    civil = datetime(2026, 3, 8, 2, 30)
    assert len({to_instant(civil, NY) for _ in range(5)}) == 1


def test_fall_back_repeated_hour_takes_earlier_instant():
    civil = datetime(2026, 11, 1, 1, 30)
    assert classify(civil, NY) is CivilTimeKind.AMBIGUOUS
    r = resolve(civil, NY)
    assert r.resolution is Resolution.EARLIER_OF_REPEATED
    assert r.instant == datetime(2026, 11, 1, 5, 30, tzinfo=UTC)


def test_regular_time_exists():
    civil = datetime(2026, 1, 5, 8, 0)
    assert classify(civil, NY) is CivilTimeKind.EXISTS
    assert resolve(civil, NY).resolution is Resolution.EXACT


def test_offsets_come_from_the_rules_at_the_instant():
    assert utc_offset(NY, datetime(2026, 1, 5, tzinfo=UTC)) == timedelta(hours=-5)
    assert utc_offset(NY, datetime(2026, 7, 5, tzinfo=UTC)) == timedelta(hours=-4)
    assert utc_offset("Asia/Kolkata", datetime(2026, 1, 5, tzinfo=UTC)) == timedelta(
        hours=5, minutes=30
    )


def test_offset_between_two_zones_follows_both_rule_sets():
    # NY has moved to EDT on March 10, London is still on GMT
    at = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)
    assert offset_between("Europe/London", NY, at) == timedelta(hours=4)
    assert offset_between(NY, "Europe/London", at) == timedelta(hours=-4)
    july = datetime(2026, 7, 5, tzinfo=UTC)
    assert offset_between("Europe/London", NY, july) == timedelta(hours=5)
    assert offset_between("Asia/Tokyo", "Asia/Tokyo", july) == timedelta(0)


def test_convert_civil_reads_the_same_instant_in_the_reference_zone():
    assert convert_civil(datetime(2026, 1, 5, 8, 0), NY, "Asia/Tokyo") == datetime(
        2026, 1, 5, 22, 0
    )
    # gap wall time is resolved before conversion
    assert convert_civil(datetime(2026, 3, 8, 2, 30), NY, "UTC") == datetime(
        2026, 3, 8, 7, 30
    )


def test_format_offset():
    assert format_offset(timedelta(hours=9)) == "UTC+9"
    assert format_offset(timedelta(hours=5, minutes=30)) == "UTC+5:30"
    assert format_offset(timedelta(hours=-5)) == "UTC-5"
    assert format_offset(timedelta(0)) == "UTC+0"


def test_describe_zone():
    at = datetime(2026, 1, 5, tzinfo=UTC)
    assert describe_zone("Asia/Tokyo", at) == "Asia/Tokyo (JST, UTC+9)"


def test_day_bounds_on_spring_forward_day_is_23_hours():
    start, end = day_bounds(date(2026, 3, 8), NY)
    assert start == datetime(2026, 3, 8, 5, 0, tzinfo=UTC)
    assert end == datetime(2026, 3, 9, 4, 0, tzinfo=UTC)
    assert end - start == timedelta(hours=23)


def test_round_trip_over_a_year_of_hours():
    t = datetime(2026, 1, 1, tzinfo=UTC)
    tz = ZoneInfo(NY)
    while t.year == 2026:
        civil = to_civil(t, tz)
        if classify(civil, tz) is CivilTimeKind.EXISTS:
            assert to_instant(civil, tz) == t
        t += timedelta(hours=7)
