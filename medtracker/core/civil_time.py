# medtracker/core/civil_time.py
"""
Civil Time Converter.

Pure functions between absolute instants (aware UTC datetimes) and civil wall
clock values (naive datetimes) in a named IANA zone. Offsets always come from
the zone rules at the instant being resolved; nothing is cached here.

Policies for wall times that the zone does not map one-to-one:
- gap (spring forward): the wall time is read as if the clock had already
  jumped, i.e. nominal time + gap length (02:30 -> 03:30 on the US date);
- repeated hour (fall back): the earlier of the two instants wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from medtracker.core.errors import UnknownZone

UTC = timezone.utc

ZoneLike = Union[str, ZoneInfo]


class CivilTimeKind(str, Enum):
    EXISTS = "exists"
    GAP = "gap"
    AMBIGUOUS = "ambiguous"


class Resolution(str, Enum):
    EXACT = "exact"
    SHIFTED_PAST_GAP = "shifted_past_gap"
    EARLIER_OF_REPEATED = "earlier_of_repeated"


@dataclass(frozen=True)
class ResolvedInstant:
    civil: datetime  # requested wall time (naive)
    instant: datetime  # aware, UTC
    resolution: Resolution


# -- zones ---------------------------------------------------------------------
def resolve_zone(zone: ZoneLike) -> ZoneInfo:
    """Return the ZoneInfo for an identifier; UnknownZone if it cannot be loaded."""
    if isinstance(zone, ZoneInfo):
        return zone
    if not isinstance(zone, str) or not zone.strip():
        raise UnknownZone(zone)
    try:
        return ZoneInfo(zone.strip())
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        raise UnknownZone(zone) from e


def zone_key(zone: ZoneLike) -> str:
    return str(resolve_zone(zone).key)


def utc_offset(zone: ZoneLike, at: datetime) -> timedelta:
    """Offset of `zone` from UTC in effect at instant `at`."""
    tz = resolve_zone(zone)
    offset = ensure_instant(at).astimezone(tz).utcoffset()
    return offset if offset is not None else timedelta(0)


def offset_between(zone: ZoneLike, reference: ZoneLike, at: datetime) -> timedelta:
    """How far `zone` runs ahead of `reference` at instant `at` (negative if behind)."""
    return utc_offset(zone, at) - utc_offset(reference, at)


def convert_civil(civil: datetime, zone: ZoneLike, reference: ZoneLike) -> datetime:
    """Wall-clock reading in `reference` of a civil time read in `zone`."""
    return to_civil(to_instant(civil, zone), reference)


def format_offset(offset: timedelta) -> str:
    minutes = int(offset.total_seconds() // 60)
    sign = "+" if minutes >= 0 else "-"
    hh, mm = divmod(abs(minutes), 60)
    return f"UTC{sign}{hh}" if mm == 0 else f"UTC{sign}{hh}:{mm:02d}"


def describe_zone(zone: ZoneLike, at: datetime) -> str:
    """Human-readable zone label, e.g. 'Asia/Tokyo (JST, UTC+9)'."""
    tz = resolve_zone(zone)
    local = ensure_instant(at).astimezone(tz)
    abbr = local.tzname() or "?"
    return f"{tz.key} ({abbr}, {format_offset(local.utcoffset() or timedelta(0))})"


# -- instants / civil values -----------------------------------------------------
def ensure_instant(dt: datetime) -> datetime:
    """Reject naive datetimes; normalise aware ones to UTC."""
    if not isinstance(dt, datetime):
        raise TypeError(f"expected datetime, got {type(dt).__name__}")
    if dt.tzinfo is None or dt.utcoffset() is None:
        raise ValueError(f"naive datetime is not an instant: {dt.isoformat()}")
    return dt.astimezone(UTC)


def _ensure_civil(civil: datetime) -> datetime:
    if not isinstance(civil, datetime):
        raise TypeError(f"expected datetime, got {type(civil).__name__}")
    if civil.tzinfo is not None:
        raise ValueError(f"civil datetime must be naive: {civil.isoformat()}")
    return civil.replace(fold=0)


def combine(day: date, time_of_day: time) -> datetime:
    """Civil datetime for a calendar date and a wall-clock time."""
    return datetime(
        day.year, day.month, day.day, time_of_day.hour, time_of_day.minute,
        time_of_day.second,
    )


def to_civil(instant: datetime, zone: ZoneLike) -> datetime:
    """Wall-clock reading (naive) of `instant` in `zone`."""
    tz = resolve_zone(zone)
    return ensure_instant(instant).astimezone(tz).replace(tzinfo=None, fold=0)


def _candidate_offsets(civil: datetime, tz: ZoneInfo) -> Tuple[timedelta, timedelta]:
    # fold=0 reads the offset in effect before a transition, fold=1 after it
    before = civil.replace(tzinfo=tz, fold=0).utcoffset() or timedelta(0)
    after = civil.replace(tzinfo=tz, fold=1).utcoffset() or timedelta(0)
    return before, after


def classify(civil: datetime, zone: ZoneLike) -> CivilTimeKind:
    tz = resolve_zone(zone)
    before, after = _candidate_offsets(_ensure_civil(civil), tz)
    if before == after:
        return CivilTimeKind.EXISTS
    # Offset grows across a gap (clock jumps ahead) and shrinks across a repeat.
    return CivilTimeKind.GAP if before < after else CivilTimeKind.AMBIGUOUS


def resolve(civil: datetime, zone: ZoneLike) -> ResolvedInstant:
    """Map a civil datetime to one instant, applying the gap / repeat policies."""
    tz = resolve_zone(zone)
    naive = _ensure_civil(civil)
    before, after = _candidate_offsets(naive, tz)

    if before == after:
        instant = (naive - before).replace(tzinfo=UTC)
        return ResolvedInstant(naive, instant, Resolution.EXACT)

    if before < after:
        shifted = naive + (after - before)
        instant = (shifted - after).replace(tzinfo=UTC)
        return ResolvedInstant(naive, instant, Resolution.SHIFTED_PAST_GAP)

    earlier = min(naive - before, naive - after)
    return ResolvedInstant(
        naive, earlier.replace(tzinfo=UTC), Resolution.EARLIER_OF_REPEATED
    )


def to_instant(civil: datetime, zone: ZoneLike) -> datetime:
    """Absolute UTC instant for a civil datetime in `zone`."""
    return resolve(civil, zone).instant


def day_bounds(day: date, zone: ZoneLike) -> Tuple[datetime, datetime]:
    """Half-open [start, end) instants covering civil date `day` in `zone`."""
    start = to_instant(combine(day, time(0, 0)), zone)
    end = to_instant(combine(day + timedelta(days=1), time(0, 0)), zone)
    return start, end


__all__ = [
    "UTC",
    "CivilTimeKind",
    "Resolution",
    "ResolvedInstant",
    "resolve_zone",
    "zone_key",
    "utc_offset",
    "offset_between",
    "convert_civil",
    "format_offset",
    "describe_zone",
    "ensure_instant",
    "combine",
    "to_civil",
    "classify",
    "resolve",
    "to_instant",
    "day_bounds",
]
