# medtracker/core/recurrence.py
"""
Recurrence Resolver: schedule definition + zone -> concrete occurrence instants.

Stateless; every function takes the zone explicitly.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from medtracker.core.civil_time import (
    ZoneLike,
    combine,
    ensure_instant,
    resolve_zone,
    to_civil,
    to_instant,
)
from medtracker.core.errors import RangeExhausted
from medtracker.core.logging_utils import kv
from medtracker.core.schedule import Schedule, Weekday

log = logging.getLogger("medtracker.recurrence")

SCAN_DAYS = 7
_EPSILON = timedelta(microseconds=1)


def next_occurrence(
    schedule: Schedule, zone: ZoneLike, after: datetime
) -> Optional[datetime]:
    """
    Earliest occurrence instant strictly later than `after`, or None when the
    schedule produces no automatic occurrences (disabled, as-needed, no days).

    The scan starts one civil day before `after` so that a wall time pushed
    across midnight by a DST gap is still considered, then walks seven days
    forward, which covers a full weekday cycle.
    """
    if not schedule.generates_occurrences:
        return None

    tz = resolve_zone(zone)
    after = ensure_instant(after)
    start_day = to_civil(after, tz).date()

    for offset in range(-1, SCAN_DAYS + 1):
        day = start_day + timedelta(days=offset)
        if Weekday(day.isoweekday()) not in schedule.days:
            continue
        candidate = to_instant(combine(day, schedule.time_of_day), tz)
        if candidate > after:
            return candidate

    log.error(
        "recurrence.exhausted "
        + kv(schedule_id=schedule.schedule_id, zone=tz.key, after=after)
    )
    raise RangeExhausted(
        f"no occurrence of schedule {schedule.schedule_id!r} within "
        f"{SCAN_DAYS} days after {after.isoformat()} in {tz.key}"
    )


def _civil_date(day: "date | datetime", zone: ZoneLike) -> date:
    if isinstance(day, datetime):
        return to_civil(day, zone).date()
    return day


def is_due_on(schedule: Schedule, day: "date | datetime", zone: ZoneLike) -> bool:
    """True iff the schedule is enabled and the civil weekday of `day` is selected.

    `day` may be a civil date or an aware instant (read in `zone`).
    """
    resolve_zone(zone)
    if not schedule.is_enabled:
        return False
    d = _civil_date(day, zone)
    return Weekday(d.isoweekday()) in schedule.days


def occurrences_between(
    schedule: Schedule, zone: ZoneLike, start: datetime, end: datetime
) -> List[datetime]:
    """All occurrence instants in the half-open range [start, end)."""
    start = ensure_instant(start)
    end = ensure_instant(end)
    out: List[datetime] = []
    cursor = start - _EPSILON
    while True:
        occ = next_occurrence(schedule, zone, cursor)
        if occ is None or occ >= end:
            return out
        out.append(occ)
        cursor = occ


def next_across(
    schedules: Iterable[Schedule], zone: ZoneLike, after: datetime
) -> Optional[Tuple[Schedule, datetime]]:
    """The soonest next occurrence over several schedules, with its schedule."""
    best: Tuple[Optional[Schedule], Optional[datetime]] = (None, None)
    for s in schedules:
        occ = next_occurrence(s, zone, after)
        if occ is not None and (best[1] is None or occ < best[1]):
            best = (s, occ)
    if best[0] is None or best[1] is None:
        return None
    return best[0], best[1]


def schedules_due_on(
    schedules: Iterable[Schedule], day: "date | datetime", zone: ZoneLike
) -> List[Schedule]:
    return [s for s in schedules if is_due_on(s, day, zone)]


__all__ = [
    "SCAN_DAYS",
    "next_occurrence",
    "is_due_on",
    "occurrences_between",
    "next_across",
    "schedules_due_on",
]
