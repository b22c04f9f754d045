# medtracker/core/adherence.py
from __future__ import annotations

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List

from medtracker.core.civil_time import ZoneLike, day_bounds, ensure_instant
from medtracker.core.dose_record import DoseRecord, DoseStatus


class AdherencePolicy(str, Enum):
    """Which records count towards the denominator."""

    RESOLVED_ONLY = "resolved_only"  # taken + missed + skipped
    ALL_RECORDS = "all_records"  # pending included


DEFAULT_POLICY = AdherencePolicy.RESOLVED_ONLY

_RESOLVED = frozenset({DoseStatus.TAKEN, DoseStatus.MISSED, DoseStatus.SKIPPED})


def _in_range(records: Iterable[DoseRecord], start: datetime, end: datetime) -> List[DoseRecord]:
    start, end = ensure_instant(start), ensure_instant(end)
    return [r for r in records if start <= r.scheduled_instant < end]


def _ratio(records: List[DoseRecord], policy: AdherencePolicy) -> float:
    policy = AdherencePolicy(policy)
    if policy is AdherencePolicy.RESOLVED_ONLY:
        relevant = [r for r in records if r.status in _RESOLVED]
    else:
        relevant = records
    if not relevant:
        return 0.0
    taken = sum(1 for r in relevant if r.status is DoseStatus.TAKEN)
    return taken / len(relevant)


def adherence(
    records: Iterable[DoseRecord],
    start: datetime,
    end: datetime,
    policy: AdherencePolicy = DEFAULT_POLICY,
) -> float:
    """
    Share of taken doses among the relevant doses scheduled in [start, end).

    Returns 0.0 when nothing is relevant.
    """
    return _ratio(_in_range(records, start, end), policy)


def adherence_for_days(
    records: Iterable[DoseRecord],
    first_day: date,
    last_day: date,
    zone: ZoneLike,
    policy: AdherencePolicy = DEFAULT_POLICY,
) -> float:
    """Adherence over civil dates first_day..last_day (inclusive) in `zone`."""
    start, _ = day_bounds(first_day, zone)
    _, end = day_bounds(last_day, zone)
    return adherence(records, start, end, policy)


def status_counts(
    records: Iterable[DoseRecord], start: datetime, end: datetime
) -> Dict[DoseStatus, int]:
    counts = {s: 0 for s in DoseStatus}
    for r in _in_range(records, start, end):
        counts[r.status] += 1
    return counts


def daily_adherence(
    records: Iterable[DoseRecord],
    first_day: date,
    last_day: date,
    zone: ZoneLike,
    policy: AdherencePolicy = DEFAULT_POLICY,
) -> Dict[date, float]:
    """Per civil day adherence, keyed by date in `zone`."""
    recs = list(records)
    out: Dict[date, float] = {}
    day = first_day
    while day <= last_day:
        start, end = day_bounds(day, zone)
        out[day] = _ratio(_in_range(recs, start, end), policy)
        day += timedelta(days=1)
    return out


__all__ = [
    "AdherencePolicy",
    "DEFAULT_POLICY",
    "adherence",
    "adherence_for_days",
    "status_counts",
    "daily_adherence",
]
