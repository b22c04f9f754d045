# medtracker/core/transitions.py
"""
Timezone Transition Coordinator.

Future triggers are derived data: for every enabled schedule, the next
occurrence in the current zone. On a zone change the whole trigger map is
recomputed for the new zone and swapped in at once. Dose records are never
read or written here.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from medtracker.core.civil_time import (
    ZoneLike,
    ensure_instant,
    offset_between,
    resolve_zone,
    zone_key,
)
from medtracker.core.errors import InvalidSchedule, InvalidTimezoneEvent
from medtracker.core.logging_utils import kv
from medtracker.core.recurrence import next_occurrence
from medtracker.core.schedule import Schedule

LARGE_OFFSET_CHANGE = timedelta(hours=12)
MAX_LOCATION_LEN = 200
MAX_NOTES_LEN = 1000


@dataclass(frozen=True)
class TimezoneTransitionEvent:
    """An observed change of the host's zone."""

    previous_zone: str
    new_zone: str
    transition_instant: datetime
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    location: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "transition_instant", ensure_instant(self.transition_instant)
        )
        prev = zone_key(self.previous_zone)
        new = zone_key(self.new_zone)
        if prev == new:
            raise InvalidTimezoneEvent(
                f"previous and new timezone must differ (both {new})"
            )
        object.__setattr__(self, "previous_zone", prev)
        object.__setattr__(self, "new_zone", new)
        if self.location is not None:
            if not self.location.strip():
                raise InvalidTimezoneEvent("location must not be empty when given")
            if len(self.location) > MAX_LOCATION_LEN:
                raise InvalidTimezoneEvent(
                    f"location must be {MAX_LOCATION_LEN} characters or less"
                )
        if self.notes is not None and len(self.notes) > MAX_NOTES_LEN:
            raise InvalidTimezoneEvent(f"notes must be {MAX_NOTES_LEN} characters or less")

    @property
    def offset_change(self) -> timedelta:
        """offset(new) - offset(previous), both read at the transition instant."""
        return offset_between(self.new_zone, self.previous_zone, self.transition_instant)

    @property
    def offset_change_hours(self) -> float:
        return self.offset_change.total_seconds() / 3600

    @property
    def is_forward_change(self) -> bool:
        return self.offset_change > timedelta(0)

    @property
    def is_backward_change(self) -> bool:
        return self.offset_change < timedelta(0)

    def is_large_change(self, threshold: timedelta = LARGE_OFFSET_CHANGE) -> bool:
        return abs(self.offset_change) > threshold

    @property
    def formatted_offset_change(self) -> str:
        hours = self.offset_change_hours
        sign = "+" if hours >= 0 else "-"
        value = f"{abs(hours):g}"
        unit = "hour" if abs(hours) == 1 else "hours"
        return f"{sign}{value} {unit}"

    def describe(self) -> str:
        t = self.transition_instant
        prev = t.astimezone(resolve_zone(self.previous_zone)).tzname() or self.previous_zone
        new = t.astimezone(resolve_zone(self.new_zone)).tzname() or self.new_zone
        return f"{prev} → {new} ({self.formatted_offset_change})"


@dataclass(frozen=True)
class Trigger:
    """Cached next occurrence of one schedule, computed in `zone`."""

    schedule_id: str
    instant: datetime
    zone: str


class TriggerCache:
    """
    Single-writer cache of future triggers.
    Every write publishes a fresh read-only mapping; readers only ever see a
    complete generation.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._triggers: Mapping[str, Trigger] = MappingProxyType({})
        self._zone: Optional[str] = None
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def zone(self) -> Optional[str]:
        return self._zone

    def snapshot(self) -> Mapping[str, Trigger]:
        return self._triggers

    def get(self, schedule_id: str) -> Optional[Trigger]:
        return self._triggers.get(schedule_id)

    def due(self, now: datetime) -> List[Trigger]:
        now = ensure_instant(now)
        snap = self._triggers
        return sorted(
            (t for t in snap.values() if t.instant <= now), key=lambda t: t.instant
        )

    def __len__(self) -> int:
        return len(self._triggers)

    def __contains__(self, schedule_id: object) -> bool:
        return schedule_id in self._triggers

    def swap(self, triggers: Mapping[str, Trigger], zone: str) -> int:
        with self._lock:
            self._triggers = MappingProxyType(dict(triggers))
            self._zone = zone
            self._generation += 1
            return self._generation

    def put(self, trigger: Trigger) -> int:
        with self._lock:
            updated = dict(self._triggers)
            updated[trigger.schedule_id] = trigger
            self._triggers = MappingProxyType(updated)
            self._generation += 1
            return self._generation

    def discard(self, schedule_id: str) -> int:
        with self._lock:
            if schedule_id not in self._triggers:
                return self._generation
            updated = dict(self._triggers)
            del updated[schedule_id]
            self._triggers = MappingProxyType(updated)
            self._generation += 1
            return self._generation


@dataclass(frozen=True)
class TransitionOutcome:
    event: TimezoneTransitionEvent
    triggers: Mapping[str, Trigger]
    offset_change: timedelta
    large_offset_change: bool  # advisory only, never blocks
    skipped: Mapping[str, str]  # schedule_id -> reason
    generation: int


SwapListener = Callable[[Mapping[str, Trigger]], None]


class TimezoneTransitionCoordinator:
    """Keeps the trigger cache aligned with the current zone."""

    def __init__(
        self,
        zone: ZoneLike,
        cache: Optional[TriggerCache] = None,
        large_change_threshold: timedelta = LARGE_OFFSET_CHANGE,
    ) -> None:
        self._zone = zone_key(zone)
        self.cache = cache if cache is not None else TriggerCache()
        self.large_change_threshold = large_change_threshold
        self._write_lock = threading.Lock()
        self._listeners: List[SwapListener] = []
        self._events: List[TimezoneTransitionEvent] = []
        self.log = logging.getLogger("medtracker.transitions")

    @property
    def zone(self) -> str:
        return self._zone

    def on_swap(self, listener: SwapListener) -> None:
        self._listeners.append(listener)

    def _notify(self, snapshot: Mapping[str, Trigger]) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:  # a broken mirror must not undo the swap
                self.log.error(
                    "transition.listener.error "
                    + kv(listener=getattr(listener, "__qualname__", repr(listener)), err=str(e))
                )

    def _compute(
        self, schedules: Iterable[Schedule], zone: str, now: datetime
    ) -> Tuple[Dict[str, Trigger], Dict[str, str]]:
        triggers: Dict[str, Trigger] = {}
        skipped: Dict[str, str] = {}
        for s in schedules:
            try:
                s.validate()
            except InvalidSchedule as e:
                skipped[s.schedule_id] = str(e)
                continue
            occ = next_occurrence(s, zone, now)
            if occ is not None:
                triggers[s.schedule_id] = Trigger(s.schedule_id, occ, zone)
        return triggers, skipped

    # -- full passes ----------------------------------------------------------------
    def seed(self, schedules: Iterable[Schedule], now: datetime) -> Mapping[str, Trigger]:
        """Replace the cache with triggers for `schedules` in the current zone."""
        now = ensure_instant(now)
        with self._write_lock:
            triggers, skipped = self._compute(list(schedules), self._zone, now)
            gen = self.cache.swap(triggers, self._zone)
            snapshot = self.cache.snapshot()
        self.log.info(
            "triggers.seed "
            + kv(zone=self._zone, triggers=len(triggers), skipped=len(skipped), generation=gen)
        )
        for sid, reason in skipped.items():
            self.log.warning("triggers.skip " + kv(schedule_id=sid, reason=reason))
        self._notify(snapshot)
        return snapshot

    def handle_transition(
        self,
        event: TimezoneTransitionEvent,
        schedules: Iterable[Schedule],
        now: Optional[datetime] = None,
    ) -> TransitionOutcome:
        """
        Recompute every trigger in the event's new zone and swap them in as one
        generation. If the recomputation fails nothing is applied and the
        previous cache (and zone) stay in place.
        """
        now = ensure_instant(now) if now is not None else event.transition_instant
        with self._write_lock:
            if event.previous_zone != self._zone:
                self.log.warning(
                    "transition.previous_zone.mismatch "
                    + kv(expected=self._zone, reported=event.previous_zone)
                )
            triggers, skipped = self._compute(list(schedules), event.new_zone, now)
            gen = self.cache.swap(triggers, event.new_zone)
            self._zone = event.new_zone
            self._events.append(event)
            snapshot = self.cache.snapshot()

        change = event.offset_change
        large = abs(change) > self.large_change_threshold
        self.log.info(
            "transition.applied "
            + kv(
                event_id=event.event_id,
                previous=event.previous_zone,
                new=event.new_zone,
                offset_change=event.formatted_offset_change,
                triggers=len(triggers),
                skipped=len(skipped),
                generation=gen,
            )
        )
        if large:
            self.log.warning(
                "transition.large_offset_change "
                + kv(event_id=event.event_id, offset_change=event.formatted_offset_change)
            )
        self._notify(snapshot)
        return TransitionOutcome(
            event=event,
            triggers=snapshot,
            offset_change=change,
            large_offset_change=large,
            skipped=MappingProxyType(skipped),
            generation=gen,
        )

    # -- single-schedule updates ------------------------------------------------------
    def reseed_one(self, schedule: Schedule, after: datetime) -> Optional[Trigger]:
        """Recompute one schedule's trigger (after it fired or was edited)."""
        after = ensure_instant(after)
        with self._write_lock:
            trig: Optional[Trigger] = None
            try:
                schedule.validate()
                occ = next_occurrence(schedule, self._zone, after)
            except InvalidSchedule as e:
                self.log.warning(
                    "triggers.skip " + kv(schedule_id=schedule.schedule_id, reason=str(e))
                )
                occ = None
            if occ is None:
                self.cache.discard(schedule.schedule_id)
            else:
                trig = Trigger(schedule.schedule_id, occ, self._zone)
                self.cache.put(trig)
            snapshot = self.cache.snapshot()
        self.log.debug(
            "triggers.reseed "
            + kv(schedule_id=schedule.schedule_id, next=trig.instant if trig else None)
        )
        self._notify(snapshot)
        return trig

    def drop(self, schedule_id: str) -> None:
        with self._write_lock:
            self.cache.discard(schedule_id)
            snapshot = self.cache.snapshot()
        self._notify(snapshot)

    # -- event history ------------------------------------------------------------------
    def history(self) -> List[TimezoneTransitionEvent]:
        """Handled events, newest first."""
        return sorted(self._events, key=lambda e: e.transition_instant, reverse=True)

    def most_recent(self) -> Optional[TimezoneTransitionEvent]:
        events = self.history()
        return events[0] if events else None

    def events_between(self, start: datetime, end: datetime) -> List[TimezoneTransitionEvent]:
        start, end = ensure_instant(start), ensure_instant(end)
        return sorted(
            (e for e in self._events if start <= e.transition_instant <= end),
            key=lambda e: e.transition_instant,
        )

    def purge_events_older_than(self, cutoff: datetime) -> int:
        cutoff = ensure_instant(cutoff)
        with self._write_lock:
            keep = [e for e in self._events if e.transition_instant >= cutoff]
            removed = len(self._events) - len(keep)
            self._events = keep
        return removed


__all__ = [
    "LARGE_OFFSET_CHANGE",
    "TimezoneTransitionEvent",
    "Trigger",
    "TriggerCache",
    "TransitionOutcome",
    "TimezoneTransitionCoordinator",
]
