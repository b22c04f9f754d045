# medtracker/core/engine.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from medtracker.core import adherence as adherence_mod
from medtracker.core.adherence import AdherencePolicy
from medtracker.core.civil_time import (
    UTC,
    ZoneLike,
    day_bounds,
    describe_zone,
    ensure_instant,
    to_civil,
    zone_key,
)
from medtracker.core.dose_record import (
    BoundedTakenTimePolicy,
    DoseRecord,
    DoseRecordManager,
    DoseRecordStore,
    DoseStatus,
)
from medtracker.core.errors import (
    InvalidSchedule,
    InvalidTransition,
    MedTrackerError,
    UnknownSchedule,
    UnknownZone,
)
from medtracker.core.i18n import fmt
from medtracker.core.logging_utils import kv
from medtracker.core.recurrence import (
    is_due_on,
    next_across,
    next_occurrence,
    occurrences_between,
    schedules_due_on,
)
from medtracker.core.schedule import Schedule
from medtracker.core.schedule_loader import load_schedules
from medtracker.core.transitions import (
    TimezoneTransitionCoordinator,
    TimezoneTransitionEvent,
)

Delivery = Callable[[DoseRecord, Schedule], Awaitable[None]]
ScheduleRef = Union[Schedule, str]
RecordRef = Union[DoseRecord, str]


@dataclass(frozen=True)
class Result:
    """Outcome of one engine operation. Failures carry the error kind and a user text."""

    ok: bool
    value: Any = None
    error: Optional[str] = None
    message: Optional[str] = None
    detail: Optional[str] = None

    @classmethod
    def success(cls, value: Any = None, message: Optional[str] = None) -> "Result":
        return cls(ok=True, value=value, message=message)

    @classmethod
    def failure(cls, error: str, message: str, detail: Optional[str] = None) -> "Result":
        return cls(ok=False, error=error, message=message, detail=detail)


class Clock:
    """Source of 'now' as an aware UTC instant; replaced in tests."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class MedTrackerEngine:
    """
    Boundary facade: owns the schedule registry, the dose record manager and the
    timezone transition coordinator. Every public operation returns a Result;
    typed errors from the core are turned into messages from the i18n catalogue.
    """

    def __init__(
        self,
        config: Any,
        *,
        clock: Optional[Clock] = None,
        store: Optional[DoseRecordStore] = None,
        delivery: Optional[Delivery] = None,
    ) -> None:
        self.cfg = config
        self.clock = clock or Clock()
        self.delivery = delivery
        self.log = logging.getLogger("medtracker.engine")

        self.policy = BoundedTakenTimePolicy(
            max_forward_skew=timedelta(seconds=getattr(config, "TAKEN_FORWARD_SKEW_S", 3600)),
            max_lookback=timedelta(seconds=getattr(config, "TAKEN_LOOKBACK_S", 7 * 24 * 3600)),
        )
        self.doses = DoseRecordManager(store=store, policy=self.policy, now=self.clock.now)
        self.coordinator = TimezoneTransitionCoordinator(
            getattr(config, "TIMEZONE", "UTC"),
            large_change_threshold=timedelta(
                hours=getattr(config, "LARGE_OFFSET_CHANGE_H", 12)
            ),
        )
        self.adherence_policy = AdherencePolicy(
            getattr(config, "ADHERENCE_POLICY", AdherencePolicy.RESOLVED_ONLY.value)
        )
        self.overdue_grace = timedelta(seconds=getattr(config, "OVERDUE_GRACE_S", 4 * 3600))
        self._schedules: Dict[str, Schedule] = {}

    # -- error mapping ------------------------------------------------------------------
    def _message_for(self, err: MedTrackerError) -> str:
        detail = str(err)
        if isinstance(err, InvalidSchedule):
            if err.code == "no_days":
                return fmt("schedule_no_days")
            if err.code == "bad_time":
                return fmt("schedule_bad_time", detail=detail)
            return fmt("invalid_schedule", detail=detail)
        if isinstance(err, UnknownZone):
            return fmt("unknown_zone", zone=err.zone)
        if isinstance(err, UnknownSchedule):
            return fmt("unknown_schedule", schedule_id=err.schedule_id)
        if isinstance(err, InvalidTransition):
            if err.code == "taken_in_future":
                minutes = int(self.policy.max_forward_skew.total_seconds() // 60)
                return fmt("taken_in_future", minutes=minutes)
            if err.code == "taken_too_early":
                return fmt("taken_too_early", days=self.policy.max_lookback.days)
            if err.code == "stale":
                return fmt("dose_changed_elsewhere")
            return fmt("invalid_transition", detail=detail)
        if err.kind == "range_exhausted":
            return fmt("range_exhausted")
        if err.kind == "invalid_timezone_event":
            return fmt("invalid_timezone_event", detail=detail)
        return detail

    def _run(self, op: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Result:
        try:
            value = fn(*args, **kwargs)
        except MedTrackerError as e:
            self.log.warning("engine.fail " + kv(op=op, kind=e.kind, code=e.code, err=str(e)))
            return Result.failure(e.kind, self._message_for(e), str(e))
        except (TypeError, ValueError) as e:
            self.log.warning("engine.fail " + kv(op=op, kind="invalid_argument", err=str(e)))
            return Result.failure("invalid_argument", fmt("invalid_argument", detail=str(e)), str(e))
        return value if isinstance(value, Result) else Result.success(value)

    # -- helpers ------------------------------------------------------------------------
    @property
    def zone(self) -> str:
        return self.coordinator.zone

    def _now(self, now: Optional[datetime] = None) -> datetime:
        return ensure_instant(now) if now is not None else ensure_instant(self.clock.now())

    def _schedule(self, ref: ScheduleRef) -> Schedule:
        if isinstance(ref, Schedule):
            return ref
        s = self._schedules.get(ref)
        if s is None:
            raise UnknownSchedule(ref)
        return s

    def _zone(self, zone: Optional[ZoneLike]) -> str:
        return zone_key(zone) if zone is not None else self.coordinator.zone

    # -- lifecycle ----------------------------------------------------------------------
    def start(
        self, schedules: Optional[Iterable[Schedule]] = None, now: Optional[datetime] = None
    ) -> Result:
        """Register `schedules` (if given) and seed the trigger cache."""

        def _do():
            for s in list(schedules or []):
                self._schedules[s.schedule_id] = s
            snapshot = self.coordinator.seed(self._schedules.values(), self._now(now))
            self.log.info(
                "engine.start "
                + kv(zone=self.zone, schedules=len(self._schedules), triggers=len(snapshot))
            )
            return snapshot

        return self._run("start", _do)

    def load_roster(self, path: Optional[Union[str, Path]] = None) -> Result:
        """Read the YAML roster and register its schedules (without seeding)."""

        def _do():
            target = path or self.cfg.SCHEDULES_FILE
            try:
                schedules = load_schedules(target)
            except OSError as e:
                return Result.failure(
                    "roster_unavailable", fmt("roster_unavailable", path=target), str(e)
                )
            for s in schedules:
                self._schedules[s.schedule_id] = s
            return schedules

        return self._run("load_roster", _do)

    # -- schedule registry -------------------------------------------------------------
    def schedules(self) -> List[Schedule]:
        return sorted(self._schedules.values(), key=lambda s: s.schedule_id)

    def get_schedule(self, schedule_id: str) -> Result:
        return self._run("get_schedule", self._schedule, schedule_id)

    def add_schedule(self, schedule: Schedule, now: Optional[datetime] = None) -> Result:
        def _do():
            schedule.validate()
            if schedule.schedule_id in self._schedules:
                raise InvalidSchedule(
                    f"schedule id {schedule.schedule_id!r} is already registered",
                    code="duplicate",
                )
            self._schedules[schedule.schedule_id] = schedule
            self.coordinator.reseed_one(schedule, self._now(now))
            self.log.info("schedule.add " + kv(schedule_id=schedule.schedule_id))
            return schedule

        return self._run("add_schedule", _do)

    def update_schedule(self, schedule: Schedule, now: Optional[datetime] = None) -> Result:
        """Replace a schedule definition. Existing dose records keep their instants."""

        def _do():
            self._schedule(schedule.schedule_id)
            schedule.validate()
            self._schedules[schedule.schedule_id] = schedule
            self.coordinator.reseed_one(schedule, self._now(now))
            self.log.info(
                "schedule.update "
                + kv(schedule_id=schedule.schedule_id, enabled=schedule.is_enabled)
            )
            return schedule

        return self._run("update_schedule", _do)

    def remove_schedule(self, schedule_id: str) -> Result:
        """Forget a schedule and its trigger; its dose history stays."""

        def _do():
            removed = self._schedule(schedule_id)
            del self._schedules[schedule_id]
            self.coordinator.drop(schedule_id)
            self.log.info("schedule.remove " + kv(schedule_id=schedule_id))
            return removed

        return self._run("remove_schedule", _do)

    # -- recurrence -----------------------------------------------------------------------
    def next_occurrence(
        self,
        schedule: ScheduleRef,
        after: Optional[datetime] = None,
        zone: Optional[ZoneLike] = None,
    ) -> Result:
        return self._run(
            "next_occurrence",
            lambda: next_occurrence(self._schedule(schedule), self._zone(zone), self._now(after)),
        )

    def next_dose(self, after: Optional[datetime] = None) -> Result:
        """(schedule, instant) of the soonest upcoming dose, or None."""
        return self._run(
            "next_dose",
            lambda: next_across(self._schedules.values(), self.zone, self._now(after)),
        )

    def is_due_on(
        self,
        schedule: ScheduleRef,
        day: Union[date, datetime],
        zone: Optional[ZoneLike] = None,
    ) -> Result:
        return self._run(
            "is_due_on", lambda: is_due_on(self._schedule(schedule), day, self._zone(zone))
        )

    def due_today(self, now: Optional[datetime] = None) -> Result:
        def _do():
            today = to_civil(self._now(now), self.zone).date()
            return schedules_due_on(self.schedules(), today, self.zone)

        return self._run("due_today", _do)

    def triggers(self) -> Result:
        return Result.success(self.coordinator.cache.snapshot())

    # -- dose records ---------------------------------------------------------------------
    def materialize(
        self,
        schedule: ScheduleRef,
        occurrence_instant: datetime,
        zone: Optional[ZoneLike] = None,
    ) -> Result:
        return self._run(
            "materialize",
            lambda: self.doses.materialize(
                self._schedule(schedule), occurrence_instant, self._zone(zone)
            ),
        )

    def materialize_day(self, day: date, zone: Optional[ZoneLike] = None) -> Result:
        """Pending records for every occurrence on civil date `day`."""

        def _do():
            z = self._zone(zone)
            start, end = day_bounds(day, z)
            out: List[DoseRecord] = []
            for s in self.schedules():
                for occ in occurrences_between(s, z, start, end):
                    out.append(self.doses.materialize(s, occ, z))
            return sorted(out, key=lambda r: r.scheduled_instant)

        return self._run("materialize_day", _do)

    def materialize_due(self, now: Optional[datetime] = None) -> Result:
        """
        Catch up on triggers that are already due: materialize each one and
        advance it, until nothing in the cache is at or before `now`.
        """

        def _do():
            cutoff = self._now(now)
            out: List[DoseRecord] = []
            due = self.coordinator.cache.due(cutoff)
            while due:
                for trig in due:
                    schedule = self._schedules.get(trig.schedule_id)
                    if schedule is None:
                        self.coordinator.drop(trig.schedule_id)
                        continue
                    out.append(self.doses.materialize(schedule, trig.instant, trig.zone))
                    self.coordinator.reseed_one(schedule, trig.instant)
                due = self.coordinator.cache.due(cutoff)
            if out:
                self.log.info("engine.catch_up " + kv(materialized=len(out), now=cutoff))
            return out

        return self._run("materialize_due", _do)

    async def fire_trigger(self, schedule_id: str) -> Result:
        """Job entry point: materialize the due dose, deliver it, advance the trigger."""
        trig = self.coordinator.cache.get(schedule_id)
        schedule = self._schedules.get(schedule_id)
        if schedule is None or trig is None:
            self.log.warning(
                "trigger.fire.unknown "
                + kv(schedule_id=schedule_id, registered=schedule is not None)
            )
            return Result.failure(
                "unknown_schedule", fmt("unknown_schedule", schedule_id=schedule_id)
            )

        res = self._run(
            "fire_trigger", self.doses.materialize, schedule, trig.instant, trig.zone
        )
        if not res.ok:
            return res
        record: DoseRecord = res.value
        self.log.info(
            "trigger.fire "
            + kv(schedule_id=schedule_id, scheduled=trig.instant, record_id=record.record_id)
        )

        if self.delivery is not None:
            try:
                await self.delivery(record, schedule)
            except Exception as e:  # delivery is best-effort; the record already exists
                self.log.error(
                    "trigger.deliver.error " + kv(schedule_id=schedule_id, err=str(e))
                )

        res = self._run("fire_trigger", self.coordinator.reseed_one, schedule, trig.instant)
        if not res.ok:
            return res
        return Result.success(record)

    def mark_taken(
        self,
        record: RecordRef,
        at: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> Result:
        return self._run(
            "mark_taken",
            lambda: self.doses.mark_taken(record, at=at, now=self._now(), notes=notes),
        )

    def mark_missed(self, record: RecordRef, notes: Optional[str] = None) -> Result:
        return self._run("mark_missed", self.doses.mark_missed, record, notes)

    def mark_skipped(self, record: RecordRef, notes: Optional[str] = None) -> Result:
        return self._run("mark_skipped", self.doses.mark_skipped, record, notes)

    def reset_to_pending(self, record: RecordRef) -> Result:
        return self._run("reset_to_pending", self.doses.reset_to_pending, record)

    def log_manual(
        self,
        schedule_id: str,
        scheduled_instant: datetime,
        status: Union[DoseStatus, str] = DoseStatus.TAKEN,
        actual_instant: Optional[datetime] = None,
        notes: Optional[str] = None,
        zone: Optional[ZoneLike] = None,
    ) -> Result:
        return self._run(
            "log_manual",
            lambda: self.doses.record_manual(
                self._schedule(schedule_id).schedule_id,
                scheduled_instant,
                self._zone(zone),
                status=DoseStatus(status),
                actual_instant=actual_instant,
                notes=notes,
            ),
        )

    def sweep_overdue(
        self, now: Optional[datetime] = None, grace: Optional[timedelta] = None
    ) -> Result:
        return self._run(
            "sweep_overdue",
            lambda: self.doses.sweep_overdue(
                self._now(now), grace if grace is not None else self.overdue_grace
            ),
        )

    def history(self, schedule_id: str) -> Result:
        return self._run("history", self.doses.history, schedule_id)

    def purge_history(self, cutoff: datetime) -> Result:
        """Explicit retention cleanup for dose records and transition events."""

        def _do():
            return {
                "doses": self.doses.purge_older_than(cutoff),
                "transitions": self.coordinator.purge_events_older_than(cutoff),
            }

        return self._run("purge_history", _do)

    # -- adherence ------------------------------------------------------------------------
    def adherence(
        self,
        start: datetime,
        end: datetime,
        policy: Optional[Union[AdherencePolicy, str]] = None,
    ) -> Result:
        return self._run(
            "adherence",
            lambda: adherence_mod.adherence(
                self.doses.store.all(), start, end, AdherencePolicy(policy or self.adherence_policy)
            ),
        )

    def adherence_for_days(
        self,
        first_day: date,
        last_day: date,
        zone: Optional[ZoneLike] = None,
        policy: Optional[Union[AdherencePolicy, str]] = None,
    ) -> Result:
        return self._run(
            "adherence_for_days",
            lambda: adherence_mod.adherence_for_days(
                self.doses.store.all(),
                first_day,
                last_day,
                self._zone(zone),
                AdherencePolicy(policy or self.adherence_policy),
            ),
        )

    def status_counts(self, start: datetime, end: datetime) -> Result:
        return self._run(
            "status_counts",
            lambda: adherence_mod.status_counts(self.doses.store.all(), start, end),
        )

    # -- timezone -------------------------------------------------------------------------
    def on_timezone_changed(
        self,
        new_zone: str,
        at: Optional[datetime] = None,
        location: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Result:
        """
        Host notification that the device zone changed. Future triggers are
        recomputed in the new zone; existing dose records keep their instants.
        Reporting the current zone again is a no-op (value None).
        """

        def _do():
            now = self._now(at)
            new_key = zone_key(new_zone)
            if new_key == self.zone:
                self.log.debug("transition.same_zone " + kv(zone=new_key))
                return Result.success(None)

            event = TimezoneTransitionEvent(
                previous_zone=self.zone,
                new_zone=new_key,
                transition_instant=now,
                location=location,
                notes=notes,
            )
            outcome = self.coordinator.handle_transition(
                event, self._schedules.values(), now
            )
            self.doses.associate_transition(event)

            message = None
            if outcome.large_offset_change:
                message = fmt(
                    "large_offset_change",
                    hours=event.formatted_offset_change,
                    previous_zone=event.previous_zone,
                    new_zone=event.new_zone,
                )
            return Result.success(outcome, message=message)

        return self._run("on_timezone_changed", _do)

    def timezone_history(self) -> List[TimezoneTransitionEvent]:
        return self.coordinator.history()

    def describe_zone(self, at: Optional[datetime] = None) -> str:
        return describe_zone(self.zone, self._now(at))


__all__ = ["Result", "Clock", "MedTrackerEngine", "Delivery"]
