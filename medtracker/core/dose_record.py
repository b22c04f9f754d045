# medtracker/core/dose_record.py
"""
Dose Record Manager.

A DoseRecord is a fact about one occurrence. Its `scheduled_instant` is fixed
when the record is materialized and is carried unchanged through every status
change; only status, actual time, notes and the audit link ever move.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Protocol,
)

from medtracker.core.civil_time import (
    UTC,
    ZoneLike,
    ensure_instant,
    to_civil,
    zone_key,
)
from medtracker.core.errors import InvalidTransition
from medtracker.core.logging_utils import kv
from medtracker.core.schedule import Schedule

if TYPE_CHECKING:  # pragma: no cover
    from medtracker.core.transitions import TimezoneTransitionEvent

MAX_NOTES_LEN = 1000


class DoseStatus(str, Enum):
    PENDING = "pending"
    TAKEN = "taken"
    MISSED = "missed"
    SKIPPED = "skipped"


ALLOWED_TRANSITIONS: Dict[DoseStatus, FrozenSet[DoseStatus]] = {
    DoseStatus.PENDING: frozenset(
        {DoseStatus.TAKEN, DoseStatus.MISSED, DoseStatus.SKIPPED}
    ),
    # Leaving a resolved state always goes through pending, so a recorded
    # actual time is never silently overwritten.
    DoseStatus.TAKEN: frozenset({DoseStatus.PENDING}),
    DoseStatus.MISSED: frozenset({DoseStatus.PENDING}),
    DoseStatus.SKIPPED: frozenset({DoseStatus.PENDING}),
}


@dataclass(frozen=True)
class DoseKey:
    """Stable identity of one occurrence of one schedule."""

    schedule_id: str
    scheduled_instant: datetime


@dataclass(frozen=True)
class DoseRecord:
    record_id: str
    schedule_id: str
    scheduled_instant: datetime
    zone_at_scheduling: str
    status: DoseStatus = DoseStatus.PENDING
    actual_instant: Optional[datetime] = None
    notes: Optional[str] = None
    transition_event_id: Optional[str] = None
    created_at: Optional[datetime] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "scheduled_instant", ensure_instant(self.scheduled_instant))
        object.__setattr__(self, "status", DoseStatus(self.status))
        if self.actual_instant is not None:
            object.__setattr__(self, "actual_instant", ensure_instant(self.actual_instant))
        if self.created_at is not None:
            object.__setattr__(self, "created_at", ensure_instant(self.created_at))

        if (self.actual_instant is not None) != (self.status is DoseStatus.TAKEN):
            raise InvalidTransition(
                "actual time must be set exactly when status is 'taken' "
                f"(status={self.status.value})"
            )
        if self.notes is not None and len(self.notes) > MAX_NOTES_LEN:
            raise InvalidTransition(f"notes must be {MAX_NOTES_LEN} characters or less")

    # -- derived ----------------------------------------------------------------
    @property
    def key(self) -> DoseKey:
        return DoseKey(self.schedule_id, self.scheduled_instant)

    @property
    def time_difference(self) -> Optional[timedelta]:
        """actual - scheduled (positive = late, negative = early)."""
        if self.actual_instant is None:
            return None
        return self.actual_instant - self.scheduled_instant

    def is_overdue(self, now: datetime) -> bool:
        return self.status is DoseStatus.PENDING and self.scheduled_instant < ensure_instant(now)

    def local_scheduled_time(self) -> datetime:
        """Wall-clock reading in the zone the dose was scheduled under."""
        return to_civil(self.scheduled_instant, self.zone_at_scheduling)


def transition(
    record: DoseRecord,
    target: DoseStatus,
    *,
    actual_instant: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> DoseRecord:
    """Apply one state-machine step; InvalidTransition for anything not allowed."""
    target = DoseStatus(target)
    if target not in ALLOWED_TRANSITIONS[record.status]:
        raise InvalidTransition(
            f"cannot move dose {record.record_id} from {record.status.value} to {target.value}"
        )
    if target is DoseStatus.PENDING:
        return replace(record, status=target, actual_instant=None, notes=None)
    if target is DoseStatus.TAKEN and actual_instant is None:
        raise InvalidTransition("marking a dose taken requires the time it was taken")
    return replace(
        record,
        status=target,
        actual_instant=actual_instant if target is DoseStatus.TAKEN else None,
        notes=notes if notes is not None else record.notes,
    )


# -- validation hooks ------------------------------------------------------------
class TakenTimePolicy(Protocol):
    def check(self, record: DoseRecord, at: datetime, now: datetime) -> None:
        """Raise InvalidTransition when `at` is not an acceptable actual time."""


@dataclass(frozen=True)
class BoundedTakenTimePolicy:
    """Actual time may not run ahead of now, nor fall long before the due time."""

    max_forward_skew: timedelta = timedelta(hours=1)
    max_lookback: timedelta = timedelta(days=7)

    def check(self, record: DoseRecord, at: datetime, now: datetime) -> None:
        at = ensure_instant(at)
        now = ensure_instant(now)
        if at > now + self.max_forward_skew:
            raise InvalidTransition(
                f"actual time {at.isoformat()} is more than "
                f"{self.max_forward_skew} ahead of now",
                code="taken_in_future",
            )
        if record.scheduled_instant - at > self.max_lookback:
            raise InvalidTransition(
                f"actual time {at.isoformat()} is more than "
                f"{self.max_lookback} before the scheduled time",
                code="taken_too_early",
            )


# -- storage collaborator ------------------------------------------------------------
class DoseRecordStore(Protocol):
    def get(self, record_id: str) -> Optional[DoseRecord]: ...

    def find(self, key: DoseKey) -> Optional[DoseRecord]: ...

    def add_if_absent(self, record: DoseRecord) -> DoseRecord: ...

    def replace(
        self, record: DoseRecord, expected_status: Optional[DoseStatus] = None
    ) -> None: ...

    def remove(self, record_ids: Iterable[str]) -> int: ...

    def all(self) -> List[DoseRecord]: ...


class InMemoryDoseRecordStore:
    """Dict-backed store keyed by record id with a DoseKey index."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_id: Dict[str, DoseRecord] = {}
        self._by_key: Dict[DoseKey, str] = {}

    def get(self, record_id: str) -> Optional[DoseRecord]:
        return self._by_id.get(record_id)

    def find(self, key: DoseKey) -> Optional[DoseRecord]:
        rid = self._by_key.get(key)
        return self._by_id.get(rid) if rid is not None else None

    def add_if_absent(self, record: DoseRecord) -> DoseRecord:
        with self._lock:
            rid = self._by_key.get(record.key)
            if rid is not None:
                return self._by_id[rid]
            self._by_id[record.record_id] = record
            self._by_key[record.key] = record.record_id
            return record

    def replace(
        self, record: DoseRecord, expected_status: Optional[DoseStatus] = None
    ) -> None:
        """Overwrite a stored record.

        With `expected_status` the write only happens if the stored record still
        has that status; otherwise InvalidTransition (code "stale") is raised.
        """
        with self._lock:
            old = self._by_id.get(record.record_id)
            if old is None:
                raise KeyError(record.record_id)
            if expected_status is not None and old.status is not expected_status:
                raise InvalidTransition(
                    f"dose {record.record_id} is already {old.status.value}, "
                    f"expected {expected_status.value}",
                    code="stale",
                )
            if old.key != record.key:
                raise InvalidTransition(
                    f"scheduled instant of dose {record.record_id} is immutable"
                )
            self._by_id[record.record_id] = record

    def remove(self, record_ids: Iterable[str]) -> int:
        n = 0
        with self._lock:
            for rid in record_ids:
                rec = self._by_id.pop(rid, None)
                if rec is not None:
                    self._by_key.pop(rec.key, None)
                    n += 1
        return n

    def all(self) -> List[DoseRecord]:
        return list(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DoseRecordManager:
    """
    Creates dose records and moves them through the status state machine.
    Persistence goes through the injected store; timing bounds through the policy.
    """

    def __init__(
        self,
        store: Optional[DoseRecordStore] = None,
        policy: Optional[TakenTimePolicy] = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store: DoseRecordStore = store if store is not None else InMemoryDoseRecordStore()
        self.policy: TakenTimePolicy = policy if policy is not None else BoundedTakenTimePolicy()
        self._now = now
        self.log = logging.getLogger("medtracker.doses")

    # -- creation -----------------------------------------------------------------
    def materialize(
        self, schedule: Schedule, occurrence_instant: datetime, zone: ZoneLike
    ) -> DoseRecord:
        """Pending record for one occurrence; returns the existing one on repeat calls."""
        record = DoseRecord(
            record_id=str(uuid.uuid4()),
            schedule_id=schedule.schedule_id,
            scheduled_instant=occurrence_instant,
            zone_at_scheduling=zone_key(zone),
            created_at=self._now(),
        )
        stored = self.store.add_if_absent(record)
        if stored is record:
            self.log.info(
                "dose.materialize "
                + kv(
                    record_id=record.record_id,
                    schedule_id=record.schedule_id,
                    scheduled=record.scheduled_instant,
                    zone=record.zone_at_scheduling,
                )
            )
        else:
            self.log.debug(
                "dose.materialize.duplicate "
                + kv(schedule_id=stored.schedule_id, scheduled=stored.scheduled_instant)
            )
        return stored

    def record_manual(
        self,
        schedule_id: str,
        scheduled_instant: datetime,
        zone: ZoneLike,
        status: DoseStatus = DoseStatus.TAKEN,
        actual_instant: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> DoseRecord:
        """Direct user log. A pending record at the same occurrence is resolved instead."""
        status = DoseStatus(status)
        now = self._now()
        pending = DoseRecord(
            record_id=str(uuid.uuid4()),
            schedule_id=schedule_id,
            scheduled_instant=scheduled_instant,
            zone_at_scheduling=zone_key(zone),
            created_at=now,
        )
        if status is DoseStatus.TAKEN:
            self.policy.check(pending, actual_instant or now, now)

        existing = self.store.find(pending.key)
        if existing is not None and existing.status is not DoseStatus.PENDING:
            raise InvalidTransition(
                f"dose for {schedule_id} at {pending.scheduled_instant.isoformat()} "
                f"is already {existing.status.value}"
            )
        base = existing or pending
        if status is DoseStatus.PENDING:
            return self.store.add_if_absent(base)

        updated = transition(
            base,
            status,
            actual_instant=(actual_instant or now) if status is DoseStatus.TAKEN else None,
            notes=notes,
        )
        if existing is None:
            stored = self.store.add_if_absent(updated)
        else:
            self.store.replace(updated, expected_status=DoseStatus.PENDING)
            stored = updated
        self.log.info(
            "dose.manual "
            + kv(record_id=stored.record_id, schedule_id=schedule_id, status=status.value)
        )
        return stored

    # -- state changes ------------------------------------------------------------------
    def _current(self, record: "DoseRecord | str") -> DoseRecord:
        rid = record if isinstance(record, str) else record.record_id
        current = self.store.get(rid)
        if current is None:
            raise InvalidTransition(f"unknown dose record {rid}")
        return current

    def _apply(self, current: DoseRecord, updated: DoseRecord) -> DoseRecord:
        # fails if another caller changed the status since `current` was read
        self.store.replace(updated, expected_status=current.status)
        self.log.info(
            "dose.status "
            + kv(
                record_id=updated.record_id,
                schedule_id=updated.schedule_id,
                old=current.status.value,
                new=updated.status.value,
            )
        )
        return updated

    def mark_taken(
        self,
        record: "DoseRecord | str",
        at: Optional[datetime] = None,
        now: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> DoseRecord:
        current = self._current(record)
        now = ensure_instant(now) if now is not None else self._now()
        at = ensure_instant(at) if at is not None else now
        self.policy.check(current, at, now)
        return self._apply(
            current, transition(current, DoseStatus.TAKEN, actual_instant=at, notes=notes)
        )

    def mark_missed(self, record: "DoseRecord | str", notes: Optional[str] = None) -> DoseRecord:
        current = self._current(record)
        return self._apply(current, transition(current, DoseStatus.MISSED, notes=notes))

    def mark_skipped(self, record: "DoseRecord | str", notes: Optional[str] = None) -> DoseRecord:
        current = self._current(record)
        return self._apply(current, transition(current, DoseStatus.SKIPPED, notes=notes))

    def reset_to_pending(self, record: "DoseRecord | str") -> DoseRecord:
        current = self._current(record)
        return self._apply(current, transition(current, DoseStatus.PENDING))

    def sweep_overdue(self, now: datetime, grace: timedelta) -> List[DoseRecord]:
        """Mark pending doses older than `grace` as missed."""
        cutoff = ensure_instant(now) - grace
        swept: List[DoseRecord] = []
        for rec in self.overdue(now):
            if rec.scheduled_instant > cutoff:
                continue
            try:
                swept.append(self._apply(rec, transition(rec, DoseStatus.MISSED)))
            except InvalidTransition as e:
                if e.code != "stale":
                    raise
                self.log.debug("dose.sweep.skip " + kv(record_id=rec.record_id))
        if swept:
            self.log.info("dose.sweep " + kv(missed=len(swept), cutoff=cutoff))
        return swept

    def associate_transition(self, event: "TimezoneTransitionEvent") -> List[DoseRecord]:
        """Link pending doses due at/after a zone change to that event (audit only)."""
        linked: List[DoseRecord] = []
        for rec in self.store.all():
            if (
                rec.status is DoseStatus.PENDING
                and rec.transition_event_id is None
                and rec.scheduled_instant >= event.transition_instant
            ):
                updated = replace(rec, transition_event_id=event.event_id)
                try:
                    self.store.replace(updated, expected_status=DoseStatus.PENDING)
                except InvalidTransition:
                    self.log.debug("dose.associate.skip " + kv(record_id=rec.record_id))
                    continue
                linked.append(updated)
        self.log.debug(
            "dose.associate " + kv(event_id=event.event_id, linked=len(linked))
        )
        return linked

    # -- retention ---------------------------------------------------------------------
    def purge_older_than(self, cutoff: datetime) -> int:
        cutoff = ensure_instant(cutoff)
        ids = [r.record_id for r in self.store.all() if r.scheduled_instant < cutoff]
        n = self.store.remove(ids)
        self.log.info("dose.purge " + kv(cutoff=cutoff, removed=n))
        return n

    # -- queries --------------------------------------------------------------------------
    def history(self, schedule_id: str) -> List[DoseRecord]:
        """Records of one schedule, newest first."""
        recs = [r for r in self.store.all() if r.schedule_id == schedule_id]
        return sorted(recs, key=lambda r: r.scheduled_instant, reverse=True)

    def in_range(self, start: datetime, end: datetime) -> List[DoseRecord]:
        start, end = ensure_instant(start), ensure_instant(end)
        recs = [r for r in self.store.all() if start <= r.scheduled_instant < end]
        return sorted(recs, key=lambda r: r.scheduled_instant)

    def with_status(self, status: DoseStatus) -> List[DoseRecord]:
        status = DoseStatus(status)
        recs = [r for r in self.store.all() if r.status is status]
        return sorted(recs, key=lambda r: r.scheduled_instant, reverse=True)

    def overdue(self, now: datetime) -> List[DoseRecord]:
        recs = [r for r in self.store.all() if r.is_overdue(now)]
        return sorted(recs, key=lambda r: r.scheduled_instant)

    def count(self, status: DoseStatus) -> int:
        return len(self.with_status(status))


__all__ = [
    "DoseStatus",
    "ALLOWED_TRANSITIONS",
    "DoseKey",
    "DoseRecord",
    "transition",
    "TakenTimePolicy",
    "BoundedTakenTimePolicy",
    "DoseRecordStore",
    "InMemoryDoseRecordStore",
    "DoseRecordManager",
]
