# tests/unit/test_dose_record.py
from dataclasses import FrozenInstanceError, replace
import threading
from datetime import datetime, timedelta, timezone

import pytest

from medtracker.core.dose_record import (
    DoseRecord,
    DoseRecordManager,
    BoundedTakenTimePolicy,
    DoseStatus,
    InMemoryDoseRecordStore,
    transition,
)
from medtracker.core.errors import InvalidTransition
from medtracker.core.schedule import make_schedule
from medtracker.core.transitions import TimezoneTransitionEvent

UTC = timezone.utc
NOW = datetime(2026, 1, 5, 15, 0, tzinfo=UTC)
DUE = datetime(2026, 1, 5, 13, 0, tzinfo=UTC)  # 08:00 EST


def make_manager():
    return DoseRecordManager(now=lambda: NOW)


@pytest.fixture
def mgr():
    return make_manager()


@pytest.fixture
def sched():
    return make_schedule("morning", "08:00")


def test_materialize_is_idempotent(mgr, sched):
    r1 = mgr.materialize(sched, DUE, "America/New_York")
    r2 = mgr.materialize(sched, DUE, "America/New_York")
    assert r1 is r2
    assert len(mgr.store.all()) == 1
    assert r1.status is DoseStatus.PENDING
    assert r1.zone_at_scheduling == "America/New_York"
    assert r1.local_scheduled_time() == datetime(2026, 1, 5, 8, 0)


def test_records_are_frozen(mgr, sched):
    r = mgr.materialize(sched, DUE, "UTC")
    with pytest.raises(FrozenInstanceError):
        r.scheduled_instant = NOW  # type: ignore[misc]


def test_scheduled_instant_survives_every_transition(mgr, sched):
    r = mgr.materialize(sched, DUE, "UTC")
    taken = mgr.mark_taken(r, at=DUE + timedelta(minutes=10))
    assert taken.scheduled_instant == DUE
    assert taken.time_difference == timedelta(minutes=10)
    reset = mgr.reset_to_pending(taken)
    assert reset.scheduled_instant == DUE
    assert reset.actual_instant is None
    missed = mgr.mark_missed(reset.record_id, notes="asleep")
    assert missed.scheduled_instant == DUE
    assert missed.notes == "asleep"
    assert mgr.store.get(r.record_id) == missed


def test_mark_taken_defaults_to_now(mgr, sched):
    r = mgr.materialize(sched, DUE, "UTC")
    assert mgr.mark_taken(r).actual_instant == NOW


@pytest.mark.parametrize(
    "start,target",
    [
        (DoseStatus.TAKEN, DoseStatus.MISSED),
        (DoseStatus.MISSED, DoseStatus.SKIPPED),
        (DoseStatus.PENDING, DoseStatus.PENDING),
        (DoseStatus.SKIPPED, DoseStatus.TAKEN),
    ],
)
def test_illegal_transitions(start, target):
    rec = DoseRecord(
        record_id="r",
        schedule_id="s",
        scheduled_instant=DUE,
        zone_at_scheduling="UTC",
        status=start,
        actual_instant=DUE if start is DoseStatus.TAKEN else None,
    )
    with pytest.raises(InvalidTransition):
        transition(rec, target, actual_instant=DUE)


def test_taken_requires_actual_time():
    rec = DoseRecord("r", "s", DUE, "UTC")
    with pytest.raises(InvalidTransition):
        transition(rec, DoseStatus.TAKEN)


def test_actual_time_only_with_taken_status():
    with pytest.raises(InvalidTransition):
        DoseRecord("r", "s", DUE, "UTC", status=DoseStatus.TAKEN)
    with pytest.raises(InvalidTransition):
        DoseRecord("r", "s", DUE, "UTC", status=DoseStatus.MISSED, actual_instant=DUE)


def test_notes_are_bounded():
    with pytest.raises(InvalidTransition):
        DoseRecord("r", "s", DUE, "UTC", notes="x" * 1001)


def test_taken_too_far_in_the_future(mgr, sched):
    r = mgr.materialize(sched, DUE, "UTC")
    with pytest.raises(InvalidTransition) as ei:
        mgr.mark_taken(r, at=NOW + timedelta(hours=2))
    assert ei.value.code == "taken_in_future"
    assert mgr.store.get(r.record_id).status is DoseStatus.PENDING


def test_taken_too_long_before_due(mgr, sched):
    r = mgr.materialize(sched, DUE, "UTC")
    with pytest.raises(InvalidTransition) as ei:
        mgr.mark_taken(r, at=DUE - timedelta(days=8))
    assert ei.value.code == "taken_too_early"


def test_unknown_record_id(mgr):
    with pytest.raises(InvalidTransition):
        mgr.mark_missed("nope")


def test_store_refuses_to_move_scheduled_instant(mgr, sched):
    r = mgr.materialize(sched, DUE, "UTC")
    with pytest.raises(InvalidTransition):
        mgr.store.replace(replace(r, scheduled_instant=DUE + timedelta(hours=1)))
    with pytest.raises(KeyError):
        InMemoryDoseRecordStore().replace(r)


def test_record_manual_creates_and_resolves(mgr, sched):
    pending = mgr.materialize(sched, DUE, "UTC")
    logged = mgr.record_manual("morning", DUE, "UTC", actual_instant=DUE)
    assert logged.record_id == pending.record_id
    assert logged.status is DoseStatus.TAKEN
    with pytest.raises(InvalidTransition):
        mgr.record_manual("morning", DUE, "UTC", status=DoseStatus.SKIPPED)

    other = mgr.record_manual("evening", DUE + timedelta(hours=8), "UTC", status="skipped")
    assert other.status is DoseStatus.SKIPPED
    assert len(mgr.store.all()) == 2


def test_sweep_overdue_respects_grace(mgr, sched):
    old = mgr.materialize(sched, NOW - timedelta(hours=5), "UTC")
    recent = mgr.materialize(sched, NOW - timedelta(hours=1), "UTC")
    swept = mgr.sweep_overdue(NOW, timedelta(hours=4))
    assert [r.record_id for r in swept] == [old.record_id]
    assert mgr.store.get(old.record_id).status is DoseStatus.MISSED
    assert mgr.store.get(recent.record_id).status is DoseStatus.PENDING
    assert [r.record_id for r in mgr.overdue(NOW)] == [recent.record_id]


def test_associate_transition_links_future_pending_only(mgr, sched):
    before = mgr.materialize(sched, DUE, "America/New_York")
    after = mgr.materialize(sched, DUE + timedelta(days=1), "America/New_York")
    event = TimezoneTransitionEvent("America/New_York", "Asia/Tokyo", NOW)
    linked = mgr.associate_transition(event)
    assert [r.record_id for r in linked] == [after.record_id]
    stored = mgr.store.get(after.record_id)
    assert stored.transition_event_id == event.event_id
    assert stored.scheduled_instant == after.scheduled_instant
    assert mgr.store.get(before.record_id).transition_event_id is None


def test_queries_and_purge(mgr, sched):
    recs = [mgr.materialize(sched, DUE - timedelta(days=i), "UTC") for i in range(5)]
    mgr.mark_taken(recs[0])
    assert [r.scheduled_instant for r in mgr.history("morning")][0] == DUE
    assert mgr.count(DoseStatus.TAKEN) == 1
    assert len(mgr.in_range(DUE - timedelta(days=2), DUE)) == 2
    assert mgr.purge_older_than(DUE - timedelta(days=2)) == 2
    assert len(mgr.store.all()) == 3


def test_store_replace_checks_the_expected_status(mgr, sched):
    r = mgr.materialize(sched, DUE, "UTC")
    taken = transition(r, DoseStatus.TAKEN, actual_instant=DUE)
    mgr.store.replace(taken, expected_status=DoseStatus.PENDING)

    again = transition(r, DoseStatus.TAKEN, actual_instant=DUE + timedelta(minutes=5))
    with pytest.raises(InvalidTransition) as exc:
        mgr.store.replace(again, expected_status=DoseStatus.PENDING)
    assert exc.value.code == "stale"
    assert mgr.store.get(r.record_id).actual_instant == DUE


class RendezvousPolicy:
    """Holds every caller inside check() until both have read the record."""

    def __init__(self, parties=2):
        self.barrier = threading.Barrier(parties, timeout=5)
        self.inner = BoundedTakenTimePolicy()

    def check(self, record, at, now):
        self.inner.check(record, at, now)
        self.barrier.wait()


def _race(calls):
    outcomes = [None] * len(calls)

    def run(i, call):
        try:
            outcomes[i] = call()
        except InvalidTransition as e:
            outcomes[i] = e

    threads = [threading.Thread(target=run, args=(i, c)) for i, c in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    return outcomes


def test_concurrent_mark_taken_never_overwrites_the_recorded_time(sched):
    mgr = DoseRecordManager(policy=RendezvousPolicy(), now=lambda: NOW)
    r = mgr.materialize(sched, DUE, "UTC")
    first, second = DUE + timedelta(minutes=50), DUE + timedelta(minutes=10)

    outcomes = _race(
        [
            lambda: mgr.mark_taken(r.record_id, at=first),
            lambda: mgr.mark_taken(r.record_id, at=second),
        ],
    )

    winners = [o for o in outcomes if isinstance(o, DoseRecord)]
    losers = [o for o in outcomes if isinstance(o, InvalidTransition)]
    assert len(winners) == 1 and len(losers) == 1
    assert losers[0].code == "stale"
    stored = mgr.store.get(r.record_id)
    assert stored.status is DoseStatus.TAKEN
    assert stored.actual_instant == winners[0].actual_instant


def test_concurrent_taken_and_skipped_resolve_once(sched):
    mgr = DoseRecordManager(now=lambda: NOW)
    r = mgr.materialize(sched, DUE, "UTC")
    barrier = threading.Barrier(2, timeout=5)
    real_current = mgr._current

    def current_then_wait(record):
        rec = real_current(record)
        barrier.wait()
        return rec

    mgr._current = current_then_wait
    outcomes = _race(
        [
            lambda: mgr.mark_taken(r.record_id, at=DUE),
            lambda: mgr.mark_skipped(r.record_id),
        ],
    )

    winners = [o for o in outcomes if isinstance(o, DoseRecord)]
    assert len(winners) == 1
    assert mgr.store.get(r.record_id) == winners[0]
