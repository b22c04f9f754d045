# medtracker/adapters/apscheduler_adapter.py
"""
Mirrors the engine's trigger cache into APScheduler one-shot jobs.

One DateTrigger job per schedule (id "trigger:<schedule_id>"); each cache swap
re-adds every job with replace_existing and removes jobs whose schedule no
longer has a trigger. The job calls engine.fire_trigger, which materializes the
dose and reseeds the trigger (and so re-enters this mirror).

A job that runs later than misfire_grace_time is dropped by APScheduler without
calling the job function; the mirror listens for EVENT_JOB_MISSED (and
EVENT_JOB_ERROR) and runs the engine catch-up so the schedule gets a new job.
"""

from __future__ import annotations

import logging
from contextlib import suppress
from typing import Any, Mapping, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from medtracker.core.civil_time import UTC
from medtracker.core.logging_utils import kv
from medtracker.core.transitions import Trigger

JOB_PREFIX = "trigger:"

log = logging.getLogger("medtracker.apscheduler")


def job_id(schedule_id: str) -> str:
    return f"{JOB_PREFIX}{schedule_id}"


def build_scheduler() -> AsyncIOScheduler:
    """Scheduler working in UTC; trigger instants are already absolute."""
    return AsyncIOScheduler(timezone=UTC)


class TriggerJobMirror:
    def __init__(self, engine: Any, scheduler: Any, misfire_grace_time: Optional[int] = None):
        self.engine = engine
        self.scheduler = scheduler
        self.misfire_grace_time = (
            misfire_grace_time
            if misfire_grace_time is not None
            else int(getattr(engine.cfg, "MISFIRE_GRACE_S", 300))
        )

    def install(self) -> "TriggerJobMirror":
        """Subscribe to cache swaps and job misfires, mirror the current snapshot once."""
        self.engine.coordinator.on_swap(self.sync)
        self.scheduler.add_listener(self.on_job_event, EVENT_JOB_MISSED | EVENT_JOB_ERROR)
        self.sync(self.engine.coordinator.cache.snapshot())
        return self

    def sync(self, snapshot: Mapping[str, Trigger]) -> None:
        wanted = {job_id(sid): trig for sid, trig in snapshot.items()}

        for job in list(self.scheduler.get_jobs()):
            if job.id.startswith(JOB_PREFIX) and job.id not in wanted:
                with suppress(JobLookupError):
                    self.scheduler.remove_job(job.id)
                log.debug("jobs.remove " + kv(job_id=job.id))

        for jid, trig in wanted.items():
            self.scheduler.add_job(
                self.engine.fire_trigger,
                DateTrigger(run_date=trig.instant),
                id=jid,
                kwargs={"schedule_id": trig.schedule_id},
                replace_existing=True,
                coalesce=True,
                misfire_grace_time=self.misfire_grace_time,
                max_instances=1,
            )
        log.debug("jobs.sync " + kv(jobs=len(wanted)))

    def on_job_event(self, event: Any) -> None:
        """Catch up after a trigger job was dropped (missed) or crashed."""
        if not str(event.job_id).startswith(JOB_PREFIX):
            return
        if event.code == EVENT_JOB_MISSED:
            log.warning(
                "jobs.missed " + kv(job_id=event.job_id, run_time=event.scheduled_run_time)
            )
        else:
            log.error("jobs.error " + kv(job_id=event.job_id, err=repr(event.exception)))

        res = self.engine.materialize_due()
        if not res.ok:
            log.error("jobs.catch_up.fail " + kv(error=res.error, detail=res.detail))
            return
        # a catch-up with nothing due swaps nothing, so re-mirror explicitly
        self.sync(self.engine.coordinator.cache.snapshot())


def attach(engine: Any, scheduler: Any = None) -> TriggerJobMirror:
    """Wire an engine to a scheduler (a fresh UTC AsyncIOScheduler by default)."""
    if scheduler is None:
        scheduler = build_scheduler()
    return TriggerJobMirror(engine, scheduler).install()


__all__ = ["JOB_PREFIX", "job_id", "build_scheduler", "TriggerJobMirror", "attach"]
