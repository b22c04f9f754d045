# medtracker/app.py
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from medtracker import config as cfg
from medtracker.adapters.apscheduler_adapter import attach
from medtracker.core.config_validation import validate_config
from medtracker.core.dose_record import DoseRecord
from medtracker.core.engine import MedTrackerEngine
from medtracker.core.logging_utils import kv, setup_logging
from medtracker.core.schedule import Schedule

log = logging.getLogger("medtracker.app")


async def log_delivery(record: DoseRecord, schedule: Schedule) -> None:
    """Default delivery: write the due dose to the log (hosts plug in their own)."""
    log.info(
        "dose.due "
        + kv(
            schedule_id=schedule.schedule_id,
            label=schedule.label,
            local_time=record.local_scheduled_time(),
            zone=record.zone_at_scheduling,
        )
    )


async def main(stop: Optional[asyncio.Event] = None) -> None:
    setup_logging(cfg)
    validate_config(cfg)

    engine = MedTrackerEngine(cfg, delivery=log_delivery)

    res = engine.load_roster()
    if not res.ok:
        log.error("startup.roster.fail " + kv(error=res.error, detail=res.detail))
        return

    # --- order: seed triggers, mirror them into jobs, catch up, then start ---
    engine.start()
    sched = attach(engine).scheduler
    engine.materialize_due()
    sched.start()

    log.info(
        "startup.ready "
        + kv(zone=engine.describe_zone(), schedules=len(engine.schedules()))
    )

    try:
        await (stop or asyncio.Event()).wait()
    finally:
        sched.shutdown(wait=False)


if __name__ == "__main__":
    asyncio.run(main())
