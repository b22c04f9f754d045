# medtracker/core/schedule_loader.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml

from medtracker.core.errors import InvalidSchedule
from medtracker.core.schedule import Schedule, make_schedule

logger = logging.getLogger("medtracker.schedule_loader")


def parse_entries(entries: Any) -> List[Schedule]:
    """Turn roster entries (dicts from YAML/config) into validated schedules."""
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise InvalidSchedule("'schedules' must be a list")

    out: List[Schedule] = []
    seen: set[str] = set()
    for i, e in enumerate(entries):
        if not isinstance(e, dict):
            raise InvalidSchedule(f"schedule #{i}: entry must be a mapping")
        for key in ("id", "time"):
            if key not in e:
                raise InvalidSchedule(f"schedule #{i}: missing required field '{key}'")
        sid = str(e["id"]).strip()
        if sid in seen:
            raise InvalidSchedule(f"duplicate schedule id '{sid}'")
        seen.add(sid)

        try:
            out.append(
                make_schedule(
                    sid,
                    str(e["time"]),
                    days=e.get("days"),
                    frequency=e.get("frequency"),
                    is_enabled=bool(e.get("enabled", True)),
                    medication_id=e.get("medication_id"),
                    label=str(e.get("label", "")),
                )
            )
        except InvalidSchedule as exc:
            raise InvalidSchedule(f"schedule '{sid}': {exc}") from exc
    return out


def load_schedules(path: Union[str, Path]) -> List[Schedule]:
    """Read a YAML roster file (top-level key 'schedules')."""
    p = Path(path)
    try:
        raw: Dict[str, Any] = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except FileNotFoundError:
        logger.error(f"Schedules file not found at {p}")
        raise
    except yaml.YAMLError as e:
        raise InvalidSchedule(f"{p}: not valid YAML ({e})") from e
    if not isinstance(raw, dict):
        raise InvalidSchedule(f"{p}: top level must be a mapping with a 'schedules' key")

    schedules = parse_entries(raw.get("schedules"))
    logger.info(f"Loaded {len(schedules)} schedules from {p}")
    return schedules
