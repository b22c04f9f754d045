# medtracker/core/config_validation.py
from __future__ import annotations

from typing import Any

from medtracker.core.adherence import AdherencePolicy
from medtracker.core.civil_time import resolve_zone
from medtracker.core.errors import InvalidSchedule, UnknownZone
from medtracker.core.schedule_loader import parse_entries


def _positive_number(cfg: Any, name: str, *, allow_zero: bool = False) -> None:
    value = getattr(cfg, name, None)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"{name} must be {'>= 0' if allow_zero else '> 0'}")


def validate_config(cfg: Any) -> None:
    """Validate runtime configuration before the engine is built.

    Optional SCHEDULES (list of roster entries) are validated the same way the
    YAML roster is.
    """
    tz_name = getattr(cfg, "TIMEZONE", None)
    try:
        resolve_zone(tz_name)
    except UnknownZone as e:
        raise ValueError(f"TIMEZONE is not a known IANA zone: {tz_name!r}") from e

    _positive_number(cfg, "TAKEN_FORWARD_SKEW_S", allow_zero=True)
    _positive_number(cfg, "TAKEN_LOOKBACK_S", allow_zero=True)
    _positive_number(cfg, "OVERDUE_GRACE_S", allow_zero=True)
    _positive_number(cfg, "LARGE_OFFSET_CHANGE_H")
    _positive_number(cfg, "MISFIRE_GRACE_S")

    policy = getattr(cfg, "ADHERENCE_POLICY", None)
    allowed = [p.value for p in AdherencePolicy]
    if policy not in allowed:
        raise ValueError(f"ADHERENCE_POLICY must be one of: {', '.join(allowed)}")

    if hasattr(cfg, "SCHEDULES"):
        try:
            parse_entries(getattr(cfg, "SCHEDULES"))
        except InvalidSchedule as e:
            raise ValueError(f"SCHEDULES: {e}") from e

    level = getattr(cfg, "CONSOLE_LOG_LEVEL", "INFO")
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ValueError(f"CONSOLE_LOG_LEVEL is not a logging level: {level!r}")
