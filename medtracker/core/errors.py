# medtracker/core/errors.py
from __future__ import annotations

from typing import Optional


class MedTrackerError(ValueError):
    """Base for every typed condition the engine reports.

    `kind` names the error family; `code` optionally narrows it down for the
    delivery layer (e.g. "no_days" vs "bad_time" for a schedule).
    """

    kind = "error"

    def __init__(self, message: str = "", *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class InvalidSchedule(MedTrackerError):
    """Zero days on an enabled schedule, or a malformed time of day."""

    kind = "invalid_schedule"


class InvalidTransition(MedTrackerError):
    """Illegal dose status change, or an actual time that breaks policy bounds."""

    kind = "invalid_transition"


class UnknownZone(MedTrackerError):
    kind = "unknown_zone"

    def __init__(self, zone: object) -> None:
        super().__init__(f"unknown timezone identifier: {zone!r}")
        self.zone = zone


class RangeExhausted(MedTrackerError):
    """Bounded forward search found no occurrence (unreachable for valid input)."""

    kind = "range_exhausted"


class InvalidTimezoneEvent(MedTrackerError):
    kind = "invalid_timezone_event"


class UnknownSchedule(MedTrackerError):
    kind = "unknown_schedule"

    def __init__(self, schedule_id: object) -> None:
        super().__init__(f"no schedule registered with id {schedule_id!r}")
        self.schedule_id = schedule_id


__all__ = [
    "MedTrackerError",
    "InvalidSchedule",
    "InvalidTransition",
    "UnknownZone",
    "RangeExhausted",
    "InvalidTimezoneEvent",
    "UnknownSchedule",
]
