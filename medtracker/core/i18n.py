from __future__ import annotations

"""
Message catalogue for the delivery layer.

The engine never shows anything itself; it attaches one of these texts to a
failed result (or to an advisory flag) so the host can decide what to display.
"""

MESSAGES = {
    # Configuration errors (fixable by the user)
    "invalid_schedule": "This reminder cannot be scheduled: {detail}",
    "schedule_no_days": "Your schedule has no valid days. Pick at least one day of the week.",
    "schedule_bad_time": "The reminder time is not a valid time of day ({detail}).",
    # Environment errors (reported by the device)
    "unknown_zone": "Your device reported an unrecognized timezone ({zone}).",
    # Dose log corrections
    "invalid_transition": "That change to the dose log is not allowed: {detail}",
    "taken_in_future": "A dose cannot be logged more than {minutes} minutes in the future.",
    "taken_too_early": "A dose cannot be logged more than {days} days before it was due.",
    "dose_changed_elsewhere": "That dose was just updated from another place. Reload it and try again.",
    # Internal conditions
    "range_exhausted": "No upcoming reminder could be found for this schedule.",
    "invalid_timezone_event": "The timezone change could not be applied: {detail}",
    "unknown_schedule": "No schedule with id {schedule_id} is registered.",
    "invalid_argument": "The request could not be processed: {detail}",
    "roster_unavailable": "The schedule list at {path} could not be read.",
    # Advisory
    "large_offset_change": (
        "Your timezone moved by {hours} (from {previous_zone} to {new_zone}). "
        "Upcoming reminders now follow local time in {new_zone}."
    ),
}


def fmt(key: str, **kwargs) -> str:
    return MESSAGES[key].format(**kwargs)
