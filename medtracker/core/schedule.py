# medtracker/core/schedule.py
from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import time
from enum import Enum, IntEnum
from typing import FrozenSet, Iterable, Optional

from medtracker.core.errors import InvalidSchedule


class Weekday(IntEnum):
    """ISO weekday numbers (Monday = 1 ... Sunday = 7)."""

    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6
    SUNDAY = 7

    @property
    def bit(self) -> int:
        return 1 << (self.value - 1)

    @property
    def short_name(self) -> str:
        return self.name[:3].capitalize()


_DAY_ALIASES = {
    **{d.name.lower(): d for d in Weekday},
    **{d.name[:3].lower(): d for d in Weekday},
}

ALL_DAYS_MASK = 0b1111111


@dataclass(frozen=True)
class DaysOfWeek:
    """
    Fixed-size set of weekdays a schedule fires on.

    Bitmask interop: bit n stands for ISO weekday n+1, so Monday is bit 0 and
    every day is 127.
    """

    days: FrozenSet[Weekday] = frozenset()

    @classmethod
    def of(cls, *days: Weekday) -> "DaysOfWeek":
        return cls(frozenset(Weekday(d) for d in days))

    @classmethod
    def from_bitmask(cls, mask: int) -> "DaysOfWeek":
        if not isinstance(mask, int) or not 0 <= mask <= ALL_DAYS_MASK:
            raise InvalidSchedule(f"days-of-week bitmask out of range 0..127: {mask!r}")
        return cls(frozenset(d for d in Weekday if mask & d.bit))

    @classmethod
    def from_names(cls, names: Iterable[str]) -> "DaysOfWeek":
        out = set()
        for n in names:
            key = str(n).strip().lower()
            if key not in _DAY_ALIASES:
                raise InvalidSchedule(f"unknown weekday name: {n!r}")
            out.add(_DAY_ALIASES[key])
        return cls(frozenset(out))

    @property
    def bitmask(self) -> int:
        mask = 0
        for d in self.days:
            mask |= d.bit
        return mask

    def __contains__(self, day: object) -> bool:
        return day in self.days

    def __iter__(self):
        return iter(sorted(self.days))

    def __len__(self) -> int:
        return len(self.days)

    def __bool__(self) -> bool:
        return bool(self.days)

    def with_day(self, day: Weekday) -> "DaysOfWeek":
        return DaysOfWeek(self.days | {Weekday(day)})

    def without_day(self, day: Weekday) -> "DaysOfWeek":
        return DaysOfWeek(self.days - {Weekday(day)})

    def toggled(self, day: Weekday) -> "DaysOfWeek":
        day = Weekday(day)
        return self.without_day(day) if day in self.days else self.with_day(day)

    @property
    def is_everyday(self) -> bool:
        return self.bitmask == ALL_DAYS_MASK

    @property
    def is_weekdays_only(self) -> bool:
        return self == WEEKDAYS

    @property
    def is_weekends_only(self) -> bool:
        return self == WEEKENDS

    def describe(self) -> str:
        return ", ".join(d.short_name for d in self)


EVERYDAY = DaysOfWeek(frozenset(Weekday))
WEEKDAYS = DaysOfWeek.of(
    Weekday.MONDAY, Weekday.TUESDAY, Weekday.WEDNESDAY, Weekday.THURSDAY, Weekday.FRIDAY
)
WEEKENDS = DaysOfWeek.of(Weekday.SATURDAY, Weekday.SUNDAY)
NO_DAYS = DaysOfWeek()


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    AS_NEEDED = "as-needed"

    @classmethod
    def parse(cls, value: "str | Frequency") -> "Frequency":
        try:
            return cls(str(getattr(value, "value", value)).strip().lower())
        except ValueError:
            allowed = ", ".join(f.value for f in cls)
            raise InvalidSchedule(
                f"frequency must be one of: {allowed} (got {value!r})"
            ) from None


_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


def parse_time_of_day(s: str) -> time:
    """Parse 'HH:MM' into a naive time; InvalidSchedule if malformed."""
    m = _TIME_RE.match(s or "")
    if not m:
        raise InvalidSchedule(f"invalid time format: {s!r} (expected HH:MM)", code="bad_time")
    hh, mm = int(m.group(1)), int(m.group(2))
    if not (0 <= hh <= 23 and 0 <= mm <= 59):
        raise InvalidSchedule(
            f"invalid time value: {s!r} (0<=HH<=23, 0<=MM<=59)", code="bad_time"
        )
    return time(hh, mm)


@dataclass(frozen=True)
class Schedule:
    """
    Recurrence definition: a wall-clock time plus the weekdays it applies to.

    The time carries no zone; the zone is supplied at resolution time, which is
    what lets future triggers follow the traveller.
    """

    schedule_id: str
    time_of_day: time
    days: DaysOfWeek = EVERYDAY
    frequency: Frequency = Frequency.DAILY
    is_enabled: bool = True
    medication_id: Optional[str] = None
    label: str = field(default="", compare=False)

    # -- validation -----------------------------------------------------------
    def validate(self) -> "Schedule":
        if not str(self.schedule_id).strip():
            raise InvalidSchedule("schedule_id must be non-empty")
        t = self.time_of_day
        if not isinstance(t, time):
            raise InvalidSchedule(f"time_of_day must be a time, got {t!r}")
        if t.tzinfo is not None:
            raise InvalidSchedule("time_of_day must not carry a timezone")
        if t.second or t.microsecond:
            raise InvalidSchedule(
                f"time_of_day must be whole minutes, got {t.isoformat()}"
            )
        if not isinstance(self.frequency, Frequency):
            raise InvalidSchedule(f"unknown frequency: {self.frequency!r}")
        if self.is_enabled and not self.days:
            raise InvalidSchedule(
                "at least one day of the week must be selected", code="no_days"
            )
        if self.frequency is Frequency.DAILY and self.days and not self.days.is_everyday:
            raise InvalidSchedule("daily schedules must cover all seven days")
        return self

    @property
    def generates_occurrences(self) -> bool:
        return (
            self.is_enabled
            and self.frequency is not Frequency.AS_NEEDED
            and bool(self.days)
        )

    # -- edits (return new values) ----------------------------------------------
    def with_time(self, time_of_day: time) -> "Schedule":
        return replace(self, time_of_day=time_of_day)

    def with_days(self, days: DaysOfWeek) -> "Schedule":
        freq = self.frequency
        if freq is Frequency.DAILY and not days.is_everyday:
            freq = Frequency.WEEKLY
        return replace(self, days=days, frequency=freq)

    def enabled(self) -> "Schedule":
        return replace(self, is_enabled=True)

    def disabled(self) -> "Schedule":
        return replace(self, is_enabled=False)

    @property
    def description(self) -> str:
        return f"{self.time_of_day.hour:02d}:{self.time_of_day.minute:02d} - {self.days.describe()}"


def make_schedule(
    schedule_id: str,
    time_of_day: "str | time",
    *,
    days: "DaysOfWeek | int | Iterable[str] | None" = None,
    frequency: "str | Frequency | None" = None,
    is_enabled: bool = True,
    medication_id: Optional[str] = None,
    label: str = "",
) -> Schedule:
    """Build and validate a Schedule from loosely typed input (config, host apps)."""
    tod = parse_time_of_day(time_of_day) if isinstance(time_of_day, str) else time_of_day

    if days is None:
        dow = EVERYDAY
    elif isinstance(days, DaysOfWeek):
        dow = days
    elif isinstance(days, int):
        dow = DaysOfWeek.from_bitmask(days)
    else:
        dow = DaysOfWeek.from_names(days)

    if frequency is None:
        freq = Frequency.DAILY if dow.is_everyday else Frequency.WEEKLY
    else:
        freq = Frequency.parse(frequency)

    return Schedule(
        schedule_id=schedule_id,
        time_of_day=tod,
        days=dow,
        frequency=freq,
        is_enabled=is_enabled,
        medication_id=medication_id,
        label=label,
    ).validate()


__all__ = [
    "Weekday",
    "DaysOfWeek",
    "EVERYDAY",
    "WEEKDAYS",
    "WEEKENDS",
    "NO_DAYS",
    "Frequency",
    "Schedule",
    "parse_time_of_day",
    "make_schedule",
]
