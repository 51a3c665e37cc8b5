from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

SHIFTS_PER_WEEK = 5
HOURS_PER_SHIFT = 8
HOURS_PER_WEEK = SHIFTS_PER_WEEK * HOURS_PER_SHIFT
WORKERS_PER_DAY = 3

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class ShiftType(str, Enum):
    MORNING = "Morning"
    EVENING = "Evening"
    NIGHT = "Night"


SHIFT_TYPES = (ShiftType.MORNING, ShiftType.EVENING, ShiftType.NIGHT)

# Fixed UTC windows used by calendar and spreadsheet exports.
FIXED_WINDOWS = {
    ShiftType.MORNING: ("09:00", "18:00"),
    ShiftType.EVENING: ("17:00", "02:00"),
    ShiftType.NIGHT: ("01:00", "10:00"),
}


def check_hhmm(value: str) -> str:
    if not _HHMM.match(value):
        raise ValueError("Times must use HH:mm format")
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ShiftTiming(CamelModel):
    start: str
    end: str
    lunch_start: str
    lunch_end: str
    break_start: str
    break_end: str
    work_hours: float = HOURS_PER_SHIFT

    @field_validator("start", "end", "lunch_start", "lunch_end", "break_start", "break_end")
    @classmethod
    def validate_hhmm(cls, value: str) -> str:
        return check_hhmm(value)


class ShiftConfiguration(BaseModel):
    Morning: ShiftTiming
    Evening: ShiftTiming
    Night: ShiftTiming

    def timing_for(self, shift_type: ShiftType | str) -> ShiftTiming:
        return getattr(self, ShiftType(shift_type).value)


DEFAULT_SHIFT_CONFIG = ShiftConfiguration(
    Morning=ShiftTiming(start="09:00", end="18:00", lunch_start="12:00", lunch_end="13:00", break_start="15:30", break_end="16:00"),
    Evening=ShiftTiming(start="17:00", end="02:00", lunch_start="20:00", lunch_end="21:00", break_start="23:30", break_end="00:00"),
    Night=ShiftTiming(start="01:00", end="10:00", lunch_start="04:00", lunch_end="05:00", break_start="07:30", break_end="08:00"),
)


def parse_day(value: date | datetime | str) -> date:
    """Truncate anything date-like to a calendar day."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


def day_name(d: date) -> str:
    return DAY_NAMES[d.weekday()]


def week_start(d: date) -> date:
    """Sunday on or before ``d``."""
    return d - timedelta(days=(d.weekday() + 1) % 7)


def monday_of(d: date) -> date:
    return d - timedelta(days=d.weekday())


def daterange(start: date, days: int) -> list[date]:
    return [start + timedelta(days=i) for i in range(days)]


def adjacent_days(d: date) -> tuple[date, date]:
    return d - timedelta(days=1), d + timedelta(days=1)


class Preferences(CamelModel):
    preferred_days: list[str] = Field(default_factory=list)
    preferred_shifts: list[ShiftType] = Field(default_factory=list)
    unavailable_dates: list[date] = Field(default_factory=list)


def type_of(shift) -> str:
    return ShiftType(shift.shift_type).value
