from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from soc_scheduler.shifts import SHIFTS_PER_WEEK, Preferences, adjacent_days, day_name, parse_day, type_of, week_start

BOTH_SIDES = "You already work both the day before and after this shift"
DAY_BEFORE = "You already work the day before this shift (back-to-back)"
DAY_AFTER = "You already work the day after this shift (back-to-back)"
UNAVAILABLE = "You marked this date as unavailable"
ALREADY_ASSIGNED = "You are already assigned to a shift on this date"
NO_CONFLICTS = "No conflicts detected. This shift fits your schedule."
HIGH_SEVERITY_WARNING = "Multiple conflicts detected. Please confirm before taking this shift."


@dataclass
class ConflictReport:
    conflicts: list[str]
    severity: str
    messages: list[str] = field(default_factory=list)


def severity_for(count: int) -> str:
    if count == 0:
        return "none"
    if count <= 2:
        return "medium"
    return "high"


def detect_conflicts(candidate, user_id: str, preferences: Preferences, shifts) -> ConflictReport:
    """Warnings for ``user_id`` taking ``candidate``.

    Every check runs; none short-circuits the others.
    """
    shift_day = parse_day(candidate.date)
    shift_type = type_of(candidate)
    user_shifts = [s for s in shifts if s.user_id == user_id]
    user_days = {parse_day(s.date) for s in user_shifts}
    issues: list[str] = []

    if shift_day in set(preferences.unavailable_dates):
        issues.append(UNAVAILABLE)

    preferred_types = [t.value for t in preferences.preferred_shifts]
    if preferred_types and shift_type not in preferred_types:
        issues.append(f"You prefer {', '.join(preferred_types)} shifts, not {shift_type}")

    weekday = day_name(shift_day)
    if preferences.preferred_days and weekday not in preferences.preferred_days:
        issues.append(f"You prefer to work on {', '.join(preferences.preferred_days)}, not {weekday}")

    previous_day, next_day = adjacent_days(shift_day)
    works_before = previous_day in user_days
    works_after = next_day in user_days
    if works_before and works_after:
        issues.append(BOTH_SIDES)
    elif works_before:
        issues.append(DAY_BEFORE)
    elif works_after:
        issues.append(DAY_AFTER)

    first_day = week_start(shift_day)
    last_day = first_day + timedelta(days=6)
    shifts_this_week = sum(1 for s in user_shifts if first_day <= parse_day(s.date) <= last_day)
    if shifts_this_week >= SHIFTS_PER_WEEK:
        issues.append(f"You already have {shifts_this_week} shifts this week ({SHIFTS_PER_WEEK} is the max)")

    if any(parse_day(s.date) == shift_day and type_of(s) == shift_type for s in user_shifts):
        issues.append(ALREADY_ASSIGNED)

    severity = severity_for(len(issues))
    messages = []
    if severity == "none":
        messages.append(NO_CONFLICTS)
    elif severity == "high":
        messages.append(HIGH_SEVERITY_WARNING)
    return ConflictReport(conflicts=issues, severity=severity, messages=messages)
