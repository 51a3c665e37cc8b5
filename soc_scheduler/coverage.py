from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date

from soc_scheduler.shifts import SHIFT_TYPES, daterange, parse_day, type_of

REQUIRED_PER_SLOT = 1


@dataclass
class CoverageStatus:
    date: date
    shift_type: str
    assigned_count: int
    required_count: int
    status: str


def classify(count: int) -> str:
    if count == 0:
        return "UNDERSTAFFED"
    if count == 1:
        return "OK"
    return "OVERSTAFFED"


def compute_coverage(shifts, days: int, start: date | None = None) -> list[CoverageStatus]:
    """One record per (day, shift type) for ``days`` days from ``start`` (today by default).

    Only shifts with an assignee count toward a slot.
    """
    first_day = parse_day(start) if start is not None else date.today()
    counts = Counter((parse_day(s.date), type_of(s)) for s in shifts if s.user_id)

    records = []
    for day in daterange(first_day, days):
        for shift_type in SHIFT_TYPES:
            count = counts.get((day, shift_type.value), 0)
            records.append(
                CoverageStatus(
                    date=day,
                    shift_type=shift_type.value,
                    assigned_count=count,
                    required_count=REQUIRED_PER_SLOT,
                    status=classify(count),
                )
            )
    return records


def summarize_coverage(records: list[CoverageStatus]) -> dict[str, int]:
    summary = {"UNDERSTAFFED": 0, "OK": 0, "OVERSTAFFED": 0}
    for record in records:
        summary[record.status] += 1
    return summary
