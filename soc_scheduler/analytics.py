from __future__ import annotations

from datetime import date, timedelta

from soc_scheduler.shifts import HOURS_PER_SHIFT, SHIFT_TYPES, WORKERS_PER_DAY, ShiftType, daterange, monday_of, parse_day, type_of

WORKLOAD_DAYS = 14
COVERAGE_DAYS = 7
BURNOUT_SHIFTS = 6
BURNOUT_NIGHTS = 3
RELIABILITY_TARGET_SHIFTS = 50


def team_analytics(users, shifts, today: date | None = None) -> dict:
    today = today or date.today()
    shifts = list(shifts)
    week_begin = monday_of(today)
    month_begin = today.replace(day=1)
    horizon = today + timedelta(days=WORKLOAD_DAYS)

    future = [s for s in shifts if parse_day(s.date) >= today]
    upcoming = [s for s in future if parse_day(s.date) <= horizon]

    workload = []
    for user in users:
        own = [s for s in upcoming if s.user_id == user.id]
        counts = {t.value: sum(1 for s in own if type_of(s) == t.value) for t in SHIFT_TYPES}
        workload.append(
            {
                "user_id": user.id,
                "name": user.name,
                "total_shifts": len(own),
                "morning_shifts": counts[ShiftType.MORNING.value],
                "evening_shifts": counts[ShiftType.EVENING.value],
                "night_shifts": counts[ShiftType.NIGHT.value],
            }
        )
    workload.sort(key=lambda w: -w["total_shifts"])

    coverage = []
    for day in daterange(today, COVERAGE_DAYS):
        day_shifts = [s for s in shifts if parse_day(s.date) == day]
        entry = {"date": day, "total": len(day_shifts)}
        for t in SHIFT_TYPES:
            entry[t.value.lower()] = sum(1 for s in day_shifts if type_of(s) == t.value)
        coverage.append(entry)

    return {
        "total_users": len(users),
        "this_week_shifts": sum(1 for s in shifts if week_begin <= parse_day(s.date) < today),
        "this_month_shifts": sum(1 for s in shifts if parse_day(s.date) >= month_begin),
        "future_shifts": len(future),
        "shift_type_count": {t.value: sum(1 for s in future if type_of(s) == t.value) for t in SHIFT_TYPES},
        "user_workload": workload,
        "coverage": coverage,
        "gaps": [c for c in coverage if c["total"] < WORKERS_PER_DAY],
        "burnout_risk": [w for w in workload if w["total_shifts"] > BURNOUT_SHIFTS or w["night_shifts"] > BURNOUT_NIGHTS],
        "protected_shifts": sum(1 for s in shifts if s.manually_created),
    }


def badges_for(metrics: dict) -> list[str]:
    earned = []
    if metrics["reliability_score"] >= 90:
        earned.append("Reliable")
    if metrics["shifts_completed"] >= RELIABILITY_TARGET_SHIFTS:
        earned.append("Dedicated")
    if metrics["swaps_accepted"] >= 10:
        earned.append("Team Player")
    if metrics["cancellations"] == 0 and metrics["shifts_completed"] >= 10:
        earned.append("Perfect Attendance")
    return earned


def performance_metrics(user_id: str, shifts, swaps, cancellations: int = 0, today: date | None = None) -> dict:
    """Personal reliability figures plus team averages for comparison."""
    today = today or date.today()
    past = [s for s in shifts if s.user_id and parse_day(s.date) < today]
    completed = sum(1 for s in past if s.user_id == user_id)

    own_swaps = [s for s in swaps if s.requester_id == user_id]
    offered = len(own_swaps)
    accepted = sum(1 for s in own_swaps if s.status == "ACCEPTED")
    reliability = min(100, completed / RELIABILITY_TARGET_SHIFTS * 60 + accepted / max(offered, 1) * 40)

    workers = {s.user_id for s in past}
    team_completed = len(past) / len(workers) if workers else 0
    all_swaps = list(swaps)
    team_reliability = (
        sum(1 for s in all_swaps if s.status == "ACCEPTED") / max(len(all_swaps), 1) * 100 if all_swaps else 0
    )

    metrics = {
        "shifts_completed": completed,
        "total_hours": completed * HOURS_PER_SHIFT,
        "swaps_offered": offered,
        "swaps_accepted": accepted,
        "reliability_score": round(reliability),
        "cancellations": cancellations,
        "team_average_reliability": round(team_reliability),
        "team_average_shifts_completed": round(team_completed),
    }
    metrics["badges"] = badges_for(metrics)
    return metrics
