from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date, timedelta

from soc_scheduler.shifts import Preferences, adjacent_days, day_name, parse_day, type_of

LOOKAHEAD_DAYS = 14
BASE_SCORE = 50
PREFERRED_TYPE_BONUS = 25
PREFERRED_DAY_BONUS = 15
URGENT_COVERAGE_BONUS = 20
UNAVAILABLE_PENALTY = 40
ADJACENT_PENALTY = 10


@dataclass
class ShiftRecommendation:
    shift_id: str
    date: date
    shift_type: str
    match_score: int
    reason: str
    urgency: str


def urgency_for(score: int) -> str:
    if score >= 80:
        return "HIGH"
    if score >= 60:
        return "MEDIUM"
    return "LOW"


def score_shift(shift, preferences: Preferences, assigned: Counter, user_days: set[date]) -> ShiftRecommendation:
    shift_day = parse_day(shift.date)
    shift_type = type_of(shift)
    score = BASE_SCORE
    reasons: list[str] = []

    if shift_type in {t.value for t in preferences.preferred_shifts}:
        score += PREFERRED_TYPE_BONUS
        reasons.append("Matches your preferred shift type.")

    if day_name(shift_day) in preferences.preferred_days:
        score += PREFERRED_DAY_BONUS
        reasons.append("On your preferred day.")

    if assigned[(shift_day, shift_type)] == 0:
        score += URGENT_COVERAGE_BONUS
        reasons.append("Team needs coverage urgently.")

    if shift_day in set(preferences.unavailable_dates):
        score -= UNAVAILABLE_PENALTY
        reasons = ["You marked this date unavailable."]

    if any(d in user_days for d in adjacent_days(shift_day)):
        score -= ADJACENT_PENALTY
        reasons.append("Adjacent to your existing shift.")

    score = max(0, score)
    return ShiftRecommendation(
        shift_id=shift.id,
        date=shift_day,
        shift_type=shift_type,
        match_score=score,
        reason=" ".join(reasons) or "Available shift",
        urgency=urgency_for(score),
    )


def recommend_shifts(shifts, user_id: str, preferences: Preferences, today: date | None = None, limit: int = 5) -> list[ShiftRecommendation]:
    """Rank open shifts over the next two weeks for ``user_id``, best first."""
    today = today or date.today()
    horizon = today + timedelta(days=LOOKAHEAD_DAYS)
    shifts = list(shifts)

    assigned = Counter((parse_day(s.date), type_of(s)) for s in shifts if s.user_id)
    user_days = {parse_day(s.date) for s in shifts if s.user_id == user_id}
    open_shifts = [s for s in shifts if not s.user_id and today <= parse_day(s.date) <= horizon]

    ranked = [score_shift(s, preferences, assigned, user_days) for s in open_shifts]
    ranked.sort(key=lambda r: -r.match_score)
    return ranked[:limit]
