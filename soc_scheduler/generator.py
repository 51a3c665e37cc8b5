"""AI-assisted schedule generation.

The model proposes assignments; this module builds the prompt, parses and
re-checks the proposals, then merges them into the shifts table without
touching manually created shifts or anything dated today or earlier.
"""
from __future__ import annotations

import datetime as dt
import json
import logging
import os
from collections import defaultdict
from datetime import date, timedelta
from typing import Protocol

from openai import OpenAI
from pydantic import Field, TypeAdapter, field_validator
from sqlalchemy import select
from sqlalchemy.orm import Session

from soc_scheduler.errors import ConfigurationError, GenerationError
from soc_scheduler.models import Shift, User, UserAvailability, delete_shifts
from soc_scheduler.shifts import (
    SHIFT_TYPES,
    SHIFTS_PER_WEEK,
    CamelModel,
    Preferences,
    ShiftConfiguration,
    ShiftType,
    WORKERS_PER_DAY,
    check_hhmm,
    week_start,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_ATTEMPTS = 1


class RosterMember(CamelModel):
    id: str
    name: str
    preferences: Preferences = Field(default_factory=Preferences)


class ProposedShift(CamelModel):
    date: dt.date
    type: ShiftType
    user_id: str
    lunch_start: str
    lunch_end: str
    break_start: str
    break_end: str

    @field_validator("lunch_start", "lunch_end", "break_start", "break_end")
    @classmethod
    def validate_hhmm(cls, value: str) -> str:
        return check_hhmm(value)


_PROPOSALS = TypeAdapter(list[ProposedShift])

SHIFT_ITEM_SCHEMA = {
    "type": "object",
    "properties": {
        "date": {"type": "string", "description": "YYYY-MM-DD"},
        "type": {"type": "string", "enum": [t.value for t in SHIFT_TYPES]},
        "userId": {"type": "string"},
        "lunchStart": {"type": "string", "description": "HH:mm"},
        "lunchEnd": {"type": "string", "description": "HH:mm"},
        "breakStart": {"type": "string", "description": "HH:mm"},
        "breakEnd": {"type": "string", "description": "HH:mm"},
    },
    "required": ["date", "type", "userId", "lunchStart", "lunchEnd", "breakStart", "breakEnd"],
    "additionalProperties": False,
}

RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {"shifts": {"type": "array", "items": SHIFT_ITEM_SCHEMA}},
    "required": ["shifts"],
    "additionalProperties": False,
}


class ScheduleModel(Protocol):
    def complete(self, prompt: str) -> str:
        ...


class OpenAIScheduleModel:
    def __init__(self, api_key: str, model: str = DEFAULT_MODEL):
        self.model = model
        self.client = OpenAI(api_key=api_key)

    def complete(self, prompt: str) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": "You are an expert SOC Shift Manager. Reply with JSON only."},
                {"role": "user", "content": prompt},
            ],
            response_format={
                "type": "json_schema",
                "json_schema": {"name": "soc_schedule", "strict": True, "schema": RESPONSE_SCHEMA},
            },
        )
        return response.choices[0].message.content or ""


def model_from_env() -> OpenAIScheduleModel:
    api_key = os.getenv("OPENAI_API_KEY", "")
    if not api_key:
        raise ConfigurationError("OPENAI_API_KEY not configured")
    return OpenAIScheduleModel(api_key=api_key, model=os.getenv("SCHEDULER_MODEL", DEFAULT_MODEL))


def max_attempts_from_env() -> int:
    return max(1, int(os.getenv("SCHEDULER_MAX_ATTEMPTS", str(DEFAULT_MAX_ATTEMPTS))))


def _timing_block(label: str, config: ShiftConfiguration) -> str:
    timing = config.timing_for(label)
    return (
        f"{label} Shift:\n"
        f"- Start: {timing.start}\n"
        f"- End: {timing.end}\n"
        f"- Lunch Break: {timing.lunch_start} - {timing.lunch_end} (1 hour)\n"
        f"- Short Break: {timing.break_start} - {timing.break_end} (30 minutes)\n"
        f"- Work Hours: {timing.work_hours:g} hours (excluding breaks)\n"
    )


def build_prompt(users: list[RosterMember], start: date, days: int, config: ShiftConfiguration) -> str:
    user_context = json.dumps([u.model_dump(mode="json", by_alias=True) for u in users])
    timings = "\n".join(_timing_block(t.value, config) for t in SHIFT_TYPES)
    weekly_hours = config.Morning.work_hours * SHIFTS_PER_WEEK
    return f"""You are an expert SOC Shift Manager. Generate a fair schedule for {days} days starting from {start.isoformat()}.

SHIFT TIMINGS (use these exact times):

{timings}
HARD CONSTRAINTS:
1. Every user works exactly {SHIFTS_PER_WEEK} shifts in each 7-day period ({weekly_hours:g} work hours).
2. Every day has exactly {WORKERS_PER_DAY} shifts: one Morning, one Evening, one Night. No more, no less.
3. A user never works two shifts on the same day.
4. No back-to-back shifts: a user who works Evening or Night must not work Morning the next day.
5. A user listed with 'unavailableDates' must not be scheduled on those dates.

SOFT GOALS:
- Give each user 2 consecutive days off per week when possible and never more than 5 consecutive work days.
- Rotate weekends and Night shifts fairly; give a rest day after Night shifts when possible.
- Accommodate 'preferredDays' and 'preferredShifts' when possible. Empty preferences mean no preference.
- Always use the configured lunch and break times for each shift type.

Users: {user_context}

With {len(users)} users and {WORKERS_PER_DAY} workers per day most users are off on any given day. This is expected.

Return JSON of the form {{"shifts": [...]}} where each item has date (YYYY-MM-DD), type, userId, lunchStart, lunchEnd, breakStart, breakEnd.
"""


def parse_proposals(raw: str | None) -> list[ProposedShift]:
    """Decode model output; accepts a bare array or a ``{"shifts": [...]}`` wrapper."""
    if not raw or not raw.strip():
        raise GenerationError("No data returned from the schedule model")
    data = json.loads(raw)
    if isinstance(data, dict):
        data = data.get("shifts")
    return _PROPOSALS.validate_python(data)


def request_proposals(model: ScheduleModel, prompt: str, attempts: int = DEFAULT_MAX_ATTEMPTS) -> list[ProposedShift]:
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        raw = model.complete(prompt)
        try:
            return parse_proposals(raw)
        except (GenerationError, ValueError) as exc:
            last_error = exc
            logger.warning("Schedule model response rejected (attempt %s/%s): %s", attempt, attempts, exc)
    raise GenerationError(f"Schedule model returned no usable schedule: {last_error}")


def validate_proposals(
    proposals: list[ProposedShift],
    roster_ids: set[str],
    unavailable: dict[str, set[date]],
) -> tuple[list[ProposedShift], list[str]]:
    """Re-check the hard constraints the prompt asked for.

    Proposals breaking a hard rule are dropped. Weekly caps and rest gaps are
    reported but kept.
    """
    kept: list[ProposedShift] = []
    violations: list[str] = []
    filled_slots: set[tuple[date, str]] = set()
    user_days: set[tuple[str, date]] = set()

    for proposal in sorted(proposals, key=lambda p: (p.date, SHIFT_TYPES.index(p.type))):
        slot = (proposal.date, proposal.type.value)
        label = f"{proposal.date.isoformat()} {proposal.type.value} {proposal.user_id}"
        if proposal.user_id not in roster_ids:
            violations.append(f"{label}: unknown user")
            continue
        if proposal.date in unavailable.get(proposal.user_id, set()):
            violations.append(f"{label}: user is unavailable")
            continue
        if slot in filled_slots:
            violations.append(f"{label}: slot already filled")
            continue
        if (proposal.user_id, proposal.date) in user_days:
            violations.append(f"{label}: second shift on the same day")
            continue
        filled_slots.add(slot)
        user_days.add((proposal.user_id, proposal.date))
        kept.append(proposal)

    by_user: dict[str, dict[date, str]] = defaultdict(dict)
    for proposal in kept:
        by_user[proposal.user_id][proposal.date] = proposal.type.value
    for user_id, days in by_user.items():
        per_week: dict[date, int] = defaultdict(int)
        for day, shift_type in days.items():
            per_week[week_start(day)] += 1
            previous = days.get(day - timedelta(days=1))
            if shift_type == ShiftType.MORNING.value and previous in (ShiftType.EVENING.value, ShiftType.NIGHT.value):
                violations.append(f"{day.isoformat()} Morning {user_id}: follows a {previous} shift")
        for first_day, count in per_week.items():
            if count > SHIFTS_PER_WEEK:
                violations.append(f"week of {first_day.isoformat()} {user_id}: {count} shifts")
    return kept, violations


def merge_schedule(
    db: Session,
    proposals: list[ProposedShift],
    start: date,
    days: int,
    today: date | None = None,
) -> list[Shift]:
    """Replace generated shifts in (today, start + days) with ``proposals``.

    Runs as a single transaction: deletions and inserts commit together.
    """
    today = today or date.today()
    tomorrow = today + timedelta(days=1)
    end = start + timedelta(days=days)

    existing = db.scalars(select(Shift).where(Shift.date >= tomorrow, Shift.date < end)).all()
    protected = {(s.date, s.shift_type) for s in existing if s.manually_created}
    replaceable = [s.id for s in existing if not s.manually_created]
    if replaceable:
        delete_shifts(db, replaceable)

    inserted: list[Shift] = []
    for proposal in proposals:
        if proposal.date <= today:
            logger.info("Skipping %s - current or past date, only swaps allowed", proposal.date)
            continue
        if proposal.date >= end:
            logger.info("Skipping %s - outside the requested window", proposal.date)
            continue
        if (proposal.date, proposal.type.value) in protected:
            logger.info("Skipping %s %s - manually created shift exists", proposal.date, proposal.type.value)
            continue
        shift = Shift(
            date=proposal.date,
            shift_type=proposal.type.value,
            user_id=proposal.user_id,
            lunch_start=proposal.lunch_start,
            lunch_end=proposal.lunch_end,
            break_start=proposal.break_start,
            break_end=proposal.break_end,
            manually_created=False,
        )
        db.add(shift)
        inserted.append(shift)

    db.commit()
    return inserted


def collect_unavailability(db: Session, users: list[RosterMember], start: date, days: int) -> dict[str, set[date]]:
    unavailable = {u.id: set(u.preferences.unavailable_dates) for u in users}
    end = start + timedelta(days=days)
    blocks = db.scalars(
        select(UserAvailability).where(
            UserAvailability.date >= start,
            UserAvailability.date < end,
            UserAvailability.is_available.is_(False),
        )
    ).all()
    for block in blocks:
        unavailable.setdefault(block.user_id, set()).add(block.date)
    return unavailable


def generate_schedule(
    db: Session,
    model: ScheduleModel,
    users: list[RosterMember],
    start: date,
    days: int,
    config: ShiftConfiguration,
    today: date | None = None,
    attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> list[Shift]:
    active_ids = set(db.scalars(select(User.id).where(User.is_active.is_(True))).all())
    unknown = [u.id for u in users if u.id not in active_ids]
    if unknown:
        logger.warning("Ignoring roster entries that are not active users: %s", ", ".join(unknown))
        users = [u for u in users if u.id in active_ids]
    prompt = build_prompt(users, start, days, config)
    proposals = request_proposals(model, prompt, attempts=attempts)
    kept, violations = validate_proposals(proposals, {u.id for u in users}, collect_unavailability(db, users, start, days))
    for violation in violations:
        logger.warning("Generated schedule violation: %s", violation)
    return merge_schedule(db, kept, start, days, today=today)
