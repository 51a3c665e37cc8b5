from __future__ import annotations

import json
from datetime import date, timedelta

import pytest
from sqlalchemy import select

import soc_scheduler.db as app_db
from soc_scheduler.errors import ConfigurationError, GenerationError
from soc_scheduler.generator import (
    ProposedShift,
    RosterMember,
    build_prompt,
    generate_schedule,
    merge_schedule,
    model_from_env,
    parse_proposals,
    request_proposals,
    validate_proposals,
)
from soc_scheduler.models import Shift, ShiftNote, SwapRequest, User, UserAvailability
from soc_scheduler.shifts import DEFAULT_SHIFT_CONFIG, Preferences, ShiftType

TODAY = date(2026, 3, 10)


class ScriptedModel:
    def __init__(self, *responses: str):
        self.responses = list(responses)
        self.prompts: list[str] = []

    def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.responses.pop(0)


def proposal(day: date, shift_type: str, user_id: str) -> ProposedShift:
    timing = DEFAULT_SHIFT_CONFIG.timing_for(shift_type)
    return ProposedShift(
        date=day,
        type=shift_type,
        user_id=user_id,
        lunch_start=timing.lunch_start,
        lunch_end=timing.lunch_end,
        break_start=timing.break_start,
        break_end=timing.break_end,
    )


def payload_for(proposals: list[ProposedShift]) -> str:
    return json.dumps({"shifts": [p.model_dump(mode="json", by_alias=True) for p in proposals]})


def add_users(db, *user_ids: str) -> None:
    db.add_all([User(id=user_id, email=f"{user_id}@example.com", password_hash="x", name=user_id) for user_id in user_ids])
    db.commit()


def test_parse_accepts_wrapper_or_bare_array():
    item = proposal(TODAY, "Morning", "u1")
    wrapped = parse_proposals(payload_for([item]))
    bare = parse_proposals(json.dumps([item.model_dump(mode="json", by_alias=True)]))

    assert wrapped == bare == [item]


@pytest.mark.parametrize("bad_time", ["lunch at noon", "", "25:99", "12:00:00"])
def test_parse_rejects_malformed_break_times(bad_time):
    item = proposal(TODAY, "Morning", "u1").model_dump(mode="json", by_alias=True)
    item["lunchStart"] = bad_time

    with pytest.raises(ValueError):
        parse_proposals(json.dumps({"shifts": [item]}))


def test_malformed_times_count_as_unusable_output():
    item = proposal(TODAY, "Evening", "u1").model_dump(mode="json", by_alias=True)
    item["breakEnd"] = "midnight"

    with pytest.raises(GenerationError):
        request_proposals(ScriptedModel(json.dumps({"shifts": [item]})), "prompt")


@pytest.mark.parametrize("raw", ["", "   ", None])
def test_parse_rejects_empty_output(raw):
    with pytest.raises(GenerationError):
        parse_proposals(raw)


def test_request_retries_unparseable_output_then_gives_up():
    good = payload_for([proposal(TODAY, "Night", "u1")])
    model = ScriptedModel("not json", good)

    assert len(request_proposals(model, "prompt", attempts=2)) == 1
    assert len(model.prompts) == 2

    with pytest.raises(GenerationError):
        request_proposals(ScriptedModel("{}", '{"shifts": [{"date": "nope"}]}'), "prompt", attempts=2)


def test_single_attempt_by_default():
    model = ScriptedModel("garbage", payload_for([]))

    with pytest.raises(GenerationError):
        request_proposals(model, "prompt")
    assert len(model.prompts) == 1


def test_prompt_embeds_timings_and_roster():
    users = [RosterMember(id="u1", name="Ada", preferences=Preferences(preferred_shifts=[ShiftType.NIGHT]))]

    prompt = build_prompt(users, TODAY, 7, DEFAULT_SHIFT_CONFIG)

    assert "7 days starting from 2026-03-10" in prompt
    assert "Lunch Break: 20:00 - 21:00" in prompt
    assert '"preferredShifts": ["Night"]' in prompt


def test_missing_api_key_is_a_configuration_error(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY not configured"):
        model_from_env()


def test_validator_drops_hard_violations_and_reports_soft_ones():
    day = TODAY + timedelta(days=1)
    proposals = [
        proposal(day, "Morning", "u1"),
        proposal(day, "Morning", "u2"),  # slot taken
        proposal(day, "Evening", "u1"),  # same user twice a day
        proposal(day, "Night", "ghost"),  # not on roster
        proposal(day, "Night", "u3"),  # unavailable
        proposal(day, "Evening", "u2"),
        proposal(day + timedelta(days=1), "Morning", "u2"),  # after an Evening, kept
    ]

    kept, violations = validate_proposals(proposals, {"u1", "u2", "u3"}, {"u3": {day}})

    assert [(p.date, p.type.value, p.user_id) for p in kept] == [
        (day, "Morning", "u1"),
        (day, "Evening", "u2"),
        (day + timedelta(days=1), "Morning", "u2"),
    ]
    assert any("slot already filled" in v for v in violations)
    assert any("second shift on the same day" in v for v in violations)
    assert any("unknown user" in v for v in violations)
    assert any("user is unavailable" in v for v in violations)
    assert any("follows a Evening shift" in v for v in violations)


def test_merge_protects_manual_shifts_and_today():
    db = app_db.SessionLocal()
    tomorrow = TODAY + timedelta(days=1)
    db.add_all(
        [
            Shift(date=TODAY, shift_type="Morning", user_id="old", manually_created=False),
            Shift(date=TODAY - timedelta(days=1), shift_type="Night", user_id="old", manually_created=False),
            Shift(date=tomorrow, shift_type="Morning", user_id="manual", manually_created=True),
            Shift(date=tomorrow, shift_type="Evening", user_id="old", manually_created=False),
        ]
    )
    db.commit()

    inserted = merge_schedule(
        db,
        [
            proposal(TODAY, "Evening", "u1"),
            proposal(tomorrow, "Morning", "u1"),
            proposal(tomorrow, "Night", "u2"),
            proposal(TODAY + timedelta(days=30), "Night", "u2"),
        ],
        start=tomorrow,
        days=7,
        today=TODAY,
    )

    assert [(s.date, s.shift_type, s.user_id) for s in inserted] == [(tomorrow, "Night", "u2")]
    rows = {(s.date, s.shift_type, s.user_id, s.manually_created) for s in db.scalars(select(Shift)).all()}
    assert rows == {
        (TODAY, "Morning", "old", False),
        (TODAY - timedelta(days=1), "Night", "old", False),
        (tomorrow, "Morning", "manual", True),
        (tomorrow, "Night", "u2", False),
    }
    db.close()


def test_merge_removes_notes_and_swaps_of_replaced_shifts():
    db = app_db.SessionLocal()
    day = TODAY + timedelta(days=2)
    replaced = Shift(date=day, shift_type="Evening", user_id="u1", manually_created=False)
    offered = Shift(date=day, shift_type="Night", user_id="u2", manually_created=False)
    db.add_all([replaced, offered])
    db.flush()
    db.add(ShiftNote(shift_id=replaced.id, author_id="u1", author_name="Ada", content="Handover pending"))
    db.add(SwapRequest(requester_id="u1", target_shift_id=replaced.id))
    db.add(SwapRequest(requester_id="u3", target_shift_id="elsewhere", recipient_id="u2", offered_shift_id=offered.id))
    db.commit()

    merge_schedule(db, [], start=TODAY + timedelta(days=1), days=7, today=TODAY)

    assert db.scalars(select(Shift)).all() == []
    assert db.scalars(select(ShiftNote)).all() == []
    assert db.scalars(select(SwapRequest)).all() == []
    db.close()


def test_generate_schedule_ignores_roster_ids_without_a_user():
    db = app_db.SessionLocal()
    add_users(db, "u1")
    day = TODAY + timedelta(days=2)
    users = [RosterMember(id="u1", name="Ada"), RosterMember(id="ghost", name="Nobody")]
    model = ScriptedModel(payload_for([proposal(day, "Morning", "ghost"), proposal(day, "Night", "u1")]))

    inserted = generate_schedule(db, model, users, TODAY + timedelta(days=1), 7, DEFAULT_SHIFT_CONFIG, today=TODAY)

    assert [(s.shift_type, s.user_id) for s in inserted] == [("Night", "u1")]
    assert "Nobody" not in model.prompts[0]
    db.close()


def test_generate_schedule_skips_blocked_users():
    db = app_db.SessionLocal()
    add_users(db, "u1", "u2")
    day = TODAY + timedelta(days=2)
    db.add(UserAvailability(user_id="u1", date=day, is_available=False, reason="Training"))
    db.commit()
    users = [RosterMember(id="u1", name="Ada"), RosterMember(id="u2", name="Grace")]
    model = ScriptedModel(payload_for([proposal(day, "Morning", "u1"), proposal(day, "Evening", "u2")]))

    inserted = generate_schedule(db, model, users, TODAY + timedelta(days=1), 7, DEFAULT_SHIFT_CONFIG, today=TODAY)

    assert [(s.shift_type, s.user_id) for s in inserted] == [("Evening", "u2")]
    assert all(not s.manually_created for s in inserted)
    db.close()
