from __future__ import annotations

import csv
import io
from datetime import date, timedelta

from soc_scheduler import exports
from soc_scheduler.analytics import performance_metrics, team_analytics
from soc_scheduler.models import Shift, SwapRequest, User

DAY = date(2026, 2, 2)


def make_shift(shift_id: str, day: date, shift_type: str, user_id: str = "u1", manual: bool = False) -> Shift:
    return Shift(
        id=shift_id,
        date=day,
        shift_type=shift_type,
        user_id=user_id,
        lunch_start="12:00",
        lunch_end="13:00",
        break_start="15:30",
        break_end="16:00",
        manually_created=manual,
    )


def sample_shifts() -> list[Shift]:
    return [
        make_shift("s3", DAY + timedelta(days=1), "Night"),
        make_shift("s1", DAY, "Morning"),
        make_shift("s2", DAY, "Evening"),
    ]


def test_csv_has_header_and_one_row_per_shift():
    rows = list(csv.reader(io.StringIO(exports.to_csv(sample_shifts()))))

    assert rows[0] == exports.CSV_HEADER
    assert len(rows) - 1 == 3
    assert rows[1][:5] == ["2026-02-02", "Monday", "Morning", "09:00", "18:00"]
    assert rows[2][2] == "Evening"
    assert rows[3][0] == "2026-02-03"


def test_ical_event_per_shift_with_fixed_windows():
    body = exports.to_ical(sample_shifts())

    assert body.startswith("BEGIN:VCALENDAR\r\n")
    assert body.count("BEGIN:VEVENT") == 3
    assert "UID:shift-s1@soc-scheduler.com" in body
    assert "DTSTART:20260202T090000Z\r\nDTEND:20260202T180000Z" in body
    # Evening runs past midnight.
    assert "DTSTART:20260202T170000Z\r\nDTEND:20260203T020000Z" in body
    assert "DTSTART:20260203T010000Z\r\nDTEND:20260203T100000Z" in body


def test_empty_exports():
    assert exports.to_ical([]).count("VEVENT") == 0
    assert exports.to_csv([]).strip().splitlines() == [",".join(exports.CSV_HEADER)]
    assert exports.to_text([]) == ""


def test_html_report_lists_shifts_and_totals():
    html = exports.to_html(sample_shifts(), "Ada Analyst", generated_on=DAY)

    assert "Ada Analyst" in html
    assert "2026-02-02" in html
    assert '<div class="stat-value">24</div>' in html
    assert "15:30 - 16:00" in html


def test_text_summary_line_per_shift():
    lines = exports.to_text(sample_shifts()).splitlines()

    assert lines[0] == "Mon, Feb 2 - Morning Shift (12:00-13:00 Lunch)"
    assert len(lines) == 3


def test_team_analytics_workload_gaps_and_burnout():
    today = DAY
    users = [User(id="u1", name="Ada"), User(id="u2", name="Grace")]
    shifts = [make_shift(f"n{i}", today + timedelta(days=i), "Night", "u1") for i in range(7)]
    shifts.append(make_shift("m0", today, "Morning", "u2", manual=True))
    shifts.append(make_shift("old", today - timedelta(days=30), "Morning", "u2"))

    data = team_analytics(users, shifts, today=today)

    assert data["total_users"] == 2
    assert data["future_shifts"] == 8
    assert data["shift_type_count"] == {"Morning": 1, "Evening": 0, "Night": 7}
    assert data["user_workload"][0]["user_id"] == "u1"
    assert data["user_workload"][0]["night_shifts"] == 7
    assert [w["user_id"] for w in data["burnout_risk"]] == ["u1"]
    assert data["coverage"][0]["total"] == 2
    assert len(data["gaps"]) == 7
    assert data["protected_shifts"] == 1


def test_performance_metrics_and_badges():
    today = DAY
    shifts = [make_shift(f"p{i}", today - timedelta(days=i + 1), "Morning", "u1") for i in range(50)]
    shifts += [make_shift(f"q{i}", today - timedelta(days=i + 1), "Evening", "u2") for i in range(10)]
    swaps = [
        SwapRequest(requester_id="u1", target_shift_id="p0", status="ACCEPTED"),
        SwapRequest(requester_id="u1", target_shift_id="p1", status="REJECTED"),
    ]

    metrics = performance_metrics("u1", shifts, swaps, cancellations=0, today=today)

    assert metrics["shifts_completed"] == 50
    assert metrics["total_hours"] == 400
    assert metrics["swaps_offered"] == 2
    assert metrics["swaps_accepted"] == 1
    assert metrics["reliability_score"] == 80
    assert metrics["team_average_shifts_completed"] == 30
    assert metrics["team_average_reliability"] == 50
    assert metrics["badges"] == ["Dedicated", "Perfect Attendance"]
