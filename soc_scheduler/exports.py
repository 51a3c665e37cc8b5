from __future__ import annotations

import csv
import io
from collections import Counter
from datetime import date, datetime, timedelta
from pathlib import Path

from fastapi.templating import Jinja2Templates

from soc_scheduler.shifts import FIXED_WINDOWS, HOURS_PER_SHIFT, SHIFT_TYPES, ShiftType, day_name, parse_day, type_of

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

CSV_HEADER = ["Date", "Day", "Shift Type", "Start Time", "End Time", "Lunch", "Break", "Hours"]


def _sorted(shifts) -> list:
    return sorted(shifts, key=lambda s: (parse_day(s.date), SHIFT_TYPES.index(ShiftType(type_of(s)))))


def shift_window(shift_day: date, shift_type: str) -> tuple[datetime, datetime]:
    """UTC start and end of a shift; overnight windows end the next day."""
    start_text, end_text = FIXED_WINDOWS[ShiftType(shift_type)]
    start = datetime.combine(shift_day, datetime.strptime(start_text, "%H:%M").time())
    end = datetime.combine(shift_day, datetime.strptime(end_text, "%H:%M").time())
    if end <= start:
        end += timedelta(days=1)
    return start, end


def to_ical(shifts, calendar_name: str = "My Shifts") -> str:
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//SOC Scheduler//EN",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        f"X-WR-CALNAME:{calendar_name}",
        "X-WR-TIMEZONE:UTC",
        "X-WR-CALDESC:My SOC Schedule",
    ]
    for shift in _sorted(shifts):
        shift_type = type_of(shift)
        start, end = shift_window(parse_day(shift.date), shift_type)
        lines.extend(
            [
                "BEGIN:VEVENT",
                f"UID:shift-{shift.id}@soc-scheduler.com",
                f"DTSTART:{start.strftime('%Y%m%dT%H%M%SZ')}",
                f"DTEND:{end.strftime('%Y%m%dT%H%M%SZ')}",
                f"SUMMARY:{shift_type} Shift",
                f"DESCRIPTION:{shift_type} Shift - {shift.lunch_start}-{shift.lunch_end} Lunch\\, "
                f"{shift.break_start}-{shift.break_end} Break",
                "END:VEVENT",
            ]
        )
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"


def to_csv(shifts) -> str:
    out = io.StringIO()
    writer = csv.writer(out)
    writer.writerow(CSV_HEADER)
    for shift in _sorted(shifts):
        shift_day = parse_day(shift.date)
        shift_type = type_of(shift)
        start_text, end_text = FIXED_WINDOWS[ShiftType(shift_type)]
        writer.writerow(
            [
                shift_day.isoformat(),
                day_name(shift_day),
                shift_type,
                start_text,
                end_text,
                f"{shift.lunch_start}-{shift.lunch_end}",
                f"{shift.break_start}-{shift.break_end}",
                HOURS_PER_SHIFT,
            ]
        )
    return out.getvalue()


def to_html(shifts, user_name: str, generated_on: date | None = None) -> str:
    ordered = _sorted(shifts)
    rows = []
    for shift in ordered:
        shift_day = parse_day(shift.date)
        shift_type = type_of(shift)
        start_text, end_text = FIXED_WINDOWS[ShiftType(shift_type)]
        rows.append(
            {
                "date": shift_day.isoformat(),
                "day": day_name(shift_day),
                "type": shift_type,
                "css_class": shift_type.lower(),
                "time": f"{start_text} - {end_text}",
                "lunch": f"{shift.lunch_start} - {shift.lunch_end}",
                "rest": f"{shift.break_start} - {shift.break_end}",
            }
        )
    by_type = Counter(row["type"] for row in rows)
    return templates.get_template("report.html").render(
        user_name=user_name,
        generated_on=(generated_on or date.today()).isoformat(),
        total_shifts=len(rows),
        total_hours=len(rows) * HOURS_PER_SHIFT,
        by_type={t.value: by_type.get(t.value, 0) for t in SHIFT_TYPES},
        rows=rows,
    )


def to_text(shifts) -> str:
    lines = []
    for shift in _sorted(shifts):
        shift_day = parse_day(shift.date)
        label = shift_day.strftime("%a, %b ") + str(shift_day.day)
        lines.append(f"{label} - {type_of(shift)} Shift ({shift.lunch_start}-{shift.lunch_end} Lunch)")
    return "\n".join(lines)
