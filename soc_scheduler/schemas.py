from __future__ import annotations

import datetime as dt
from typing import Literal

from pydantic import Field, model_validator

from soc_scheduler.activity import ActivityType
from soc_scheduler.generator import RosterMember
from soc_scheduler.models import Shift, SwapRequest, User
from soc_scheduler.shifts import CamelModel, Preferences, ShiftConfiguration, ShiftType

Role = Literal["ADMIN", "ANALYST"]


class AuthPayload(CamelModel):
    email: str
    password: str


class UserCreatePayload(CamelModel):
    email: str | None = None
    password: str | None = None
    name: str | None = None
    role: Role = "ANALYST"
    is_admin: bool = False


class UserPatchPayload(CamelModel):
    role: Role | None = None
    is_admin: bool | None = None
    is_active: bool | None = None


class UserOut(CamelModel):
    id: str
    email: str
    name: str
    role: Role
    is_admin: bool
    is_active: bool
    avatar: str
    preferences: Preferences
    created_at: dt.datetime

    @classmethod
    def from_orm_user(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            is_admin=user.is_admin,
            is_active=user.is_active,
            avatar=user.avatar,
            preferences=Preferences(
                preferred_days=user.preferred_days or [],
                preferred_shifts=user.preferred_shifts or [],
                unavailable_dates=user.unavailable_dates or [],
            ),
            created_at=user.created_at,
        )


class LoginOut(CamelModel):
    token: str
    user: UserOut


class ShiftOut(CamelModel):
    id: str
    date: dt.date
    type: ShiftType
    user_id: str | None = None
    lunch_start: str
    lunch_end: str
    break_start: str
    break_end: str
    manually_created: bool
    created_by: str | None = None
    created_at: dt.datetime | None = None

    @classmethod
    def from_orm_shift(cls, shift: Shift) -> "ShiftOut":
        return cls(
            id=shift.id,
            date=shift.date,
            type=shift.shift_type,
            user_id=shift.user_id,
            lunch_start=shift.lunch_start,
            lunch_end=shift.lunch_end,
            break_start=shift.break_start,
            break_end=shift.break_end,
            manually_created=shift.manually_created,
            created_by=shift.created_by,
            created_at=shift.created_at,
        )


class ShiftInput(CamelModel):
    type: ShiftType
    user_id: str | None = None
    lunch_start: str | None = None
    lunch_end: str | None = None
    break_start: str | None = None
    break_end: str | None = None


class ShiftCreatePayload(ShiftInput):
    date: dt.date


class ShiftPatchPayload(CamelModel):
    date: dt.date | None = None
    type: ShiftType | None = None
    user_id: str | None = None
    lunch_start: str | None = None
    lunch_end: str | None = None
    break_start: str | None = None
    break_end: str | None = None


class SlotAssignPayload(CamelModel):
    date: dt.date
    type: ShiftType
    user_id: str


class DayShiftsPayload(CamelModel):
    date: dt.date | None = None
    shifts: list[ShiftInput]


class CopyWeekPayload(CamelModel):
    source_week: dt.date
    target_week: dt.date

    @model_validator(mode="after")
    def validate_distinct_weeks(self) -> "CopyWeekPayload":
        if self.source_week == self.target_week:
            raise ValueError("sourceWeek and targetWeek must differ")
        return self


class ReassignPayload(CamelModel):
    from_user: str
    to_user: str

    @model_validator(mode="after")
    def validate_distinct_users(self) -> "ReassignPayload":
        if self.from_user == self.to_user:
            raise ValueError("fromUser and toUser must differ")
        return self


class BulkResultOut(CamelModel):
    ok: bool = True
    affected: int


class GenerateSchedulePayload(CamelModel):
    users: list[RosterMember] | None = None
    start_date: dt.date | None = None
    days: int = Field(default=7, ge=1, le=31)
    shift_config: ShiftConfiguration | None = None


class CoverageOut(CamelModel):
    date: dt.date
    shift_type: ShiftType
    assigned_count: int
    required_count: int
    status: Literal["UNDERSTAFFED", "OK", "OVERSTAFFED"]


class CoverageReportOut(CamelModel):
    records: list[CoverageOut]
    summary: dict[str, int]


class ConflictCheckPayload(CamelModel):
    date: dt.date
    type: ShiftType
    user_id: str | None = None


class ConflictReportOut(CamelModel):
    conflicts: list[str]
    severity: Literal["none", "medium", "high"]
    messages: list[str]


class RecommendationOut(CamelModel):
    shift_id: str
    date: dt.date
    shift_type: ShiftType
    match_score: int
    reason: str
    urgency: Literal["HIGH", "MEDIUM", "LOW"]


class SwapCreatePayload(CamelModel):
    shift_id: str
    reason: str = ""
    recipient_id: str | None = None
    offered_shift_id: str | None = None


class SwapOut(CamelModel):
    id: str
    requester_id: str
    requester_name: str | None = None
    target_shift_id: str
    target_shift_date: dt.date | None = None
    target_shift_type: ShiftType | None = None
    recipient_id: str | None = None
    offered_shift_id: str | None = None
    status: Literal["PENDING", "ACCEPTED", "REJECTED"]
    reason: str
    created_at: dt.datetime
    responded_at: dt.datetime | None = None
    responded_by: str | None = None

    @classmethod
    def from_orm_swap(cls, swap: SwapRequest, requester_name: str | None = None) -> "SwapOut":
        shift = swap.target_shift
        return cls(
            id=swap.id,
            requester_id=swap.requester_id,
            requester_name=requester_name,
            target_shift_id=swap.target_shift_id,
            target_shift_date=shift.date if shift is not None else None,
            target_shift_type=shift.shift_type if shift is not None else None,
            recipient_id=swap.recipient_id,
            offered_shift_id=swap.offered_shift_id,
            status=swap.status,
            reason=swap.reason,
            created_at=swap.created_at,
            responded_at=swap.responded_at,
            responded_by=swap.responded_by,
        )


class LeaveCreatePayload(CamelModel):
    date: dt.date
    reason: str = Field(min_length=1)


class LeaveReviewPayload(CamelModel):
    status: Literal["APPROVED", "REJECTED"]


class LeaveOut(CamelModel):
    id: str
    user_id: str
    date: dt.date
    reason: str
    status: Literal["PENDING", "APPROVED", "REJECTED"]
    created_at: dt.datetime
    reviewed_by: str | None = None
    reviewed_at: dt.datetime | None = None


class AvailabilityCreatePayload(CamelModel):
    start_date: dt.date
    end_date: dt.date | None = None
    reason: str = ""
    user_id: str | None = None

    @model_validator(mode="after")
    def validate_range(self) -> "AvailabilityCreatePayload":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        return self

    def days(self) -> list[dt.date]:
        last = self.end_date or self.start_date
        return [self.start_date + dt.timedelta(days=i) for i in range((last - self.start_date).days + 1)]


class AvailabilityOut(CamelModel):
    id: str
    user_id: str
    date: dt.date
    is_available: bool
    reason: str


class ClockInPayload(CamelModel):
    shift_id: str | None = None


class ClockEntryOut(CamelModel):
    id: str
    shift_id: str | None = None
    user_id: str
    clock_in_time: dt.datetime
    clock_out_time: dt.datetime | None = None
    actual_hours: float | None = None


class WeekStatsOut(CamelModel):
    hours: float
    overtime: float
    shifts: int


class NoteCreatePayload(CamelModel):
    content: str = Field(min_length=1)


class NoteOut(CamelModel):
    id: str
    shift_id: str
    author_id: str
    author_name: str
    content: str
    created_at: dt.datetime


class ActivityCreatePayload(CamelModel):
    action: str = Field(min_length=1)
    details: str | None = None
    type: ActivityType = "OTHER"


class ActivityOut(CamelModel):
    id: str
    user_id: str
    user_name: str
    action: str
    details: str | None = None
    type: ActivityType
    timestamp: dt.datetime


class WorkloadOut(CamelModel):
    user_id: str
    name: str
    total_shifts: int
    morning_shifts: int
    evening_shifts: int
    night_shifts: int


class DayCoverageOut(CamelModel):
    date: dt.date
    total: int
    morning: int
    evening: int
    night: int


class AnalyticsOut(CamelModel):
    total_users: int
    this_week_shifts: int
    this_month_shifts: int
    future_shifts: int
    shift_type_count: dict[str, int]
    user_workload: list[WorkloadOut]
    coverage: list[DayCoverageOut]
    gaps: list[DayCoverageOut]
    burnout_risk: list[WorkloadOut]
    protected_shifts: int


class PerformanceOut(CamelModel):
    shifts_completed: int
    total_hours: int
    swaps_offered: int
    swaps_accepted: int
    reliability_score: int
    cancellations: int
    team_average_reliability: int
    team_average_shifts_completed: int
    badges: list[str]


def preferences_of(user: User) -> Preferences:
    return UserOut.from_orm_user(user).preferences