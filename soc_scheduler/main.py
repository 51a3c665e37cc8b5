from __future__ import annotations

import logging
import os
from datetime import date, timedelta

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from soc_scheduler import analytics, exports
from soc_scheduler.activity import log_activity
from soc_scheduler.auth import create_session, delete_session_if_exists, get_admin_user, get_current_user, bearer_token
from soc_scheduler.conflicts import detect_conflicts
from soc_scheduler.coverage import compute_coverage, summarize_coverage
from soc_scheduler.db import get_db
from soc_scheduler.errors import ConfigurationError, ConflictError, GenerationError, SchedulerError
from soc_scheduler.generator import RosterMember, ScheduleModel, generate_schedule, max_attempts_from_env, model_from_env
from soc_scheduler.models import (
    ActivityLogEntry,
    ClockEntry,
    LeaveRequest,
    SessionRecord,
    Shift,
    ShiftNote,
    SwapRequest,
    SystemConfig,
    User,
    UserAvailability,
    as_utc,
    delete_shifts,
    utcnow,
)
from soc_scheduler.recommendations import recommend_shifts
from soc_scheduler.schemas import (
    ActivityCreatePayload,
    ActivityOut,
    AnalyticsOut,
    AuthPayload,
    AvailabilityCreatePayload,
    AvailabilityOut,
    BulkResultOut,
    ClockEntryOut,
    ClockInPayload,
    ConflictCheckPayload,
    ConflictReportOut,
    CopyWeekPayload,
    CoverageOut,
    CoverageReportOut,
    DayShiftsPayload,
    GenerateSchedulePayload,
    LeaveCreatePayload,
    LeaveOut,
    LeaveReviewPayload,
    LoginOut,
    NoteCreatePayload,
    NoteOut,
    PerformanceOut,
    ReassignPayload,
    RecommendationOut,
    ShiftCreatePayload,
    ShiftOut,
    ShiftPatchPayload,
    SlotAssignPayload,
    SwapCreatePayload,
    SwapOut,
    UserCreatePayload,
    UserOut,
    UserPatchPayload,
    WeekStatsOut,
    preferences_of,
)
from soc_scheduler.security import hash_password, is_weak_password, verify_password
from soc_scheduler.shifts import (
    DEFAULT_SHIFT_CONFIG,
    HOURS_PER_WEEK,
    Preferences,
    ShiftConfiguration,
    ShiftType,
    week_start,
)

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="SOC Shift Scheduler")

SHIFT_CONFIG_KEY = "shift_timings"
AVATAR_URL = "https://api.dicebear.com/7.x/avataaars/svg?seed={seed}"


@app.middleware("http")
async def disable_cache_for_auth_and_api(request: Request, call_next):
    response = await call_next(request)
    path = request.url.path
    if path.startswith("/api/") or path.startswith("/auth/"):
        response.headers["Cache-Control"] = "no-store, no-cache, max-age=0, must-revalidate"
        response.headers["Pragma"] = "no-cache"
    return response


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Configuration error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(exc)})


@app.exception_handler(GenerationError)
async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
    logger.error("Schedule generation failed: %s", exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": "Failed to generate schedule"})


@app.exception_handler(ConflictError)
async def conflict_error_handler(request: Request, exc: ConflictError) -> JSONResponse:
    logger.info("Conflict on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


def normalize_email(email: str) -> str:
    return email.strip().lower()


def ensure_valid_email(email: str) -> str:
    normalized = normalize_email(email)
    local, _, domain = normalized.partition("@")
    if not local or "." not in domain or domain.startswith(".") or domain.endswith("."):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid email address")
    return normalized


def get_user_or_404(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def get_shift_or_404(db: Session, shift_id: str) -> Shift:
    shift = db.get(Shift, shift_id)
    if shift is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Shift not found")
    return shift


def load_shift_config(db: Session) -> ShiftConfiguration:
    record = db.get(SystemConfig, SHIFT_CONFIG_KEY)
    if record is None:
        return DEFAULT_SHIFT_CONFIG
    return ShiftConfiguration.model_validate(record.value)


def default_breaks(db: Session, shift_type: ShiftType) -> dict[str, str]:
    timing = load_shift_config(db).timing_for(shift_type)
    return {
        "lunch_start": timing.lunch_start,
        "lunch_end": timing.lunch_end,
        "break_start": timing.break_start,
        "break_end": timing.break_end,
    }


def ensure_not_blocked(db: Session, user_id: str, day: date) -> None:
    block = db.scalar(
        select(UserAvailability).where(
            UserAvailability.user_id == user_id,
            UserAvailability.date == day,
            UserAvailability.is_available.is_(False),
        )
    )
    if block is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot assign shift: user is unavailable on this date. Reason: {block.reason or 'Blocked'}",
        )


def ensure_active_admin_remains(db: Session, target_user: User, patch: UserPatchPayload) -> None:
    next_is_admin = patch.is_admin if patch.is_admin is not None else target_user.is_admin
    next_is_active = patch.is_active if patch.is_active is not None else target_user.is_active
    if not target_user.is_admin or not target_user.is_active:
        return
    if next_is_admin and next_is_active:
        return
    active_admin_count = db.scalar(select(func.count(User.id)).where(User.is_admin.is_(True), User.is_active.is_(True))) or 0
    if active_admin_count <= 1:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="At least one active admin must remain")


def shifts_between(db: Session, start: date, end: date) -> list[Shift]:
    return list(db.scalars(select(Shift).where(Shift.date >= start, Shift.date <= end).order_by(Shift.date)).all())


def get_schedule_model() -> ScheduleModel:
    return model_from_env()


@app.get("/health")
def health() -> dict[str, bool | str]:
    return {"ok": True, "env": os.getenv("ENVIRONMENT", "local")}


@app.post("/auth/bootstrap", response_model=LoginOut, status_code=status.HTTP_201_CREATED)
def auth_bootstrap(
    payload: AuthPayload,
    db: Session = Depends(get_db),
    bootstrap_token: str | None = Header(default=None, alias="X-Bootstrap-Token"),
    name: str = Query(default="Administrator"),
) -> LoginOut:
    configured_token = os.getenv("BOOTSTRAP_TOKEN", "")
    if not configured_token:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Bootstrap token is not configured")
    if bootstrap_token != configured_token:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid bootstrap token")
    existing_users = db.scalar(select(func.count(User.id))) or 0
    if existing_users > 0:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Bootstrap is only allowed before the first user exists")
    email = ensure_valid_email(payload.email)
    if is_weak_password(payload.password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Password is too weak")
    user = User(
        email=email,
        password_hash=hash_password(payload.password),
        name=name,
        role="ADMIN",
        is_admin=True,
        avatar=AVATAR_URL.format(seed=name),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    token = create_session(db, user.id)
    return LoginOut(token=token, user=UserOut.from_orm_user(user))


@app.post("/auth/login", response_model=LoginOut)
def auth_login(payload: AuthPayload, db: Session = Depends(get_db)) -> LoginOut:
    email = normalize_email(payload.email)
    user = db.scalar(select(User).where(User.email == email))
    if user is None or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is disabled")
    token = create_session(db, user.id)
    return LoginOut(token=token, user=UserOut.from_orm_user(user))


@app.post("/auth/logout")
def auth_logout(
    token: str | None = Depends(bearer_token),
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, bool]:
    if token:
        delete_session_if_exists(db, token)
    return {"ok": True}


@app.get("/auth/me", response_model=UserOut)
def auth_me(current_user: User = Depends(get_current_user)) -> UserOut:
    return UserOut.from_orm_user(current_user)


@app.get("/api/users", response_model=list[UserOut])
def list_users(
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[UserOut]:
    users = db.scalars(select(User).order_by(User.created_at.asc(), User.name.asc())).all()
    return [UserOut.from_orm_user(user) for user in users]


@app.post("/api/users", status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreatePayload,
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> dict[str, bool | str]:
    if not payload.email or not payload.password or not payload.name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required fields")
    email = ensure_valid_email(payload.email)
    if is_weak_password(payload.password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Password is too weak")
    if db.scalar(select(User).where(User.email == email)) is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already in use")
    user = User(
        email=email,
        password_hash=hash_password(payload.password),
        name=payload.name,
        role=payload.role,
        is_admin=payload.is_admin,
        avatar=AVATAR_URL.format(seed=payload.name),
    )
    db.add(user)
    db.flush()
    log_activity(db, current_user, "Created user", f"{payload.name} ({email})", "PROFILE_UPDATE")
    db.commit()
    return {"success": True, "userId": user.id, "message": f"User {payload.name} created successfully"}


@app.put("/api/users/me/preferences", response_model=UserOut)
def update_my_preferences(
    payload: Preferences,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> UserOut:
    current_user.preferred_days = list(payload.preferred_days)
    current_user.preferred_shifts = [t.value for t in payload.preferred_shifts]
    current_user.unavailable_dates = sorted(d.isoformat() for d in payload.unavailable_dates)
    log_activity(db, current_user, "Updated preferences", None, "PROFILE_UPDATE")
    db.commit()
    db.refresh(current_user)
    return UserOut.from_orm_user(current_user)


@app.patch("/api/users/{user_id}", response_model=UserOut)
def patch_user(
    user_id: str,
    payload: UserPatchPayload,
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> UserOut:
    user = get_user_or_404(db, user_id)
    if payload.role is None and payload.is_admin is None and payload.is_active is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No updates were provided")
    ensure_active_admin_remains(db, user, payload)
    if payload.role is not None:
        user.role = payload.role
    if payload.is_admin is not None:
        user.is_admin = payload.is_admin
    if payload.is_active is not None:
        user.is_active = payload.is_active
    log_activity(db, current_user, "Updated user", user.name, "PROFILE_UPDATE")
    db.commit()
    db.refresh(user)
    return UserOut.from_orm_user(user)


@app.delete("/api/users/{user_id}")
def delete_user(
    user_id: str,
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> dict[str, bool | str | int]:
    if user_id == current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete your own admin account")
    user = get_user_or_404(db, user_id)
    shift_ids = list(db.scalars(select(Shift.id).where(Shift.user_id == user_id)).all())
    deleted_shifts = delete_shifts(db, shift_ids)
    db.execute(delete(SwapRequest).where(or_(SwapRequest.requester_id == user_id, SwapRequest.recipient_id == user_id)))
    db.execute(delete(LeaveRequest).where(LeaveRequest.user_id == user_id))
    db.execute(delete(UserAvailability).where(UserAvailability.user_id == user_id))
    db.execute(delete(ClockEntry).where(ClockEntry.user_id == user_id))
    db.execute(delete(SessionRecord).where(SessionRecord.user_id == user_id))
    name = user.name
    db.delete(user)
    log_activity(db, current_user, "Deleted user", f"{name} and {deleted_shifts} shifts", "PROFILE_UPDATE")
    db.commit()
    return {"success": True, "message": "User deleted successfully", "deletedShifts": deleted_shifts}


@app.post("/api/generate-schedule", response_model=list[ShiftOut])
def generate_schedule_route(
    payload: GenerateSchedulePayload | None = Body(default=None),
    current_user: User = Depends(get_admin_user),
    model: ScheduleModel = Depends(get_schedule_model),
    db: Session = Depends(get_db),
):
    payload = payload or GenerateSchedulePayload()
    today = date.today()
    start = payload.start_date or today + timedelta(days=1)
    users = payload.users
    if users is None:
        active = db.scalars(select(User).where(User.is_active.is_(True)).order_by(User.name)).all()
        users = [RosterMember(id=u.id, name=u.name, preferences=preferences_of(u)) for u in active]
    config = payload.shift_config or load_shift_config(db)
    try:
        inserted = generate_schedule(db, model, users, start, payload.days, config, today=today, attempts=max_attempts_from_env())
    except SchedulerError:
        raise
    except Exception:
        logger.exception("Failed to generate schedule")
        db.rollback()
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": "Failed to generate schedule"})
    log_activity(
        db,
        current_user,
        "Generated schedule",
        f"{len(inserted)} shifts from {start.isoformat()} for {payload.days} days",
        "SHIFT_UPDATE",
    )
    db.commit()
    return [ShiftOut.from_orm_shift(shift) for shift in inserted]


@app.post("/api/add-today-shifts")
def add_day_shifts(
    payload: DayShiftsPayload,
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> dict[str, bool | str | int]:
    day = payload.date or date.today()
    existing = list(db.scalars(select(Shift.id).where(Shift.date == day)).all())
    delete_shifts(db, existing)
    for item in payload.shifts:
        breaks = default_breaks(db, item.type)
        db.add(
            Shift(
                date=day,
                shift_type=item.type.value,
                user_id=item.user_id,
                lunch_start=item.lunch_start or breaks["lunch_start"],
                lunch_end=item.lunch_end or breaks["lunch_end"],
                break_start=item.break_start or breaks["break_start"],
                break_end=item.break_end or breaks["break_end"],
                manually_created=True,
                created_by=current_user.id,
            )
        )
    log_activity(db, current_user, "Replaced day shifts", f"{day.isoformat()}: {len(payload.shifts)} shifts", "SHIFT_UPDATE")
    db.commit()
    return {"success": True, "message": f"Shifts for {day.isoformat()} added successfully", "count": len(payload.shifts)}


@app.get("/api/shifts", response_model=list[ShiftOut])
def list_shifts(
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    user_id: str | None = Query(default=None, alias="userId"),
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ShiftOut]:
    query = select(Shift)
    if start is not None:
        query = query.where(Shift.date >= start)
    if end is not None:
        query = query.where(Shift.date <= end)
    if user_id is not None:
        query = query.where(Shift.user_id == user_id)
    shifts = db.scalars(query.order_by(Shift.date, Shift.shift_type)).all()
    return [ShiftOut.from_orm_shift(shift) for shift in shifts]


@app.post("/api/shifts", response_model=ShiftOut, status_code=status.HTTP_201_CREATED)
def create_shift(
    payload: ShiftCreatePayload,
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> ShiftOut:
    if payload.user_id is not None:
        get_user_or_404(db, payload.user_id)
        ensure_not_blocked(db, payload.user_id, payload.date)
    breaks = default_breaks(db, payload.type)
    shift = Shift(
        date=payload.date,
        shift_type=payload.type.value,
        user_id=payload.user_id,
        lunch_start=payload.lunch_start or breaks["lunch_start"],
        lunch_end=payload.lunch_end or breaks["lunch_end"],
        break_start=payload.break_start or breaks["break_start"],
        break_end=payload.break_end or breaks["break_end"],
        manually_created=True,
        created_by=current_user.id,
    )
    db.add(shift)
    log_activity(db, current_user, "Created shift", f"{payload.date.isoformat()} {payload.type.value}", "SHIFT_UPDATE")
    db.commit()
    db.refresh(shift)
    return ShiftOut.from_orm_shift(shift)


@app.put("/api/shifts/slot", response_model=ShiftOut)
def assign_slot(
    payload: SlotAssignPayload,
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> ShiftOut:
    get_user_or_404(db, payload.user_id)
    ensure_not_blocked(db, payload.user_id, payload.date)
    breaks = default_breaks(db, payload.type)
    shift = db.scalar(
        select(Shift)
        .where(Shift.date == payload.date, Shift.shift_type == payload.type.value)
        .order_by(Shift.created_at)
        .with_for_update()
    )
    if shift is None:
        shift = Shift(date=payload.date, shift_type=payload.type.value, created_by=current_user.id)
        db.add(shift)
    shift.user_id = payload.user_id
    shift.lunch_start = breaks["lunch_start"]
    shift.lunch_end = breaks["lunch_end"]
    shift.break_start = breaks["break_start"]
    shift.break_end = breaks["break_end"]
    shift.manually_created = True
    log_activity(db, current_user, "Assigned shift", f"{payload.date.isoformat()} {payload.type.value}", "SHIFT_UPDATE")
    db.commit()
    db.refresh(shift)
    return ShiftOut.from_orm_shift(shift)


@app.post("/api/shifts/bulk/copy-week", response_model=BulkResultOut)
def copy_week(
    payload: CopyWeekPayload,
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> BulkResultOut:
    offset = payload.target_week - payload.source_week
    source = shifts_between(db, payload.source_week, payload.source_week + timedelta(days=6))
    target = shifts_between(db, payload.target_week, payload.target_week + timedelta(days=6))
    existing = {(s.date, s.user_id, s.shift_type) for s in target}
    copied = 0
    for shift in source:
        new_date = shift.date + offset
        if (new_date, shift.user_id, shift.shift_type) in existing:
            continue
        db.add(
            Shift(
                date=new_date,
                shift_type=shift.shift_type,
                user_id=shift.user_id,
                lunch_start=shift.lunch_start,
                lunch_end=shift.lunch_end,
                break_start=shift.break_start,
                break_end=shift.break_end,
                manually_created=True,
                created_by=current_user.id,
            )
        )
        existing.add((new_date, shift.user_id, shift.shift_type))
        copied += 1
    log_activity(
        db,
        current_user,
        "Copied week",
        f"{payload.source_week.isoformat()} -> {payload.target_week.isoformat()} ({copied} shifts)",
        "SHIFT_UPDATE",
    )
    db.commit()
    return BulkResultOut(affected=copied)


@app.post("/api/shifts/bulk/reassign", response_model=BulkResultOut)
def mass_reassign(
    payload: ReassignPayload,
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> BulkResultOut:
    get_user_or_404(db, payload.to_user)
    result = db.execute(
        update(Shift)
        .where(Shift.user_id == payload.from_user, Shift.date >= date.today())
        .values(user_id=payload.to_user, manually_created=True)
    )
    reassigned = int(result.rowcount or 0)
    log_activity(db, current_user, "Reassigned shifts", f"{reassigned} future shifts", "SHIFT_UPDATE")
    db.commit()
    return BulkResultOut(affected=reassigned)


@app.delete("/api/shifts/future", response_model=BulkResultOut)
def clear_future_shifts(
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> BulkResultOut:
    shift_ids = list(db.scalars(select(Shift.id).where(Shift.date >= date.today())).all())
    deleted = delete_shifts(db, shift_ids)
    log_activity(db, current_user, "Cleared future shifts", f"{deleted} shifts", "SHIFT_UPDATE")
    db.commit()
    return BulkResultOut(affected=deleted)


@app.patch("/api/shifts/{shift_id}", response_model=ShiftOut)
def patch_shift(
    shift_id: str,
    payload: ShiftPatchPayload,
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> ShiftOut:
    shift = get_shift_or_404(db, shift_id)
    changes = payload.model_dump(exclude_unset=True)
    for required in ("date", "type", "lunch_start", "lunch_end", "break_start", "break_end"):
        if required in changes and changes[required] is None:
            changes.pop(required)
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No updates were provided")
    next_user = changes.get("user_id", shift.user_id)
    next_date = changes.get("date", shift.date)
    if next_user is not None and (next_user != shift.user_id or next_date != shift.date):
        get_user_or_404(db, next_user)
        ensure_not_blocked(db, next_user, next_date)
    if "type" in changes:
        shift.shift_type = ShiftType(changes.pop("type")).value
    for field, value in changes.items():
        setattr(shift, field, value)
    shift.manually_created = True
    log_activity(db, current_user, "Updated shift", f"{shift.date.isoformat()} {shift.shift_type}", "SHIFT_UPDATE")
    db.commit()
    db.refresh(shift)
    return ShiftOut.from_orm_shift(shift)


@app.delete("/api/shifts/{shift_id}")
def delete_shift(
    shift_id: str,
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> dict[str, bool]:
    shift = get_shift_or_404(db, shift_id)
    details = f"{shift.date.isoformat()} {shift.shift_type}"
    delete_shifts(db, [shift.id])
    log_activity(db, current_user, "Deleted shift", details, "SHIFT_UPDATE")
    db.commit()
    return {"ok": True}


@app.post("/api/shifts/{shift_id}/claim", response_model=ShiftOut)
def claim_shift(
    shift_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ShiftOut:
    shift = get_shift_or_404(db, shift_id)
    ensure_not_blocked(db, current_user.id, shift.date)
    result = db.execute(
        update(Shift).where(Shift.id == shift_id, Shift.user_id.is_(None)).values(user_id=current_user.id)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ConflictError("Shift is already assigned")
    log_activity(db, current_user, "Claimed shift", f"{shift.date.isoformat()} {shift.shift_type}", "SHIFT_UPDATE")
    db.commit()
    db.refresh(shift)
    return ShiftOut.from_orm_shift(shift)


@app.get("/api/shifts/{shift_id}/notes", response_model=list[NoteOut])
def list_notes(
    shift_id: str,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[NoteOut]:
    get_shift_or_404(db, shift_id)
    notes = db.scalars(select(ShiftNote).where(ShiftNote.shift_id == shift_id).order_by(ShiftNote.created_at)).all()
    return [NoteOut.model_validate(note) for note in notes]


@app.post("/api/shifts/{shift_id}/notes", response_model=NoteOut, status_code=status.HTTP_201_CREATED)
def add_note(
    shift_id: str,
    payload: NoteCreatePayload,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> NoteOut:
    get_shift_or_404(db, shift_id)
    note = ShiftNote(shift_id=shift_id, author_id=current_user.id, author_name=current_user.name, content=payload.content)
    db.add(note)
    db.commit()
    db.refresh(note)
    return NoteOut.model_validate(note)


@app.delete("/api/notes/{note_id}")
def delete_note(
    note_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, bool]:
    note = db.get(ShiftNote, note_id)
    if note is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Note not found")
    if note.author_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the author can delete this note")
    db.delete(note)
    db.commit()
    return {"ok": True}


@app.get("/api/coverage", response_model=CoverageReportOut)
def coverage(
    days: int = Query(default=14, ge=1, le=31),
    start: date | None = Query(default=None),
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> CoverageReportOut:
    first_day = start or date.today()
    shifts = shifts_between(db, first_day, first_day + timedelta(days=days - 1))
    records = compute_coverage(shifts, days, start=first_day)
    return CoverageReportOut(
        records=[CoverageOut.model_validate(record) for record in records],
        summary=summarize_coverage(records),
    )


@app.post("/api/conflicts", response_model=ConflictReportOut)
def check_conflicts(
    payload: ConflictCheckPayload,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ConflictReportOut:
    user = current_user
    if payload.user_id is not None and payload.user_id != current_user.id:
        if not current_user.is_admin:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required")
        user = get_user_or_404(db, payload.user_id)
    first_day = week_start(payload.date) - timedelta(days=1)
    user_shifts = db.scalars(
        select(Shift).where(Shift.user_id == user.id, Shift.date >= first_day, Shift.date <= first_day + timedelta(days=8))
    ).all()
    candidate = Shift(date=payload.date, shift_type=payload.type.value)
    report = detect_conflicts(candidate, user.id, preferences_of(user), user_shifts)
    return ConflictReportOut(conflicts=report.conflicts, severity=report.severity, messages=report.messages)


@app.get("/api/recommendations", response_model=list[RecommendationOut])
def recommendations(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[RecommendationOut]:
    today = date.today()
    shifts = shifts_between(db, today - timedelta(days=1), today + timedelta(days=15))
    ranked = recommend_shifts(shifts, current_user.id, preferences_of(current_user), today=today)
    return [RecommendationOut.model_validate(item) for item in ranked]


def get_swap_or_404(db: Session, swap_id: str) -> SwapRequest:
    swap = db.get(SwapRequest, swap_id)
    if swap is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Swap request not found")
    return swap


def serialize_swap(db: Session, swap: SwapRequest) -> SwapOut:
    requester = db.get(User, swap.requester_id)
    return SwapOut.from_orm_swap(swap, requester.name if requester is not None else None)


@app.get("/api/swaps", response_model=list[SwapOut])
def list_swaps(
    swap_status: str | None = Query(default=None, alias="status"),
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[SwapOut]:
    query = select(SwapRequest).order_by(SwapRequest.created_at.desc())
    if swap_status is not None:
        query = query.where(SwapRequest.status == swap_status.upper())
    return [serialize_swap(db, swap) for swap in db.scalars(query).all()]


@app.post("/api/swaps", response_model=SwapOut, status_code=status.HTTP_201_CREATED)
def create_swap(
    payload: SwapCreatePayload,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SwapOut:
    shift = get_shift_or_404(db, payload.shift_id)
    if shift.user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You can only offer your own shifts")
    if payload.recipient_id is not None:
        if payload.recipient_id == current_user.id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot swap with yourself")
        get_user_or_404(db, payload.recipient_id)
    if payload.offered_shift_id is not None:
        offered = get_shift_or_404(db, payload.offered_shift_id)
        if payload.recipient_id is None or offered.user_id != payload.recipient_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="The shift offered in exchange must belong to the recipient")
    pending = db.scalar(
        select(SwapRequest).where(SwapRequest.target_shift_id == shift.id, SwapRequest.status == "PENDING")
    )
    if pending is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="This shift already has a pending swap request")
    swap = SwapRequest(
        requester_id=current_user.id,
        target_shift_id=shift.id,
        recipient_id=payload.recipient_id,
        offered_shift_id=payload.offered_shift_id,
        reason=payload.reason,
    )
    db.add(swap)
    log_activity(db, current_user, "Requested swap", f"{shift.date.isoformat()} {shift.shift_type}", "SWAP_REQUEST")
    db.commit()
    db.refresh(swap)
    return serialize_swap(db, swap)


def ensure_can_respond(swap: SwapRequest, user: User) -> None:
    if swap.requester_id == user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot respond to your own swap request")
    if swap.recipient_id is not None and swap.recipient_id != user.id and not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This swap request is addressed to another user")
    if swap.status != "PENDING":
        raise ConflictError(f"Swap request is already {swap.status}")


def resolve_swap(db: Session, swap: SwapRequest, user: User, outcome: str) -> None:
    """Move a swap out of PENDING; raises ConflictError if someone got there first."""
    result = db.execute(
        update(SwapRequest)
        .where(SwapRequest.id == swap.id, SwapRequest.status == "PENDING")
        .values(status=outcome, responded_at=utcnow(), responded_by=user.id)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ConflictError("Swap request is no longer pending")


@app.post("/api/swaps/{swap_id}/accept", response_model=SwapOut)
def accept_swap(
    swap_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SwapOut:
    swap = get_swap_or_404(db, swap_id)
    ensure_can_respond(swap, current_user)
    resolve_swap(db, swap, current_user, "ACCEPTED")
    moved = db.execute(
        update(Shift)
        .where(Shift.id == swap.target_shift_id, Shift.user_id == swap.requester_id)
        .values(user_id=current_user.id)
    )
    if moved.rowcount != 1:
        db.rollback()
        raise ConflictError("The offered shift changed owner since the request was made")
    if swap.offered_shift_id is not None:
        returned = db.execute(
            update(Shift)
            .where(Shift.id == swap.offered_shift_id, Shift.user_id == current_user.id)
            .values(user_id=swap.requester_id)
        )
        if returned.rowcount != 1:
            db.rollback()
            raise ConflictError("The shift offered in exchange is no longer yours")
    log_activity(db, current_user, "Accepted swap", swap.id, "SWAP_REQUEST")
    db.commit()
    db.refresh(swap)
    return serialize_swap(db, swap)


@app.post("/api/swaps/{swap_id}/reject", response_model=SwapOut)
def reject_swap(
    swap_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SwapOut:
    swap = get_swap_or_404(db, swap_id)
    ensure_can_respond(swap, current_user)
    resolve_swap(db, swap, current_user, "REJECTED")
    log_activity(db, current_user, "Rejected swap", swap.id, "SWAP_REQUEST")
    db.commit()
    db.refresh(swap)
    return serialize_swap(db, swap)


@app.delete("/api/swaps/{swap_id}")
def withdraw_swap(
    swap_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, bool]:
    swap = get_swap_or_404(db, swap_id)
    if swap.requester_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the requester can withdraw a swap request")
    result = db.execute(delete(SwapRequest).where(SwapRequest.id == swap_id, SwapRequest.status == "PENDING"))
    if result.rowcount != 1:
        db.rollback()
        raise ConflictError("Only pending swap requests can be withdrawn")
    log_activity(db, current_user, "Withdrew swap", swap_id, "SWAP_REQUEST")
    db.commit()
    return {"ok": True}


@app.get("/api/leave-requests", response_model=list[LeaveOut])
def list_leave_requests(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[LeaveOut]:
    query = select(LeaveRequest).order_by(LeaveRequest.date)
    if not current_user.is_admin:
        query = query.where(LeaveRequest.user_id == current_user.id)
    return [LeaveOut.model_validate(item) for item in db.scalars(query).all()]


@app.post("/api/leave-requests", response_model=LeaveOut, status_code=status.HTTP_201_CREATED)
def create_leave_request(
    payload: LeaveCreatePayload,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> LeaveOut:
    request = LeaveRequest(user_id=current_user.id, date=payload.date, reason=payload.reason)
    db.add(request)
    log_activity(db, current_user, "Requested leave", payload.date.isoformat(), "LEAVE_REQUEST")
    db.commit()
    db.refresh(request)
    return LeaveOut.model_validate(request)


@app.post("/api/leave-requests/{request_id}/review", response_model=LeaveOut)
def review_leave_request(
    request_id: str,
    payload: LeaveReviewPayload,
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> LeaveOut:
    leave = db.get(LeaveRequest, request_id)
    if leave is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Leave request not found")
    result = db.execute(
        update(LeaveRequest)
        .where(LeaveRequest.id == request_id, LeaveRequest.status == "PENDING")
        .values(status=payload.status, reviewed_by=current_user.id, reviewed_at=utcnow())
    )
    if result.rowcount != 1:
        db.rollback()
        raise ConflictError("Leave request has already been reviewed")
    log_activity(db, current_user, f"Leave {payload.status.lower()}", leave.date.isoformat(), "LEAVE_REQUEST")
    db.commit()
    db.refresh(leave)
    return LeaveOut.model_validate(leave)


@app.get("/api/availability", response_model=list[AvailabilityOut])
def list_availability(
    user_id: str | None = Query(default=None, alias="userId"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[AvailabilityOut]:
    target = user_id or current_user.id
    if target != current_user.id and not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required")
    blocks = db.scalars(
        select(UserAvailability).where(UserAvailability.user_id == target).order_by(UserAvailability.date)
    ).all()
    return [AvailabilityOut.model_validate(block) for block in blocks]


@app.post("/api/availability", response_model=list[AvailabilityOut], status_code=status.HTTP_201_CREATED)
def block_dates(
    payload: AvailabilityCreatePayload,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[AvailabilityOut]:
    target = payload.user_id or current_user.id
    if target != current_user.id:
        if not current_user.is_admin:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required")
        get_user_or_404(db, target)
    already = set(
        db.scalars(
            select(UserAvailability.date).where(
                UserAvailability.user_id == target,
                UserAvailability.date.in_(payload.days()),
            )
        ).all()
    )
    created = []
    for day in payload.days():
        if day in already:
            continue
        block = UserAvailability(user_id=target, date=day, is_available=False, reason=payload.reason)
        db.add(block)
        created.append(block)
    log_activity(db, current_user, "Blocked dates", f"{len(created)} days for {target}", "AVAILABILITY_CHANGE")
    db.commit()
    return [AvailabilityOut.model_validate(block) for block in created]


@app.delete("/api/availability/{block_id}")
def unblock_date(
    block_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, bool]:
    block = db.get(UserAvailability, block_id)
    if block is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Availability block not found")
    if block.user_id != current_user.id and not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required")
    details = block.date.isoformat()
    db.delete(block)
    log_activity(db, current_user, "Unblocked date", details, "AVAILABILITY_CHANGE")
    db.commit()
    return {"ok": True}


def open_clock_entry(db: Session, user_id: str) -> ClockEntry | None:
    return db.scalar(select(ClockEntry).where(ClockEntry.user_id == user_id, ClockEntry.clock_out_time.is_(None)))


@app.post("/api/clock/in", response_model=ClockEntryOut, status_code=status.HTTP_201_CREATED)
def clock_in(
    payload: ClockInPayload | None = Body(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ClockEntryOut:
    payload = payload or ClockInPayload()
    if open_clock_entry(db, current_user.id) is not None:
        raise ConflictError("Already clocked in")
    if payload.shift_id is not None:
        shift = get_shift_or_404(db, payload.shift_id)
        if shift.user_id != current_user.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You can only clock in to your own shifts")
    else:
        shift = db.scalar(
            select(Shift)
            .where(Shift.user_id == current_user.id, Shift.date >= date.today())
            .order_by(Shift.date)
        )
        if shift is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No upcoming shift found")
    entry = ClockEntry(shift_id=shift.id, user_id=current_user.id, clock_in_time=utcnow())
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return ClockEntryOut.model_validate(entry)


@app.post("/api/clock/out", response_model=ClockEntryOut)
def clock_out(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ClockEntryOut:
    entry = open_clock_entry(db, current_user.id)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not clocked in")
    clock_out_time = utcnow()
    elapsed = clock_out_time - as_utc(entry.clock_in_time)
    entry.clock_out_time = clock_out_time
    entry.actual_hours = round(elapsed.total_seconds() / 3600, 2)
    db.commit()
    db.refresh(entry)
    return ClockEntryOut.model_validate(entry)


@app.get("/api/clock/entries", response_model=list[ClockEntryOut])
def list_clock_entries(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ClockEntryOut]:
    entries = db.scalars(
        select(ClockEntry).where(ClockEntry.user_id == current_user.id).order_by(ClockEntry.clock_in_time.desc())
    ).all()
    return [ClockEntryOut.model_validate(entry) for entry in entries]


@app.get("/api/clock/stats", response_model=WeekStatsOut)
def clock_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> WeekStatsOut:
    first_day = week_start(date.today())
    last_day = first_day + timedelta(days=6)
    entries = db.scalars(
        select(ClockEntry).where(ClockEntry.user_id == current_user.id, ClockEntry.actual_hours.is_not(None))
    ).all()
    hours = sum(e.actual_hours for e in entries if first_day <= as_utc(e.clock_in_time).date() <= last_day)
    shift_count = db.scalar(
        select(func.count(Shift.id)).where(
            Shift.user_id == current_user.id, Shift.date >= first_day, Shift.date <= last_day
        )
    ) or 0
    return WeekStatsOut(hours=round(hours, 1), overtime=round(max(0.0, hours - HOURS_PER_WEEK), 1), shifts=shift_count)


@app.get("/api/shift-config", response_model=ShiftConfiguration)
def get_shift_config(
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ShiftConfiguration:
    return load_shift_config(db)


@app.put("/api/shift-config", response_model=ShiftConfiguration)
def put_shift_config(
    payload: ShiftConfiguration,
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> ShiftConfiguration:
    value = payload.model_dump(mode="json", by_alias=True)
    record = db.get(SystemConfig, SHIFT_CONFIG_KEY)
    if record is None:
        db.add(SystemConfig(key=SHIFT_CONFIG_KEY, value=value))
    else:
        record.value = value
    log_activity(db, current_user, "Updated shift timings", None, "OTHER")
    db.commit()
    return payload


@app.get("/api/activity", response_model=list[ActivityOut])
def list_activity(
    limit: int = Query(default=50, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ActivityOut]:
    query = select(ActivityLogEntry).order_by(ActivityLogEntry.timestamp.desc()).limit(limit)
    if not current_user.is_admin:
        query = query.where(ActivityLogEntry.user_id == current_user.id)
    return [ActivityOut.model_validate(entry) for entry in db.scalars(query).all()]


@app.post("/api/activity", response_model=ActivityOut, status_code=status.HTTP_201_CREATED)
def append_activity(
    payload: ActivityCreatePayload,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ActivityOut:
    entry = log_activity(db, current_user, payload.action, payload.details, payload.type)
    db.commit()
    db.refresh(entry)
    return ActivityOut.model_validate(entry)


@app.get("/api/analytics", response_model=AnalyticsOut)
def team_analytics(
    _: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> AnalyticsOut:
    users = db.scalars(select(User).where(User.is_active.is_(True)).order_by(User.name)).all()
    shifts = db.scalars(select(Shift)).all()
    return AnalyticsOut.model_validate(analytics.team_analytics(users, shifts))


@app.get("/api/performance", response_model=PerformanceOut)
def performance(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> PerformanceOut:
    shifts = db.scalars(select(Shift).where(Shift.date < date.today())).all()
    swaps = db.scalars(select(SwapRequest)).all()
    cancellations = db.scalar(
        select(func.count(LeaveRequest.id)).where(LeaveRequest.user_id == current_user.id, LeaveRequest.status == "APPROVED")
    ) or 0
    return PerformanceOut.model_validate(analytics.performance_metrics(current_user.id, shifts, swaps, cancellations=cancellations))


def my_shifts(db: Session, user: User) -> list[Shift]:
    return list(db.scalars(select(Shift).where(Shift.user_id == user.id).order_by(Shift.date)).all())


def attachment(filename: str) -> dict[str, str]:
    return {"Content-Disposition": f'attachment; filename="{filename}"'}


@app.get("/api/export/ics")
def export_ics(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Response:
    return Response(
        content=exports.to_ical(my_shifts(db, current_user)),
        media_type="text/calendar",
        headers=attachment(f"soc-schedule-{current_user.id}.ics"),
    )


@app.get("/api/export/csv")
def export_csv(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Response:
    return Response(
        content=exports.to_csv(my_shifts(db, current_user)),
        media_type="text/csv",
        headers=attachment(f"soc-schedule-{current_user.id}.csv"),
    )


@app.get("/api/export/html", response_class=HTMLResponse)
def export_html(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> HTMLResponse:
    return HTMLResponse(
        content=exports.to_html(my_shifts(db, current_user), current_user.name),
        headers=attachment(f"soc-schedule-{current_user.id}.html"),
    )


@app.get("/api/export/summary", response_class=PlainTextResponse)
def export_summary(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> PlainTextResponse:
    return PlainTextResponse(content=exports.to_text(my_shifts(db, current_user)))
