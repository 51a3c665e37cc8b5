from __future__ import annotations

from datetime import date, timedelta

from fastapi.testclient import TestClient
from sqlalchemy import func, select

import soc_scheduler.db as app_db
from soc_scheduler.main import app
from soc_scheduler.models import ActivityLogEntry, Shift, SwapRequest, User

BOOTSTRAP_TOKEN = "test-bootstrap-token"


def bootstrap_admin(client: TestClient, email: str = "admin@example.com", password: str = "admin-password-123"):
    return client.post(
        "/auth/bootstrap",
        headers={"X-Bootstrap-Token": BOOTSTRAP_TOKEN},
        json={"email": email, "password": password},
    )


def login(client: TestClient, email: str, password: str):
    return client.post("/auth/login", json={"email": email, "password": password})


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def admin_headers(client: TestClient) -> dict[str, str]:
    return auth(bootstrap_admin(client).json()["token"])


def create_analyst(client: TestClient, headers: dict[str, str], email: str = "analyst@example.com", name: str = "Ana Lyst"):
    return client.post(
        "/api/users",
        headers=headers,
        json={"email": email, "password": "analyst-pass", "name": name},
    )


def test_admin_creates_user_who_can_log_in():
    client = TestClient(app)
    headers = admin_headers(client)

    created = create_analyst(client, headers)
    assert created.status_code == 201
    body = created.json()
    assert body["success"] is True
    assert body["userId"]
    assert body["message"] == "User Ana Lyst created successfully"

    logged_in = login(client, "analyst@example.com", "analyst-pass")
    assert logged_in.status_code == 200
    user = logged_in.json()["user"]
    assert user["role"] == "ANALYST"
    assert user["isAdmin"] is False
    assert user["avatar"].startswith("https://api.dicebear.com/")

    db = app_db.SessionLocal()
    actions = db.scalars(select(ActivityLogEntry.action)).all()
    assert "Created user" in actions
    db.close()


def test_create_user_validation_errors():
    client = TestClient(app)
    headers = admin_headers(client)

    missing = client.post("/api/users", headers=headers, json={"email": "x@example.com", "name": "X"})
    assert missing.status_code == 400
    assert missing.json()["detail"] == "Missing required fields"

    invalid = client.post("/api/users", headers=headers, json={"email": "nope", "password": "long-enough", "name": "X"})
    assert invalid.status_code == 400
    assert invalid.json()["detail"] == "Invalid email address"

    weak = client.post("/api/users", headers=headers, json={"email": "x@example.com", "password": "123", "name": "X"})
    assert weak.status_code == 400
    assert weak.json()["detail"] == "Password is too weak"

    assert create_analyst(client, headers).status_code == 201
    duplicate = create_analyst(client, headers, email="Analyst@Example.com")
    assert duplicate.status_code == 400
    assert duplicate.json()["detail"] == "Email already in use"


def test_user_routes_require_admin():
    client = TestClient(app)
    headers = admin_headers(client)
    create_analyst(client, headers)
    analyst = auth(login(client, "analyst@example.com", "analyst-pass").json()["token"])

    assert client.post("/api/users", json={}).status_code == 401
    forbidden = create_analyst(client, analyst, email="other@example.com")
    assert forbidden.status_code == 403
    assert forbidden.json()["detail"] == "Admin privileges required"
    assert client.get("/api/users", headers=analyst).status_code == 200


def test_patch_user_role_and_flags():
    client = TestClient(app)
    headers = admin_headers(client)
    user_id = create_analyst(client, headers).json()["userId"]

    empty = client.patch(f"/api/users/{user_id}", headers=headers, json={})
    assert empty.status_code == 400
    assert empty.json()["detail"] == "No updates were provided"

    promoted = client.patch(f"/api/users/{user_id}", headers=headers, json={"role": "ADMIN", "isAdmin": True})
    assert promoted.status_code == 200
    assert promoted.json()["role"] == "ADMIN"
    assert promoted.json()["isAdmin"] is True

    disabled = client.patch(f"/api/users/{user_id}", headers=headers, json={"isActive": False})
    assert disabled.status_code == 200
    assert login(client, "analyst@example.com", "analyst-pass").status_code == 403

    assert client.patch("/api/users/missing", headers=headers, json={"role": "ADMIN"}).status_code == 404


def test_last_active_admin_cannot_be_demoted():
    client = TestClient(app)
    headers = admin_headers(client)
    admin_id = client.get("/auth/me", headers=headers).json()["id"]

    response = client.patch(f"/api/users/{admin_id}", headers=headers, json={"isAdmin": False})
    assert response.status_code == 400
    assert response.json()["detail"] == "At least one active admin must remain"


def test_delete_user_removes_their_shifts():
    client = TestClient(app)
    headers = admin_headers(client)
    user_id = create_analyst(client, headers).json()["userId"]
    keeper_id = create_analyst(client, headers, email="keeper@example.com", name="Keeper").json()["userId"]

    db = app_db.SessionLocal()
    start = date.today() + timedelta(days=1)
    db.add_all([Shift(date=start + timedelta(days=i), shift_type="Morning", user_id=user_id) for i in range(4)])
    db.add(Shift(date=start, shift_type="Evening", user_id=keeper_id))
    db.commit()
    db.close()

    response = client.delete(f"/api/users/{user_id}", headers=headers)
    assert response.status_code == 200
    assert response.json()["deletedShifts"] == 4

    db = app_db.SessionLocal()
    assert db.get(User, user_id) is None
    assert db.scalar(select(func.count(Shift.id)).where(Shift.user_id == user_id)) == 0
    assert db.scalar(select(func.count(Shift.id))) == 1
    db.close()

    assert login(client, "analyst@example.com", "analyst-pass").status_code == 401


def test_delete_user_drops_swaps_addressed_to_them():
    client = TestClient(app)
    headers = admin_headers(client)
    recipient_id = create_analyst(client, headers).json()["userId"]
    keeper_id = create_analyst(client, headers, email="keeper@example.com", name="Keeper").json()["userId"]

    db = app_db.SessionLocal()
    shift = Shift(date=date.today() + timedelta(days=2), shift_type="Night", user_id=keeper_id)
    db.add(shift)
    db.flush()
    db.add(SwapRequest(requester_id=keeper_id, target_shift_id=shift.id, recipient_id=recipient_id))
    db.commit()
    db.close()

    assert client.delete(f"/api/users/{recipient_id}", headers=headers).status_code == 200

    db = app_db.SessionLocal()
    assert db.scalar(select(func.count(SwapRequest.id))) == 0
    assert db.scalar(select(func.count(Shift.id))) == 1
    db.close()


def test_admin_cannot_delete_self():
    client = TestClient(app)
    headers = admin_headers(client)
    admin_id = client.get("/auth/me", headers=headers).json()["id"]

    response = client.delete(f"/api/users/{admin_id}", headers=headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot delete your own admin account"


def test_user_updates_own_preferences():
    client = TestClient(app)
    headers = admin_headers(client)

    response = client.put(
        "/api/users/me/preferences",
        headers=headers,
        json={"preferredDays": ["Monday"], "preferredShifts": ["Night"], "unavailableDates": ["2026-12-25"]},
    )
    assert response.status_code == 200
    preferences = response.json()["preferences"]
    assert preferences == {"preferredDays": ["Monday"], "preferredShifts": ["Night"], "unavailableDates": ["2026-12-25"]}
