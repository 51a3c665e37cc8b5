from __future__ import annotations

from datetime import date, timedelta

from fastapi.testclient import TestClient

import soc_scheduler.db as app_db
from soc_scheduler.main import app
from soc_scheduler.models import Shift, SwapRequest

BOOTSTRAP_TOKEN = "test-bootstrap-token"


def bootstrap_admin(client: TestClient, email: str = "admin@example.com", password: str = "admin-password-123"):
    return client.post(
        "/auth/bootstrap",
        headers={"X-Bootstrap-Token": BOOTSTRAP_TOKEN},
        json={"email": email, "password": password},
    )


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def setup_team(client: TestClient) -> tuple[dict[str, str], dict[str, tuple[str, dict[str, str]]]]:
    admin = auth(bootstrap_admin(client).json()["token"])
    team = {}
    for key in ("u1", "u2", "u3"):
        email = f"{key}@example.com"
        user_id = client.post(
            "/api/users",
            headers=admin,
            json={"email": email, "password": "analyst-pass", "name": key.upper()},
        ).json()["userId"]
        token = client.post("/auth/login", json={"email": email, "password": "analyst-pass"}).json()["token"]
        team[key] = (user_id, auth(token))
    return admin, team


def add_shift(day: date, shift_type: str, user_id: str | None) -> str:
    db = app_db.SessionLocal()
    shift = Shift(date=day, shift_type=shift_type, user_id=user_id, manually_created=True)
    db.add(shift)
    db.commit()
    shift_id = shift.id
    db.close()
    return shift_id


def get_shift(shift_id: str) -> Shift:
    db = app_db.SessionLocal()
    shift = db.get(Shift, shift_id)
    db.close()
    return shift


def test_accepting_swap_moves_shift_and_second_accept_conflicts():
    client = TestClient(app)
    _, team = setup_team(client)
    u1, u1_headers = team["u1"]
    u2, u2_headers = team["u2"]
    _, u3_headers = team["u3"]
    shift_id = add_shift(date.today() + timedelta(days=3), "Evening", u1)

    created = client.post("/api/swaps", headers=u1_headers, json={"shiftId": shift_id, "reason": "Family event"})
    assert created.status_code == 201
    swap = created.json()
    assert swap["status"] == "PENDING"
    assert swap["requesterName"] == "U1"
    assert swap["targetShiftType"] == "Evening"

    own = client.post(f"/api/swaps/{swap['id']}/accept", headers=u1_headers)
    assert own.status_code == 400

    accepted = client.post(f"/api/swaps/{swap['id']}/accept", headers=u2_headers)
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "ACCEPTED"
    assert accepted.json()["respondedBy"] == u2
    assert get_shift(shift_id).user_id == u2

    again = client.post(f"/api/swaps/{swap['id']}/accept", headers=u3_headers)
    assert again.status_code == 409
    assert get_shift(shift_id).user_id == u2


def test_accept_after_owner_changed_is_rejected():
    client = TestClient(app)
    _, team = setup_team(client)
    u1, u1_headers = team["u1"]
    _, u2_headers = team["u2"]
    u3, _ = team["u3"]
    shift_id = add_shift(date.today() + timedelta(days=3), "Night", u1)
    swap_id = client.post("/api/swaps", headers=u1_headers, json={"shiftId": shift_id}).json()["id"]

    db = app_db.SessionLocal()
    db.get(Shift, shift_id).user_id = u3
    db.commit()
    db.close()

    response = client.post(f"/api/swaps/{swap_id}/accept", headers=u2_headers)
    assert response.status_code == 409

    db = app_db.SessionLocal()
    assert db.get(SwapRequest, swap_id).status == "PENDING"
    db.close()


def test_directed_swap_exchanges_offered_shift():
    client = TestClient(app)
    _, team = setup_team(client)
    u1, u1_headers = team["u1"]
    u2, u2_headers = team["u2"]
    _, u3_headers = team["u3"]
    mine = add_shift(date.today() + timedelta(days=2), "Morning", u1)
    theirs = add_shift(date.today() + timedelta(days=4), "Night", u2)

    bad_offer = client.post(
        "/api/swaps",
        headers=u1_headers,
        json={"shiftId": mine, "recipientId": u2, "offeredShiftId": mine},
    )
    assert bad_offer.status_code == 400

    swap_id = client.post(
        "/api/swaps",
        headers=u1_headers,
        json={"shiftId": mine, "recipientId": u2, "offeredShiftId": theirs, "reason": "Trade"},
    ).json()["id"]

    duplicate = client.post("/api/swaps", headers=u1_headers, json={"shiftId": mine})
    assert duplicate.status_code == 409

    assert client.post(f"/api/swaps/{swap_id}/accept", headers=u3_headers).status_code == 403

    accepted = client.post(f"/api/swaps/{swap_id}/accept", headers=u2_headers)
    assert accepted.status_code == 200
    assert get_shift(mine).user_id == u2
    assert get_shift(theirs).user_id == u1


def test_reject_and_withdraw():
    client = TestClient(app)
    _, team = setup_team(client)
    u1, u1_headers = team["u1"]
    _, u2_headers = team["u2"]
    first = add_shift(date.today() + timedelta(days=1), "Morning", u1)
    second = add_shift(date.today() + timedelta(days=2), "Morning", u1)

    rejected_id = client.post("/api/swaps", headers=u1_headers, json={"shiftId": first}).json()["id"]
    rejected = client.post(f"/api/swaps/{rejected_id}/reject", headers=u2_headers)
    assert rejected.status_code == 200
    assert rejected.json()["status"] == "REJECTED"
    assert get_shift(first).user_id == u1
    assert client.delete(f"/api/swaps/{rejected_id}", headers=u1_headers).status_code == 409

    pending_id = client.post("/api/swaps", headers=u1_headers, json={"shiftId": second}).json()["id"]
    assert client.delete(f"/api/swaps/{pending_id}", headers=u2_headers).status_code == 403
    assert client.delete(f"/api/swaps/{pending_id}", headers=u1_headers).status_code == 200

    listed = client.get("/api/swaps", headers=u2_headers, params={"status": "rejected"})
    assert [s["id"] for s in listed.json()] == [rejected_id]


def test_cannot_offer_someone_elses_shift():
    client = TestClient(app)
    _, team = setup_team(client)
    u2, _ = team["u2"]
    _, u1_headers = team["u1"]
    shift_id = add_shift(date.today() + timedelta(days=1), "Evening", u2)

    response = client.post("/api/swaps", headers=u1_headers, json={"shiftId": shift_id})
    assert response.status_code == 403
