from __future__ import annotations

from collections.abc import Iterator
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from app.api.deps import get_clock, get_db
from app.core.security import create_access_token
from app.main import app
from app.models import Family, Profile, Routine
from conftest import T0, Household, MutableClock


def _headers(profile: Profile) -> dict[str, str]:
    token = create_access_token(profile_id=profile.id, family_id=profile.family_id, role=profile.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(session_factory: sessionmaker[Session], clock: MutableClock, household: Household) -> Iterator[TestClient]:
    def override_get_db() -> Iterator[Session]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _start(client: TestClient, household: Household, session_date: str = "2026-03-02") -> dict:
    response = client.post(
        f"/api/v1/children/{household.child.id}/sessions",
        json={"routine_id": household.routine.id, "session_date": session_date},
        headers=_headers(household.child),
    )
    assert response.status_code == 201, response.text
    return response.json()


def _complete_both(client: TestClient, household: Household, session_id: int, at: str) -> dict:
    response = client.post(
        f"/api/v1/sessions/{session_id}/complete",
        json={
            "completed_tasks": [
                {"task_id": household.brush_teeth.id, "completed_at": at},
                {"task_id": household.get_dressed.id, "completed_at": at},
            ],
        },
        headers=_headers(household.child),
    )
    assert response.status_code == 200, response.text
    return response.json()


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_requests_without_token_are_unauthorized(client: TestClient, household: Household) -> None:
    response = client.get(f"/api/v1/children/{household.child.id}/sessions")
    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHORIZED"


def test_start_session_returns_task_order(client: TestClient, household: Household) -> None:
    body = _start(client, household)

    assert body["status"] == "in_progress"
    assert body["task_order"] == [
        {"task_id": household.brush_teeth.id, "position": 1},
        {"task_id": household.get_dressed.id, "position": 2},
    ]


def test_double_start_is_conflict(client: TestClient, household: Household) -> None:
    _start(client, household)
    response = client.post(
        f"/api/v1/children/{household.child.id}/sessions",
        json={"routine_id": household.routine.id, "session_date": "2026-03-02"},
        headers=_headers(household.child),
    )

    assert response.status_code == 409
    assert response.json() == {"code": "CONFLICT", "message": "Session already in progress for this day"}


def test_child_cannot_start_for_sibling(client: TestClient, household: Household) -> None:
    response = client.post(
        f"/api/v1/children/{household.sibling.id}/sessions",
        json={"routine_id": household.routine.id, "session_date": "2026-03-02"},
        headers=_headers(household.child),
    )
    assert response.status_code == 403


def test_task_order_violation_surfaces_missing_tasks(client: TestClient, household: Household) -> None:
    session_id = _start(client, household)["id"]

    response = client.post(
        f"/api/v1/sessions/{session_id}/tasks/{household.get_dressed.id}/complete",
        json={},
        headers=_headers(household.child),
    )

    assert response.status_code == 409
    body = response.json()
    assert body["message"] == "Previous mandatory task not completed"
    assert body["details"] == {"missing_task_ids": [household.brush_teeth.id]}


def test_full_session_flow(client: TestClient, household: Household, clock: MutableClock) -> None:
    session_id = _start(client, household)["id"]
    finished = clock.advance(seconds=300)

    completed = _complete_both(client, household, session_id, finished.isoformat())
    assert completed["status"] == "completed"
    assert completed["duration_seconds"] == 300
    assert completed["points_awarded"] == 35
    assert completed["bonus_multiplier"] == 1
    assert completed["best_time_beaten"] is False
    assert completed["unlocked_achievements"] == ["first_routine"]
    assert completed["point_transaction_id"] is not None

    details = client.get(f"/api/v1/sessions/{session_id}", headers=_headers(household.parent)).json()
    assert [task["status"] for task in details["tasks"]] == ["completed", "completed"]
    assert details["performance"]["best_duration_seconds"] == 300

    wallet = client.get(f"/api/v1/children/{household.child.id}/wallet", headers=_headers(household.child)).json()
    assert wallet["balance"] == 35
    assert [tx["points_delta"] for tx in wallet["recent_transactions"]] == [35]

    achievements = client.get(
        f"/api/v1/children/{household.child.id}/achievements",
        headers=_headers(household.child),
    ).json()
    assert [item["code"] for item in achievements["achievements"]] == ["first_routine"]

    performance = client.get(
        f"/api/v1/children/{household.child.id}/performance/routines",
        headers=_headers(household.parent),
    ).json()
    assert performance["data"][0]["streak_days"] == 1

    again = client.post(
        f"/api/v1/sessions/{session_id}/complete",
        json={"completed_tasks": []},
        headers=_headers(household.child),
    )
    assert again.status_code == 409


def test_invalid_completed_at_is_validation_error(client: TestClient, household: Household) -> None:
    session_id = _start(client, household)["id"]

    response = client.post(
        f"/api/v1/sessions/{session_id}/complete",
        json={"completed_tasks": [{"task_id": household.brush_teeth.id, "completed_at": "not-a-date"}]},
        headers=_headers(household.child),
    )

    assert response.status_code == 422
    assert response.json()["message"] == "Invalid completedAt timestamp"


def test_undo_and_skip_are_parent_only(client: TestClient, household: Household) -> None:
    session_id = _start(client, household)["id"]
    completion = client.post(
        f"/api/v1/sessions/{session_id}/tasks/{household.brush_teeth.id}/complete",
        json={},
        headers=_headers(household.child),
    ).json()

    as_child = client.post(
        f"/api/v1/sessions/{session_id}/tasks/{completion['id']}/undo",
        headers=_headers(household.child),
    )
    assert as_child.status_code == 403

    as_parent = client.post(
        f"/api/v1/sessions/{session_id}/tasks/{completion['id']}/undo",
        headers=_headers(household.parent),
    )
    assert as_parent.status_code == 200

    skipped = client.post(
        f"/api/v1/sessions/{session_id}/skip",
        json={"status": "expired", "reason": "Ran out of time"},
        headers=_headers(household.parent),
    )
    assert skipped.status_code == 200
    assert skipped.json()["message"] == "Session expired"

    listed = client.get(
        f"/api/v1/children/{household.child.id}/sessions",
        params={"status": "expired"},
        headers=_headers(household.parent),
    ).json()
    assert listed["meta"]["total"] == 1
    assert listed["data"][0]["id"] == session_id


def test_manual_point_transaction(client: TestClient, household: Household, clock: MutableClock) -> None:
    url = f"/api/v1/families/{household.family.id}/points/transactions"

    rejected = client.post(
        url,
        json={"profile_id": household.child.id, "points_delta": 0, "reason": "noop"},
        headers=_headers(household.parent),
    )
    assert rejected.status_code == 422

    forbidden = client.post(
        url,
        json={"profile_id": household.child.id, "points_delta": 50, "reason": "self-serve"},
        headers=_headers(household.child),
    )
    assert forbidden.status_code == 403

    created = client.post(
        url,
        json={"profile_id": household.child.id, "points_delta": 50, "reason": "Helped with dishes"},
        headers=_headers(household.parent),
    )
    assert created.status_code == 201
    assert created.json()["balance_after"] == 50

    clock.advance(minutes=5)
    client.post(
        url,
        json={"profile_id": household.sibling.id, "points_delta": 10, "reason": "Tidy room"},
        headers=_headers(household.parent),
    )

    as_parent = client.get(url, headers=_headers(household.parent)).json()
    assert as_parent["meta"]["total"] == 2

    as_child = client.get(url, headers=_headers(household.child)).json()
    assert as_child["meta"]["total"] == 1
    assert as_child["data"][0]["transaction_type"] == "manual_adjustment"


def test_other_family_ledger_is_forbidden(client: TestClient, household: Household) -> None:
    response = client.get(
        f"/api/v1/families/{household.family.id + 1}/points/transactions",
        headers=_headers(household.parent),
    )
    assert response.status_code == 403


def test_best_time_bonus_over_two_days(client: TestClient, household: Household, clock: MutableClock) -> None:
    first_id = _start(client, household, "2026-03-02")["id"]
    _complete_both(client, household, first_id, clock.advance(seconds=400).isoformat())

    clock.now = T0 + timedelta(days=1)
    second_id = _start(client, household, "2026-03-03")["id"]
    result = _complete_both(client, household, second_id, clock.advance(seconds=300).isoformat())

    assert result["best_time_beaten"] is True
    assert result["points_awarded"] == 70
    assert result["streak_days"] == 2

    ledger = client.get(
        f"/api/v1/families/{household.family.id}/points/transactions",
        params={"sort": "created_at", "order": "asc"},
        headers=_headers(household.parent),
    ).json()
    assert [(tx["transaction_type"], tx["balance_after"]) for tx in ledger["data"]] == [
        ("task_completion", 35),
        ("task_completion", 70),
        ("routine_bonus", 105),
    ]


def test_child_cannot_start_routine_of_another_family(
    client: TestClient,
    household: Household,
    session_factory: sessionmaker[Session],
) -> None:
    with session_factory() as db:
        other = Family(name="Neighbours")
        db.add(other)
        db.flush()
        foreign_routine = Routine(family_id=other.id, name="Their morning")
        db.add(foreign_routine)
        db.commit()
        foreign_routine_id = foreign_routine.id

    response = client.post(
        f"/api/v1/children/{household.child.id}/sessions",
        json={"routine_id": foreign_routine_id, "session_date": "2026-03-02"},
        headers=_headers(household.child),
    )

    assert response.status_code == 404
    assert response.json()["message"] == "Routine not found"
