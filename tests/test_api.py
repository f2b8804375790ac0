"""
API tests: routing, auth dependencies and error mapping.

Services are patched; the database connection dependency yields a mock.
"""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from workshop.api.deps import get_current_user
from workshop.core.database import get_db
from workshop.core.exceptions import (
    ForbiddenError,
    InvalidStateTransition,
    NotFoundError,
    TransientStoreError,
)
from workshop.core.security import decode_access_token, hash_password
from workshop.main import app
from workshop.services import enrollments as enrollments_service
from workshop.services import learning as learning_service
from workshop.services import sessions as sessions_service
from workshop.services import voting as voting_service


@pytest.fixture
def client(mock_conn):
    async def override_get_db():
        yield mock_conn

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def login_as(principal: dict) -> None:
    app.dependency_overrides[get_current_user] = lambda: principal


# ============================================
# INFRASTRUCTURE
# ============================================


def test_health_without_database(client):
    """Test health reports 503 when no pool is available."""
    response = client.get("/health")

    assert response.status_code == 503
    body = response.json()
    assert body["success"] is False
    assert body["data"]["checks"]["database"]["status"] == "unhealthy"


def test_security_headers(client):
    response = client.get("/health")

    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"


def test_invalid_token_rejected(client):
    response = client.get("/auth/me", headers={"Authorization": "Bearer not-a-token"})

    assert response.status_code == 401
    assert response.json()["success"] is False


# ============================================
# AUTH
# ============================================


def test_login_issues_token(client, monkeypatch):
    user = {
        "id": str(uuid4()),
        "name": "Ana",
        "email": "ana@example.org",
        "role": "participant",
        "password_hash": hash_password("correct horse battery"),
    }
    monkeypatch.setattr(
        "workshop.api.routes.auth.get_user_by_email", AsyncMock(return_value=user)
    )

    response = client.post(
        "/auth/login", json={"email": "Ana@Example.org", "password": "correct horse battery"}
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert "password_hash" not in data["user"]
    payload = decode_access_token(data["access_token"])
    assert payload["sub"] == user["id"]
    assert payload["role"] == "participant"
    assert payload["name"] == "Ana"


def test_login_wrong_password(client, monkeypatch):
    user = {
        "id": str(uuid4()),
        "name": "Ana",
        "email": "ana@example.org",
        "role": "participant",
        "password_hash": hash_password("correct horse battery"),
    }
    monkeypatch.setattr(
        "workshop.api.routes.auth.get_user_by_email", AsyncMock(return_value=user)
    )

    response = client.post("/auth/login", json={"email": "ana@example.org", "password": "nope"})

    assert response.status_code == 401


def test_me(client, participant):
    login_as(participant)

    response = client.get("/auth/me")

    assert response.status_code == 200
    assert response.json()["data"]["id"] == participant["id"]


# ============================================
# SESSIONS
# ============================================


def test_participant_cannot_create_session(client, participant):
    login_as(participant)

    response = client.post(
        "/sessions",
        json={"title": "Workshop", "scheduled_date": "2026-11-03", "province": "P", "district": "D"},
    )

    assert response.status_code == 403


def test_facilitator_creates_session(client, facilitator, monkeypatch):
    login_as(facilitator)
    created = {"id": str(uuid4()), "join_pin": "AB3X9K", "activities": []}
    create = AsyncMock(return_value=created)
    monkeypatch.setattr(sessions_service, "create_session", create)

    response = client.post(
        "/sessions",
        json={
            "title": "Workshop",
            "scheduled_date": "2026-11-03",
            "province": "Maputo",
            "district": "KaMpfumo",
            "activities": [{"activity": "Mangrove restoration", "criteria": {"cost": 2}}],
        },
    )

    assert response.status_code == 201
    assert response.json()["data"]["join_pin"] == "AB3X9K"
    kwargs = create.await_args.kwargs
    assert str(kwargs["facilitator_id"]) == facilitator["id"]
    assert kwargs["activities"][0]["activity"] == "Mangrove restoration"
    assert kwargs["kind"] == "in_person"


def test_get_session_not_found(client, participant, monkeypatch):
    login_as(participant)
    monkeypatch.setattr(
        sessions_service,
        "get_session",
        AsyncMock(side_effect=NotFoundError("Session not found")),
    )

    response = client.get(f"/sessions/{uuid4()}")

    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["errors"]["code"] == "NOT_FOUND"


def test_versioned_route(client, participant, monkeypatch):
    login_as(participant)
    session_id = str(uuid4())
    monkeypatch.setattr(
        sessions_service, "get_session", AsyncMock(return_value={"id": session_id})
    )

    response = client.get(f"/v1/sessions/{session_id}")

    assert response.status_code == 200
    assert response.json()["data"]["id"] == session_id


def test_participant_does_not_see_join_pin(client, participant, monkeypatch):
    login_as(participant)
    session = {"id": str(uuid4()), "facilitator_id": str(uuid4()), "join_pin": "AB3X9K"}
    monkeypatch.setattr(sessions_service, "get_session", AsyncMock(return_value=session))
    monkeypatch.setattr(
        sessions_service, "list_sessions", AsyncMock(return_value=([session], 1))
    )

    detail = client.get(f"/sessions/{session['id']}").json()["data"]
    listed = client.get("/sessions").json()["data"]["data"]

    assert "join_pin" not in detail
    assert "join_pin" not in listed[0]


def test_owner_sees_join_pin(client, facilitator, monkeypatch):
    login_as(facilitator)
    session = {"id": str(uuid4()), "facilitator_id": facilitator["id"], "join_pin": "AB3X9K"}
    monkeypatch.setattr(sessions_service, "get_session", AsyncMock(return_value=session))

    response = client.get(f"/sessions/{session['id']}")

    assert response.json()["data"]["join_pin"] == "AB3X9K"


def test_other_facilitator_does_not_see_join_pin(client, facilitator, monkeypatch):
    login_as(facilitator)
    session = {"id": str(uuid4()), "facilitator_id": str(uuid4()), "join_pin": "AB3X9K"}
    monkeypatch.setattr(sessions_service, "get_session", AsyncMock(return_value=session))

    response = client.get(f"/sessions/{session['id']}")

    assert "join_pin" not in response.json()["data"]


def test_update_out_of_terminal_state_is_conflict(client, facilitator, monkeypatch):
    login_as(facilitator)
    monkeypatch.setattr(
        sessions_service,
        "get_session",
        AsyncMock(return_value={"id": str(uuid4()), "facilitator_id": facilitator["id"]}),
    )
    monkeypatch.setattr(
        sessions_service,
        "update_session",
        AsyncMock(side_effect=InvalidStateTransition("Cannot move a session")),
    )

    response = client.patch(f"/sessions/{uuid4()}", json={"state": "in_progress"})

    assert response.status_code == 409
    assert response.json()["errors"]["code"] == "STATE_TRANSITION_INVALID"


def test_non_owner_cannot_update(client, facilitator, monkeypatch):
    login_as(facilitator)
    monkeypatch.setattr(
        sessions_service,
        "get_session",
        AsyncMock(return_value={"id": str(uuid4()), "facilitator_id": str(uuid4())}),
    )

    response = client.patch(f"/sessions/{uuid4()}", json={"title": "Mine now"})

    assert response.status_code == 403


def test_only_admin_deletes(client, facilitator):
    login_as(facilitator)

    response = client.delete(f"/sessions/{uuid4()}")

    assert response.status_code == 403


def test_transient_error_is_generic_503(client, participant, monkeypatch):
    login_as(participant)
    monkeypatch.setattr(
        sessions_service, "get_session", AsyncMock(side_effect=TransientStoreError())
    )

    response = client.get(f"/sessions/{uuid4()}")

    assert response.status_code == 503
    assert response.json()["message"] == "Service temporarily unavailable"


# ============================================
# PARTICIPANTS, QUIZ & VOTING
# ============================================


def test_join_by_pin(client, participant, monkeypatch):
    login_as(participant)
    join = AsyncMock(return_value={"status": "confirmed", "session": {"id": str(uuid4())}})
    monkeypatch.setattr(enrollments_service, "join_by_pin", join)

    response = client.post("/sessions/join", json={"pin": "ab3x9k"})

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "confirmed"
    assert join.await_args.args[1] == "ab3x9k"


def test_other_facilitator_cannot_list_roster(client, facilitator, monkeypatch):
    login_as(facilitator)
    monkeypatch.setattr(
        sessions_service,
        "get_session",
        AsyncMock(return_value={"id": str(uuid4()), "facilitator_id": str(uuid4())}),
    )
    roster = AsyncMock(return_value=([], 0))
    monkeypatch.setattr(enrollments_service, "list_participants", roster)

    response = client.get(f"/sessions/{uuid4()}/participants")

    assert response.status_code == 403
    roster.assert_not_awaited()


def test_owner_lists_roster(client, facilitator, monkeypatch):
    login_as(facilitator)
    monkeypatch.setattr(
        sessions_service,
        "get_session",
        AsyncMock(return_value={"id": str(uuid4()), "facilitator_id": facilitator["id"]}),
    )
    monkeypatch.setattr(
        enrollments_service,
        "list_participants",
        AsyncMock(return_value=([{"participant_id": "p1", "name": "Ana"}], 1)),
    )

    response = client.get(f"/sessions/{uuid4()}/participants")

    assert response.status_code == 200
    assert response.json()["data"]["pagination"]["total"] == 1


def test_submit_votes_before_quiz(client, participant, monkeypatch):
    login_as(participant)
    monkeypatch.setattr(
        voting_service,
        "submit_votes",
        AsyncMock(side_effect=ForbiddenError("Complete the quiz before voting")),
    )

    response = client.post(
        "/sessions/submit-votes",
        json={"session_id": str(uuid4()), "votes": [{"activity_id": str(uuid4()), "score": 4}]},
    )

    assert response.status_code == 403
    body = response.json()
    assert body["message"] == "Complete the quiz before voting"
    assert body["errors"]["code"] == "FORBIDDEN"


def test_submit_votes_malformed_body(client, participant):
    login_as(participant)

    response = client.post("/sessions/submit-votes", json={"votes": []})

    assert response.status_code == 422
    assert "body.session_id" in response.json()["errors"]


def test_live_results(client, participant, monkeypatch):
    login_as(participant)
    monkeypatch.setattr(
        voting_service,
        "get_live_results",
        AsyncMock(return_value=[{"id": "a1", "rank": 1, "mean_score": 5.0}]),
    )
    monkeypatch.setattr(
        voting_service,
        "get_results_summary",
        AsyncMock(return_value={"voters": 1, "total_votes": 1}),
    )

    response = client.get(f"/sessions/{uuid4()}/live-results")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["results"][0]["rank"] == 1
    assert data["summary"]["voters"] == 1


def test_facilitator_cannot_take_quiz(client, facilitator):
    login_as(facilitator)

    response = client.get(f"/sessions/{uuid4()}/questions")

    assert response.status_code == 403


# ============================================
# LEARNING
# ============================================


def test_list_modules_for_any_user(client, facilitator, monkeypatch):
    login_as(facilitator)
    listing = AsyncMock(
        return_value={
            "modules": [{"id": "m1", "title": "Heat islands", "completed": False}],
            "progress": {"total": 1, "completed": 0, "percentage": 0.0},
        }
    )
    monkeypatch.setattr(learning_service, "list_modules", listing)

    response = client.get("/learning/modules")

    assert response.status_code == 200
    assert response.json()["data"]["modules"][0]["title"] == "Heat islands"
    assert str(listing.await_args.args[1]) == facilitator["id"]


def test_participant_cannot_create_module(client, participant, monkeypatch):
    login_as(participant)
    create = AsyncMock()
    monkeypatch.setattr(learning_service, "create_module", create)

    response = client.post("/learning/modules", json={"title": "Flooding"})

    assert response.status_code == 403
    create.assert_not_awaited()


def test_admin_creates_module(client, admin, monkeypatch):
    login_as(admin)
    monkeypatch.setattr(
        learning_service,
        "create_module",
        AsyncMock(return_value={"id": "m1", "title": "Flooding", "position": 1}),
    )

    response = client.post("/learning/modules", json={"title": "Flooding"})

    assert response.status_code == 201
    assert response.json()["data"]["position"] == 1


def test_module_progress_passes_session(client, participant, monkeypatch):
    login_as(participant)
    session_id, module_id = uuid4(), uuid4()
    progress = AsyncMock(
        return_value={"module_id": str(module_id), "progress": {"percentage": 50.0}}
    )
    monkeypatch.setattr(learning_service, "set_module_progress", progress)

    response = client.post(
        f"/learning/modules/{module_id}/progress", json={"session_id": str(session_id)}
    )

    assert response.status_code == 200
    args = progress.await_args.args
    assert args[2] == module_id
    assert args[3] is True
    assert args[4] == session_id


def test_status_for_participant(client, participant, monkeypatch):
    login_as(participant)
    monkeypatch.setattr(
        learning_service,
        "get_participant_status",
        AsyncMock(return_value={"enrolled": True, "next_step": "quiz"}),
    )

    response = client.get(f"/sessions/{uuid4()}/status")

    assert response.status_code == 200
    assert response.json()["data"]["next_step"] == "quiz"


def test_status_is_participant_only(client, facilitator):
    login_as(facilitator)

    response = client.get(f"/sessions/{uuid4()}/status")

    assert response.status_code == 403


def test_status_for_missing_session(client, participant, monkeypatch):
    login_as(participant)
    monkeypatch.setattr(
        learning_service,
        "get_participant_status",
        AsyncMock(side_effect=NotFoundError("Session not found")),
    )

    response = client.get(f"/sessions/{uuid4()}/status")

    assert response.status_code == 404
