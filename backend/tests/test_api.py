import pytest
from fastapi.testclient import TestClient
from jose import jwt

from codepair.core import config
from codepair.main import create_app
from codepair.questions.store import QuestionStore
from codepair.services.container import ServiceContainer
from codepair.session.state_store import LocalSessionStateStore

INTERVIEWER = "interviewer-1"
CANDIDATE = "candidate-1"

STARTER = {"javascript": "// js", "python": "# py", "java": "// java", "cpp": "// cpp"}
REVIEW = {
    "rating": 5,
    "feedback": "Great collaboration.",
    "overall_assessment": "Hire.",
}


@pytest.fixture
def client():
    app = create_app(ServiceContainer(store=LocalSessionStateStore(), question_store=QuestionStore()))
    with TestClient(app) as test_client:
        yield test_client


def _create_session(client, auth_headers, **overrides) -> dict:
    body = {
        "title": "Pairing round",
        "start_time": 1_700_000_000_000,
        "candidate_id": CANDIDATE,
        "interviewer_ids": [INTERVIEWER],
    }
    body.update(overrides)
    response = client.post("/api/interviews", json=body, headers=auth_headers(INTERVIEWER))
    assert response.status_code == 201, response.text
    return response.json()


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_missing_token_is_rejected_with_error_envelope(client):
    response = client.get("/api/interviews")
    assert response.status_code == 401
    assert response.json() == {"error": "User is not authenticated", "details": {}}


def test_interview_lifecycle_over_http(client, auth_headers):
    session = _create_session(client, auth_headers)
    session_id = session["id"]
    assert session["status"] == "scheduled"

    by_call = client.get(f"/api/interviews/by-call/{session['stream_call_id']}", headers=auth_headers(CANDIDATE))
    assert by_call.json()["id"] == session_id

    live = client.patch(f"/api/interviews/{session_id}/status", json={"status": "live"}, headers=auth_headers(CANDIDATE))
    assert live.json()["status"] == "live"

    selected = client.put(
        f"/api/interviews/{session_id}/question",
        json={"question_id": "default-two-sum"},
        headers=auth_headers(INTERVIEWER),
    )
    assert selected.json()["current_code"].startswith("function twoSum")

    coded = client.put(
        f"/api/interviews/{session_id}/code",
        json={"code": "function twoSum() { return [0, 1] }"},
        headers=auth_headers(CANDIDATE),
    )
    assert coded.json()["current_code"] == "function twoSum() { return [0, 1] }"

    reviewed = client.post(
        f"/api/interviews/{session_id}/review",
        json={"review": REVIEW, "result": "pass"},
        headers=auth_headers(INTERVIEWER),
    )
    assert reviewed.status_code == 200, reviewed.text
    body = reviewed.json()
    assert body["status"] == "completed"
    assert body["result"] == "pass"
    assert body["review"]["rating"] == 5
    assert body["end_time"] is not None

    completed = client.get("/api/interviews/completed", headers=auth_headers(INTERVIEWER))
    assert [item["id"] for item in completed.json()] == [session_id]


def test_guest_cannot_select_question(client, auth_headers):
    session = _create_session(client, auth_headers, status="live")

    response = client.put(
        f"/api/interviews/{session['id']}/question",
        json={"question_id": "default-two-sum"},
        headers=auth_headers(CANDIDATE),
    )
    assert response.status_code == 403
    assert response.json()["error"] == "Only the interviewer can select the question"


def test_backwards_transition_is_conflict(client, auth_headers):
    session = _create_session(client, auth_headers, status="live")
    client.patch(f"/api/interviews/{session['id']}/status", json={"status": "completed"}, headers=auth_headers(INTERVIEWER))

    response = client.patch(
        f"/api/interviews/{session['id']}/status",
        json={"status": "live"},
        headers=auth_headers(INTERVIEWER),
    )
    assert response.status_code == 409
    assert response.json()["details"] == {"current": "completed", "requested": "live"}


def test_review_rating_out_of_range_is_rejected(client, auth_headers):
    session = _create_session(client, auth_headers, status="live")
    response = client.post(
        f"/api/interviews/{session['id']}/review",
        json={"review": {**REVIEW, "rating": 0}, "result": "pass"},
        headers=auth_headers(INTERVIEWER),
    )
    assert response.status_code == 422


def test_unknown_session_is_not_found(client, auth_headers):
    response = client.get("/api/interviews/missing", headers=auth_headers(INTERVIEWER))
    assert response.status_code == 404
    assert response.json()["details"] == {"resource": "Session", "id": "missing"}


def test_session_sweep_endpoint(client, auth_headers):
    _create_session(client, auth_headers, start_time=0)
    response = client.post("/api/interviews/sweep-missed", headers=auth_headers(INTERVIEWER))
    assert response.json() == {"marked_missed": 1}

    missed = client.get("/api/interviews/status/missed", headers=auth_headers(INTERVIEWER))
    assert len(missed.json()) == 1


def test_question_crud_over_http(client, auth_headers):
    body = {"title": "Anagrams", "description": "Group anagrams.", "starter_code": STARTER}

    created = client.post("/api/questions", json=body, headers=auth_headers(INTERVIEWER))
    assert created.status_code == 201
    question_id = created.json()["id"]

    listed = client.get("/api/questions", headers=auth_headers(INTERVIEWER))
    assert [item["id"] for item in listed.json()] == [question_id]

    updated = client.put(f"/api/questions/{question_id}", json={**body, "title": "Group anagrams"}, headers=auth_headers(INTERVIEWER))
    assert updated.json()["title"] == "Group anagrams"

    forbidden = client.delete("/api/questions/default-two-sum", headers=auth_headers(INTERVIEWER))
    assert forbidden.status_code == 403

    deleted = client.delete(f"/api/questions/{question_id}", headers=auth_headers(INTERVIEWER))
    assert deleted.status_code == 204
    assert client.get(f"/api/questions/{question_id}", headers=auth_headers(INTERVIEWER)).status_code == 404


def test_question_starter_code_requires_every_language(client, auth_headers):
    body = {"title": "x", "description": "y", "starter_code": {"javascript": "", "python": ""}}
    response = client.post("/api/questions", json=body, headers=auth_headers(INTERVIEWER))
    assert response.status_code == 422


def test_session_questions_endpoint(client, auth_headers):
    session = _create_session(client, auth_headers)
    response = client.get(f"/api/interviews/{session['id']}/questions", headers=auth_headers(CANDIDATE))
    assert [item["id"] for item in response.json()] == ["default-two-sum", "default-reverse-string"]


def test_metrics_requires_auth(client, auth_headers):
    assert client.get("/api/system/metrics").status_code == 401
    response = client.get("/api/system/metrics", headers=auth_headers(INTERVIEWER))
    assert response.status_code == 200
    assert "canonical_patches_total" in response.json()
    assert response.json()["store"] == "LocalSessionStateStore"


def test_signed_tokens_are_verified_when_secret_configured(client, monkeypatch):
    monkeypatch.setattr(config, "IDENTITY_JWT_SECRET", "test-secret")
    good = jwt.encode({"sub": INTERVIEWER}, "test-secret", algorithm="HS256")
    bad = jwt.encode({"sub": INTERVIEWER}, "other-secret", algorithm="HS256")

    assert client.get("/api/interviews", headers={"Authorization": f"Bearer {good}"}).status_code == 200
    assert client.get("/api/interviews", headers={"Authorization": f"Bearer {bad}"}).status_code == 401


def test_unverified_tokens_rejected_without_dev_flag(client, monkeypatch, auth_headers):
    monkeypatch.setattr(config, "ALLOW_UNVERIFIED_JWT_DEV", False)
    assert client.get("/api/interviews", headers=auth_headers(INTERVIEWER)).status_code == 401


def test_rate_limiter_blocks_after_budget(monkeypatch, auth_headers):
    monkeypatch.setattr(config, "RATE_LIMIT_ENABLED", True)
    monkeypatch.setattr(config, "RATE_LIMIT_MAX_REQUESTS", 2)
    app = create_app(ServiceContainer(store=LocalSessionStateStore(), question_store=QuestionStore()))

    with TestClient(app) as limited:
        statuses = [limited.get("/api/interviews", headers=auth_headers(INTERVIEWER)).status_code for _ in range(3)]

    assert statuses == [200, 200, 429]
