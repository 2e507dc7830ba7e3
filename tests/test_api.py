from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from spiral_gate.app import create_app
from spiral_gate.errors import CompletionError


@pytest.fixture
def api(make_engine, fake_client) -> TestClient:
    return TestClient(create_app(make_engine(fake_client)))


def test_health(api) -> None:
    response = api.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_step_runs_turn(api) -> None:
    response = api.post("/api/step", json={"sessionId": "s1", "userText": "Help me plan the release"})

    assert response.status_code == 200
    body = response.json()
    assert body["assistantText"] == "Here is the plan."
    assert body["debug"]["dim"] == "GOAL"
    assert body["debug"]["state"] == pytest.approx(0.3)
    assert body["debug"]["probeText_original"].startswith("DIM: GOAL")


@pytest.mark.parametrize(
    "payload",
    [{}, {"sessionId": "s1"}, {"userText": "hello"}, {"sessionId": "s1", "userText": "  "}, [1, 2]],
)
def test_step_rejects_missing_input(api, payload) -> None:
    response = api.post("/api/step", json=payload)

    assert response.status_code == 400
    assert response.json() == {"error": "Missing sessionId or userText"}


def test_step_reports_main_failure(make_engine, make_client) -> None:
    api = TestClient(create_app(make_engine(make_client(main=CompletionError("upstream down")))))

    response = api.post("/api/step", json={"sessionId": "s1", "userText": "hello"})

    assert response.status_code == 500
    assert response.json() == {"error": "upstream down"}
    assert api.get("/sessions/s1").json()["turn"] == 0


def test_session_inspection_and_deletion(api) -> None:
    api.post("/api/step", json={"sessionId": "s1", "userText": "Help me plan the release"})

    summary = api.get("/sessions/s1").json()
    assert summary["sessionId"] == "s1"
    assert summary["turn"] == 1
    assert summary["history_messages"] == 2
    assert summary["last_pulse_turn"] is None
    assert summary["fragments"] == 1

    assert api.delete("/sessions/s1").json() == {"status": "success"}
    assert api.get("/sessions/s1").status_code == 404
    assert api.delete("/sessions/s1").status_code == 404


@pytest.mark.parametrize("value, expected", [(42, "42"), (2.5, "2.5"), (True, "true")])
def test_step_accepts_scalar_user_text(api, value, expected) -> None:
    response = api.post("/api/step", json={"sessionId": "s1", "userText": value})

    assert response.status_code == 200
    session = api.app.state.engine.store.get("s1")
    assert session.history[0].content == expected


def test_step_error_bodies_are_documented(api) -> None:
    responses = api.get("/openapi.json").json()["paths"]["/api/step"]["post"]["responses"]

    for status in ("400", "500"):
        schema = responses[status]["content"]["application/json"]["schema"]
        assert schema == {"$ref": "#/components/schemas/ErrorResponse"}
