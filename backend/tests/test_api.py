import json

import pytest
from fastapi.testclient import TestClient

from conftest import FakeReportStore, FakeTokenClient, FakeTransport
from interview_lab.api.deps import Services, set_services
from interview_lab.api.webhook import webhook_secret
from interview_lab.coaching import CoachingCueEngine, CoachRatePolicy
from interview_lab.finalization import SessionFinalizer
from interview_lab.ingestion import WebhookLedger
from interview_lab.live.credentials import CredentialService, LocalSessionContextSource
from interview_lab.main import app


SECRET = "s3cret"


def _services(store=None, attempts=3, persona=None):
    source = LocalSessionContextSource()
    for sid in ("s1", "ws1"):
        source.register(sid, persona or {"name": "Dana", "age": 34}, {"title": "Shift scheduling"})
    ledger = WebhookLedger()
    return Services(
        context_source=source,
        credentials=CredentialService(source, token_client=FakeTokenClient(), voice_table={}),
        finalizer=SessionFinalizer(store or FakeReportStore(), ledger=ledger, attempts=attempts, backoff_sec=0),
        ledger=ledger,
        coach=CoachingCueEngine(advisor=None, debounce_ms=0, cooldown_ms=0),
        advisor=None,
        rate_policy=CoachRatePolicy(),
        transport_factory=FakeTransport,
    )


@pytest.fixture
def services():
    current = _services()
    set_services(current)
    app.dependency_overrides[webhook_secret] = lambda: SECRET
    yield current
    app.dependency_overrides.clear()
    set_services(None)


@pytest.fixture
def client(services):
    return TestClient(app)


def _post_webhook(client, payload, signature=SECRET):
    headers = {"content-type": "application/json"}
    if signature is not None:
        headers["x-hume-signature"] = signature
    body = payload if isinstance(payload, str) else json.dumps(payload)
    return client.post("/api/hume/webhook", content=body, headers=headers)


def _receive_until(ws, kind, limit=20):
    for _ in range(limit):
        message = ws.receive_json()
        if message.get("type") == kind:
            return message
    raise AssertionError(f"no {kind} message received")


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "interview-lab"}


def test_metrics_snapshot(client):
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "live_sessions_registered" in response.json()


def test_webhook_rejects_missing_or_wrong_signature(client):
    payload = {"type": "transcript", "id": "evt-1", "session_id": "s1", "text": "hello"}

    assert _post_webhook(client, payload, signature=None).status_code == 401
    assert _post_webhook(client, payload, signature="wrong").status_code == 401


def test_webhook_rejects_bad_bodies(client):
    assert _post_webhook(client, "{not json").status_code == 400
    assert _post_webhook(client, [1, 2]).status_code == 400


def test_webhook_dedups_by_event_id(client, services):
    payload = {"type": "transcript", "id": "evt-1", "session_id": "s1", "role": "user", "text": "hello"}

    first = _post_webhook(client, payload)
    second = _post_webhook(client, payload)

    assert first.status_code == 200
    assert first.json() == {"ok": True, "status": "turn_recorded", "session_id": "s1"}
    assert second.json()["status"] == "duplicate"
    assert len(services.ledger.turns("s1")) == 1


def test_webhook_accepts_non_finite_timestamp(client, services):
    body = '{"type": "transcript", "id": "evt-inf", "session_id": "s1", "text": "hello", "timestamp": Infinity}'

    response = _post_webhook(client, body)

    assert response.status_code == 200
    assert response.json()["status"] == "turn_recorded"
    assert len(services.ledger.turns("s1")) == 1


def test_session_context_roundtrip(client):
    created = client.post("/api/sessions/new-1/context", json={"persona": {"name": "Sam", "age": 70}})
    fetched = client.get("/api/sessions/new-1/context")

    assert created.status_code == 200
    assert fetched.status_code == 200
    body = fetched.json()
    assert body["persona_name"] == "Sam"
    assert body["knobs"]["age_bucket"] == "senior"
    assert body["access_token"].startswith("token-")
    assert client.get("/api/sessions/missing/context").status_code == 404


def test_report_missing_is_404(client):
    assert client.get("/api/sessions/nope/report").status_code == 404
    assert client.get("/api/sessions/nope/analytics").status_code == 404


def test_stop_then_report_and_analytics(client, services):
    turns = [
        {"role": "interviewer", "text": "How do you plan shifts?", "at": 1_000},
        {"role": "persona", "text": "On paper.", "at": 4_000},
        {"role": "interviewer", "text": "Do you like apps?", "at": 9_000},
    ]

    stopped = client.post(
        "/api/sessions/s1/stop",
        json={"meta": {"startedAt": 0, "stoppedAt": 60_000}, "turns": turns},
    )
    report = client.get("/api/sessions/s1/report")
    analytics = client.get("/api/sessions/s1/analytics")

    assert stopped.status_code == 200
    assert stopped.json()["ok"] is True
    assert report.json()["meta"]["id"] == "s1"
    assert report.json()["meta"]["durationMs"] == 60_000
    assert len(report.json()["turns"]) == 3
    assert analytics.json()["turn_count"] == 3
    assert len(analytics.json()["summary"]) <= 240
    assert analytics.json()["summary"].startswith("Duration 01:00;")


def test_stop_failure_returns_503_then_retry_succeeds():
    current = _services(store=FakeReportStore(fail_times=1), attempts=1)
    set_services(current)
    try:
        client = TestClient(app)
        stopped = client.post("/api/sessions/s1/stop", json={"turns": [{"role": "interviewer", "text": "Hi there all"}]})
        retried = client.post("/api/sessions/s1/stop/retry")

        assert stopped.status_code == 503
        assert stopped.json()["retryable"] is True
        assert retried.status_code == 200
        assert retried.json()["ok"] is True
        assert client.post("/api/sessions/unknown/stop/retry").status_code == 404
    finally:
        set_services(None)


def test_coach_endpoint_filters_greetings_and_rate_limits(client):
    greeting = client.post("/api/coach", json={"question": "hello"})
    first = client.post(
        "/api/coach",
        json={"question": "Which school did you attend?", "lastAssistTurns": ["I studied nearby."]},
        headers={"x-session-id": "s1"},
    )
    second = client.post("/api/coach", json={"question": "What is your salary?"}, headers={"x-session-id": "s1"})

    assert greeting.json() == {"hints": []}
    assert first.json()["hints"][0]["label"] == "boundaries"
    assert first.json()["hints"][0]["source"] == "heuristic"
    assert second.json() == {"hints": []}


def test_live_socket_ping(client):
    with client.websocket_connect("/ws/live/ping-1") as ws:
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}


def test_live_socket_reports_levels_for_microphone_frames(client):
    with client.websocket_connect("/ws/live/levels-1") as ws:
        ws.send_bytes(b"\x00\x00" * 100)
        levels = _receive_until(ws, "levels")

    assert set(levels) == {"type", "mic", "persona"}


def test_live_socket_rejects_second_connection(client):
    with client.websocket_connect("/ws/live/dup-1") as first:
        first.send_json({"type": "ping"})
        assert first.receive_json() == {"type": "pong"}
        with client.websocket_connect("/ws/live/dup-1") as second:
            message = second.receive_json()
            assert message["type"] == "error"


def test_live_socket_session_flow(client, services):
    with client.websocket_connect("/ws/live/ws1") as ws:
        ws.send_json({"type": "start"})
        session = _receive_until(ws, "session")
        ws.send_json({"type": "text", "text": "How do you plan shifts?"})
        turn = _receive_until(ws, "turn")
        ws.send_json({"type": "stop", "meta": {"mode": "text"}})
        stopped = _receive_until(ws, "stopped")

    assert session["persona"]["name"] == "Dana"
    assert turn["turn"]["text"] == "How do you plan shifts?"
    assert stopped["result"]["ok"] is True
    report = client.get("/api/sessions/ws1/report").json()
    assert report["meta"]["mode"] == "text"
    assert [item["text"] for item in report["turns"]] == ["How do you plan shifts?"]
