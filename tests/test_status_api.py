"""
Status API Tests
================

Tests for the HTTP status endpoints.

The TestClient is used without its context manager so the lifespan (and
with it the device listener) is not started.
"""

import time

import pytest
from fastapi.testclient import TestClient

from telemetry_recorder import main
from telemetry_recorder.errors import StorageError
from telemetry_recorder.models.session import EndReason, SessionResult, SessionState
from telemetry_recorder.stream import SessionRegistry


@pytest.fixture
def registry(monkeypatch):
    registry = SessionRegistry(history_size=10)
    monkeypatch.setattr(main, "_registry", registry)
    monkeypatch.setattr(main, "_server", None)
    return registry


@pytest.fixture
def client(registry):
    return TestClient(main.app)


def finished(session_id: str, frames: int = 3, state=SessionState.COMPLETED) -> SessionResult:
    now = time.time()
    return SessionResult(
        session_id=session_id,
        peer="10.0.0.2:50000",
        output_dir=f"/recordings/{session_id}",
        state=state,
        end_reason=EndReason.END_OF_STREAM,
        frames=frames,
        commands=1,
        video_bytes=frames * 100,
        started_at=now - 1,
        finished_at=now,
    )


class TestStatusApi:
    """Tests for the status endpoints."""

    def test_root(self, client):
        body = client.get("/").json()

        assert body["service"] == "telemetry-recorder"
        assert body["protocol_variant"] == main.settings.protocol.variant

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_not_ready_without_listener(self, client):
        response = client.get("/ready")

        assert response.status_code == 503
        assert response.json()["listening"] is False

    def test_metrics(self, client, registry):
        registry.complete(finished("a", frames=3))
        registry.complete(finished("b", frames=5, state=SessionState.FAILED))

        body = client.get("/metrics").json()

        assert body["sessions_completed"] == 1
        assert body["sessions_failed"] == 1
        assert body["frames_total"] == 8
        assert body["video_bytes_total"] == 800

    def test_sessions_newest_first(self, client, registry):
        registry.complete(finished("a"))
        registry.complete(finished("b"))

        body = client.get("/sessions").json()

        assert body["active"] == []
        assert [s["session_id"] for s in body["recent"]] == ["b", "a"]
        assert body["recent"][0]["state"] == "COMPLETED"
        assert body["recent"][0]["end_reason"] == "END_OF_STREAM"

    def test_sessions_limit(self, client, registry):
        for name in "abcde":
            registry.complete(finished(name))

        body = client.get("/sessions", params={"limit": 2}).json()
        assert [s["session_id"] for s in body["recent"]] == ["e", "d"]

    def test_session_detail(self, client, registry):
        registry.reject("rejected-1", StorageError("disk full"), time.time(), "10.0.0.3:4000")

        body = client.get("/sessions/rejected-1").json()

        assert body["state"] == "FAILED"
        assert body["errors"][0]["kind"] == "StorageError"
        assert body["errors"][0]["message"] == "disk full"

    def test_unknown_session(self, client):
        response = client.get("/sessions/nope")
        assert response.status_code == 404


class TestSessionRegistry:
    """Tests for SessionRegistry bookkeeping."""

    def test_history_is_bounded(self):
        registry = SessionRegistry(history_size=3)
        for name in "abcde":
            registry.complete(finished(name))

        assert [r.session_id for r in registry.recent()] == ["e", "d", "c"]
        assert registry.metrics()["sessions_completed"] == 5

    def test_rejected_sessions_counted(self):
        registry = SessionRegistry()
        registry.reject("x", StorageError("exists"), time.time())

        metrics = registry.metrics()
        assert metrics["sessions_rejected"] == 1
        assert metrics["sessions_accepted"] == 0

    def test_invalid_history_size(self):
        with pytest.raises(ValueError):
            SessionRegistry(history_size=0)
