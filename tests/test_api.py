"""
test_api.py — HTTP surface tests.

The app is built around an in-memory lifecycle manager, so no database
is touched. Countdowns run on the TestClient's event loop thread and keep
ticking while the test thread sleeps.

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

import asyncio
import logging
import time

import pytest
from fastapi.testclient import TestClient

from sosguard.app.main import create_app
from sosguard.app.sos.lifecycle import AlertLifecycleManager
from sosguard.app.sos.models import Subject
from sosguard.app.sos.store import InMemoryAlertStore
from sosguard.app.sos.subjects import InMemorySubjectDirectory


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

GRACE = 0.3
TRIGGER = {"subject_id": "U1", "latitude": 12.97, "longitude": 77.59}


@pytest.fixture
def client():
    subjects = InMemorySubjectDirectory()
    asyncio.run(subjects.add_subject(Subject("U1", "Asha", "+919800000001", "4321")))
    manager = AlertLifecycleManager(
        InMemoryAlertStore(), subjects, grace_period_seconds=GRACE,
    )
    with TestClient(create_app(manager)) as c:
        yield c


def _trigger(client: TestClient) -> str:
    response = client.post("/api/v1/sos/trigger", json=TRIGGER)
    assert response.status_code == 201
    return response.json()["alert_id"]


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Trigger
# ═══════════════════════════════════════════════════════════════════════════

class TestTrigger:

    def test_creates_pending_alert(self, client):
        response = client.post("/api/v1/sos/trigger", json=TRIGGER)
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"
        assert body["subject_name"] == "Asha"
        assert body["location"] == {"lat": 12.97, "lng": 77.59}
        assert body["grace_period_seconds"] == GRACE
        assert "verification_code" not in body
        assert "X-Request-ID" in response.headers

    def test_unknown_subject(self, client):
        response = client.post(
            "/api/v1/sos/trigger", json={**TRIGGER, "subject_id": "U404"},
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "SUBJECT_NOT_FOUND"

    def test_out_of_range_location(self, client):
        response = client.post("/api/v1/sos/trigger", json={**TRIGGER, "latitude": 91})
        assert response.status_code == 422

    def test_missing_location(self, client):
        response = client.post("/api/v1/sos/trigger", json={"subject_id": "U1"})
        assert response.status_code == 422


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Verify
# ═══════════════════════════════════════════════════════════════════════════

class TestVerify:

    def test_wrong_then_right_code(self, client):
        alert_id = _trigger(client)

        wrong = client.post(f"/api/v1/sos/{alert_id}/verify", json={"code": "0000"})
        assert wrong.status_code == 200
        assert wrong.json()["outcome"] == "incorrect_code"
        assert wrong.json()["message"] == "Incorrect PIN! Try again."

        right = client.post(f"/api/v1/sos/{alert_id}/verify", json={"code": "4321"})
        assert right.status_code == 200
        assert right.json()["outcome"] == "cancelled"

        time.sleep(GRACE + 0.2)
        assert client.get(f"/api/v1/sos/{alert_id}").json()["status"] == "cancelled"
        assert client.get("/api/v1/sos/active").json() == []

    def test_unknown_alert(self, client):
        response = client.post("/api/v1/sos/SOS-NOPE/verify", json={"code": "4321"})
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ALERT_NOT_FOUND"

    def test_too_late_after_escalation(self, client):
        alert_id = _trigger(client)
        time.sleep(GRACE + 0.3)

        active = client.get("/api/v1/sos/active").json()
        assert [a["alert_id"] for a in active] == [alert_id]
        assert active[0]["status"] == "sent"

        response = client.post(f"/api/v1/sos/{alert_id}/verify", json={"code": "4321"})
        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "ALERT_ALREADY_RESOLVED"
        assert error["details"]["status"] == "sent"

    def test_second_cancel_conflicts(self, client):
        alert_id = _trigger(client)
        client.post(f"/api/v1/sos/{alert_id}/verify", json={"code": "4321"})
        response = client.post(f"/api/v1/sos/{alert_id}/verify", json={"code": "4321"})
        assert response.status_code == 409


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Read / health
# ═══════════════════════════════════════════════════════════════════════════

class TestReadAndHealth:

    def test_get_unknown_alert(self, client):
        assert client.get("/api/v1/sos/SOS-NOPE").status_code == 404

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        names = {c["name"] for c in body["components"]}
        assert names == {"database", "timer_registry", "escalation"}

    def test_ready_and_live(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}
        assert client.get("/health/ready").status_code == 200

    def test_request_id_echoed(self, client):
        response = client.get("/", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
        assert response.json()["service"]

    def test_access_log_skips_probes(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="sosguard.app.core.middleware"):
            client.get("/health/live")
            response = client.get("/api/v1/sos/SOS-NOPE")

        assert response.headers["X-Process-Time"].endswith("ms")
        lines = [r.getMessage() for r in caplog.records if r.name == "sosguard.app.core.middleware"]
        assert any("/api/v1/sos/SOS-NOPE → 404" in line for line in lines)
        assert not any("/health" in line for line in lines)
