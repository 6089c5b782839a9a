"""
Tests for the FastAPI surface: auth, routing and error mapping.
"""

import asyncio
import random

import pytest
from fastapi.testclient import TestClient

from honeypot import config
from honeypot.agent_controller import AgentController
from honeypot.callback_client import ReportOutcome
from honeypot.engagement import EngagementController
from honeypot.evidence_store import EvidenceStore
from honeypot.main import create_app
from honeypot.scam_detector import ScamDetector
from honeypot.session_store import InMemorySessionStore

API_KEY = "test-key"
HEADERS = {"x-api-key": API_KEY}


def body(text, session_id="api-1", **extra):
    payload = {
        "sessionId": session_id,
        "message": {"sender": "scammer", "text": text, "timestamp": 1700000000000},
        "conversationHistory": [],
        "metadata": {"channel": "SMS", "language": "English", "locale": "IN"},
    }
    payload.update(extra)
    return payload


@pytest.fixture
def controller(tmp_path):
    return EngagementController(
        store=InMemorySessionStore(),
        detector=ScamDetector(),
        orchestrator=AgentController([], rng=random.Random(3)),
        evidence_store=EvidenceStore(str(tmp_path / "evidence.json")),
        report_client=None,
        enable_pacing=False,
    )


@pytest.fixture
def client(controller, monkeypatch):
    monkeypatch.setattr(config, "API_KEY", API_KEY)
    return TestClient(create_app(controller))


class TestAuth:

    def test_wrong_key_is_rejected(self, client):
        response = client.post("/api/honeypot", json=body("hello"), headers={"x-api-key": "nope"})
        assert response.status_code == 403

    def test_missing_key_is_rejected(self, client):
        response = client.post("/api/honeypot", json=body("hello"))
        assert response.status_code in (400, 403)

    def test_health_is_open(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestHoneypotEndpoint:

    def test_scam_message_gets_reply(self, client):
        response = client.post(
            "/api/honeypot",
            json=body("URGENT your KYC is pending, verify immediately or account will be blocked"),
            headers=HEADERS,
        )
        data = response.json()
        assert response.status_code == 200
        assert data["status"] == "success"
        assert data["scamDetected"] is True
        assert data["reply"]
        assert data["engagementMetrics"]["totalMessages"] == 2

    def test_root_route_is_an_alias(self, client):
        response = client.post("/", json=body("see you at lunch tomorrow"), headers=HEADERS)
        data = response.json()
        assert response.status_code == 200
        assert data["scamDetected"] is False
        assert data["reply"] is None

    def test_intel_stops_engagement(self, client):
        response = client.post(
            "/api/honeypot",
            json=body("Your account is blocked! Send OTP to 9876543210 or visit http://bank-verify.xyz"),
            headers=HEADERS,
        )
        data = response.json()
        assert data["reply"] is None
        assert data["extractedIntelligence"]["phoneNumbers"] == ["9876543210"]
        assert data["extractedIntelligence"]["phishingLinks"] == ["http://bank-verify.xyz"]

    def test_missing_message_is_400(self, client):
        payload = body("x")
        del payload["message"]
        response = client.post("/api/honeypot", json=payload, headers=HEADERS)
        assert response.status_code == 400

    def test_blank_session_id_is_400(self, client):
        response = client.post("/api/honeypot", json=body("hello", session_id=""), headers=HEADERS)
        assert response.status_code == 400

    def test_malformed_message_is_400(self, client):
        response = client.post(
            "/api/honeypot",
            json=body("x", message={"sender": "scammer"}),
            headers=HEADERS,
        )
        assert response.status_code == 400

    def test_internal_fault_is_500_with_safe_message(self, controller, client):
        class Broken(AgentController):
            async def generate_response(self, session, inbound):
                raise RuntimeError("secret stack detail")

        controller.orchestrator = Broken()
        response = client.post(
            "/api/honeypot",
            json=body("URGENT your KYC is pending, verify immediately or account will be blocked"),
            headers=HEADERS,
        )
        assert response.status_code == 500
        assert "secret" not in response.text
        assert response.json()["detail"] == "Internal processing error"


class TestDebugEndpoints:

    def test_unknown_session_is_404(self, client):
        assert client.get("/session/nope", headers=HEADERS).status_code == 404

    def test_session_snapshot(self, client):
        client.post("/api/honeypot", json=body("hello there", session_id="dbg"), headers=HEADERS)
        response = client.get("/session/dbg", headers=HEADERS)
        data = response.json()
        assert response.status_code == 200
        assert data["sessionId"] == "dbg"
        assert data["state"] == "FRESH"
        assert data["messageCount"] == 1

    def test_evidence(self, client):
        client.post("/api/honeypot", json=body("pay to fraud@ybl now", session_id="ev"), headers=HEADERS)
        evidence = client.get("/evidence", headers=HEADERS).json()
        assert "ev" in evidence["sessions"]
        assert evidence["masterIntel"]["upiIds"] == ["fraud@ybl"]


class SlowReportClient:

    def __init__(self):
        self.delivered = []

    async def report(self, session_id, payload):
        await asyncio.sleep(0.2)
        self.delivered.append(session_id)
        return ReportOutcome(success=True, attempts=1)


class TestShutdown:

    def test_pending_reports_are_drained(self, controller, monkeypatch):
        monkeypatch.setattr(config, "API_KEY", API_KEY)
        reporter = SlowReportClient()
        controller.report_client = reporter

        with TestClient(create_app(controller)) as client:
            response = client.post(
                "/api/honeypot",
                json=body("Your account is blocked! Send OTP to 9876543210 or visit http://bank-verify.xyz", session_id="bye"),
                headers=HEADERS,
            )
            assert response.json()["reply"] is None

        assert reporter.delivered == ["bye"]
