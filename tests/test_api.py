"""Tests for the HTTP API."""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from api.main import create_app

from .conftest import FakeProvider


def wait_for(client, lead_id, status, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        body = client.get(f"/api/v1/leads/{lead_id}/status").json()
        if body["status"] == status:
            return body
        time.sleep(0.02)
    raise AssertionError(f"lead {lead_id} never reached {status}")


@pytest.fixture
def client(make_pipeline):
    """API client over a started pipeline with one fake provider."""
    pipeline = asyncio.run(make_pipeline({"openai": FakeProvider("openai", responses=["Your result"])}))
    with TestClient(create_app(pipeline)) as client:
        yield client


@pytest.fixture
def slow_client(make_pipeline):
    """API client whose provider takes a second to answer."""
    pipeline = asyncio.run(make_pipeline({"openai": FakeProvider("openai", delay=1.0)}))
    with TestClient(create_app(pipeline)) as client:
        yield client


# ── Leads ─────────────────────────────────────────────

class TestLeadEndpoints:
    def test_submit_and_fetch_result(self, client):
        response = client.post(
            "/api/v1/leads",
            json={"campaign_id": "business-readiness", "answers": {"q1": "business"}},
        )
        assert response.status_code == 202
        body = response.json()
        assert body["lead_score"] == 80
        assert body["lead_quality"] == "hot"

        status = wait_for(client, body["lead_id"], "completed")
        assert status["has_result"] is True

        result = client.get(f"/api/v1/leads/{body['lead_id']}/result")
        assert result.status_code == 200
        assert result.json()["ai_result"] == "Your result"
        assert result.json()["ai_provider"] == "openai"

    def test_result_not_ready(self, client):
        client.post("/api/v1/admin/queues/ai-processing/pause")
        lead_id = client.post(
            "/api/v1/leads",
            json={"campaign_id": "business-readiness", "answers": {"q1": "business"}},
        ).json()["lead_id"]

        response = client.get(f"/api/v1/leads/{lead_id}/result")
        assert response.status_code == 404
        assert response.json()["error"] == "ResultNotReady"
        assert response.json()["status"] == "queued_for_ai"

        client.post("/api/v1/admin/queues/ai-processing/resume")
        wait_for(client, lead_id, "completed")

    def test_unknown_campaign(self, client):
        response = client.post("/api/v1/leads", json={"campaign_id": "nope", "answers": {}})
        assert response.status_code == 404
        assert response.json()["error"] == "CampaignNotFound"

    def test_missing_required_answers(self, client):
        response = client.post(
            "/api/v1/leads", json={"campaign_id": "business-readiness", "answers": {"q2": "yes"}}
        )
        assert response.status_code == 422
        assert response.json()["missing"] == ["q1"]

    def test_request_validation(self, client):
        response = client.post("/api/v1/leads", json={"campaign_id": "", "answers": {}})
        assert response.status_code == 422

    def test_unknown_lead(self, client):
        assert client.get("/api/v1/leads/missing/status").status_code == 404
        assert client.get("/api/v1/leads/missing/result").status_code == 404

    def test_broken_campaign_fails_permanently(self, client):
        response = client.post("/api/v1/leads", json={"campaign_id": "broken", "answers": {"q1": "x"}})
        assert response.status_code == 202
        assert response.json()["status"] == "failed_permanent"

    def test_reprocess(self, client):
        lead_id = client.post(
            "/api/v1/leads",
            json={"campaign_id": "business-readiness", "answers": {"q1": "business"}},
        ).json()["lead_id"]
        wait_for(client, lead_id, "completed")

        response = client.post(f"/api/v1/leads/{lead_id}/reprocess")
        assert response.status_code == 202
        assert response.json()["has_result"] is False
        wait_for(client, lead_id, "completed")

    def test_reprocess_while_processing_conflicts(self, slow_client):
        lead_id = slow_client.post(
            "/api/v1/leads",
            json={"campaign_id": "business-readiness", "answers": {"q1": "business"}},
        ).json()["lead_id"]
        wait_for(slow_client, lead_id, "ai_processing")

        response = slow_client.post(f"/api/v1/leads/{lead_id}/reprocess")
        assert response.status_code == 409
        assert response.json()["error"] == "ReprocessSkipped"
        assert response.json()["status"] == "ai_processing"
        wait_for(slow_client, lead_id, "completed")


# ── Admin ─────────────────────────────────────────────

class TestAdminEndpoints:
    def test_queue_stats(self, client):
        body = client.get("/api/v1/admin/queues").json()
        assert set(body["queues"]) == {"ai-processing", "export", "notification", "analytics"}
        assert set(body["totals"]) == {"waiting", "active", "completed", "failed", "delayed"}

    def test_pause_and_resume(self, client):
        assert client.post("/api/v1/admin/queues/export/pause").json()["paused"] is True
        assert client.get("/api/v1/admin/queues/export").json()["paused"] is True
        client.post("/api/v1/admin/queues/export/resume")
        assert client.get("/api/v1/admin/queues/export").json()["paused"] is False

    def test_unknown_queue(self, client):
        assert client.get("/api/v1/admin/queues/nope").status_code == 404
        assert client.post("/api/v1/admin/queues/nope/pause").status_code == 404

    def test_providers(self, client):
        status = client.get("/api/v1/admin/providers").json()
        assert status["priority"] == ["openai"]
        assert status["providers"]["openai"]["circuit"] == "closed"

        validation = client.get("/api/v1/admin/providers/validate").json()
        assert validation == {"available": ["openai"], "configured": ["openai"]}

    def test_reset_provider_health(self, client):
        assert client.post("/api/v1/admin/providers/reset").status_code == 200
        assert client.post("/api/v1/admin/providers/reset", params={"provider": "watson"}).status_code == 404

    def test_clear_cache(self, client):
        lead_id = client.post(
            "/api/v1/leads",
            json={"campaign_id": "business-readiness", "answers": {"q1": "business"}},
        ).json()["lead_id"]
        wait_for(client, lead_id, "completed")
        assert client.post("/api/v1/admin/cache/clear").json()["removed"] == 1

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"
        detail = client.get("/api/v1/admin/health").json()
        assert detail["status"] == "healthy"
        assert detail["uptime_seconds"] >= 0
        assert "queues" in detail["services"]

    def test_root_names_the_service(self, client):
        body = client.get("/").json()
        assert body["service"] == "Quiz Lead Pipeline"
        assert body["status"] == "operational"
        assert client.get("/openapi.json").json()["info"]["title"] == "Quiz Lead Pipeline API"

    def test_metrics(self, client):
        client.get("/")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "quizlead_http_requests_total" in response.text


class TestNotReady:
    def test_requests_before_startup(self, make_pipeline):
        pipeline = asyncio.run(make_pipeline())
        client = TestClient(create_app(pipeline))
        response = client.post("/api/v1/leads", json={"campaign_id": "business-readiness", "answers": {}})
        assert response.status_code == 503
        assert client.get("/health").json()["status"] == "degraded"
