from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from campaigns.api.deps import get_db, get_delivery_worker, get_session_factory, get_settings
from campaigns.api.main import app
from campaigns.config import QueueConfig, Settings
from campaigns.db.models import JobStatus
from campaigns.jobs.delivery import DeliveryWorker
from campaigns.jobs.queue import QueueService
from campaigns.jobs.tasks import ARM_FOLLOW_UPS
from campaigns.senders.base import SendResult
from campaigns.services.campaign_jobs import CampaignJobService

SECRET = "cron-s3cret"
AUTH = {"Authorization": f"Bearer {SECRET}"}


@pytest.fixture
def email_sender():
    sender = MagicMock()
    sender.send_email.return_value = SendResult.ok("em_1")
    return sender


@pytest.fixture
def api_settings():
    return Settings(cron_secret=SECRET, queue=QueueConfig(inter_run_delay_seconds=0))


@pytest.fixture
def client(session_factory, api_settings, email_sender):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    def override_worker():
        return DeliveryWorker(
            session_factory=session_factory,
            settings=api_settings,
            email_sender=email_sender,
            message_sender=MagicMock(),
            sleep=lambda _: None,
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_settings] = lambda: api_settings
    app.dependency_overrides[get_delivery_worker] = override_worker
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def pending_job(make_event, make_participant, make_template, make_job):
    event = make_event()
    make_participant(event)
    make_participant(event)
    return make_job(event, make_template(event))


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/health/db").status_code == 200


@pytest.mark.parametrize("method,path", [
    ("post", "/api/mail/scheduler"),
    ("get", "/api/mail/scheduler"),
    ("post", "/api/mail/worker"),
    ("post", "/api/message/worker"),
    ("post", "/api/queue/drain"),
    ("get", "/api/queue"),
])
def test_triggers_require_bearer_secret(client, method, path):
    assert getattr(client, method)(path).status_code == 401
    assert getattr(client, method)(path, headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert getattr(client, method)(path, headers=AUTH).status_code == 200


def test_triggers_open_without_configured_secret(client, api_settings):
    api_settings.cron_secret = None

    assert client.post("/api/mail/worker").status_code == 200


def test_run_job_sends_and_reports(client, pending_job, email_sender):
    resp = client.post("/api/mail/run-job", json={"jobId": pending_job.id})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["status"] == JobStatus.COMPLETED
    assert (body["processed"], body["successCount"], body["failCount"]) == (2, 2, 0)
    assert body["circuitBreakerTripped"] is False
    assert email_sender.send_email.call_count == 2

    status = client.get("/api/mail/run-job", params={"jobId": pending_job.id}).json()
    assert status["job"]["status"] == JobStatus.COMPLETED


def test_run_job_errors(client, pending_job):
    missing = client.post("/api/mail/run-job", json={"jobId": 9999})
    assert missing.status_code == 404
    assert missing.json() == {"success": False, "error": "Job 9999 not found", "code": "JOB_NOT_FOUND"}

    client.post("/api/mail/run-job", json={"jobId": pending_job.id})
    again = client.post("/api/mail/run-job", json={"jobId": pending_job.id})
    assert again.status_code == 409

    assert client.post("/api/mail/run-job", json={}).status_code == 422


def test_worker_idle_then_runs_oldest(client, pending_job):
    first = client.post("/api/mail/worker", headers=AUTH).json()
    second = client.post("/api/mail/worker", headers=AUTH).json()

    assert first["jobId"] == pending_job.id
    assert first["status"] == JobStatus.COMPLETED
    assert second["status"] == "idle"


def test_scheduler_sweep_payload(client):
    body = client.post("/api/mail/scheduler", headers=AUTH).json()

    assert body["success"] is True
    assert body["createdJobs"] == []
    assert "message" in body


def test_queue_drain_and_counts(client, session, pending_job):
    QueueService.enqueue(session, ARM_FOLLOW_UPS, {"job_id": pending_job.id})

    drained = client.post("/api/queue/drain", headers=AUTH, json={"maxJobs": 5}).json()
    counts = client.get("/api/queue", headers=AUTH).json()["counts"]

    assert drained["processed"] == 1
    assert drained["succeeded"] == 1
    assert counts["done"] == 1


def test_job_actions(client, session, pending_job):
    created = client.post(
        "/api/jobs",
        headers=AUTH,
        json={"eventId": pending_job.event_id, "templateId": pending_job.template_id, "channel": "sms"},
    )
    assert created.status_code == 201
    assert created.json()["totalCount"] == 2

    assert client.post(f"/api/jobs/{pending_job.id}/stop", headers=AUTH).status_code == 409
    failed = client.post(f"/api/jobs/{pending_job.id}/fail", headers=AUTH, json={"reason": "wrong template"})
    assert failed.json()["job"]["status"] == JobStatus.FAILED_MANUAL

    retry = client.post(f"/api/jobs/{pending_job.id}/retry", headers=AUTH, json={"mode": "full"})
    assert retry.status_code == 201
    assert CampaignJobService.get_job(session, retry.json()["jobId"]).source == "retry"


def test_segment_endpoints(client, make_event, make_participant):
    event = make_event()
    make_participant(event, company="Acme", is_vip=True)
    make_participant(event, company="Globex")
    make_participant(event, company="Acme")

    count = client.get(f"/api/events/{event.id}/segments/count", headers=AUTH, params={"rule": "vip_only"})
    companies = client.get(f"/api/events/{event.id}/companies", headers=AUTH)

    assert count.json()["count"] == 1
    assert companies.json()["companies"] == ["Acme", "Globex"]
