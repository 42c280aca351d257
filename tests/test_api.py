import pytest
from fastapi.testclient import TestClient

from bikemanager.reminders.handler import MaintenanceReminderHandler
from bikemanager.reminders.pipeline import ReminderPipeline
from bikemanager.reminders.queue import InMemoryReminderQueue
from bikemanager.reminders.scanner import MaintenanceReminderScanner
from bikemanager.reminders.service import create_app
from tests.conftest import ManualClock, local, seed_maintenance


@pytest.fixture
def pipeline(session_factory, notifier, reminder_settings):
    handler = MaintenanceReminderHandler(session_factory, notifier)
    queue = InMemoryReminderQueue(handler, concurrency=1, autostart=False)
    scanner = MaintenanceReminderScanner(
        session_factory, queue, reminder_settings, clock=ManualClock(local(2026, 10, 19, 9, 0, 1))
    )
    return ReminderPipeline(settings=reminder_settings, handler=handler, queue=queue, scanner=scanner)


@pytest.fixture
def client(pipeline, reminder_settings):
    app = create_app(reminder_settings, pipeline_factory=lambda: pipeline)
    with TestClient(app) as client:
        yield client


def test_health(client):
    response = client.get("/api/jobs/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_queue_stats(client, pipeline):
    response = client.get("/api/jobs/queue/stats")

    assert response.status_code == 200
    assert response.json() == {
        "waiting": 0,
        "active": 0,
        "completed": 0,
        "failed": 0,
        "total": 0,
        "backend": "memory",
    }


def test_cron_status_when_disabled(client):
    response = client.get("/api/jobs/cron/status")

    assert response.status_code == 200
    body = response.json()
    assert body["is_scanning"] is False
    assert body["enabled"] is False
    assert body["next_run"] is None
    assert body["cron_expression"] == "0 9 * * *"
    assert body["timezone"] == "America/Sao_Paulo"
    assert body["backend"] == "memory"


def test_trigger_runs_scan_in_background(client, db, pipeline):
    seed_maintenance(db, local(2026, 10, 22), 3)

    response = client.post("/api/jobs/cron/trigger")

    assert response.status_code == 202
    # TestClient runs background tasks before returning
    assert pipeline.queue.get_queue_stats().waiting == 1


def test_trigger_conflicts_with_running_scan(client, pipeline):
    pipeline.scanner._scan_lock.acquire()
    try:
        response = client.post("/api/jobs/cron/trigger")
        status = client.get("/api/jobs/cron/status").json()
    finally:
        pipeline.scanner._scan_lock.release()

    assert response.status_code == 409
    assert status["is_scanning"] is True


def test_clean_queue(client):
    response = client.post("/api/jobs/queue/clean")

    assert response.status_code == 200


def test_pipeline_closed_on_shutdown(pipeline, reminder_settings):
    app = create_app(reminder_settings, pipeline_factory=lambda: pipeline)
    with TestClient(app):
        pass

    with pytest.raises(RuntimeError):
        pipeline.queue.enqueue(None)
