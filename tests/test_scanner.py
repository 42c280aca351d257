import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from bikemanager.models import EmailLog
from bikemanager.reminders import repository
from bikemanager.reminders.handler import MaintenanceReminderHandler
from bikemanager.reminders.queue import InMemoryReminderQueue
from bikemanager.reminders.queue.base import ReminderQueue, delay_seconds
from bikemanager.reminders.scanner import MaintenanceReminderScanner, days_until, reminder_fire_time
from bikemanager.reminders.schemas import JobHandle, QueueStats
from tests.conftest import SAO_PAULO, ManualClock, local, seed_maintenance


class RecordingQueue(ReminderQueue):
    backend_name = "recording"

    def __init__(self):
        self.jobs = []

    def enqueue(self, job, delay=None):
        self.jobs.append((job, delay_seconds(delay)))
        return JobHandle(id=f"job-{len(self.jobs)}", delay_seconds=delay_seconds(delay))

    def get_queue_stats(self):
        return QueueStats(waiting=len(self.jobs), total=len(self.jobs), backend=self.backend_name)

    def clean_queue(self):
        pass

    def close(self):
        pass


def drain(queue):
    for future in queue.process_due():
        future.result(timeout=5)


@pytest.fixture
def clock():
    return ManualClock(local(2026, 10, 19, 9, 0, 1))


@pytest.fixture
def recording_queue():
    return RecordingQueue()


@pytest.fixture
def scanner(session_factory, recording_queue, reminder_settings, clock):
    return MaintenanceReminderScanner(session_factory, recording_queue, reminder_settings, clock=clock)


def test_reminder_fire_time_is_local_send_hour_n_days_before():
    fire_at = reminder_fire_time(local(2026, 10, 29, 9), 7, SAO_PAULO, send_hour=9)

    assert fire_at == datetime(2026, 10, 22, 9, 0, tzinfo=SAO_PAULO)


def test_reminder_fire_time_uses_local_calendar_day():
    # 01:30 UTC on the 30th is still the 29th in Sao Paulo
    fire_at = reminder_fire_time(datetime.fromisoformat("2026-10-30T01:30:00+00:00"), 1, SAO_PAULO)

    assert fire_at == datetime(2026, 10, 28, 9, 0, tzinfo=SAO_PAULO)


def test_days_until_rounds_up_partial_days():
    now = local(2026, 10, 19, 9, 0, 1)

    assert days_until(local(2026, 10, 22), now) == 3
    assert days_until(local(2026, 10, 19, 18), now) == 1
    assert days_until(local(2026, 10, 19, 9, 0, 1), now) == 0


def test_future_reminder_is_scheduled_with_delay(db, scanner, recording_queue, clock):
    clock.now = local(2026, 10, 19, 8)
    seed_maintenance(db, local(2026, 10, 29), 7)

    result = scanner.scan()

    assert (result.sent, result.scheduled, result.skipped) == (0, 1, 0)
    [(job, delay)] = recording_queue.jobs
    assert delay == timedelta(days=3, hours=1).total_seconds()
    # Delayed jobs carry the lead time, which is what remains when they fire
    assert job.data.days_until == 7


def test_same_row_is_delayed_before_fire_time_and_immediate_at_it(db, scanner, recording_queue, clock):
    maintenance = seed_maintenance(db, local(2026, 10, 29), 7)
    clock.now = local(2026, 10, 19, 8)
    assert scanner.scan().scheduled == 1

    clock.now = local(2026, 10, 22, 9)
    result = scanner.scan()

    assert (result.sent, result.scheduled) == (1, 0)
    (_, early_delay), (job, delay) = recording_queue.jobs
    assert early_delay > 0
    assert delay == 0
    assert job.data.scheduled_maintenance_id == maintenance.id
    assert job.data.days_until == 7


def test_due_reminder_is_sent_immediately(db, scanner, recording_queue):
    maintenance = seed_maintenance(db, local(2026, 10, 22), 3)

    result = scanner.scan()

    assert (result.sent, result.scheduled, result.skipped) == (1, 0, 0)
    [(job, delay)] = recording_queue.jobs
    assert delay == 0
    assert job.data.days_until == 3
    assert job.data.scheduled_maintenance_id == maintenance.id
    assert job.data.user_id == maintenance.bike.owner_id
    assert job.data.bike_name == "Trek Domane"


def test_late_reminder_catches_up(db, scanner, recording_queue):
    # Reminder time passed three days ago; the service is still two days out
    seed_maintenance(db, local(2026, 10, 21), 5)

    result = scanner.scan()

    assert result.sent == 1
    assert recording_queue.jobs[0][0].data.days_until == 2


def test_existing_pending_or_sent_record_skips_row(db, scanner, recording_queue):
    pending = seed_maintenance(db, local(2026, 10, 22), 3)
    sent = seed_maintenance(db, local(2026, 10, 23), 4)
    failed = seed_maintenance(db, local(2026, 10, 24), 5)
    for maintenance, status in ((pending, "pending"), (sent, "sent"), (failed, "failed")):
        repository.create_delivery_record(
            db,
            user_id=maintenance.bike.owner_id,
            scheduled_maintenance_id=maintenance.id,
            recipient_email=maintenance.bike.owner.email,
            status=status,
        )

    result = scanner.scan()

    assert (result.sent, result.skipped) == (1, 2)
    assert [job.data.scheduled_maintenance_id for job, _ in recording_queue.jobs] == [failed.id]


def test_row_error_is_skipped_and_scan_continues(db, session_factory, reminder_settings, clock):
    seed_maintenance(db, local(2026, 10, 22), 3)
    seed_maintenance(db, local(2026, 10, 23), 4)

    class FlakyQueue(RecordingQueue):
        def enqueue(self, job, delay=None):
            if not getattr(self, "failed_once", False):
                self.failed_once = True
                raise ConnectionError("broker unreachable")
            return super().enqueue(job, delay)

    queue = FlakyQueue()
    result = MaintenanceReminderScanner(session_factory, queue, reminder_settings, clock=clock).scan()

    assert (result.sent, result.skipped) == (1, 1)
    assert len(queue.jobs) == 1


def test_scan_failure_is_logged_and_releases_lock(recording_queue, reminder_settings, clock):
    def broken_session():
        raise RuntimeError("database down")

    scanner = MaintenanceReminderScanner(broken_session, recording_queue, reminder_settings, clock=clock)

    result = scanner.scan()

    assert result.ran is True
    assert (result.sent, result.scheduled, result.skipped) == (0, 0, 0)
    assert scanner.is_scanning() is False


def test_overlapping_scan_is_skipped(db, session_factory, reminder_settings, clock):
    seed_maintenance(db, local(2026, 10, 22), 3)
    entered = threading.Event()
    release = threading.Event()

    class BlockingQueue(RecordingQueue):
        def enqueue(self, job, delay=None):
            entered.set()
            release.wait(timeout=5)
            return super().enqueue(job, delay)

    queue = BlockingQueue()
    scanner = MaintenanceReminderScanner(session_factory, queue, reminder_settings, clock=clock)
    results = []
    worker = threading.Thread(target=lambda: results.append(scanner.scan()))
    worker.start()
    assert entered.wait(timeout=5)

    assert scanner.is_scanning() is True
    skipped = scanner.scan()

    release.set()
    worker.join(timeout=5)
    assert skipped.ran is False
    assert results[0].sent == 1
    assert len(queue.jobs) == 1
    assert scanner.is_scanning() is False


def test_end_to_end_sends_exactly_one_reminder(db, session_factory, notifier, reminder_settings, clock):
    maintenance = seed_maintenance(db, local(2026, 10, 22), 3)
    queue = InMemoryReminderQueue(
        MaintenanceReminderHandler(session_factory, notifier), concurrency=1, autostart=False
    )
    scanner = MaintenanceReminderScanner(session_factory, queue, reminder_settings, clock=clock)
    try:
        first = scanner.scan()
        # A second scan before the job runs finds it outstanding in the queue
        second = scanner.scan()
        drain(queue)
        clock.advance(hours=1)
        third = scanner.scan()
        drain(queue)
    finally:
        queue.close()

    assert first.sent == 1
    assert second.skipped == 1
    assert third.skipped == 1
    assert len(notifier.calls) == 1
    call = notifier.calls[0]
    assert call["days_until"] == 3
    assert call["bike_name"] == "Trek Domane"
    assert call["service_description"] == "Chain and cassette replacement"

    db.expire_all()
    [log] = db.execute(select(EmailLog)).scalars().all()
    assert log.status == "sent"
    assert log.scheduled_maintenance_id == maintenance.id
    assert log.resend_id == "<msg-1@bikemanager.test>"


def test_start_respects_enabled_flag(session_factory, recording_queue, reminder_settings):
    scanner = MaintenanceReminderScanner(session_factory, recording_queue, reminder_settings)

    scanner.start()

    assert scanner.get_next_run_time() is None
    scanner.stop()


def test_start_schedules_next_run(session_factory, recording_queue, reminder_settings):
    enabled = reminder_settings.model_copy(update={"ENABLED": True})
    scanner = MaintenanceReminderScanner(session_factory, recording_queue, enabled)

    scanner.start()
    try:
        next_run = scanner.get_next_run_time()
        assert next_run is not None
        assert (next_run.hour, next_run.minute) == (9, 0)
    finally:
        scanner.stop()
    assert scanner.get_next_run_time() is None


def test_manual_trigger_runs_a_scan(db, scanner, recording_queue):
    seed_maintenance(db, local(2026, 10, 22), 3)

    result = scanner.trigger_manual_scan()

    assert result.sent == 1
    assert len(recording_queue.jobs) == 1


def test_completed_after_enqueue_sends_nothing(db, session_factory, notifier, reminder_settings, clock):
    maintenance = seed_maintenance(db, local(2026, 10, 22), 3)
    queue = InMemoryReminderQueue(
        MaintenanceReminderHandler(session_factory, notifier), concurrency=1, autostart=False
    )
    scanner = MaintenanceReminderScanner(session_factory, queue, reminder_settings, clock=clock)
    try:
        assert scanner.scan().sent == 1
        maintenance.is_completed = True
        db.add(maintenance)
        db.commit()
        drain(queue)
    finally:
        queue.close()

    assert notifier.calls == []
    assert db.execute(select(EmailLog)).scalars().all() == []
    assert queue.get_queue_stats().completed == 1
