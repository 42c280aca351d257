from functools import lru_cache
import logging
from typing import Optional

from celery import shared_task

from bikemanager.db.session import SessionLocal
from .config import settings
from .handler import MaintenanceReminderHandler
from .notifier import ReminderNotifier
from .queue.factory import create_redis_queue, ledger_from_settings, retry_policy_from_settings
from .queue.redis_queue import (
    SEND_TASK_NAME,
    RedisQueueLedger,
    RetryLater,
    connect_redis,
    defer_if_early,
    execute_reminder_job,
)
from .scanner import MaintenanceReminderScanner
from .schemas import HandlerOutcome

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_handler() -> MaintenanceReminderHandler:
    return MaintenanceReminderHandler(SessionLocal, ReminderNotifier())


@lru_cache(maxsize=1)
def get_ledger() -> RedisQueueLedger:
    return ledger_from_settings(settings, connect_redis(settings.REDIS_URL))


@shared_task(bind=True, name=SEND_TASK_NAME)
def send_maintenance_reminder_task(self, payload: dict, run_at: Optional[float] = None) -> str:
    from .celery_app import celery_app

    if defer_if_early(
        celery_app,
        payload,
        job_id=self.request.id,
        run_at=run_at,
        queue_name=settings.QUEUE_NAME,
        max_countdown=settings.max_countdown_seconds,
    ):
        return HandlerOutcome.DEFERRED.value

    policy = retry_policy_from_settings(settings)
    try:
        outcome = execute_reminder_job(
            payload,
            job_id=self.request.id,
            attempt=self.request.retries + 1,
            handler=get_handler(),
            ledger=get_ledger(),
            policy=policy,
        )
    except RetryLater as e:
        raise self.retry(exc=e.cause, countdown=e.countdown, max_retries=policy.max_attempts - 1)
    return outcome.value


@shared_task(name="reminders.scan_maintenance")
def scan_maintenance_task() -> dict:
    """Beat-driven scan; enqueues onto the durable queue."""
    from .celery_app import celery_app

    queue = create_redis_queue(settings, app=celery_app)
    try:
        result = MaintenanceReminderScanner(SessionLocal, queue, settings).scan()
    finally:
        queue.ledger.redis.close()
    return result.model_dump(mode="json")
