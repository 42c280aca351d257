import logging
from datetime import timedelta
from typing import Optional

import redis
from celery import Celery

from ..config import ReminderSettings
from ..exceptions import QueueBackendUnavailable
from .base import HistoryLimits, JobHandler, ReminderQueue, RetryPolicy
from .memory import InMemoryReminderQueue
from .redis_queue import CeleryReminderQueue, RedisQueueLedger, connect_redis

logger = logging.getLogger(__name__)


def retry_policy_from_settings(settings: ReminderSettings) -> RetryPolicy:
    return RetryPolicy(max_attempts=settings.MAX_ATTEMPTS, base_delay_seconds=settings.BACKOFF_BASE_SECONDS)


def history_from_settings(settings: ReminderSettings) -> HistoryLimits:
    return HistoryLimits(
        keep_completed=settings.KEEP_COMPLETED,
        keep_failed=settings.KEEP_FAILED,
        completed_retention=timedelta(hours=settings.COMPLETED_RETENTION_HOURS),
        failed_retention=timedelta(days=settings.FAILED_RETENTION_DAYS),
    )


def ledger_from_settings(settings: ReminderSettings, client: redis.Redis) -> RedisQueueLedger:
    return RedisQueueLedger(
        client,
        settings.QUEUE_NAME,
        history_from_settings(settings),
        # A crashed attempt is redelivered after the visibility timeout, once its lock has lapsed
        execution_ttl=timedelta(seconds=settings.VISIBILITY_TIMEOUT_SECONDS),
    )


def create_redis_queue(settings: ReminderSettings, app: Optional[Celery] = None) -> CeleryReminderQueue:
    client = connect_redis(settings.REDIS_URL)
    if app is None:
        from ..celery_app import celery_app as app
    return CeleryReminderQueue(
        app,
        ledger_from_settings(settings, client),
        queue_name=settings.QUEUE_NAME,
        retry_policy=retry_policy_from_settings(settings),
        claim_slack=timedelta(seconds=settings.VISIBILITY_TIMEOUT_SECONDS),
        max_countdown=settings.max_countdown_seconds,
    )


def create_memory_queue(settings: ReminderSettings, handler: JobHandler, **kwargs) -> InMemoryReminderQueue:
    return InMemoryReminderQueue(
        handler,
        concurrency=settings.WORKER_CONCURRENCY,
        retry_policy=retry_policy_from_settings(settings),
        history=history_from_settings(settings),
        poll_interval=settings.POLL_INTERVAL_SECONDS,
        **kwargs,
    )


def create_reminder_queue(settings: ReminderSettings, handler: JobHandler, **memory_kwargs) -> ReminderQueue:
    """
    Select the queue backend once at startup.
    - memory: always the in-process queue
    - redis: the durable queue, or QueueBackendUnavailable
    - auto: the durable queue when Redis answers, otherwise fall back to memory
    """
    backend = settings.QUEUE_BACKEND
    if backend == "memory":
        logger.info("🔧 [Queue] Using in-memory reminder queue (configured)")
        return create_memory_queue(settings, handler, **memory_kwargs)

    try:
        queue = create_redis_queue(settings)
    except QueueBackendUnavailable as e:
        if backend == "redis":
            raise
        logger.warning(f"⚠️ [Queue] Redis not available, falling back to in-memory queue: {e}")
        return create_memory_queue(settings, handler, **memory_kwargs)

    logger.info("✅ [Queue] Using Redis-based reminder queue")
    return queue
