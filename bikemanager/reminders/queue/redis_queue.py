"""
Durable reminder queue: Celery on the Redis broker.

Celery executes and redelivers jobs. Redis also holds the per-job uniqueness
claim and the bounded completed/failed history that backs queue statistics,
so the enqueuing process and the Celery worker see the same bookkeeping.
"""
import logging
import time
import uuid
from datetime import timedelta
from typing import Optional, Tuple

import redis
from celery import Celery
from pydantic import ValidationError

from ..exceptions import QueueBackendUnavailable, UnknownJobTypeError
from ..metrics import queue_duplicates_total, queue_enqueued_total, queue_failed_total, queue_retries_total
from ..schemas import EmailJob, HandlerOutcome, JobHandle, QueueStats
from .base import Delay, HistoryLimits, JobHandler, ReminderQueue, RetryPolicy, delay_seconds

logger = logging.getLogger(__name__)

SEND_TASK_NAME = "reminders.send_maintenance_reminder"
BACKEND_NAME = "redis"


def connect_redis(url: str, timeout: float = 2.0) -> redis.Redis:
    """Open a Redis client and prove the server answers; raises QueueBackendUnavailable otherwise."""
    client = redis.Redis.from_url(url, decode_responses=True, socket_connect_timeout=timeout)
    try:
        client.ping()
    except (redis.exceptions.RedisError, OSError) as e:
        raise QueueBackendUnavailable(f"Redis not reachable at {url}: {e}") from e
    return client


class RedisQueueLedger:
    """Uniqueness claims and job-state sorted sets (score = epoch seconds)."""

    def __init__(
        self,
        client: redis.Redis,
        queue_name: str,
        history: HistoryLimits = HistoryLimits(),
        execution_ttl: timedelta = timedelta(hours=1),
    ):
        self.redis = client
        self.prefix = f"reminders:{queue_name}"
        self.history = history
        self.execution_ttl = execution_ttl

    def _key(self, name: str) -> str:
        return f"{self.prefix}:{name}"

    def _unique_key(self, dedup_key: str) -> str:
        return self._key(f"unique:{dedup_key}")

    def claim(self, dedup_key: str, job_id: str, ttl_seconds: int) -> Tuple[bool, Optional[str]]:
        """Returns (claimed, holder_job_id)."""
        if self.redis.set(self._unique_key(dedup_key), job_id, nx=True, ex=max(int(ttl_seconds), 1)):
            return True, job_id
        return False, self.redis.get(self._unique_key(dedup_key))

    def acquire_execution(self, job_id: str, attempt: int) -> bool:
        """First caller for (job, attempt) wins; redelivered copies of the same attempt get False."""
        return bool(
            self.redis.set(
                self._key(f"running:{job_id}:{attempt}"),
                "1",
                nx=True,
                ex=max(int(self.execution_ttl.total_seconds()), 1),
            )
        )

    def release(self, dedup_key: str, job_id: str) -> None:
        key = self._unique_key(dedup_key)
        if self.redis.get(key) == job_id:
            self.redis.delete(key)

    def _move(self, job_id: str, to_state: str, score: float) -> None:
        with self.redis.pipeline() as pipe:
            for state in ("waiting", "active", "completed", "failed"):
                if state != to_state:
                    pipe.zrem(self._key(state), job_id)
            pipe.zadd(self._key(to_state), {job_id: score})
            pipe.execute()

    def mark_waiting(self, job_id: str, run_at: float) -> None:
        self._move(job_id, "waiting", run_at)

    def mark_active(self, job_id: str) -> None:
        self._move(job_id, "active", time.time())

    def mark_retry(self, job_id: str, countdown: float) -> None:
        self._move(job_id, "waiting", time.time() + countdown)

    def mark_completed(self, job_id: str, dedup_key: Optional[str]) -> None:
        self._finish(job_id, dedup_key, "completed", self.history.keep_completed)

    def mark_failed(self, job_id: str, dedup_key: Optional[str]) -> None:
        self._finish(job_id, dedup_key, "failed", self.history.keep_failed)

    def _finish(self, job_id: str, dedup_key: Optional[str], state: str, keep: int) -> None:
        self._move(job_id, state, time.time())
        # Oldest entries are evicted first
        self.redis.zremrangebyrank(self._key(state), 0, -(keep + 1))
        if dedup_key:
            self.release(dedup_key, job_id)

    def stats(self) -> QueueStats:
        counts = {state: int(self.redis.zcard(self._key(state))) for state in ("waiting", "active", "completed", "failed")}
        return QueueStats(**counts, total=sum(counts.values()), backend=BACKEND_NAME)

    def clean(self) -> Tuple[int, int]:
        now = time.time()
        completed = self.redis.zremrangebyscore(
            self._key("completed"), "-inf", now - self.history.completed_retention.total_seconds()
        )
        failed = self.redis.zremrangebyscore(
            self._key("failed"), "-inf", now - self.history.failed_retention.total_seconds()
        )
        return int(completed), int(failed)


def dispatch_reminder_task(
    app: Celery,
    payload: dict,
    *,
    job_id: str,
    seconds: float,
    queue_name: str,
    max_countdown: float,
    now: Optional[float] = None,
) -> None:
    """
    Hand a job to Celery.

    The Redis broker redelivers any message whose ETA lies beyond its visibility
    timeout, so countdowns are capped at max_countdown. A longer delay travels as
    `run_at` and the worker re-sends the job until it is due.
    """
    now = time.time() if now is None else now
    kwargs = {}
    countdown = seconds
    if seconds > max_countdown:
        kwargs["run_at"] = now + seconds
        countdown = max_countdown
    app.send_task(
        SEND_TASK_NAME,
        args=[payload],
        kwargs=kwargs,
        task_id=job_id,
        countdown=countdown or None,
        queue=queue_name,
    )


def defer_if_early(
    app: Celery,
    payload: dict,
    *,
    job_id: str,
    run_at: Optional[float],
    queue_name: str,
    max_countdown: float,
    now: Optional[float] = None,
) -> bool:
    """Re-send a job that woke up before run_at. Returns True when it was deferred."""
    now = time.time() if now is None else now
    if run_at is None or run_at <= now:
        return False
    dispatch_reminder_task(
        app, payload, job_id=job_id, seconds=run_at - now, queue_name=queue_name, max_countdown=max_countdown, now=now
    )
    logger.info(f"⏰ [RedisQueue] Job {job_id} not due for {round((run_at - now) / 60)} minutes, deferred")
    return True


class RetryLater(Exception):
    """Raised by execute_reminder_job when the attempt failed and another one should follow."""

    def __init__(self, countdown: float, cause: Exception):
        super().__init__(str(cause))
        self.countdown = countdown
        self.cause = cause


def execute_reminder_job(
    payload: dict,
    *,
    job_id: str,
    attempt: int,
    handler: JobHandler,
    ledger: RedisQueueLedger,
    policy: RetryPolicy,
) -> HandlerOutcome:
    """Run one attempt of a queued reminder job and keep the ledger current."""
    try:
        job = EmailJob.model_validate(payload)
    except ValidationError:
        logger.error(f"❌ [RedisQueue] Job {job_id} has an invalid payload, dropping")
        ledger.mark_failed(job_id, None)
        queue_failed_total.labels(backend=BACKEND_NAME).inc()
        raise

    if not ledger.acquire_execution(job_id, attempt):
        queue_duplicates_total.labels(backend=BACKEND_NAME).inc()
        logger.warning(f"📋 [RedisQueue] Job {job_id} attempt {attempt} already ran, ignoring redelivered copy")
        return HandlerOutcome.REDELIVERED

    ledger.mark_active(job_id)
    logger.info(f"🚀 [RedisQueue] Processing job {job_id} (attempt {attempt}/{policy.max_attempts})")
    try:
        outcome = handler(job)
    except UnknownJobTypeError as e:
        logger.error(f"❌ [RedisQueue] Job {job_id} cannot run: {e}")
        ledger.mark_failed(job_id, job.dedup_key)
        queue_failed_total.labels(backend=BACKEND_NAME).inc()
        raise
    except Exception as e:
        logger.error(f"❌ [RedisQueue] Job {job_id} failed (attempt {attempt}): {e}")
        if policy.should_retry(attempt):
            countdown = policy.backoff_delay(attempt)
            ledger.mark_retry(job_id, countdown)
            queue_retries_total.labels(backend=BACKEND_NAME).inc()
            logger.warning(f"⏰ [RedisQueue] Job {job_id} will retry in {countdown}s")
            raise RetryLater(countdown, e) from e
        ledger.mark_failed(job_id, job.dedup_key)
        queue_failed_total.labels(backend=BACKEND_NAME).inc()
        raise

    ledger.mark_completed(job_id, job.dedup_key)
    logger.info(f"✅ [RedisQueue] Job {job_id} completed: {outcome.value}")
    return outcome


class CeleryReminderQueue(ReminderQueue):
    backend_name = BACKEND_NAME

    def __init__(
        self,
        app: Celery,
        ledger: RedisQueueLedger,
        *,
        queue_name: str,
        retry_policy: RetryPolicy = RetryPolicy(),
        claim_slack: timedelta = timedelta(days=1),
        max_countdown: float = 12 * 60 * 60,
    ):
        self.app = app
        self.ledger = ledger
        self.queue_name = queue_name
        self.retry_policy = retry_policy
        self.claim_slack = claim_slack
        self.max_countdown = max_countdown
        logger.info(f"✅ [RedisQueue] Using Redis-backed Celery queue '{queue_name}'")

    def _claim_ttl(self, seconds: float) -> int:
        # Claim must outlive the delay plus every retry wait
        retries = sum(
            self.retry_policy.backoff_delay(a) for a in range(1, self.retry_policy.max_attempts)
        )
        return int(seconds + retries + self.claim_slack.total_seconds())

    def enqueue(self, job: EmailJob, delay: Delay = None) -> JobHandle:
        seconds = delay_seconds(delay)
        job_id = f"{job.dedup_key}-{uuid.uuid4().hex[:12]}"
        claimed, holder = self.ledger.claim(job.dedup_key, job_id, self._claim_ttl(seconds))
        if not claimed:
            queue_duplicates_total.labels(backend=self.backend_name).inc()
            logger.info(f"📋 [RedisQueue] Job {holder} already outstanding, ignoring duplicate")
            return JobHandle(id=holder or job.dedup_key, duplicate=True)

        self.ledger.mark_waiting(job_id, time.time() + seconds)
        try:
            dispatch_reminder_task(
                self.app,
                job.model_dump(mode="json"),
                job_id=job_id,
                seconds=seconds,
                queue_name=self.queue_name,
                max_countdown=self.max_countdown,
            )
        except Exception:
            self.ledger.mark_failed(job_id, job.dedup_key)
            raise

        queue_enqueued_total.labels(backend=self.backend_name).inc()
        logger.info(
            f"📋 [RedisQueue] Added maintenance reminder job {job_id} | bike={job.data.bike_name} "
            f"days_until={job.data.days_until} "
            f"delay={'immediate' if not seconds else f'{round(seconds / 60)} minutes'}"
        )
        return JobHandle(id=job_id, delay_seconds=seconds)

    def get_queue_stats(self) -> QueueStats:
        return self.ledger.stats()

    def clean_queue(self) -> None:
        completed, failed = self.ledger.clean()
        logger.info(f"🧹 [RedisQueue] Queue cleaned - removed {completed} completed and {failed} failed jobs")

    def close(self) -> None:
        self.ledger.redis.close()
        self.app.close()
        logger.info("⏹️ [RedisQueue] Connections closed")
