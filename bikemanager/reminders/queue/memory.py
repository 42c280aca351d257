"""
Process-local reminder queue used when Redis is not reachable (local development).

Jobs live in a dict guarded by a lock. A poll thread promotes eligible jobs to a
bounded thread pool every `poll_interval` seconds, so a delayed job may fire up
to one tick late. Unexecuted jobs are dropped on close.
"""
import itertools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Callable, Dict, List, Optional

from ..exceptions import UnknownJobTypeError
from ..metrics import queue_duplicates_total, queue_enqueued_total, queue_failed_total, queue_retries_total
from ..schemas import EmailJob, JobHandle, QueueStats
from .base import Delay, HistoryLimits, JobHandler, ReminderQueue, RetryPolicy, delay_seconds

logger = logging.getLogger(__name__)

WAITING = "waiting"
ACTIVE = "active"
COMPLETED = "completed"
FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(dt_timezone.utc)


@dataclass
class ScheduledJob:
    id: str
    job: EmailJob
    delay: float
    max_attempts: int
    scheduled_at: datetime
    attempts: int = 0
    status: str = WAITING
    error: Optional[str] = None
    finished_at: Optional[datetime] = None
    retry_delays: List[float] = field(default_factory=list)


class InMemoryReminderQueue(ReminderQueue):
    backend_name = "memory"

    def __init__(
        self,
        handler: JobHandler,
        *,
        concurrency: int = 5,
        retry_policy: RetryPolicy = RetryPolicy(),
        history: HistoryLimits = HistoryLimits(),
        poll_interval: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
        autostart: bool = True,
    ):
        self.handler = handler
        self.concurrency = concurrency
        self.retry_policy = retry_policy
        self.history = history
        self.poll_interval = poll_interval
        self.clock = clock

        self._jobs: Dict[str, ScheduledJob] = {}
        self._seq = itertools.count(1)
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="reminder-worker")
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._closed = False

        logger.info("📝 [MemoryQueue] Initialized (in-memory queue for development)")
        if autostart:
            self.start()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._poll_loop, name="reminder-queue-poll", daemon=True)
        self._thread.start()
        logger.info(f"🚀 [MemoryQueue] Processing started (tick every {self.poll_interval}s)")

    def _poll_loop(self) -> None:
        while not self._stop.wait(self.poll_interval):
            try:
                self.process_due()
            except Exception:
                logger.exception("❌ [MemoryQueue] Error processing jobs")

    def enqueue(self, job: EmailJob, delay: Delay = None) -> JobHandle:
        seconds = delay_seconds(delay)
        with self._lock:
            if self._closed:
                raise RuntimeError("reminder queue is closed")
            existing = self._find_outstanding(job.dedup_key)
            if existing is not None:
                queue_duplicates_total.labels(backend=self.backend_name).inc()
                logger.info(f"📋 [MemoryQueue] Job {existing.id} already outstanding, ignoring duplicate")
                return JobHandle(id=existing.id, duplicate=True, delay_seconds=existing.delay)

            job_id = f"{job.dedup_key}-{next(self._seq)}"
            self._jobs[job_id] = ScheduledJob(
                id=job_id,
                job=job,
                delay=seconds,
                max_attempts=self.retry_policy.max_attempts,
                scheduled_at=self.clock() + timedelta(seconds=seconds),
            )

        queue_enqueued_total.labels(backend=self.backend_name).inc()
        logger.info(
            f"📋 [MemoryQueue] Added maintenance reminder job {job_id} | bike={job.data.bike_name} "
            f"service={job.data.service_description!r} days_until={job.data.days_until} "
            f"delay={'immediate' if not seconds else f'{round(seconds / 60)} minutes'}"
        )
        return JobHandle(id=job_id, delay_seconds=seconds)

    def _find_outstanding(self, dedup_key: str) -> Optional[ScheduledJob]:
        for scheduled in self._jobs.values():
            if scheduled.job.dedup_key == dedup_key and scheduled.status in (WAITING, ACTIVE):
                return scheduled
        return None

    def process_due(self) -> List[Future]:
        """Hand every eligible waiting job to the worker pool, up to the free worker slots."""
        futures: List[Future] = []
        with self._lock:
            if self._closed:
                return futures
            now = self.clock()
            active = sum(1 for j in self._jobs.values() if j.status == ACTIVE)
            slots = self.concurrency - active
            if slots <= 0:
                return futures
            eligible = sorted(
                (j for j in self._jobs.values() if j.status == WAITING and j.scheduled_at <= now),
                key=lambda j: j.scheduled_at,
            )
            for scheduled in eligible[:slots]:
                scheduled.status = ACTIVE
                scheduled.attempts += 1
                futures.append(self._executor.submit(self._run, scheduled))
        return futures

    def _run(self, scheduled: ScheduledJob) -> None:
        logger.info(
            f"🚀 [MemoryQueue] Processing job {scheduled.id} (attempt {scheduled.attempts}/{scheduled.max_attempts})"
        )
        try:
            self.handler(scheduled.job)
        except UnknownJobTypeError as e:
            logger.error(f"❌ [MemoryQueue] Job {scheduled.id} cannot run: {e}")
            with self._lock:
                self._finish(scheduled, FAILED, str(e))
        except Exception as e:
            logger.error(f"❌ [MemoryQueue] Job {scheduled.id} failed (attempt {scheduled.attempts}): {e}")
            with self._lock:
                if self.retry_policy.should_retry(scheduled.attempts):
                    backoff = self.retry_policy.backoff_delay(scheduled.attempts)
                    scheduled.retry_delays.append(backoff)
                    scheduled.scheduled_at = self.clock() + timedelta(seconds=backoff)
                    scheduled.status = WAITING
                    scheduled.error = str(e)
                    queue_retries_total.labels(backend=self.backend_name).inc()
                    logger.warning(f"⏰ [MemoryQueue] Job {scheduled.id} will retry in {backoff}s")
                else:
                    self._finish(scheduled, FAILED, str(e))
        else:
            with self._lock:
                self._finish(scheduled, COMPLETED)
            logger.info(f"✅ [MemoryQueue] Job {scheduled.id} completed successfully")

    def _finish(self, scheduled: ScheduledJob, status: str, error: Optional[str] = None) -> None:
        scheduled.status = status
        scheduled.error = error
        scheduled.finished_at = self.clock()
        if status == FAILED:
            queue_failed_total.labels(backend=self.backend_name).inc()
        keep = self.history.keep_completed if status == COMPLETED else self.history.keep_failed
        finished = sorted(
            (j for j in self._jobs.values() if j.status == status),
            key=lambda j: j.finished_at,
        )
        excess = len(finished) - keep
        for old in finished[:max(excess, 0)]:
            del self._jobs[old.id]

    def get_job(self, job_id: str) -> Optional[ScheduledJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def get_queue_stats(self) -> QueueStats:
        with self._lock:
            counts = {WAITING: 0, ACTIVE: 0, COMPLETED: 0, FAILED: 0}
            for scheduled in self._jobs.values():
                counts[scheduled.status] += 1
            return QueueStats(**counts, total=len(self._jobs), backend=self.backend_name)

    def clean_queue(self) -> None:
        with self._lock:
            now = self.clock()
            completed_cutoff = now - self.history.completed_retention
            failed_cutoff = now - self.history.failed_retention
            stale = [
                job_id
                for job_id, j in self._jobs.items()
                if (j.status == COMPLETED and j.finished_at < completed_cutoff)
                or (j.status == FAILED and j.finished_at < failed_cutoff)
            ]
            for job_id in stale:
                del self._jobs[job_id]
        logger.info(f"🧹 [MemoryQueue] Queue cleaned - removed {len(stale)} old completed/failed jobs")

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            dropped = sum(1 for j in self._jobs.values() if j.status == WAITING)
        self._stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=self.poll_interval + 1)
        self._executor.shutdown(wait=True, cancel_futures=True)
        logger.info(f"⏹️ [MemoryQueue] Stopped ({dropped} waiting jobs dropped)")
