from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Union

from ..schemas import EmailJob, HandlerOutcome, JobHandle, QueueStats

JobHandler = Callable[[EmailJob], HandlerOutcome]
Delay = Union[None, float, timedelta]


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: base, 2*base, 4*base... between attempts."""
    max_attempts: int = 3
    base_delay_seconds: float = 2.0

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        return self.base_delay_seconds * (2 ** (attempt - 1))

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts


@dataclass(frozen=True)
class HistoryLimits:
    keep_completed: int = 100
    keep_failed: int = 50
    completed_retention: timedelta = timedelta(hours=24)
    failed_retention: timedelta = timedelta(days=7)


def delay_seconds(delay: Delay) -> float:
    if delay is None:
        return 0.0
    if isinstance(delay, timedelta):
        delay = delay.total_seconds()
    return max(float(delay), 0.0)


class ReminderQueue(ABC):
    """Backend-agnostic reminder queue. Uniqueness is per EmailJob.dedup_key while a job is outstanding."""

    backend_name: str = "abstract"

    @abstractmethod
    def enqueue(self, job: EmailJob, delay: Delay = None) -> JobHandle:
        ...

    @abstractmethod
    def get_queue_stats(self) -> QueueStats:
        ...

    @abstractmethod
    def clean_queue(self) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        ...
