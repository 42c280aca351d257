from .base import HistoryLimits, ReminderQueue, RetryPolicy
from .memory import InMemoryReminderQueue
from .redis_queue import CeleryReminderQueue, RedisQueueLedger
from .factory import create_reminder_queue

__all__ = [
    "HistoryLimits",
    "ReminderQueue",
    "RetryPolicy",
    "InMemoryReminderQueue",
    "CeleryReminderQueue",
    "RedisQueueLedger",
    "create_reminder_queue",
]
