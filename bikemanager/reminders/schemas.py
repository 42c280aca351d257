"""
Schemas for reminder jobs, queue statistics and operational responses
"""
from datetime import datetime
from enum import Enum
from typing import Literal, Optional
from pydantic import BaseModel


MAINTENANCE_REMINDER = "maintenance-reminder"

DeliveryStatus = Literal["pending", "sent", "failed"]


class ScanOutcome(str, Enum):
    """What the scanner did with one scheduled maintenance row"""
    SENT = "sent"            # handed off for immediate execution
    SCHEDULED = "scheduled"  # enqueued with a delay
    SKIPPED = "skipped"


class HandlerOutcome(str, Enum):
    """Result of executing one reminder job"""
    SENT = "sent"
    NOT_FOUND = "not_found"
    COMPLETED = "completed"
    OPTED_OUT = "opted_out"
    ALREADY_SENT = "already_sent"
    REDELIVERED = "redelivered"  # another copy of this attempt already ran
    DEFERRED = "deferred"        # not due yet, re-sent to the broker


class MaintenanceReminderData(BaseModel):
    """Denormalized reminder payload, so the send needs no extra lookup for display fields"""
    user_id: str
    scheduled_maintenance_id: str
    bike_name: str
    service_description: str
    scheduled_date: datetime
    days_until: int

    @property
    def dedup_key(self) -> str:
        return f"{MAINTENANCE_REMINDER}-{self.scheduled_maintenance_id}-{self.user_id}"


class EmailJob(BaseModel):
    """Envelope placed on the queue. `type` selects the handler."""
    type: str = MAINTENANCE_REMINDER
    data: MaintenanceReminderData

    @property
    def dedup_key(self) -> str:
        return self.data.dedup_key


class JobHandle(BaseModel):
    """Returned by enqueue; `duplicate` is True when an outstanding job already existed"""
    id: str
    duplicate: bool = False
    delay_seconds: float = 0.0


class QueueStats(BaseModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0
    backend: str


class ScanResult(BaseModel):
    """Counts for one scan cycle. `ran` is False when another scan was already in progress."""
    ran: bool = True
    sent: int = 0
    scheduled: int = 0
    skipped: int = 0
    duration_ms: int = 0
    started_at: Optional[datetime] = None


class CronStatus(BaseModel):
    is_scanning: bool
    next_run: Optional[datetime] = None
    enabled: bool
    cron_expression: str
    timezone: str
    backend: str
