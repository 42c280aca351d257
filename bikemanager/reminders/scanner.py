"""
Periodic scan that decides which scheduled maintenances need a reminder job.

Each row ends up as one of:
  sent       - reminder time reached, job enqueued for immediate execution
  scheduled  - reminder time in the future, job enqueued with a delay
  skipped    - already covered by a pending/sent delivery record, past due, or failed to evaluate

Only one scan runs at a time in a process. Delivery records are the only
guard against duplicates across scans and restarts.
"""
import logging
import math
import threading
import time
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from bikemanager.models import ScheduledMaintenance
from bikemanager.utils.timezone import at_local_hour, local_date, local_midnight, to_utc_aware
from . import repository
from .config import ReminderSettings, settings as default_settings
from .metrics import scheduler_outcomes_total, scheduler_scans_skipped_total, scheduler_scans_total
from .queue.base import ReminderQueue
from .schemas import EmailJob, MaintenanceReminderData, ScanOutcome, ScanResult
from .timer import CronTimer

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def reminder_fire_time(scheduled_date: datetime, notification_days_before: int, tz: ZoneInfo, send_hour: int = 9) -> datetime:
    """Local `send_hour` o'clock, `notification_days_before` calendar days before the due date."""
    due_day = local_date(scheduled_date, tz)
    return at_local_hour(due_day - timedelta(days=notification_days_before), send_hour, tz)


def days_until(scheduled_date: datetime, now: datetime) -> int:
    return math.ceil((to_utc_aware(scheduled_date) - to_utc_aware(now)).total_seconds() / SECONDS_PER_DAY)


class MaintenanceReminderScanner:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        queue: ReminderQueue,
        settings: ReminderSettings = default_settings,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_factory = session_factory
        self.queue = queue
        self.settings = settings
        self.tz = settings.zoneinfo
        self.clock = clock or (lambda: datetime.now(dt_timezone.utc))
        self._scan_lock = threading.Lock()
        self._timer: Optional[CronTimer] = None
        logger.info("🕐 [Scanner] MaintenanceReminderScanner initialized")

    # --- lifecycle -------------------------------------------------------

    def start(self) -> None:
        if not self.settings.ENABLED:
            logger.info("🔕 [Scanner] Maintenance reminder cron is disabled")
            return

        logger.info(f"🚀 [Scanner] Starting maintenance reminder cron: {self.settings.CRON} ({self.settings.TIMEZONE})")
        self._timer = CronTimer(self.settings.CRON, self.settings.TIMEZONE, self.scan)
        self._timer.start()
        logger.info("✅ [Scanner] Maintenance reminder cron started")

        if self.settings.RUN_ON_STARTUP:
            logger.info("🔧 [Scanner] Running initial scan...")
            threading.Thread(target=self._scan_in_background, name="maintenance-reminder-initial-scan", daemon=True).start()

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.stop()
            self._timer = None
            logger.info("⏹️ [Scanner] Maintenance reminder cron stopped")

    def _scan_in_background(self) -> None:
        try:
            self.scan()
        except Exception:
            logger.exception("❌ [Scanner] Background scan failed")

    # --- operational hooks ----------------------------------------------

    def trigger_manual_scan(self) -> ScanResult:
        logger.info("🔧 [Scanner] Manual maintenance reminder scan triggered")
        return self.scan()

    def is_scanning(self) -> bool:
        return self._scan_lock.locked()

    def get_next_run_time(self) -> Optional[datetime]:
        if self._timer is None or not self._timer.running:
            return None
        return self._timer.next_run_time()

    # --- scan ------------------------------------------------------------

    def scan(self) -> ScanResult:
        if not self._scan_lock.acquire(blocking=False):
            logger.warning("⚠️ [Scanner] Maintenance reminder scan already running, skipping...")
            scheduler_scans_skipped_total.inc()
            return ScanResult(ran=False)

        started = time.monotonic()
        now = to_utc_aware(self.clock())
        result = ScanResult(started_at=now)
        try:
            scheduler_scans_total.inc()
            logger.info("🔍 [Scanner] Starting maintenance reminder scan...")
            db = self.session_factory()
            try:
                today_start = local_midnight(now, self.tz).astimezone(dt_timezone.utc)
                rows = repository.find_scheduled_maintenance_needing_reminder(db, today_start)
                logger.info(f"📋 [Scanner] Found {len(rows)} scheduled maintenances to check")

                for row in rows:
                    try:
                        outcome = self.schedule_reminder_if_needed(db, row, now)
                    except Exception:
                        logger.exception(f"❌ [Scanner] Error processing maintenance {row.id}")
                        db.rollback()
                        outcome = ScanOutcome.SKIPPED
                    scheduler_outcomes_total.labels(outcome=outcome.value).inc()
                    if outcome is ScanOutcome.SENT:
                        result.sent += 1
                    elif outcome is ScanOutcome.SCHEDULED:
                        result.scheduled += 1
                    else:
                        result.skipped += 1
            finally:
                db.close()
        except Exception:
            logger.exception("❌ [Scanner] Error in maintenance reminder scan")
        finally:
            result.duration_ms = int((time.monotonic() - started) * 1000)
            self._scan_lock.release()

        logger.info(f"✅ [Scanner] Maintenance reminder scan completed in {result.duration_ms}ms")
        logger.info(f"📊 [Scanner] Results: {result.sent} sent, {result.scheduled} scheduled, {result.skipped} skipped")
        return result

    def schedule_reminder_if_needed(self, db: Session, maintenance: ScheduledMaintenance, now: datetime) -> ScanOutcome:
        lead_days = maintenance.notification_days_before
        if not lead_days:
            return ScanOutcome.SKIPPED

        bike = maintenance.bike
        fire_at = reminder_fire_time(maintenance.scheduled_date, lead_days, self.tz, self.settings.SEND_HOUR)
        time_diff = fire_at - now
        days = days_until(maintenance.scheduled_date, now)

        logger.info(
            f"📅 [Scanner] Checking maintenance {maintenance.id} | bike={bike.name} "
            f"scheduled={local_date(maintenance.scheduled_date, self.tz)} reminder={fire_at.date()} "
            f"days_until={days} notify_days_before={lead_days} "
            f"time_diff={round(time_diff.total_seconds() / 3600)} hours"
        )

        existing = repository.find_delivery_record(db, bike.owner_id, maintenance.id, ["sent", "pending"])
        if existing is not None:
            logger.info(f"📧 [Scanner] Reminder already exists for maintenance {maintenance.id}")
            return ScanOutcome.SKIPPED

        if time_diff <= timedelta(0) and days >= 0:
            logger.info(f"📧 [Scanner] Sending immediate reminder for maintenance {maintenance.id}")
            handle = self.queue.enqueue(self._build_job(maintenance, days))
            return ScanOutcome.SKIPPED if handle.duplicate else ScanOutcome.SENT

        if time_diff > timedelta(0):
            logger.info(
                f"⏰ [Scanner] Scheduling future reminder for maintenance {maintenance.id} "
                f"in {round(time_diff.total_seconds() / 3600)} hours"
            )
            # By the time the delayed job fires the due date is `lead_days` away
            handle = self.queue.enqueue(self._build_job(maintenance, lead_days), delay=time_diff)
            return ScanOutcome.SKIPPED if handle.duplicate else ScanOutcome.SCHEDULED

        return ScanOutcome.SKIPPED

    def _build_job(self, maintenance: ScheduledMaintenance, days: int) -> EmailJob:
        return EmailJob(
            data=MaintenanceReminderData(
                user_id=maintenance.bike.owner_id,
                scheduled_maintenance_id=maintenance.id,
                bike_name=maintenance.bike.name,
                service_description=maintenance.service_description,
                scheduled_date=to_utc_aware(maintenance.scheduled_date),
                days_until=days,
            )
        )
