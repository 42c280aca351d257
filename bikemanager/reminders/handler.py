"""
Executes one maintenance reminder job: zero or one email per job, idempotent under redelivery.
"""
import logging
from typing import Callable

from sqlalchemy.orm import Session

from . import repository
from .exceptions import NotifierError, UnknownJobTypeError
from .metrics import reminders_send_failed_total, reminders_sent_total
from .notifier import Notifier
from .schemas import MAINTENANCE_REMINDER, EmailJob, HandlerOutcome, MaintenanceReminderData
from bikemanager.utils.timezone import to_utc_aware

logger = logging.getLogger(__name__)


class MaintenanceReminderHandler:
    def __init__(self, session_factory: Callable[[], Session], notifier: Notifier):
        self.session_factory = session_factory
        self.notifier = notifier

    def __call__(self, job: EmailJob) -> HandlerOutcome:
        if job.type != MAINTENANCE_REMINDER:
            raise UnknownJobTypeError(job.type)
        return self.process_maintenance_reminder(job.data)

    def process_maintenance_reminder(self, data: MaintenanceReminderData) -> HandlerOutcome:
        db = self.session_factory()
        try:
            return self._process(db, data)
        finally:
            db.close()

    def _process(self, db: Session, data: MaintenanceReminderData) -> HandlerOutcome:
        sm_id = data.scheduled_maintenance_id
        user_id = data.user_id

        maintenance = repository.find_scheduled_maintenance_by_id(db, sm_id)
        if maintenance is None:
            logger.info(f"⚠️ [ReminderJob] Scheduled maintenance {sm_id} not found, skipping")
            return HandlerOutcome.NOT_FOUND

        if maintenance.is_completed:
            logger.info(f"✅ [ReminderJob] Maintenance {sm_id} already completed, skipping reminder")
            return HandlerOutcome.COMPLETED

        preference = repository.get_user_notification_preference(db, user_id)
        if not preference.maintenance_reminders_enabled:
            logger.info(f"🔕 [ReminderJob] User {user_id} opted out of maintenance reminders")
            return HandlerOutcome.OPTED_OUT

        # A job may have been enqueued before an earlier send committed
        if repository.find_delivery_record(db, user_id, sm_id, ["sent"]) is not None:
            logger.info(f"📧 [ReminderJob] Reminder already sent for maintenance {sm_id}")
            return HandlerOutcome.ALREADY_SENT

        owner = maintenance.bike.owner
        record = repository.create_delivery_record(
            db,
            user_id=user_id,
            scheduled_maintenance_id=sm_id,
            recipient_email=owner.email,
        )

        try:
            result = self.notifier.send_maintenance_reminder(
                owner.email,
                owner.name,
                data.bike_name,
                data.service_description,
                to_utc_aware(data.scheduled_date),
                bike_id=maintenance.bike.id,
                days_until=data.days_until,
            )
            if not result.success:
                raise NotifierError(result.error or "email provider reported failure")
        except Exception as e:
            repository.mark_delivery_failed(db, record.id, str(e) or e.__class__.__name__)
            reminders_send_failed_total.inc()
            logger.error(f"❌ [ReminderJob] Error sending maintenance reminder for user {user_id}: {e}")
            raise

        repository.mark_delivery_sent(db, record.id, result.message_id)
        reminders_sent_total.inc()
        logger.info(f"✅ [ReminderJob] Maintenance reminder sent successfully to {owner.email}")
        return HandlerOutcome.SENT
