import logging
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from typing import Iterable, List, Optional
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from bikemanager.models import Bike, EmailLog, ScheduledMaintenance, UserEmailPreference
from .schemas import MAINTENANCE_REMINDER, DeliveryStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationPreference:
    maintenance_reminders_enabled: bool = True


def find_scheduled_maintenance_needing_reminder(db: Session, today_start: datetime) -> List[ScheduledMaintenance]:
    """Incomplete rows due today or later with a positive reminder lead time, soonest first."""
    stmt = (
        select(ScheduledMaintenance)
        .options(joinedload(ScheduledMaintenance.bike).joinedload(Bike.owner))
        .where(ScheduledMaintenance.is_completed == False)  # noqa: E712
        .where(ScheduledMaintenance.scheduled_date >= today_start)
        .where(ScheduledMaintenance.notification_days_before.isnot(None))
        .where(ScheduledMaintenance.notification_days_before > 0)
        .order_by(ScheduledMaintenance.scheduled_date.asc())
    )
    return list(db.execute(stmt).unique().scalars())


def find_scheduled_maintenance_by_id(db: Session, scheduled_maintenance_id: str) -> Optional[ScheduledMaintenance]:
    stmt = (
        select(ScheduledMaintenance)
        .options(joinedload(ScheduledMaintenance.bike).joinedload(Bike.owner))
        .where(ScheduledMaintenance.id == scheduled_maintenance_id)
    )
    return db.execute(stmt).unique().scalars().first()


def find_delivery_record(
    db: Session,
    user_id: str,
    scheduled_maintenance_id: str,
    status_in: Iterable[str],
) -> Optional[EmailLog]:
    stmt = (
        select(EmailLog)
        .where(EmailLog.user_id == user_id)
        .where(EmailLog.scheduled_maintenance_id == scheduled_maintenance_id)
        .where(EmailLog.email_type == MAINTENANCE_REMINDER)
        .where(EmailLog.status.in_(list(status_in)))
        .order_by(EmailLog.created_at.desc())
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def create_delivery_record(
    db: Session,
    *,
    user_id: str,
    scheduled_maintenance_id: str,
    recipient_email: str,
    status: DeliveryStatus = "pending",
) -> EmailLog:
    record = EmailLog(
        user_id=user_id,
        scheduled_maintenance_id=scheduled_maintenance_id,
        email_type=MAINTENANCE_REMINDER,
        recipient_email=recipient_email,
        status=status,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def update_delivery_record(db: Session, record_id: str, **fields) -> None:
    db.execute(update(EmailLog).where(EmailLog.id == record_id).values(**fields))
    db.commit()


def mark_delivery_sent(db: Session, record_id: str, provider_message_id: Optional[str]) -> None:
    update_delivery_record(
        db, record_id, status="sent", resend_id=provider_message_id, sent_at=datetime.now(dt_timezone.utc)
    )


def mark_delivery_failed(db: Session, record_id: str, error_message: str) -> None:
    update_delivery_record(db, record_id, status="failed", error_message=error_message)


def get_user_notification_preference(db: Session, user_id: str) -> NotificationPreference:
    """Missing preference rows mean defaults. A failing lookup fails open (reminders enabled)."""
    try:
        pref = db.execute(
            select(UserEmailPreference).where(UserEmailPreference.user_id == user_id)
        ).scalars().first()
    except SQLAlchemyError as e:
        logger.error(f"❌ [Preferences] Error fetching email preferences for user {user_id}: {e}")
        db.rollback()
        return NotificationPreference()
    if pref is None:
        return NotificationPreference()
    return NotificationPreference(maintenance_reminders_enabled=bool(pref.maintenance_reminders))
