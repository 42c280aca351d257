from datetime import datetime, timezone as dt_timezone
from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Index
from bikemanager.db.base import Base
from .user import _uuid


class EmailLog(Base):
    """One row per reminder send attempt (pending -> sent | failed).

    This table, not the job queue, decides whether a reminder already went out.
    """
    __tablename__ = "email_logs"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    scheduled_maintenance_id = Column(
        String(36), ForeignKey("scheduled_maintenances.id", ondelete="SET NULL"), nullable=True
    )
    email_type = Column(String, nullable=False)
    recipient_email = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")
    resend_id = Column(String, nullable=True)  # Provider message id
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(dt_timezone.utc), nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_email_logs_dedup", "user_id", "scheduled_maintenance_id", "email_type", "status"),
    )
