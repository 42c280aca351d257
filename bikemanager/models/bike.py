from datetime import datetime
from sqlalchemy import Column, String, DateTime, Boolean, Integer, ForeignKey, Text, Index
from sqlalchemy.orm import relationship
from bikemanager.db.base import Base
from .user import _uuid


class Bike(Base):
    __tablename__ = "bikes"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    owner_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = relationship("User", back_populates="bikes")
    scheduled_maintenances = relationship("ScheduledMaintenance", back_populates="bike")


class ScheduledMaintenance(Base):
    """A future service for a bike. The reminder pipeline only reads these rows."""
    __tablename__ = "scheduled_maintenances"

    id = Column(String(36), primary_key=True, default=_uuid)
    bike_id = Column(String(36), ForeignKey("bikes.id", ondelete="CASCADE"), nullable=False, index=True)
    scheduled_date = Column(DateTime(timezone=True), nullable=False)
    service_description = Column(Text, nullable=False)
    notification_days_before = Column(Integer, nullable=True)  # NULL = no reminder requested
    is_completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    bike = relationship("Bike", back_populates="scheduled_maintenances")

    __table_args__ = (
        Index("ix_scheduled_maintenances_pending", "is_completed", "scheduled_date"),
    )
