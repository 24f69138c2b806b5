"""Appointment model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, text
from scheduler.database import Base

ACTIVE_STATUS_CLAUSE = text("status IN ('booked', 'inProgress')")


class Appointment(Base):
    """Represents a booked session and its lifecycle status."""
    __tablename__ = "appointments"
    __table_args__ = (
        # At most one active booking may start at a given time for a psychologist.
        Index(
            "uq_appointments_active_start",
            "psychologist_id",
            "start_time",
            unique=True,
            sqlite_where=ACTIVE_STATUS_CLAUSE,
            postgresql_where=ACTIVE_STATUS_CLAUSE,
        ),
    )

    id = Column(Integer, primary_key=True)
    psychologist_id = Column(Integer, ForeignKey("psychologists.id"), nullable=False, index=True)
    client_id = Column(Integer, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, default="booked", nullable=False)
    version = Column(Integer, default=0, nullable=False)
    joined_at = Column(DateTime)
    completed_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    cancellation_reason = Column(String)
