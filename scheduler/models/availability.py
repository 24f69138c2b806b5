"""Weekly availability model definitions."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Time, UniqueConstraint
from scheduler.database import Base


class WeeklyAvailabilityEntry(Base):
    """Recurring working hours for one psychologist on one day of the week."""
    __tablename__ = "weekly_availability"
    __table_args__ = (
        UniqueConstraint("psychologist_id", "day_of_week", name="uq_weekly_availability_day"),
    )

    id = Column(Integer, primary_key=True)
    psychologist_id = Column(Integer, ForeignKey("psychologists.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    available = Column(Boolean, default=True, nullable=False)
    start_time = Column(Time)
    end_time = Column(Time)
    session_duration = Column(Integer, default=60, nullable=False)
