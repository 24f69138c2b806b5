"""Plain data handed between the scheduling engine and its callers."""

from datetime import datetime, time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from scheduler.engine.time_periods import TimePeriod

DEFAULT_SESSION_DURATION_MINUTES = 60


class BookingStatus(str, Enum):
    BOOKED = 'booked'
    IN_PROGRESS = 'inProgress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    MISSED = 'missed'


ACTIVE_STATUSES = frozenset({BookingStatus.BOOKED, BookingStatus.IN_PROGRESS})
TERMINAL_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.MISSED})


class WeeklyAvailability(BaseModel):
    """Recurring working hours for one day of the week (0 = Sunday)."""

    model_config = ConfigDict(frozen=True)

    day_of_week: int = Field(ge=0, le=6)
    available: bool = True
    start_time: time | None = None
    end_time: time | None = None
    session_duration: int = Field(default=DEFAULT_SESSION_DURATION_MINUTES, gt=0)

    @model_validator(mode='after')
    def check_window(self) -> 'WeeklyAvailability':
        if not self.available:
            return self

        if self.start_time is None or self.end_time is None:
            raise ValueError('Available days need both a start time and an end time.')

        if self.start_time >= self.end_time:
            raise ValueError('Start time must be before end time.')

        return self


class CandidateSlot(BaseModel):
    """A bookable window on a concrete date, tagged with its start-hour period."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime
    duration_minutes: int
    time_periods: frozenset[TimePeriod] = frozenset()


class BookingRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    psychologist_id: int
    start: datetime
    end: datetime
    client_id: int | None = None


class Booking(BaseModel):
    """A committed reservation and its lifecycle state.

    Instances are immutable; state changes go through
    ``scheduler.engine.booking_state.transition`` which returns a new copy with
    ``version`` bumped so the store can detect concurrent writers.
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    psychologist_id: int
    client_id: int | None = None
    start: datetime
    end: datetime
    status: BookingStatus = BookingStatus.BOOKED
    version: int = 0
    joined_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
