"""Decide whether a requested window may be booked.

``validate_booking`` is the fast in-process check run before a booking is
stored. It only sees the data it is given, so the store repeats it inside the
same transaction as the insert and checks again for overlaps once the new row
is flushed.
"""

from collections.abc import Iterable, Sequence
from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

from scheduler.engine.availability import bind_window, entries_for_date, session_length
from scheduler.engine.slots import generate_slots
from scheduler.engine.types import Booking, BookingRequest, CandidateSlot, WeeklyAvailability


class RejectReason(str, Enum):
    MALFORMED_WINDOW = 'MalformedWindow'
    PAST_WINDOW = 'PastWindow'
    NOT_ON_GRID = 'NotOnGrid'
    SLOT_UNAVAILABLE = 'SlotUnavailable'
    CLIENT_UNAVAILABLE = 'ClientUnavailable'


REJECT_MESSAGES = {
    RejectReason.MALFORMED_WINDOW: 'Invalid time range.',
    RejectReason.PAST_WINDOW: 'Cannot book appointments in the past.',
    RejectReason.NOT_ON_GRID: "Selected time is outside of provider's availability.",
    RejectReason.SLOT_UNAVAILABLE: 'Time slot is no longer available.',
    RejectReason.CLIENT_UNAVAILABLE: 'You already have an appointment during this time.',
}


class Accept(BaseModel):
    model_config = ConfigDict(frozen=True)

    request: BookingRequest

    @property
    def accepted(self) -> bool:
        return True


class Reject(BaseModel):
    model_config = ConfigDict(frozen=True)

    reason: RejectReason
    detail: str
    conflicting_booking_id: int | None = None

    @property
    def accepted(self) -> bool:
        return False

    @classmethod
    def because(cls, reason: RejectReason, conflict: Booking | None = None) -> 'Reject':
        return cls(
            reason=reason,
            detail=REJECT_MESSAGES[reason],
            conflicting_booking_id=conflict.id if conflict is not None else None,
        )


def windows_overlap(first_start: datetime, first_end: datetime, second_start: datetime, second_end: datetime) -> bool:
    # Half-open windows: touching edges do not overlap.
    return first_start < second_end and second_start < first_end


def find_overlap(start: datetime, end: datetime, bookings: Iterable[Booking]) -> Booking | None:
    for booking in bookings:
        if booking.is_active and windows_overlap(booking.start, booking.end, start, end):
            return booking

    return None


def grid_windows(
    day: date,
    weekly_availability: Sequence[WeeklyAvailability],
    duration_minutes: int | None = None,
) -> list[list[CandidateSlot]]:
    """The slot grid of each availability window bound to ``day``."""
    windows = []
    for entry in entries_for_date(weekly_availability, day):
        day_start, day_end = bind_window(entry, day)
        windows.append(generate_slots(day_start, day_end, session_length(entry, duration_minutes)))
    return windows


def is_on_grid(
    start: datetime,
    weekly_availability: Sequence[WeeklyAvailability],
    duration_minutes: int | None = None,
    end: datetime | None = None,
) -> bool:
    """Whether ``start`` opens a slot and ``end``, if given, closes one in the same window.

    A window may cover several consecutive slots but never runs past the end
    of the availability it starts in.
    """
    for slots in grid_windows(start.date(), weekly_availability, duration_minutes):
        if not any(slot.start == start for slot in slots):
            continue
        if end is None or any(slot.end == end and slot.end > start for slot in slots):
            return True

    return False


def validate_booking(
    requested: BookingRequest,
    existing_bookings: Sequence[Booking],
    weekly_availability: Sequence[WeeklyAvailability],
    duration_minutes: int | None = None,
    now: datetime | None = None,
) -> Accept | Reject:
    if requested.start >= requested.end:
        return Reject.because(RejectReason.MALFORMED_WINDOW)

    if now is not None and requested.start < now:
        return Reject.because(RejectReason.PAST_WINDOW)

    if not is_on_grid(requested.start, weekly_availability, duration_minutes, end=requested.end):
        return Reject.because(RejectReason.NOT_ON_GRID)

    same_psychologist = [
        booking for booking in existing_bookings
        if booking.psychologist_id == requested.psychologist_id
    ]
    conflict = find_overlap(requested.start, requested.end, same_psychologist)
    if conflict is not None:
        return Reject.because(RejectReason.SLOT_UNAVAILABLE, conflict)

    if requested.client_id is not None:
        same_client = [booking for booking in existing_bookings if booking.client_id == requested.client_id]
        conflict = find_overlap(requested.start, requested.end, same_client)
        if conflict is not None:
            return Reject.because(RejectReason.CLIENT_UNAVAILABLE, conflict)

    return Accept(request=requested)


def open_slots(
    candidates: Iterable[CandidateSlot],
    existing_bookings: Sequence[Booking],
    now: datetime | None = None,
) -> list[CandidateSlot]:
    """Candidates that start in the future and clash with no active booking."""
    return [
        slot for slot in candidates
        if (now is None or slot.start >= now) and find_overlap(slot.start, slot.end, existing_bookings) is None
    ]
