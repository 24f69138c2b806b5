"""Lifecycle rules for a booking.

booked -> inProgress -> completed
booked -> cancelled, inProgress -> cancelled
booked -> missed, once the window has ended without anyone joining

completed, cancelled and missed are final.
"""

from collections.abc import Iterable
from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict

from scheduler.engine.types import Booking, BookingStatus

DEFAULT_JOIN_EARLY = timedelta(minutes=5)

LEGAL_TRANSITIONS = {
    BookingStatus.BOOKED: frozenset({BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED, BookingStatus.MISSED}),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
}


class IllegalTransition(BaseModel):
    model_config = ConfigDict(frozen=True)

    booking: Booking
    target: BookingStatus
    detail: str


def can_join(booking: Booking, now: datetime, join_early: timedelta = DEFAULT_JOIN_EARLY) -> bool:
    return booking.status == BookingStatus.BOOKED and booking.start - join_early <= now < booking.end


def _timing_error(booking: Booking, target: BookingStatus, now: datetime, join_early: timedelta) -> str | None:
    if target == BookingStatus.IN_PROGRESS and not can_join(booking, now, join_early):
        if now >= booking.end:
            return 'The session window has already ended.'
        return 'The session cannot be joined yet.'

    if booking.status == BookingStatus.BOOKED and target == BookingStatus.CANCELLED and now >= booking.end:
        return 'The session window has ended; it can only be marked as missed.'

    if target == BookingStatus.MISSED and now < booking.end:
        return 'A session can only be marked as missed after it ends.'

    return None


def check_transition(
    booking: Booking,
    target: BookingStatus,
    now: datetime,
    join_early: timedelta = DEFAULT_JOIN_EARLY,
) -> str | None:
    """Return why ``booking`` cannot move to ``target`` at ``now``, or None if it can."""
    if booking.is_terminal:
        return f'Booking is already {booking.status.value}.'

    if target not in LEGAL_TRANSITIONS.get(booking.status, frozenset()):
        return f'Cannot move a booking from {booking.status.value} to {target.value}.'

    return _timing_error(booking, target, now, join_early)


def transition(
    booking: Booking,
    target: BookingStatus,
    now: datetime,
    reason: str | None = None,
    join_early: timedelta = DEFAULT_JOIN_EARLY,
) -> Booking | IllegalTransition:
    error = check_transition(booking, target, now, join_early)
    if error is not None:
        return IllegalTransition(booking=booking, target=target, detail=error)

    changes: dict[str, object] = {'status': target, 'version': booking.version + 1}
    if target == BookingStatus.IN_PROGRESS:
        changes['joined_at'] = now
    elif target == BookingStatus.COMPLETED:
        changes['completed_at'] = now
    elif target == BookingStatus.CANCELLED:
        changes['cancelled_at'] = now
        changes['cancellation_reason'] = reason

    return booking.model_copy(update=changes)


def allowed_targets(
    booking: Booking,
    now: datetime,
    join_early: timedelta = DEFAULT_JOIN_EARLY,
) -> set[BookingStatus]:
    return {
        target for target in LEGAL_TRANSITIONS.get(booking.status, frozenset())
        if check_transition(booking, target, now, join_early) is None
    }


def overdue_bookings(bookings: Iterable[Booking], now: datetime) -> list[Booking]:
    """Booked sessions whose window has passed without anyone joining."""
    return [booking for booking in bookings if booking.status == BookingStatus.BOOKED and now >= booking.end]
