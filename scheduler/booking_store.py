"""Storage side of the scheduling engine.

Reads availability and appointments from the database as plain engine data,
and writes bookings back so that concurrent requests cannot both win:

* ``create_booking`` locks the psychologist row, re-runs the conflict check and
  inserts in one transaction. After the insert is flushed it looks for any
  other active booking overlapping the new window and backs out if one
  appeared. The partial unique index on active ``(psychologist_id, start_time)``
  rejects equal starts outright.
* ``commit_transition`` only updates a row whose ``version`` still matches the
  copy the transition was computed from.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scheduler.engine.booking_state import DEFAULT_JOIN_EARLY, IllegalTransition, overdue_bookings, transition
from scheduler.engine.conflicts import Accept, Reject, RejectReason, validate_booking
from scheduler.engine.types import (
    ACTIVE_STATUSES,
    Booking,
    BookingRequest,
    BookingStatus,
    WeeklyAvailability,
)
from scheduler.models.appointment import Appointment
from scheduler.models.availability import WeeklyAvailabilityEntry
from scheduler.models.psychologist import Psychologist

logger = logging.getLogger(__name__)

ACTIVE_STATUS_VALUES = [status.value for status in ACTIVE_STATUSES]


class UnknownPsychologist(LookupError):
    pass


class UnknownAppointment(LookupError):
    pass


def to_weekly_availability(entry: WeeklyAvailabilityEntry) -> WeeklyAvailability:
    return WeeklyAvailability(
        day_of_week=entry.day_of_week,
        available=entry.available,
        start_time=entry.start_time,
        end_time=entry.end_time,
        session_duration=entry.session_duration,
    )


def to_booking(appointment: Appointment) -> Booking:
    return Booking(
        id=appointment.id,
        psychologist_id=appointment.psychologist_id,
        client_id=appointment.client_id,
        start=appointment.start_time,
        end=appointment.end_time,
        status=BookingStatus(appointment.status),
        version=appointment.version or 0,
        joined_at=appointment.joined_at,
        completed_at=appointment.completed_at,
        cancelled_at=appointment.cancelled_at,
        cancellation_reason=appointment.cancellation_reason,
    )


def get_psychologist(db: Session, psychologist_id: int, lock: bool = False) -> Psychologist:
    query = db.query(Psychologist).filter(Psychologist.id == psychologist_id)
    if lock:
        # Serializes bookings per psychologist on databases with row locks; SQLite ignores it.
        query = query.with_for_update()

    psychologist = query.first()
    if psychologist is None:
        raise UnknownPsychologist(psychologist_id)
    return psychologist


def load_weekly_availability(db: Session, psychologist_id: int) -> list[WeeklyAvailability]:
    entries = db.query(WeeklyAvailabilityEntry).filter(
        WeeklyAvailabilityEntry.psychologist_id == psychologist_id,
    ).order_by(WeeklyAvailabilityEntry.day_of_week.asc()).all()

    return [to_weekly_availability(entry) for entry in entries]


def replace_weekly_availability(
    db: Session,
    psychologist_id: int,
    entries: Sequence[WeeklyAvailability],
) -> list[WeeklyAvailability]:
    get_psychologist(db, psychologist_id, lock=True)

    db.query(WeeklyAvailabilityEntry).filter(
        WeeklyAvailabilityEntry.psychologist_id == psychologist_id,
    ).delete(synchronize_session=False)

    for entry in entries:
        db.add(
            WeeklyAvailabilityEntry(
                psychologist_id=psychologist_id,
                day_of_week=entry.day_of_week,
                available=entry.available,
                start_time=entry.start_time,
                end_time=entry.end_time,
                session_duration=entry.session_duration,
            )
        )

    db.commit()
    logger.info('Replaced weekly availability for psychologist %s (%d days)', psychologist_id, len(entries))
    return load_weekly_availability(db, psychologist_id)


def load_active_bookings(
    db: Session,
    psychologist_id: int,
    range_start: datetime,
    range_end: datetime,
) -> list[Booking]:
    appointments = db.query(Appointment).filter(
        Appointment.psychologist_id == psychologist_id,
        Appointment.status.in_(ACTIVE_STATUS_VALUES),
        Appointment.start_time < range_end,
        Appointment.end_time > range_start,
    ).order_by(Appointment.start_time.asc()).all()

    return [to_booking(appointment) for appointment in appointments]


def load_client_bookings(db: Session, client_id: int, range_start: datetime, range_end: datetime) -> list[Booking]:
    appointments = db.query(Appointment).filter(
        Appointment.client_id == client_id,
        Appointment.status.in_(ACTIVE_STATUS_VALUES),
        Appointment.start_time < range_end,
        Appointment.end_time > range_start,
    ).order_by(Appointment.start_time.asc()).all()

    return [to_booking(appointment) for appointment in appointments]


def list_bookings(
    db: Session,
    psychologist_id: int | None = None,
    client_id: int | None = None,
    statuses: Iterable[BookingStatus] | None = None,
) -> list[Booking]:
    query = db.query(Appointment)
    if psychologist_id is not None:
        query = query.filter(Appointment.psychologist_id == psychologist_id)
    if client_id is not None:
        query = query.filter(Appointment.client_id == client_id)
    if statuses is not None:
        query = query.filter(Appointment.status.in_([status.value for status in statuses]))

    return [to_booking(appointment) for appointment in query.order_by(Appointment.start_time.asc()).all()]


def check_booking(
    db: Session,
    request: BookingRequest,
    duration_minutes: int | None = None,
    now: datetime | None = None,
    lock: bool = False,
) -> Accept | Reject:
    get_psychologist(db, request.psychologist_id, lock=lock)

    weekly_availability = load_weekly_availability(db, request.psychologist_id)
    existing = load_active_bookings(db, request.psychologist_id, request.start, request.end)
    if request.client_id is not None:
        existing += load_client_bookings(db, request.client_id, request.start, request.end)

    return validate_booking(request, existing, weekly_availability, duration_minutes, now)


def create_booking(
    db: Session,
    request: BookingRequest,
    duration_minutes: int | None = None,
    now: datetime | None = None,
) -> Booking | Reject:
    outcome = check_booking(db, request, duration_minutes, now, lock=True)
    if isinstance(outcome, Reject):
        db.rollback()
        logger.info(
            'Rejected booking for psychologist %s at %s: %s',
            request.psychologist_id, request.start, outcome.reason.value,
        )
        return outcome

    appointment = Appointment(
        psychologist_id=request.psychologist_id,
        client_id=request.client_id,
        start_time=request.start,
        end_time=request.end,
        status=BookingStatus.BOOKED.value,
        version=0,
    )
    db.add(appointment)

    try:
        db.flush()
        # The start index only catches equal starts; windows spanning several slots are re-checked here.
        clashes = [
            booking for booking in load_active_bookings(db, request.psychologist_id, request.start, request.end)
            if booking.id != appointment.id
        ]
        if clashes:
            db.rollback()
            logger.warning(
                'Booking for psychologist %s at %s overlaps appointment %s stored concurrently',
                request.psychologist_id, request.start, clashes[0].id,
            )
            return Reject.because(RejectReason.SLOT_UNAVAILABLE, clashes[0])

        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning(
            'Storage rejected a concurrent booking for psychologist %s at %s',
            request.psychologist_id, request.start,
        )
        return Reject.because(RejectReason.SLOT_UNAVAILABLE)

    db.refresh(appointment)
    logger.info('Booked appointment %s for psychologist %s at %s', appointment.id, request.psychologist_id, request.start)
    return to_booking(appointment)


def commit_transition(db: Session, current: Booking, updated: Booking) -> Booking | IllegalTransition:
    rows = db.query(Appointment).filter(
        Appointment.id == current.id,
        Appointment.version == current.version,
    ).update(
        {
            Appointment.status: updated.status.value,
            Appointment.version: updated.version,
            Appointment.joined_at: updated.joined_at,
            Appointment.completed_at: updated.completed_at,
            Appointment.cancelled_at: updated.cancelled_at,
            Appointment.cancellation_reason: updated.cancellation_reason,
        },
        synchronize_session=False,
    )

    if rows == 0:
        db.rollback()
        logger.warning('Stale transition of appointment %s to %s', current.id, updated.status.value)
        return IllegalTransition(
            booking=current,
            target=updated.status,
            detail='Appointment was changed by another request.',
        )

    db.commit()
    return updated


def apply_transition(
    db: Session,
    appointment_id: int,
    target: BookingStatus,
    now: datetime,
    reason: str | None = None,
    join_early: timedelta = DEFAULT_JOIN_EARLY,
) -> Booking | IllegalTransition:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if appointment is None:
        raise UnknownAppointment(appointment_id)

    current = to_booking(appointment)
    result = transition(current, target, now, reason=reason, join_early=join_early)
    if isinstance(result, IllegalTransition):
        return result

    return commit_transition(db, current, result)


def mark_overdue_missed(db: Session, now: datetime, psychologist_id: int | None = None) -> list[Booking]:
    booked = list_bookings(db, psychologist_id=psychologist_id, statuses=[BookingStatus.BOOKED])

    missed: list[Booking] = []
    for booking in overdue_bookings(booked, now):
        result = transition(booking, BookingStatus.MISSED, now)
        if isinstance(result, IllegalTransition):
            continue

        committed = commit_transition(db, booking, result)
        if isinstance(committed, Booking):
            missed.append(committed)

    if missed:
        logger.info('Marked %d overdue appointments as missed', len(missed))
    return missed
