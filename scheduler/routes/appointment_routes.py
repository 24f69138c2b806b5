from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scheduler.booking_store import (
    UnknownAppointment,
    UnknownPsychologist,
    apply_transition,
    check_booking,
    create_booking,
    list_bookings,
    load_weekly_availability,
    mark_overdue_missed,
)
from scheduler.core import config
from scheduler.engine.availability import day_of_week
from scheduler.engine.booking_state import IllegalTransition
from scheduler.engine.conflicts import Reject, RejectReason
from scheduler.engine.time_periods import TimePeriod, classify, count_by_period
from scheduler.engine.types import ACTIVE_STATUSES, Booking, BookingRequest, BookingStatus
from scheduler.routes.dependencies import (
    DATABASE_UNAVAILABLE,
    current_time,
    ensure_database_ready,
    get_db,
    require_naive,
)

router = APIRouter(tags=['appointments'])

MAX_CANCELLATION_REASON_LENGTH = 600

REJECT_STATUS_CODES = {
    RejectReason.MALFORMED_WINDOW: status.HTTP_400_BAD_REQUEST,
    RejectReason.PAST_WINDOW: status.HTTP_400_BAD_REQUEST,
    RejectReason.NOT_ON_GRID: status.HTTP_400_BAD_REQUEST,
    RejectReason.SLOT_UNAVAILABLE: status.HTTP_409_CONFLICT,
    RejectReason.CLIENT_UNAVAILABLE: status.HTTP_409_CONFLICT,
}


class AppointmentWindowRequest(BaseModel):
    psychologist_id: int
    client_id: int | None = None
    start_time: datetime
    end_time: datetime | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_wall_clock(cls, value: datetime | None) -> datetime | None:
        value = require_naive(value)
        if value is None:
            return None
        return value.replace(second=0, microsecond=0)


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_CANCELLATION_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_CANCELLATION_REASON_LENGTH} characters or fewer.')

        return normalized


class AppointmentResponse(BaseModel):
    id: int
    psychologist_id: int
    client_id: int | None = None
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    time_period: TimePeriod
    status: BookingStatus
    version: int
    joined_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None


class AvailabilityCheckResponse(BaseModel):
    available: bool
    start_time: datetime
    end_time: datetime
    message: str


class PeriodCountResponse(BaseModel):
    period: TimePeriod
    label: str
    count: int


def to_appointment_response(booking: Booking) -> AppointmentResponse:
    return AppointmentResponse(
        id=booking.id,
        psychologist_id=booking.psychologist_id,
        client_id=booking.client_id,
        start_time=booking.start,
        end_time=booking.end,
        duration_minutes=int((booking.end - booking.start).total_seconds() // 60),
        time_period=classify(booking.start.hour),
        status=booking.status,
        version=booking.version,
        joined_at=booking.joined_at,
        completed_at=booking.completed_at,
        cancelled_at=booking.cancelled_at,
        cancellation_reason=booking.cancellation_reason,
    )


def reject_to_http(outcome: Reject) -> HTTPException:
    return HTTPException(status_code=REJECT_STATUS_CODES[outcome.reason], detail=outcome.detail)


def database_unavailable() -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE)


def session_duration_for(db: Session, psychologist_id: int, start_time: datetime) -> int:
    weekday = day_of_week(start_time.date())
    for entry in load_weekly_availability(db, psychologist_id):
        if entry.available and entry.day_of_week == weekday:
            return entry.session_duration
    return config.DEFAULT_SESSION_DURATION_MINUTES


def build_booking_request(data: AppointmentWindowRequest, db: Session) -> BookingRequest:
    end_time = data.end_time
    if end_time is None:
        end_time = data.start_time + timedelta(minutes=session_duration_for(db, data.psychologist_id, data.start_time))

    if end_time > data.start_time:
        duration_minutes = (end_time - data.start_time).total_seconds() // 60
        if not config.MIN_SESSION_DURATION_MINUTES <= duration_minutes <= config.MAX_SESSION_DURATION_MINUTES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=(
                    f'Duration must be between {config.MIN_SESSION_DURATION_MINUTES} '
                    f'and {config.MAX_SESSION_DURATION_MINUTES} minutes.'
                ),
            )

    return BookingRequest(
        psychologist_id=data.psychologist_id,
        client_id=data.client_id,
        start=data.start_time,
        end=end_time,
    )


def run_transition(
    appointment_id: int,
    target: BookingStatus,
    db: Session,
    reason: str | None = None,
) -> AppointmentResponse:
    ensure_database_ready()

    try:
        result = apply_transition(
            db,
            appointment_id,
            target,
            current_time(),
            reason=reason,
            join_early=timedelta(minutes=config.JOIN_EARLY_MINUTES),
        )
    except UnknownAppointment as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Appointment not found.',
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    if isinstance(result, IllegalTransition):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.detail)

    return to_appointment_response(result)


@router.post('/check-availability', response_model=AvailabilityCheckResponse)
def check_availability(data: AppointmentWindowRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        request = build_booking_request(data, db)
        outcome = check_booking(db, request, now=current_time())
    except UnknownPsychologist as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Psychologist not found.',
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    if isinstance(outcome, Reject):
        raise reject_to_http(outcome)

    return AvailabilityCheckResponse(
        available=True,
        start_time=request.start,
        end_time=request.end,
        message='Time slot is available.',
    )


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(data: AppointmentWindowRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        request = build_booking_request(data, db)
        outcome = create_booking(db, request, now=current_time())
    except UnknownPsychologist as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Psychologist not found.',
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    if isinstance(outcome, Reject):
        raise reject_to_http(outcome)

    return to_appointment_response(outcome)


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    psychologist_id: int | None = Query(default=None),
    client_id: int | None = Query(default=None),
    status_filter: BookingStatus | None = Query(default=None, alias='status'),
    db: Session = Depends(get_db),
):
    if psychologist_id is None and client_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='A psychologist or client is required.',
        )

    ensure_database_ready()

    try:
        statuses = [status_filter] if status_filter is not None else None
        bookings = list_bookings(db, psychologist_id=psychologist_id, client_id=client_id, statuses=statuses)
        return [to_appointment_response(booking) for booking in bookings]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/period-counts', response_model=list[PeriodCountResponse])
def count_appointments_by_period(
    psychologist_id: int = Query(...),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        bookings = list_bookings(db, psychologist_id=psychologist_id, statuses=ACTIVE_STATUSES)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    counts = count_by_period(booking.start for booking in bookings)
    return [
        PeriodCountResponse(period=period, label=period.label, count=count)
        for period, count in counts.items()
    ]


@router.post('/reconcile', response_model=list[AppointmentResponse])
def reconcile_missed_appointments(
    psychologist_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        missed = mark_overdue_missed(db, current_time(), psychologist_id=psychologist_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return [to_appointment_response(booking) for booking in missed]


@router.post('/{appointment_id}/join', response_model=AppointmentResponse)
def join_appointment(appointment_id: int, db: Session = Depends(get_db)):
    return run_transition(appointment_id, BookingStatus.IN_PROGRESS, db)


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(appointment_id: int, db: Session = Depends(get_db)):
    return run_transition(appointment_id, BookingStatus.COMPLETED, db)


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest | None = None,
    db: Session = Depends(get_db),
):
    reason = data.reason if data is not None else None
    return run_transition(appointment_id, BookingStatus.CANCELLED, db, reason=reason)


@router.post('/{appointment_id}/no-show', response_model=AppointmentResponse)
def mark_no_show(appointment_id: int, db: Session = Depends(get_db)):
    return run_transition(appointment_id, BookingStatus.MISSED, db)
