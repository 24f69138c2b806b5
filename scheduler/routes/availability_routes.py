from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scheduler.booking_store import (
    UnknownPsychologist,
    get_psychologist,
    load_active_bookings,
    load_weekly_availability,
    replace_weekly_availability,
)
from scheduler.core import config
from scheduler.engine.availability import build_day_schedules, expand_availability
from scheduler.engine.conflicts import open_slots
from scheduler.engine.time_periods import TimePeriod, period_bounds
from scheduler.engine.types import CandidateSlot, WeeklyAvailability
from scheduler.routes.dependencies import DATABASE_UNAVAILABLE, current_time, ensure_database_ready, get_db

router = APIRouter(tags=['availability'])

MAX_RANGE_DAYS = config.SLOT_RANGE_DAYS
DEFAULT_RANGE_DAYS = min(14, MAX_RANGE_DAYS)


class WeeklyAvailabilityPayload(WeeklyAvailability):
    @field_validator('session_duration')
    @classmethod
    def validate_session_duration(cls, value: int) -> int:
        if not config.MIN_SESSION_DURATION_MINUTES <= value <= config.MAX_SESSION_DURATION_MINUTES:
            raise ValueError(
                f'Session duration must be between {config.MIN_SESSION_DURATION_MINUTES} '
                f'and {config.MAX_SESSION_DURATION_MINUTES} minutes.'
            )
        return value

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_wall_clock(cls, value: time | None) -> time | None:
        if value is not None and value.tzinfo is not None:
            raise ValueError('Times must be wall-clock values without a timezone offset.')
        return value


class UpdateWeeklyAvailabilityRequest(BaseModel):
    days: list[WeeklyAvailabilityPayload]

    @field_validator('days')
    @classmethod
    def validate_unique_days(cls, value: list[WeeklyAvailabilityPayload]) -> list[WeeklyAvailabilityPayload]:
        seen = [entry.day_of_week for entry in value]
        if len(seen) != len(set(seen)):
            raise ValueError('Each day of the week may only appear once.')
        return value


class WeeklyAvailabilityResponse(BaseModel):
    day_of_week: int
    available: bool
    start_time: time | None = None
    end_time: time | None = None
    session_duration: int


class SlotResponse(BaseModel):
    date: date
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    time_periods: list[TimePeriod]


class DayScheduleResponse(BaseModel):
    date: date
    start_time: datetime
    end_time: datetime
    time_periods: list[TimePeriod]
    slots: list[SlotResponse]


class TimePeriodResponse(BaseModel):
    period: TimePeriod
    label: str
    start_hour: int
    end_hour: int


def ordered_periods(periods: frozenset[TimePeriod]) -> list[TimePeriod]:
    return [period for period in TimePeriod if period in periods]


def to_slot_response(slot: CandidateSlot) -> SlotResponse:
    return SlotResponse(
        date=slot.start.date(),
        start_time=slot.start,
        end_time=slot.end,
        duration_minutes=slot.duration_minutes,
        time_periods=ordered_periods(slot.time_periods),
    )


def to_weekly_response(entry: WeeklyAvailability) -> WeeklyAvailabilityResponse:
    return WeeklyAvailabilityResponse(**entry.model_dump())


def resolve_range(start: date | None, days: int) -> tuple[date, date]:
    range_start = start or current_time().date()
    return range_start, range_start + timedelta(days=days - 1)


def psychologist_not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail='Psychologist not found.',
    )


@router.get('/time-periods', response_model=list[TimePeriodResponse])
def list_time_periods():
    return [
        TimePeriodResponse(
            period=period,
            label=period.label,
            start_hour=period_bounds(period)[0],
            end_hour=period_bounds(period)[1],
        )
        for period in TimePeriod
    ]


@router.get('/{psychologist_id}/weekly', response_model=list[WeeklyAvailabilityResponse])
def get_weekly_availability(psychologist_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        get_psychologist(db, psychologist_id)
        return [to_weekly_response(entry) for entry in load_weekly_availability(db, psychologist_id)]
    except UnknownPsychologist as exc:
        raise psychologist_not_found() from exc
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.put('/{psychologist_id}/weekly', response_model=list[WeeklyAvailabilityResponse])
def update_weekly_availability(
    psychologist_id: int,
    data: UpdateWeeklyAvailabilityRequest,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        entries = replace_weekly_availability(db, psychologist_id, data.days)
        return [to_weekly_response(entry) for entry in entries]
    except UnknownPsychologist as exc:
        db.rollback()
        raise psychologist_not_found() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('/{psychologist_id}/slots', response_model=list[SlotResponse])
def list_open_slots(
    psychologist_id: int,
    start: date | None = Query(default=None),
    days: int = Query(default=DEFAULT_RANGE_DAYS, ge=1, le=MAX_RANGE_DAYS),
    duration: int | None = Query(
        default=None,
        ge=config.MIN_SESSION_DURATION_MINUTES,
        le=config.MAX_SESSION_DURATION_MINUTES,
    ),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        get_psychologist(db, psychologist_id)
        range_start, range_end = resolve_range(start, days)
        weekly_availability = load_weekly_availability(db, psychologist_id)
        candidates = expand_availability(weekly_availability, range_start, range_end, duration)
        bookings = load_active_bookings(
            db,
            psychologist_id,
            datetime.combine(range_start, time.min),
            datetime.combine(range_end + timedelta(days=1), time.min),
        )

        return [to_slot_response(slot) for slot in open_slots(candidates, bookings, current_time())]
    except UnknownPsychologist as exc:
        raise psychologist_not_found() from exc
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('/{psychologist_id}/schedule', response_model=list[DayScheduleResponse])
def list_day_schedules(
    psychologist_id: int,
    start: date | None = Query(default=None),
    days: int = Query(default=7, ge=1, le=MAX_RANGE_DAYS),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        get_psychologist(db, psychologist_id)
        range_start, range_end = resolve_range(start, days)
        schedules = build_day_schedules(load_weekly_availability(db, psychologist_id), range_start, range_end)

        return [
            DayScheduleResponse(
                date=schedule.date,
                start_time=schedule.start,
                end_time=schedule.end,
                time_periods=ordered_periods(schedule.time_periods),
                slots=[to_slot_response(slot) for slot in schedule.slots],
            )
            for schedule in schedules
        ]
    except UnknownPsychologist as exc:
        raise psychologist_not_found() from exc
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc
