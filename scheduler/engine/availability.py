"""Expand weekly availability into concrete slots over a date range."""

from collections.abc import Iterator, Sequence
from datetime import date, datetime, timedelta

from pydantic import BaseModel, ConfigDict

from scheduler.engine.slots import generate_slots
from scheduler.engine.time_periods import TimePeriod, classify_range
from scheduler.engine.types import CandidateSlot, WeeklyAvailability


class DaySchedule(BaseModel):
    """One available date: its base window, the periods it touches and its slots."""

    model_config = ConfigDict(frozen=True)

    date: date
    start: datetime
    end: datetime
    time_periods: frozenset[TimePeriod]
    slots: tuple[CandidateSlot, ...]


def day_of_week(day: date) -> int:
    """Weekday number with 0 = Sunday through 6 = Saturday."""
    return (day.weekday() + 1) % 7


def iterate_dates(range_start: date, range_end: date) -> Iterator[date]:
    current = range_start
    while current <= range_end:
        yield current
        current += timedelta(days=1)


def entries_for_date(weekly_availability: Sequence[WeeklyAvailability], day: date) -> list[WeeklyAvailability]:
    weekday = day_of_week(day)
    return [entry for entry in weekly_availability if entry.available and entry.day_of_week == weekday]


def bind_window(entry: WeeklyAvailability, day: date) -> tuple[datetime, datetime]:
    return datetime.combine(day, entry.start_time), datetime.combine(day, entry.end_time)


def session_length(entry: WeeklyAvailability, duration_minutes: int | None = None) -> int:
    # An explicit override wins even when it is zero or negative.
    return duration_minutes if duration_minutes is not None else entry.session_duration


def expand_availability(
    weekly_availability: Sequence[WeeklyAvailability],
    range_start: date,
    range_end: date,
    duration_minutes: int | None = None,
) -> list[CandidateSlot]:
    """Candidate slots for every available date in ``[range_start, range_end]``.

    ``duration_minutes`` overrides each entry's own session duration. Results
    are ordered by start; entries sharing a weekday keep their input order on
    ties. An inverted range is simply empty.
    """
    slots: list[CandidateSlot] = []

    for day in iterate_dates(range_start, range_end):
        for entry in entries_for_date(weekly_availability, day):
            day_start, day_end = bind_window(entry, day)
            slots.extend(generate_slots(day_start, day_end, session_length(entry, duration_minutes)))

    return sorted(slots, key=lambda slot: slot.start)


def build_day_schedules(
    weekly_availability: Sequence[WeeklyAvailability],
    range_start: date,
    range_end: date,
    duration_minutes: int | None = None,
) -> list[DaySchedule]:
    schedules: list[DaySchedule] = []

    for day in iterate_dates(range_start, range_end):
        for entry in entries_for_date(weekly_availability, day):
            day_start, day_end = bind_window(entry, day)
            # The end instant itself is not worked, so stop at the last minute inside the window.
            last_hour = (day_end - timedelta(minutes=1)).hour
            schedules.append(
                DaySchedule(
                    date=day,
                    start=day_start,
                    end=day_end,
                    time_periods=frozenset(classify_range(day_start.hour, last_hour)),
                    slots=tuple(generate_slots(day_start, day_end, session_length(entry, duration_minutes))),
                )
            )

    return schedules
