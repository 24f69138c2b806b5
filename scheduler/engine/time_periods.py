"""Time-of-day buckets used to group slots for display."""

from collections.abc import Iterable
from datetime import datetime
from enum import Enum


class TimePeriod(str, Enum):
    MORNING = 'MORNING'
    AFTERNOON = 'AFTERNOON'
    EVENING = 'EVENING'
    NIGHT = 'NIGHT'

    @property
    def label(self) -> str:
        return self.value.capitalize()


# Inclusive hour ranges, contiguous over 0..23.
PERIOD_HOURS = {
    TimePeriod.MORNING: (0, 11),
    TimePeriod.AFTERNOON: (12, 16),
    TimePeriod.EVENING: (17, 20),
    TimePeriod.NIGHT: (21, 23),
}


def _check_hour(hour: int) -> None:
    if not 0 <= hour <= 23:
        raise ValueError(f'Hour must be between 0 and 23, got {hour}.')


def classify(hour: int) -> TimePeriod:
    _check_hour(hour)
    for period, (first_hour, last_hour) in PERIOD_HOURS.items():
        if first_hour <= hour <= last_hour:
            return period

    raise AssertionError(f'No period covers hour {hour}.')


def classify_range(start_hour: int, end_hour: int) -> set[TimePeriod]:
    """Collect the period of every whole hour from start_hour through end_hour.

    Used for summaries such as "offers morning and afternoon sessions", never
    for tagging a single slot. An inverted range yields an empty set.
    """
    _check_hour(start_hour)
    _check_hour(end_hour)

    return {classify(hour) for hour in range(start_hour, end_hour + 1)}


def period_bounds(period: TimePeriod) -> tuple[int, int]:
    return PERIOD_HOURS[period]


def count_by_period(starts: Iterable[datetime]) -> dict[TimePeriod, int]:
    counts = {period: 0 for period in TimePeriod}
    for start in starts:
        counts[classify(start.hour)] += 1

    return counts
