"""Split a single working window into fixed-length session slots."""

from datetime import datetime, timedelta

from scheduler.engine.time_periods import classify
from scheduler.engine.types import CandidateSlot


def generate_slots(day_start: datetime, day_end: datetime, duration_minutes: int) -> list[CandidateSlot]:
    """Return back-to-back slots of ``duration_minutes`` from ``day_start``.

    The trailing remainder that cannot hold a full session is dropped, so no
    slot ends after ``day_end``. A non-positive duration or an empty window
    gives an empty list.
    """
    if duration_minutes <= 0 or day_start >= day_end:
        return []

    duration = timedelta(minutes=duration_minutes)
    slots: list[CandidateSlot] = []
    cursor = day_start

    while cursor + duration <= day_end:
        slots.append(
            CandidateSlot(
                start=cursor,
                end=cursor + duration,
                duration_minutes=duration_minutes,
                time_periods=frozenset({classify(cursor.hour)}),
            )
        )
        cursor += duration

    return slots
