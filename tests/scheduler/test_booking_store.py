from datetime import datetime, time

import pytest

from scheduler.booking_store import (
    UnknownAppointment,
    UnknownPsychologist,
    apply_transition,
    commit_transition,
    create_booking,
    list_bookings,
    load_active_bookings,
    load_weekly_availability,
    mark_overdue_missed,
    replace_weekly_availability,
    to_booking,
)
from scheduler.engine.booking_state import IllegalTransition, transition
from scheduler.engine.conflicts import Accept, Reject, RejectReason
from scheduler.engine.types import Booking, BookingRequest, BookingStatus, WeeklyAvailability
from scheduler.models.appointment import Appointment

NOW = datetime(2026, 1, 1, 8, 0)


def monday(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 1, 5, hour, minute)


def test_load_weekly_availability_returns_engine_entries(db, psychologist) -> None:
    weekly = load_weekly_availability(db, psychologist.id)

    assert [entry.day_of_week for entry in weekly] == [1, 3]
    assert weekly[0] == WeeklyAvailability(
        day_of_week=1,
        start_time=time(9, 0),
        end_time=time(12, 0),
        session_duration=60,
    )


def test_replace_weekly_availability_overwrites_previous_days(db, psychologist) -> None:
    replaced = replace_weekly_availability(
        db,
        psychologist.id,
        [WeeklyAvailability(day_of_week=2, start_time=time(17, 0), end_time=time(20, 0), session_duration=45)],
    )

    assert [entry.day_of_week for entry in replaced] == [2]
    assert load_weekly_availability(db, psychologist.id) == replaced


def test_replace_weekly_availability_requires_known_psychologist(db) -> None:
    with pytest.raises(UnknownPsychologist):
        replace_weekly_availability(db, 404, [])


def test_create_booking_persists_booked_appointment(db, psychologist) -> None:
    request = BookingRequest(psychologist_id=psychologist.id, start=monday(9), end=monday(10), client_id=3)

    booking = create_booking(db, request, now=NOW)

    assert isinstance(booking, Booking)
    assert booking.id is not None
    assert booking.status == BookingStatus.BOOKED
    assert booking.version == 0
    assert list_bookings(db, client_id=3) == [booking]


def test_create_booking_rejects_overlap_with_stored_booking(db, psychologist) -> None:
    first = create_booking(
        db,
        BookingRequest(psychologist_id=psychologist.id, start=monday(10), end=monday(11)),
        now=NOW,
    )
    assert isinstance(first, Booking)

    second = create_booking(
        db,
        BookingRequest(psychologist_id=psychologist.id, start=monday(10), end=monday(11)),
        now=NOW,
    )

    assert isinstance(second, Reject)
    assert second.reason == RejectReason.SLOT_UNAVAILABLE
    assert second.conflicting_booking_id == first.id
    assert len(list_bookings(db, psychologist_id=psychologist.id)) == 1


def test_create_booking_rejects_off_grid_request(db, psychologist) -> None:
    outcome = create_booking(
        db,
        BookingRequest(psychologist_id=psychologist.id, start=monday(9, 15), end=monday(10, 15)),
        now=NOW,
    )

    assert isinstance(outcome, Reject)
    assert outcome.reason == RejectReason.NOT_ON_GRID


def test_create_booking_requires_known_psychologist(db) -> None:
    with pytest.raises(UnknownPsychologist):
        create_booking(db, BookingRequest(psychologist_id=404, start=monday(9), end=monday(10)), now=NOW)


def test_storage_index_rejects_double_booking_that_passes_precheck(
    db,
    psychologist,
    add_appointment,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    add_appointment(psychologist.id, monday(9), monday(10))
    request = BookingRequest(psychologist_id=psychologist.id, start=monday(9), end=monday(10))
    # Simulates a competing request that committed after this one ran its check.
    monkeypatch.setattr('scheduler.booking_store.validate_booking', lambda *args, **kwargs: Accept(request=request))

    outcome = create_booking(db, request, now=NOW)

    assert isinstance(outcome, Reject)
    assert outcome.reason == RejectReason.SLOT_UNAVAILABLE
    assert len(list_bookings(db, psychologist_id=psychologist.id)) == 1


def test_cancelled_booking_frees_its_start_time(db, psychologist) -> None:
    request = BookingRequest(psychologist_id=psychologist.id, start=monday(11), end=monday(12))
    first = create_booking(db, request, now=NOW)

    cancelled = apply_transition(db, first.id, BookingStatus.CANCELLED, NOW, reason='Rescheduling')
    assert isinstance(cancelled, Booking)
    assert cancelled.status == BookingStatus.CANCELLED

    second = create_booking(db, request, now=NOW)

    assert isinstance(second, Booking)
    assert second.id != first.id
    assert load_active_bookings(db, psychologist.id, monday(0), monday(23)) == [second]


def test_apply_transition_persists_status_and_version(db, psychologist, add_appointment) -> None:
    appointment = add_appointment(psychologist.id, monday(10), monday(11))

    result = apply_transition(db, appointment.id, BookingStatus.IN_PROGRESS, monday(10, 2))

    assert isinstance(result, Booking)
    stored = to_booking(db.query(Appointment).filter(Appointment.id == appointment.id).first())
    assert stored.status == BookingStatus.IN_PROGRESS
    assert stored.version == 1
    assert stored.joined_at == monday(10, 2)


def test_apply_transition_returns_illegal_transition_without_writing(db, psychologist, add_appointment) -> None:
    appointment = add_appointment(psychologist.id, monday(10), monday(11))

    result = apply_transition(db, appointment.id, BookingStatus.COMPLETED, monday(10, 30))

    assert isinstance(result, IllegalTransition)
    stored = db.query(Appointment).filter(Appointment.id == appointment.id).first()
    assert stored.status == 'booked'
    assert stored.version == 0


def test_apply_transition_unknown_appointment(db) -> None:
    with pytest.raises(UnknownAppointment):
        apply_transition(db, 12345, BookingStatus.CANCELLED, NOW)


def test_racing_transitions_resolve_to_first_commit(db, psychologist, add_appointment) -> None:
    appointment = add_appointment(psychologist.id, monday(10), monday(11), status='inProgress')
    snapshot = to_booking(appointment)

    cancelled = transition(snapshot, BookingStatus.CANCELLED, monday(10, 30))
    completed = transition(snapshot, BookingStatus.COMPLETED, monday(10, 30))

    assert isinstance(commit_transition(db, snapshot, cancelled), Booking)
    loser = commit_transition(db, snapshot, completed)

    assert isinstance(loser, IllegalTransition)
    assert loser.target == BookingStatus.COMPLETED
    stored = db.query(Appointment).filter(Appointment.id == appointment.id).first()
    assert stored.status == 'cancelled'


def test_mark_overdue_missed_sweeps_elapsed_bookings(db, psychologist, add_appointment) -> None:
    overdue = add_appointment(psychologist.id, monday(9), monday(10))
    add_appointment(psychologist.id, monday(10), monday(11), status='inProgress')
    upcoming = add_appointment(psychologist.id, monday(11), monday(12))

    missed = mark_overdue_missed(db, monday(10, 30))

    assert [booking.id for booking in missed] == [overdue.id]
    assert missed[0].status == BookingStatus.MISSED
    assert mark_overdue_missed(db, monday(10, 30)) == []
    assert list_bookings(db, statuses=[BookingStatus.BOOKED])[0].id == upcoming.id


def test_create_booking_rejects_window_past_end_of_availability(db, psychologist) -> None:
    outcome = create_booking(
        db,
        BookingRequest(psychologist_id=psychologist.id, start=monday(11), end=monday(14)),
        now=NOW,
    )

    assert isinstance(outcome, Reject)
    assert outcome.reason == RejectReason.NOT_ON_GRID
    assert list_bookings(db, psychologist_id=psychologist.id) == []


def test_overlap_stored_after_precheck_is_caught_before_commit(
    db,
    psychologist,
    add_appointment,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    stored = add_appointment(psychologist.id, monday(10), monday(11))
    request = BookingRequest(psychologist_id=psychologist.id, start=monday(9), end=monday(11))
    # Different start from the stored booking, so the start index alone would not stop it.
    monkeypatch.setattr('scheduler.booking_store.validate_booking', lambda *args, **kwargs: Accept(request=request))

    outcome = create_booking(db, request, now=NOW)

    assert isinstance(outcome, Reject)
    assert outcome.reason == RejectReason.SLOT_UNAVAILABLE
    assert outcome.conflicting_booking_id == stored.id
    assert [booking.id for booking in list_bookings(db, psychologist_id=psychologist.id)] == [stored.id]
