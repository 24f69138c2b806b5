from datetime import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from scheduler.database import Base
from scheduler.models.appointment import Appointment
from scheduler.models.availability import WeeklyAvailabilityEntry
from scheduler.models.psychologist import Psychologist

MONDAY = 1
WEDNESDAY = 3


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def psychologist(db) -> Psychologist:
    provider = Psychologist(email='provider@example.com', full_name='Dr. Provider')
    db.add(provider)
    db.flush()

    # Mondays 09:00-12:00 in hourly sessions, Wednesdays 13:00-17:00 in 30 minute sessions.
    db.add_all(
        [
            WeeklyAvailabilityEntry(
                psychologist_id=provider.id,
                day_of_week=MONDAY,
                available=True,
                start_time=time(9, 0),
                end_time=time(12, 0),
                session_duration=60,
            ),
            WeeklyAvailabilityEntry(
                psychologist_id=provider.id,
                day_of_week=WEDNESDAY,
                available=True,
                start_time=time(13, 0),
                end_time=time(17, 0),
                session_duration=30,
            ),
        ]
    )
    db.commit()
    db.refresh(provider)
    return provider


@pytest.fixture
def add_appointment(db):
    def _add(psychologist_id, start_time, end_time, status='booked', client_id=None):
        appointment = Appointment(
            psychologist_id=psychologist_id,
            client_id=client_id,
            start_time=start_time,
            end_time=end_time,
            status=status,
            version=0,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _add
