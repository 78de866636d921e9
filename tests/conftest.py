import os
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from scheduling.core.clock import FixedClock  # noqa: E402
from scheduling.database import Base  # noqa: E402
from scheduling.models.appointment import Appointment, NoShowReport, SlotClaim  # noqa: E402
from scheduling.models.calendar import AvailabilityWindow, CalendarException, WeeklyAvailability  # noqa: E402
from scheduling.models.provider import ProviderProfile  # noqa: E402

SCHEDULING_TABLES = [
    ProviderProfile.__table__,
    AvailabilityWindow.__table__,
    WeeklyAvailability.__table__,
    CalendarException.__table__,
    Appointment.__table__,
    SlotClaim.__table__,
    NoShowReport.__table__,
]


@pytest.fixture
def scheduling_db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=SCHEDULING_TABLES)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=list(reversed(SCHEDULING_TABLES)))


@pytest.fixture
def scheduling_session_factory(tmp_path):
    engine = create_engine(
        f'sqlite:///{tmp_path / "scheduling.db"}',
        connect_args={'check_same_thread': False, 'timeout': 5},
    )
    Base.metadata.create_all(bind=engine, tables=SCHEDULING_TABLES)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


@pytest.fixture
def clock() -> FixedClock:
    # Sunday; the test calendar is built for Monday 2026-03-02.
    return FixedClock(datetime(2026, 3, 1, 8, 0))
