import os
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from booking_engine.database import Base  # noqa: E402
from booking_engine.models.reservation import Reservation as ReservationRow  # noqa: E402
from booking_engine.repository import ReservationRepository  # noqa: E402
from booking_engine.scheduling.domain import (  # noqa: E402
    Reservation,
    ReservationCandidate,
    ReservationKind,
    ReservationStatus,
)
from booking_engine.service import SchedulingService  # noqa: E402

BOOKING_DAY = date(2024, 6, 10)
TODAY = date(2024, 6, 1)


def _make_reservation(
    reservation_id: int,
    start_time: str,
    end_time: str,
    *,
    day: date = BOOKING_DAY,
    status: ReservationStatus = ReservationStatus.SCHEDULED,
    assignee_id: int | None = None,
    title: str | None = None,
) -> Reservation:
    return Reservation(
        id=reservation_id,
        date=day,
        start_time=start_time,
        end_time=end_time,
        owner_id=1,
        kind=ReservationKind.MEETING,
        title=title or f'Reservation {reservation_id}',
        status=status,
        assignee_id=assignee_id,
    )


def _make_candidate(
    start_time: str,
    end_time: str | None = None,
    *,
    day: date = BOOKING_DAY,
    kind: ReservationKind | str = ReservationKind.MEETING,
    assignee_id: int | None = None,
    title: str = 'Quarterly review',
    owner_id: int = 1,
) -> ReservationCandidate:
    return ReservationCandidate(
        date=day,
        start_time=start_time,
        end_time=end_time,
        owner_id=owner_id,
        kind=kind,
        title=title,
        assignee_id=assignee_id,
    )


@pytest.fixture
def make_reservation():
    return _make_reservation


@pytest.fixture
def make_candidate():
    return _make_candidate


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine, tables=[ReservationRow.__table__])
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield testing_session_local
    finally:
        Base.metadata.drop_all(bind=engine, tables=[ReservationRow.__table__])
        engine.dispose()


@pytest.fixture
def repository(session_factory) -> ReservationRepository:
    return ReservationRepository(session_factory=session_factory, scope_mode='assignee')


@pytest.fixture
def service(repository):
    scheduling_service = SchedulingService(repository, today=lambda: TODAY)
    try:
        yield scheduling_service
    finally:
        scheduling_service.close()
