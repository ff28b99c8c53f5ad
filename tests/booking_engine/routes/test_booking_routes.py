from datetime import date
from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from booking_engine.routes.booking_routes import (
    DATABASE_UNAVAILABLE,
    CreateReservationRequest,
    RescheduleRequest,
    UpdateReservationRequest,
    UpdateStatusRequest,
    _http_error,
    create_reservation,
    delete_reservation,
    get_availability,
    get_month_view,
    get_reservation,
    get_service,
    get_week_view,
    list_kinds,
    list_reservations,
    reschedule_reservation,
    update_reservation,
    update_reservation_status,
)
from booking_engine.scheduling.errors import PersistenceTimeoutError

BOOKING_DAY = date(2024, 6, 10)


def _create(service, start_time: str = '10:00', end_time: str | None = '11:00', **overrides):
    fields = {
        'title': 'Quarterly review',
        'kind': 'meeting',
        'date': BOOKING_DAY,
        'start_time': start_time,
        'end_time': end_time,
        'owner_id': 1,
    }
    fields.update(overrides)
    return create_reservation(CreateReservationRequest(**fields), service=service)


def test_create_request_normalizes_fields() -> None:
    request = CreateReservationRequest(
        title='  Kickoff  ',
        kind=' Follow-Up ',
        date=BOOKING_DAY,
        start_time='9:00',
        owner_id=1,
        description='   ',
    )

    assert request.title == 'Kickoff'
    assert request.kind == 'follow-up'
    assert request.start_time == '09:00'
    assert request.end_time is None
    assert request.description is None


@pytest.mark.parametrize(
    'overrides',
    [
        {'title': '   '},
        {'kind': 'lunch'},
        {'start_time': '25:00'},
        {'end_time': 'noon'},
        {'description': 'x' * 601},
    ],
)
def test_create_request_rejects_invalid_fields(overrides) -> None:
    fields = {'title': 'Kickoff', 'kind': 'meeting', 'date': BOOKING_DAY, 'start_time': '10:00', 'owner_id': 1}
    fields.update(overrides)

    with pytest.raises(ValidationError):
        CreateReservationRequest(**fields)


def test_update_status_request_rejects_unknown_status() -> None:
    assert UpdateStatusRequest(status=' Completed ').status == 'completed'
    with pytest.raises(ValidationError):
        UpdateStatusRequest(status='archived')


def test_list_kinds_exposes_default_durations() -> None:
    kinds = {option.kind: option.duration_minutes for option in list_kinds()}

    assert kinds['consultation'] == 30
    assert kinds['meeting'] == 60
    assert kinds['demo'] == 45
    assert kinds['follow-up'] == 30
    assert kinds['strategy'] == 90


def test_create_reservation_derives_end_time(service) -> None:
    response = _create(service, start_time='13:00', end_time=None, kind='demo')

    assert response.start_time == '13:00'
    assert response.end_time == '13:45'
    assert response.status == 'scheduled'


def test_create_reservation_returns_conflict_details(service) -> None:
    existing = _create(service)

    with pytest.raises(HTTPException) as exception_info:
        _create(service, start_time='10:30', end_time='11:30')

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['reservation_id'] == existing.id
    assert exception_info.value.detail['overlap_start'] == '10:30'
    assert exception_info.value.detail['overlap_end'] == '11:00'


def test_create_reservation_rejects_inverted_times(service) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _create(service, start_time='11:00', end_time='10:00')

    assert exception_info.value.status_code == 400


def test_get_availability_marks_occupied_slots(service) -> None:
    existing = _create(service)

    response = get_availability(date_param=BOOKING_DAY, assignee_id=None, service=service)
    slots = {slot.time: slot for slot in response.slots}

    assert not slots['10:00'].available
    assert slots['10:00'].reservation_id == existing.id
    assert slots['11:00'].available


def test_list_reservations_rejects_inverted_range(service) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_reservations(
            start=BOOKING_DAY, end=date(2024, 6, 9), assignee_id=None, subject_id=None, owner_id=None, service=service
        )

    assert exception_info.value.status_code == 400


def test_list_reservations_filters_by_subject(service) -> None:
    _create(service, subject_id=4)
    _create(service, start_time='12:00', end_time='13:00', subject_id=9)

    response = list_reservations(
        start=BOOKING_DAY, end=None, assignee_id=None, subject_id=9, owner_id=None, service=service
    )

    assert [reservation.start_time for reservation in response] == ['12:00']


def test_update_status_for_missing_reservation_returns_404(service) -> None:
    with pytest.raises(HTTPException) as exception_info:
        update_reservation_status(404, UpdateStatusRequest(status='cancelled'), service=service)

    assert exception_info.value.status_code == 404


def test_reschedule_onto_occupied_time_returns_409(service) -> None:
    _create(service, start_time='14:00', end_time='15:00')
    movable = _create(service)

    with pytest.raises(HTTPException) as exception_info:
        reschedule_reservation(
            movable.id,
            RescheduleRequest(date=BOOKING_DAY, start_time='14:30'),
            service=service,
        )

    assert exception_info.value.status_code == 409


def test_delete_requires_cancellation_first(service) -> None:
    reservation = _create(service)

    with pytest.raises(HTTPException) as exception_info:
        delete_reservation(reservation.id, service=service)
    assert exception_info.value.status_code == 400

    update_reservation_status(reservation.id, UpdateStatusRequest(status='cancelled'), service=service)
    delete_reservation(reservation.id, service=service)

    with pytest.raises(HTTPException) as exception_info:
        delete_reservation(reservation.id, service=service)
    assert exception_info.value.status_code == 404


def test_calendar_views_serialize_rows(service) -> None:
    _create(service)

    month = get_month_view(year=2024, month=6, assignee_id=None, include_inactive=False, service=service)
    week = get_week_view(day=BOOKING_DAY, assignee_id=None, include_inactive=False, service=service)

    assert month.view == 'month'
    assert all(len(row) == 7 for row in month.rows)
    assert week.view == 'week'
    booked_day = next(cell for cell in week.rows[0] if cell.date == BOOKING_DAY)
    assert [reservation.title for reservation in booked_day.reservations] == ['Quarterly review']


def test_timeout_maps_to_service_unavailable_with_retry_hint() -> None:
    error = _http_error(PersistenceTimeoutError('Saving the reservation took too long.'))

    assert error.status_code == 503
    assert error.headers == {'Retry-After': '1'}


def test_database_errors_map_to_service_unavailable() -> None:
    error = _http_error(SQLAlchemyError('connection refused'))

    assert error.status_code == 503
    assert error.detail == DATABASE_UNAVAILABLE


def test_get_service_reads_application_state(service) -> None:
    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(scheduling_service=service)))

    assert get_service(request) is service


def test_get_reservation_returns_record_or_404(service) -> None:
    created = _create(service)

    assert get_reservation(created.id, service=service).title == 'Quarterly review'
    with pytest.raises(HTTPException) as exception_info:
        get_reservation(404, service=service)
    assert exception_info.value.status_code == 404


def test_update_reservation_applies_only_sent_fields(service) -> None:
    created = _create(service, location='Room 1')

    response = update_reservation(
        created.id,
        UpdateReservationRequest(title=' Budget review ', kind='Strategy'),
        service=service,
    )

    assert response.title == 'Budget review'
    assert response.kind == 'strategy'
    assert response.end_time == '11:30'
    assert response.location == 'Room 1'


def test_update_reservation_conflict_returns_409(service) -> None:
    created = _create(service)
    _create(service, start_time='11:00', end_time='12:00')

    with pytest.raises(HTTPException) as exception_info:
        update_reservation(created.id, UpdateReservationRequest(kind='strategy'), service=service)

    assert exception_info.value.status_code == 409


@pytest.mark.parametrize('fields', [{'title': None}, {'kind': None}, {'kind': 'lunch'}, {'title': '  '}])
def test_update_request_rejects_clearing_required_fields(fields) -> None:
    with pytest.raises(ValidationError):
        UpdateReservationRequest(**fields)


def test_list_reservations_filters_by_owner(service) -> None:
    _create(service, owner_id=3)
    _create(service, start_time='12:00', end_time='13:00', owner_id=8)

    response = list_reservations(
        start=BOOKING_DAY, end=None, assignee_id=None, subject_id=None, owner_id=8, service=service
    )

    assert [reservation.owner_id for reservation in response] == [8]


def test_calendar_views_at_the_end_of_the_calendar(service) -> None:
    month = get_month_view(year=9999, month=12, assignee_id=None, include_inactive=False, service=service)
    week = get_week_view(day=date(9999, 12, 31), assignee_id=None, include_inactive=False, service=service)

    assert month.last_day == date(9999, 12, 31)
    assert month.rows[-1][-1].date == date(9999, 12, 31)
    assert week.rows[0][-1].date == date(9999, 12, 31)
