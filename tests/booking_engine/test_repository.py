from datetime import date

import pytest

from booking_engine.repository import ReservationRepository
from booking_engine.scheduling.domain import ReservationKind, ReservationStatus, Scope
from booking_engine.scheduling.errors import ConflictError, NotFoundError, ValidationError

BOOKING_DAY = date(2024, 6, 10)


def test_commit_reservation_stores_normalized_candidate(repository, make_candidate) -> None:
    reservation = repository.commit_reservation(make_candidate('9:00', kind='demo', title='  Product demo  '))

    assert reservation.id is not None
    assert reservation.start_time == '09:00'
    assert reservation.end_time == '09:45'
    assert reservation.title == 'Product demo'
    assert reservation.status == ReservationStatus.SCHEDULED
    assert repository.get_reservation(reservation.id) == reservation


def test_commit_reservation_rejects_overlap(repository, make_candidate) -> None:
    existing = repository.commit_reservation(make_candidate('10:00', '11:00'))

    with pytest.raises(ConflictError) as exc_info:
        repository.commit_reservation(make_candidate('10:30', '11:30', owner_id=2))

    assert exc_info.value.reservation_id == existing.id
    assert (exc_info.value.overlap_start, exc_info.value.overlap_end) == ('10:30', '11:00')
    assert len(repository.list_reservations(BOOKING_DAY)) == 1


def test_back_to_back_reservations_are_allowed(repository, make_candidate) -> None:
    repository.commit_reservation(make_candidate('10:00', '11:00'))
    repository.commit_reservation(make_candidate('11:00', '12:00'))

    assert len(repository.list_reservations(BOOKING_DAY)) == 2


def test_different_assignees_may_overlap(repository, make_candidate) -> None:
    repository.commit_reservation(make_candidate('10:00', '11:00', assignee_id=1))
    repository.commit_reservation(make_candidate('10:00', '11:00', assignee_id=2))

    with pytest.raises(ConflictError):
        repository.commit_reservation(make_candidate('10:30', '11:00', assignee_id=2))


def test_global_scope_mode_ignores_assignees(session_factory, make_candidate) -> None:
    repository = ReservationRepository(session_factory=session_factory, scope_mode='global')
    repository.commit_reservation(make_candidate('10:00', '11:00', assignee_id=1))

    with pytest.raises(ConflictError):
        repository.commit_reservation(make_candidate('10:00', '11:00', assignee_id=2))


def test_commit_reservation_rejects_inverted_times(repository, make_candidate) -> None:
    with pytest.raises(ValidationError) as exc_info:
        repository.commit_reservation(make_candidate('11:00', '10:00'))

    assert exc_info.value.field == 'end_time'


def test_cancelled_reservation_frees_its_time(repository, make_candidate) -> None:
    first = repository.commit_reservation(make_candidate('10:00', '11:00'))

    cancelled = repository.update_status(first.id, 'cancelled')
    replacement = repository.commit_reservation(make_candidate('10:00', '11:00', owner_id=2))

    assert cancelled.status == ReservationStatus.CANCELLED
    assert replacement.id != first.id


def test_reinstating_into_an_occupied_time_conflicts(repository, make_candidate) -> None:
    first = repository.commit_reservation(make_candidate('10:00', '11:00'))
    repository.update_status(first.id, ReservationStatus.CANCELLED)
    replacement = repository.commit_reservation(make_candidate('10:30', '11:30'))

    with pytest.raises(ConflictError) as exc_info:
        repository.update_status(first.id, ReservationStatus.SCHEDULED)

    assert exc_info.value.reservation_id == replacement.id
    assert repository.get_reservation(first.id).status == ReservationStatus.CANCELLED


def test_update_status_rejects_unknown_status(repository, make_candidate) -> None:
    reservation = repository.commit_reservation(make_candidate('10:00', '11:00'))

    with pytest.raises(ValidationError) as exc_info:
        repository.update_status(reservation.id, 'archived')

    assert exc_info.value.field == 'status'


def test_update_status_for_missing_reservation(repository) -> None:
    with pytest.raises(NotFoundError):
        repository.update_status(404, 'completed')


def test_reschedule_ignores_the_reservation_itself(repository, make_candidate) -> None:
    reservation = repository.commit_reservation(make_candidate('10:00', '11:00'))

    moved = repository.reschedule(reservation.id, BOOKING_DAY, '10:30')

    assert moved.id == reservation.id
    assert (moved.start_time, moved.end_time) == ('10:30', '11:30')


def test_reschedule_onto_another_reservation_conflicts(repository, make_candidate) -> None:
    blocker = repository.commit_reservation(make_candidate('14:00', '15:00'))
    reservation = repository.commit_reservation(make_candidate('10:00', '11:00'))

    with pytest.raises(ConflictError) as exc_info:
        repository.reschedule(reservation.id, BOOKING_DAY, '14:30')

    assert exc_info.value.reservation_id == blocker.id
    assert repository.get_reservation(reservation.id).start_time == '10:00'


def test_reschedule_moves_to_another_day(repository, make_candidate) -> None:
    reservation = repository.commit_reservation(make_candidate('10:00', '11:00'))

    moved = repository.reschedule(reservation.id, date(2024, 6, 12), '13:00', '13:45')

    assert moved.date == date(2024, 6, 12)
    assert repository.list_reservations(BOOKING_DAY) == []


def test_only_scheduled_reservations_can_be_rescheduled(repository, make_candidate) -> None:
    reservation = repository.commit_reservation(make_candidate('10:00', '11:00'))
    repository.update_status(reservation.id, 'completed')

    with pytest.raises(ValidationError):
        repository.reschedule(reservation.id, BOOKING_DAY, '12:00')


def test_scheduled_reservation_must_be_cancelled_before_delete(repository, make_candidate) -> None:
    reservation = repository.commit_reservation(make_candidate('10:00', '11:00'))

    with pytest.raises(ValidationError):
        repository.delete_reservation(reservation.id)

    repository.update_status(reservation.id, 'cancelled')
    deleted = repository.delete_reservation(reservation.id)

    assert deleted.id == reservation.id
    with pytest.raises(NotFoundError):
        repository.get_reservation(reservation.id)


def test_hard_delete_of_scheduled_can_be_allowed(session_factory, make_candidate) -> None:
    repository = ReservationRepository(session_factory=session_factory, allow_hard_delete_scheduled=True)
    reservation = repository.commit_reservation(make_candidate('10:00', '11:00'))

    repository.delete_reservation(reservation.id)

    assert repository.list_reservations(BOOKING_DAY) == []


def test_purge_history_keeps_scheduled_and_recent(repository, make_candidate) -> None:
    old_cancelled = repository.commit_reservation(make_candidate('10:00', '11:00', day=date(2023, 1, 5)))
    repository.update_status(old_cancelled.id, 'cancelled')
    old_scheduled = repository.commit_reservation(make_candidate('12:00', '13:00', day=date(2023, 1, 5)))
    recent_cancelled = repository.commit_reservation(make_candidate('10:00', '11:00'))
    repository.update_status(recent_cancelled.id, 'no_show')

    deleted = repository.purge_history(date(2024, 1, 1))

    assert deleted == 1
    remaining = repository.list_reservations(date(2023, 1, 1), date(2024, 12, 31))
    assert {reservation.id for reservation in remaining} == {old_scheduled.id, recent_cancelled.id}


def test_list_reservations_filters_and_orders(repository, make_candidate) -> None:
    late = repository.commit_reservation(make_candidate('15:00', '16:00', assignee_id=1))
    early = repository.commit_reservation(make_candidate('09:00', '10:00', assignee_id=1))
    other = repository.commit_reservation(make_candidate('09:00', '10:00', assignee_id=2, owner_id=5))
    next_day = repository.commit_reservation(make_candidate('09:00', '10:00', day=date(2024, 6, 11)))

    assert [r.id for r in repository.list_reservations(BOOKING_DAY, scope=Scope(1))] == [early.id, late.id]
    assert [r.id for r in repository.list_reservations(BOOKING_DAY, owner_id=5)] == [other.id]
    assert [r.id for r in repository.list_reservations(date(2024, 6, 11))] == [next_day.id]
    assert len(repository.list_reservations(BOOKING_DAY, date(2024, 6, 11))) == 4


def test_update_details_edits_descriptive_fields(repository, make_candidate) -> None:
    reservation = repository.commit_reservation(make_candidate('10:00', '11:00'))

    updated = repository.update_details(
        reservation.id,
        title='  Budget review ',
        location='Room 4',
        description='Bring the Q3 numbers',
        subject_id=12,
    )

    assert updated.title == 'Budget review'
    assert updated.location == 'Room 4'
    assert updated.subject_id == 12
    assert (updated.start_time, updated.end_time) == ('10:00', '11:00')
    assert repository.get_reservation(reservation.id) == updated


def test_update_details_can_clear_optional_fields(repository, make_candidate) -> None:
    reservation = repository.commit_reservation(make_candidate('10:00', '11:00'))
    repository.update_details(reservation.id, location='Room 4')

    updated = repository.update_details(reservation.id, location=None)

    assert updated.location is None


def test_changing_kind_rederives_end_time(repository, make_candidate) -> None:
    reservation = repository.commit_reservation(make_candidate('10:00', '11:00', kind='meeting'))

    updated = repository.update_details(reservation.id, kind='strategy')

    assert updated.kind == ReservationKind.STRATEGY
    assert updated.end_time == '11:30'


def test_changing_kind_into_an_occupied_time_conflicts(repository, make_candidate) -> None:
    reservation = repository.commit_reservation(make_candidate('10:00', '11:00', kind='meeting'))
    blocker = repository.commit_reservation(make_candidate('11:00', '12:00'))

    with pytest.raises(ConflictError) as exc_info:
        repository.update_details(reservation.id, kind='strategy')

    assert exc_info.value.reservation_id == blocker.id
    assert repository.get_reservation(reservation.id).end_time == '11:00'


def test_changing_assignee_checks_the_new_calendar(repository, make_candidate) -> None:
    busy = repository.commit_reservation(make_candidate('10:00', '11:00', assignee_id=2))
    reservation = repository.commit_reservation(make_candidate('10:00', '11:00', assignee_id=1))

    with pytest.raises(ConflictError) as exc_info:
        repository.update_details(reservation.id, assignee_id=2)

    assert exc_info.value.reservation_id == busy.id
    assert repository.get_reservation(reservation.id).assignee_id == 1


def test_inactive_reservation_details_skip_the_conflict_check(repository, make_candidate) -> None:
    reservation = repository.commit_reservation(make_candidate('10:00', '11:00', kind='meeting'))
    repository.update_status(reservation.id, 'cancelled')
    repository.commit_reservation(make_candidate('11:00', '12:00'))

    updated = repository.update_details(reservation.id, kind='strategy')

    assert updated.end_time == '11:30'
    assert updated.status == ReservationStatus.CANCELLED


@pytest.mark.parametrize(
    ('changes', 'field'),
    [
        ({'start_time': '12:00'}, 'start_time'),
        ({'title': '  '}, 'title'),
        ({'kind': 'party'}, 'kind'),
    ],
)
def test_update_details_rejects_invalid_changes(repository, make_candidate, changes, field: str) -> None:
    reservation = repository.commit_reservation(make_candidate('10:00', '11:00'))

    with pytest.raises(ValidationError) as exc_info:
        repository.update_details(reservation.id, **changes)

    assert exc_info.value.field == field


def test_update_details_for_missing_reservation(repository) -> None:
    with pytest.raises(NotFoundError):
        repository.update_details(404, title='Anything')
