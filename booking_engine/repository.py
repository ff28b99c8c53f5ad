"""
Reservation persistence.

Writes re-run conflict detection inside the transaction that stores the
change. Commits are serialized by a process-wide lock, and on PostgreSQL the
transaction runs at SERIALIZABLE isolation so concurrent writers from other
processes cannot both commit overlapping reservations; a serialization
failure is retried, and the retry sees the winning row.
"""

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import date
from threading import Lock
from typing import TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from booking_engine.core import config
from booking_engine.database import SessionLocal
from booking_engine.models.reservation import Reservation
from booking_engine.scheduling.conflicts import check_conflict
from booking_engine.scheduling.domain import (
    GLOBAL_SCOPE,
    ReservationCandidate,
    ReservationStatus,
    Scope,
    ScopeMode,
    parse_kind,
    parse_status,
    validate_candidate,
)
from booking_engine.scheduling.domain import Reservation as ReservationRecord
from booking_engine.scheduling.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

SERIALIZATION_FAILURE_SQLSTATE = '40001'

EDITABLE_FIELDS = frozenset({'title', 'description', 'location', 'kind', 'subject_id', 'assignee_id'})

_commit_lock = Lock()

T = TypeVar('T')


def _is_serialization_failure(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, 'pgcode', None) or getattr(orig, 'sqlstate', None)
    return code == SERIALIZATION_FAILURE_SQLSTATE


def _candidate_from_row(row: Reservation) -> ReservationCandidate:
    return ReservationCandidate(
        date=row.date,
        start_time=row.start_time,
        end_time=row.end_time,
        owner_id=row.owner_id,
        kind=row.kind,
        title=row.title,
        subject_id=row.subject_id,
        assignee_id=row.assignee_id,
        location=row.location,
        description=row.description,
    )


class ReservationRepository:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        scope_mode: ScopeMode | str = config.SCOPE_MODE,
        max_attempts: int = config.COMMIT_MAX_ATTEMPTS,
        allow_hard_delete_scheduled: bool = config.ALLOW_HARD_DELETE_SCHEDULED,
    ) -> None:
        self._session_factory = session_factory
        self.scope_mode = ScopeMode(scope_mode)
        self._max_attempts = max(1, max_attempts)
        self._allow_hard_delete_scheduled = allow_hard_delete_scheduled

    def list_reservations(
        self,
        start_date: date,
        end_date: date | None = None,
        scope: Scope = GLOBAL_SCOPE,
        *,
        subject_id: int | None = None,
        owner_id: int | None = None,
    ) -> list[ReservationRecord]:
        """All reservations, any status, dated within ``[start_date, end_date]``."""
        end_date = end_date or start_date

        with self._session_factory() as db:
            query = db.query(Reservation).filter(
                Reservation.date >= start_date,
                Reservation.date <= end_date,
            )
            if scope.assignee_id is not None:
                query = query.filter(Reservation.assignee_id == scope.assignee_id)
            if subject_id is not None:
                query = query.filter(Reservation.subject_id == subject_id)
            if owner_id is not None:
                query = query.filter(Reservation.owner_id == owner_id)

            rows = query.order_by(
                Reservation.date.asc(),
                Reservation.start_time.asc(),
                Reservation.id.asc(),
            ).all()
            return [row.to_record() for row in rows]

    def get_reservation(self, reservation_id: int) -> ReservationRecord:
        with self._session_factory() as db:
            return self._get_row(db, reservation_id).to_record()

    def commit_reservation(self, candidate: ReservationCandidate) -> ReservationRecord:
        candidate = validate_candidate(candidate)

        def insert(db: Session) -> ReservationRecord:
            self._ensure_no_conflict(db, candidate)
            row = Reservation(
                title=candidate.title,
                description=candidate.description,
                subject_id=candidate.subject_id,
                owner_id=candidate.owner_id,
                assignee_id=candidate.assignee_id,
                date=candidate.date,
                start_time=candidate.start_time,
                end_time=candidate.end_time,
                kind=candidate.kind.value,
                location=candidate.location,
                status=ReservationStatus.SCHEDULED.value,
            )
            db.add(row)
            db.flush()
            return row.to_record()

        record = self._write(insert)
        logger.info(
            'Reservation %s committed for %s %s-%s (assignee=%s)',
            record.id, record.date, record.start_time, record.end_time, record.assignee_id,
        )
        return record

    def update_status(self, reservation_id: int, new_status: ReservationStatus | str) -> ReservationRecord:
        new_status = parse_status(new_status)

        def change_status(db: Session) -> ReservationRecord:
            row = self._get_row(db, reservation_id)
            if row.status == new_status.value:
                return row.to_record()

            if new_status == ReservationStatus.SCHEDULED:
                self._ensure_no_conflict(db, _candidate_from_row(row), exclude_id=row.id)

            row.status = new_status.value
            db.flush()
            return row.to_record()

        return self._write(change_status)

    def reschedule(
        self,
        reservation_id: int,
        new_date: date,
        start_time: str,
        end_time: str | None = None,
    ) -> ReservationRecord:
        def move(db: Session) -> ReservationRecord:
            row = self._get_row(db, reservation_id)
            if row.status != ReservationStatus.SCHEDULED.value:
                raise ValidationError('Only scheduled reservations can be rescheduled.', field='status')

            candidate = _candidate_from_row(row)
            candidate = validate_candidate(
                ReservationCandidate(
                    date=new_date,
                    start_time=start_time,
                    end_time=end_time,
                    owner_id=candidate.owner_id,
                    kind=candidate.kind,
                    title=candidate.title,
                    subject_id=candidate.subject_id,
                    assignee_id=candidate.assignee_id,
                    location=candidate.location,
                    description=candidate.description,
                )
            )
            self._ensure_no_conflict(db, candidate, exclude_id=row.id)

            row.date = candidate.date
            row.start_time = candidate.start_time
            row.end_time = candidate.end_time
            db.flush()
            return row.to_record()

        return self._write(move)

    def update_details(self, reservation_id: int, **changes) -> ReservationRecord:
        """Edit the descriptive fields of a reservation.

        A new ``kind`` re-derives ``end_time`` from its default duration. When
        the end time or the assignee changes on a scheduled reservation, the
        conflict check runs again against every other reservation.
        """
        unknown = sorted(set(changes) - EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f'Unknown reservation field(s): {", ".join(unknown)}.', field=unknown[0])

        def edit(db: Session) -> ReservationRecord:
            row = self._get_row(db, reservation_id)
            candidate = replace(_candidate_from_row(row), **changes)
            if 'kind' in changes and parse_kind(changes['kind']).value != row.kind:
                candidate = replace(candidate, end_time=None)
            candidate = validate_candidate(candidate)

            moved = candidate.end_time != row.end_time or candidate.assignee_id != row.assignee_id
            if moved and row.status == ReservationStatus.SCHEDULED.value:
                self._ensure_no_conflict(db, candidate, exclude_id=row.id)

            row.title = candidate.title
            row.description = candidate.description
            row.location = candidate.location
            row.kind = candidate.kind.value
            row.subject_id = candidate.subject_id
            row.assignee_id = candidate.assignee_id
            row.end_time = candidate.end_time
            db.flush()
            return row.to_record()

        return self._write(edit)

    def delete_reservation(self, reservation_id: int) -> ReservationRecord:
        """Hard-delete a reservation. Scheduled ones must be cancelled first."""
        def remove(db: Session) -> ReservationRecord:
            row = self._get_row(db, reservation_id)
            if row.status == ReservationStatus.SCHEDULED.value and not self._allow_hard_delete_scheduled:
                raise ValidationError('Cancel the reservation before deleting it.', field='status')
            record = row.to_record()
            db.delete(row)
            db.flush()
            return record

        record = self._write(remove)
        logger.info('Reservation %s hard-deleted (status=%s)', record.id, record.status.value)
        return record

    def purge_history(self, before: date) -> int:
        """Delete non-scheduled reservations dated before ``before``."""
        with self._session_factory() as db:
            deleted = db.query(Reservation).filter(
                Reservation.date < before,
                Reservation.status != ReservationStatus.SCHEDULED.value,
            ).delete(synchronize_session=False)
            db.commit()

        if deleted:
            logger.info('Purged %d historical reservation(s) dated before %s', deleted, before)
        return deleted

    def _get_row(self, db: Session, reservation_id: int) -> Reservation:
        row = db.query(Reservation).filter(Reservation.id == reservation_id).first()
        if row is None:
            raise NotFoundError(reservation_id)
        return row

    def _ensure_no_conflict(
        self,
        db: Session,
        candidate: ReservationCandidate,
        exclude_id: int | None = None,
    ) -> None:
        query = db.query(Reservation).filter(
            Reservation.date == candidate.date,
            Reservation.status == ReservationStatus.SCHEDULED.value,
        )
        if self.scope_mode == ScopeMode.ASSIGNEE and candidate.assignee_id is not None:
            query = query.filter(Reservation.assignee_id == candidate.assignee_id)

        existing = [row.to_record() for row in query.all()]
        result = check_conflict(candidate, existing, self.scope_mode, exclude_id=exclude_id)
        if result.has_conflict:
            logger.info(
                'Rejected %s %s-%s: overlaps reservation %s',
                candidate.date, candidate.start_time, candidate.end_time, result.with_reservation_id,
            )
            raise ConflictError(result.with_reservation_id, result.overlap_start, result.overlap_end)

    def _write(self, operation: Callable[[Session], T]) -> T:
        with _commit_lock:
            attempt = 1
            while True:
                with self._session_factory() as db:
                    if db.get_bind().dialect.name == 'postgresql':
                        db.connection(execution_options={'isolation_level': 'SERIALIZABLE'})
                    try:
                        result = operation(db)
                        db.commit()
                        return result
                    except DBAPIError as exc:
                        db.rollback()
                        if not _is_serialization_failure(exc) or attempt >= self._max_attempts:
                            raise
                        logger.warning('Serialization failure on attempt %d, retrying', attempt)
                        attempt += 1
