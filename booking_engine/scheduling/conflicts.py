"""
Conflict detection for candidate reservations.

Intervals are half-open: a reservation ending at 11:00 does not conflict with
one starting at 11:00.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from booking_engine.scheduling.domain import (
    Reservation,
    ReservationCandidate,
    ScopeMode,
    resolve_scope,
)
from booking_engine.scheduling.time_utils import format_minutes, same_day, to_minutes


@dataclass(frozen=True)
class NoConflict:
    @property
    def has_conflict(self) -> bool:
        return False


@dataclass(frozen=True)
class Conflict:
    with_reservation_id: int
    overlap_start: str
    overlap_end: str

    @property
    def has_conflict(self) -> bool:
        return True


ConflictResult = NoConflict | Conflict

NO_CONFLICT = NoConflict()


def intervals_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    return start_a < end_b and start_b < end_a


def check_conflict(
    candidate: ReservationCandidate,
    existing_reservations: Iterable[Reservation],
    scope_mode: ScopeMode | str = ScopeMode.ASSIGNEE,
    *,
    exclude_id: int | None = None,
) -> ConflictResult:
    """Return the earliest scheduled reservation the candidate overlaps, if any.

    ``exclude_id`` skips the reservation being rescheduled so it does not
    conflict with its own previous slot.
    """
    candidate = candidate.with_derived_end()

    start = to_minutes(candidate.start_time)
    end = to_minutes(candidate.end_time)
    scope = resolve_scope(candidate.assignee_id, scope_mode)

    overlapping = [
        reservation
        for reservation in existing_reservations
        if reservation.is_scheduled
        and reservation.id != exclude_id
        and same_day(reservation.date, candidate.date)
        and scope.covers(reservation)
        and intervals_overlap(start, end, reservation.start_minutes, reservation.end_minutes)
    ]
    if not overlapping:
        return NO_CONFLICT

    first = min(overlapping, key=lambda reservation: (reservation.start_minutes, reservation.id))
    return Conflict(
        with_reservation_id=first.id,
        overlap_start=format_minutes(max(start, first.start_minutes)),
        overlap_end=format_minutes(min(end, first.end_minutes)),
    )
