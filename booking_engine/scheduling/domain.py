from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum

from booking_engine.scheduling.errors import ParseError, ValidationError
from booking_engine.scheduling.time_utils import add_minutes, format_minutes, to_local_date, to_minutes


class ReservationKind(str, Enum):
    CONSULTATION = 'consultation'
    MEETING = 'meeting'
    DEMO = 'demo'
    FOLLOW_UP = 'follow-up'
    STRATEGY = 'strategy'
    CALL = 'call'
    REVIEW = 'review'

    @property
    def default_duration(self) -> int:
        return KIND_DURATIONS[self]

    @property
    def label(self) -> str:
        return KIND_LABELS[self]


KIND_DURATIONS = {
    ReservationKind.CONSULTATION: 30,
    ReservationKind.MEETING: 60,
    ReservationKind.DEMO: 45,
    ReservationKind.FOLLOW_UP: 30,
    ReservationKind.STRATEGY: 90,
    ReservationKind.CALL: 30,
    ReservationKind.REVIEW: 60,
}

KIND_LABELS = {
    ReservationKind.CONSULTATION: 'Consultation',
    ReservationKind.MEETING: 'Business Meeting',
    ReservationKind.DEMO: 'Product Demo',
    ReservationKind.FOLLOW_UP: 'Follow-up',
    ReservationKind.STRATEGY: 'Strategy Session',
    ReservationKind.CALL: 'Call',
    ReservationKind.REVIEW: 'Review',
}


class ReservationStatus(str, Enum):
    SCHEDULED = 'scheduled'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    NO_SHOW = 'no_show'


class ScopeMode(str, Enum):
    ASSIGNEE = 'assignee'
    GLOBAL = 'global'


def parse_kind(value: ReservationKind | str | None) -> ReservationKind:
    if isinstance(value, ReservationKind):
        return value
    normalized = (value or '').strip().lower()
    if not normalized:
        raise ValidationError('Reservation type is required.', field='kind')
    try:
        return ReservationKind(normalized)
    except ValueError as exc:
        raise ValidationError(f'Invalid reservation type {value!r}.', field='kind') from exc


def parse_status(value: ReservationStatus | str) -> ReservationStatus:
    if isinstance(value, ReservationStatus):
        return value
    try:
        return ReservationStatus(value.strip().lower())
    except ValueError as exc:
        raise ValidationError(f'Invalid reservation status {value!r}.', field='status') from exc


@dataclass(frozen=True)
class Reservation:
    """Immutable snapshot of a persisted reservation."""

    id: int
    date: date
    start_time: str
    end_time: str
    owner_id: int
    kind: ReservationKind
    title: str
    status: ReservationStatus = ReservationStatus.SCHEDULED
    subject_id: int | None = None
    assignee_id: int | None = None
    location: str | None = None
    description: str | None = None
    created_at: datetime | None = None

    @property
    def is_scheduled(self) -> bool:
        return self.status == ReservationStatus.SCHEDULED

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return to_minutes(self.end_time)


@dataclass(frozen=True)
class ReservationCandidate:
    """A reservation proposal that has not been persisted yet.

    ``end_time`` may be left out, in which case it is derived from the kind's
    default duration.
    """

    date: date
    start_time: str
    owner_id: int
    kind: ReservationKind | str
    title: str
    end_time: str | None = None
    subject_id: int | None = None
    assignee_id: int | None = None
    location: str | None = None
    description: str | None = None

    def with_derived_end(self) -> ReservationCandidate:
        if self.end_time:
            return self
        kind = parse_kind(self.kind)
        return replace(self, end_time=add_minutes(self.start_time, kind.default_duration))


def validate_candidate(candidate: ReservationCandidate) -> ReservationCandidate:
    """Normalize a candidate and enforce its field invariants.

    Returns a copy with ``kind`` coerced, ``title`` stripped and ``end_time``
    filled in. Raises :class:`ValidationError` for missing or inconsistent
    fields.
    """
    title = (candidate.title or '').strip()
    if not title:
        raise ValidationError('Title is required.', field='title')

    kind = parse_kind(candidate.kind)

    if candidate.owner_id is None:
        raise ValidationError('Owner is required.', field='owner_id')

    if candidate.date is None:
        raise ValidationError('Date is required.', field='date')

    try:
        day = to_local_date(candidate.date)
    except ParseError as exc:
        raise ValidationError(str(exc), field='date') from exc

    try:
        start = to_minutes(candidate.start_time)
    except ParseError as exc:
        raise ValidationError(str(exc), field='start_time') from exc

    candidate = replace(candidate, date=day, title=title, kind=kind).with_derived_end()
    try:
        end = to_minutes(candidate.end_time)
    except ParseError as exc:
        raise ValidationError(str(exc), field='end_time') from exc

    if start >= end:
        raise ValidationError('Reservation must end after it starts on the same day.', field='end_time')

    return replace(candidate, start_time=format_minutes(start), end_time=format_minutes(end))


@dataclass(frozen=True)
class Scope:
    """Partition under which occupancy and non-overlap are evaluated.

    ``assignee_id=None`` is the shared calendar: every reservation counts.
    """

    assignee_id: int | None = None

    @property
    def is_global(self) -> bool:
        return self.assignee_id is None

    def covers(self, reservation: Reservation) -> bool:
        return self.assignee_id is None or reservation.assignee_id == self.assignee_id


GLOBAL_SCOPE = Scope()


def resolve_scope(assignee_id: int | None, mode: ScopeMode | str = ScopeMode.ASSIGNEE) -> Scope:
    if ScopeMode(mode) == ScopeMode.GLOBAL:
        return GLOBAL_SCOPE
    return Scope(assignee_id=assignee_id)


@dataclass(frozen=True)
class SlotStatus:
    time: str
    available: bool
    reservation_id: int | None = None
    title: str | None = None
