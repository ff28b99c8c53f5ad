"""
Booking session state machine.

A session walks SelectingDate -> SelectingTime -> EnteringDetails -> Confirmed,
with Failed reachable from EnteringDetails when a submission is rejected. Each
state is its own frozen dataclass, and ``advance``/``retreat``/``reset`` return
the new snapshot instead of mutating the old one.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import date
from enum import Enum
from typing import Any, Mapping, Protocol

from booking_engine.scheduling.availability import available_times
from booking_engine.scheduling.domain import (
    GLOBAL_SCOPE,
    Reservation,
    ReservationCandidate,
    ReservationKind,
    Scope,
    SlotStatus,
    validate_candidate,
)
from booking_engine.scheduling.errors import (
    ConflictError,
    PersistenceTimeoutError,
    ValidationError,
    WorkflowError,
)
from booking_engine.scheduling.time_utils import is_past

logger = logging.getLogger(__name__)


class BookingBackend(Protocol):
    def get_availability(
        self, target_date: date, scope: Scope = ..., *, fresh: bool = False
    ) -> list[SlotStatus]: ...

    def try_book(self, candidate: ReservationCandidate) -> Reservation: ...


class FailureKind(str, Enum):
    VALIDATION = 'validation'
    CONFLICT = 'conflict'
    TIMEOUT = 'timeout'


@dataclass(frozen=True)
class Draft:
    title: str = ''
    kind: ReservationKind | str | None = None
    subject_id: int | None = None
    assignee_id: int | None = None
    location: str | None = None
    description: str | None = None


_DRAFT_FIELDS = frozenset(draft_field.name for draft_field in fields(Draft))


@dataclass(frozen=True)
class SelectingDate:
    session_id: str
    message: str | None = None


@dataclass(frozen=True)
class SelectingTime:
    session_id: str
    date: date
    slots: tuple[SlotStatus, ...]
    message: str | None = None

    @property
    def available_times(self) -> list[str]:
        return available_times(self.slots)


@dataclass(frozen=True)
class EnteringDetails:
    session_id: str
    date: date
    slot: str
    draft: Draft = field(default_factory=Draft)


@dataclass(frozen=True)
class Confirmed:
    session_id: str
    reservation: Reservation


@dataclass(frozen=True)
class Failed:
    session_id: str
    date: date
    slot: str
    draft: Draft
    reason: str
    failure: FailureKind
    field: str | None = None
    conflicting_reservation_id: int | None = None

    @property
    def retryable(self) -> bool:
        return self.failure == FailureKind.TIMEOUT


BookingSnapshot = SelectingDate | SelectingTime | EnteringDetails | Confirmed | Failed


@dataclass(frozen=True)
class SelectDate:
    date: date


@dataclass(frozen=True)
class SelectTime:
    time: str


@dataclass(frozen=True)
class UpdateDraft:
    changes: Mapping[str, Any]


@dataclass(frozen=True)
class Submit:
    pass


@dataclass(frozen=True)
class Retry:
    pass


@dataclass(frozen=True)
class PickAnotherTime:
    pass


@dataclass(frozen=True)
class BookAnother:
    pass


BookingInput = SelectDate | SelectTime | UpdateDraft | Submit | Retry | PickAnotherTime | BookAnother


def _new_session_id() -> str:
    return uuid.uuid4().hex


class BookingWorkflow:
    """Drives one interactive booking on behalf of ``owner_id``."""

    def __init__(
        self,
        backend: BookingBackend,
        owner_id: int,
        scope: Scope = GLOBAL_SCOPE,
        today: date | None = None,
    ) -> None:
        self._backend = backend
        self._owner_id = owner_id
        self._scope = scope
        self._today = today
        self._state: BookingSnapshot = SelectingDate(session_id=_new_session_id())

    @property
    def state(self) -> BookingSnapshot:
        return self._state

    def advance(self, booking_input: BookingInput) -> BookingSnapshot:
        state = self._state

        if isinstance(state, SelectingDate) and isinstance(booking_input, SelectDate):
            return self._set(self._select_date(state, booking_input.date))
        if isinstance(state, SelectingTime) and isinstance(booking_input, SelectDate):
            return self._set(self._select_date(SelectingDate(state.session_id), booking_input.date))
        if isinstance(state, SelectingTime) and isinstance(booking_input, SelectTime):
            return self._set(self._select_time(state, booking_input.time))
        if isinstance(state, EnteringDetails) and isinstance(booking_input, UpdateDraft):
            return self._set(self._update_draft(state, booking_input.changes))
        if isinstance(state, EnteringDetails) and isinstance(booking_input, Submit):
            return self._set(self._submit(state))
        if isinstance(state, Failed) and isinstance(booking_input, Retry):
            return self._set(EnteringDetails(state.session_id, state.date, state.slot, state.draft))
        if isinstance(state, Failed) and isinstance(booking_input, PickAnotherTime):
            return self._set(self._list_times(state.session_id, state.date))
        if isinstance(state, Confirmed) and isinstance(booking_input, BookAnother):
            return self.reset()

        raise WorkflowError(
            f'{type(booking_input).__name__} is not accepted while {type(state).__name__}.'
        )

    def retreat(self) -> BookingSnapshot:
        state = self._state

        if isinstance(state, SelectingDate):
            return state
        if isinstance(state, SelectingTime):
            return self._set(SelectingDate(state.session_id))
        if isinstance(state, EnteringDetails):
            return self._set(self._list_times(state.session_id, state.date))
        if isinstance(state, Failed):
            return self._set(EnteringDetails(state.session_id, state.date, state.slot, state.draft))

        raise WorkflowError('A confirmed booking cannot go back; start a new session instead.')

    def reset(self) -> BookingSnapshot:
        """Discard this session and start a new one."""
        return self._set(SelectingDate(session_id=_new_session_id()))

    def _set(self, state: BookingSnapshot) -> BookingSnapshot:
        if type(state) is not type(self._state):
            logger.debug(
                'Booking session %s: %s -> %s',
                state.session_id, type(self._state).__name__, type(state).__name__,
            )
        self._state = state
        return state

    def _list_times(
        self,
        session_id: str,
        target_date: date,
        message: str | None = None,
        fresh: bool = False,
    ) -> SelectingTime:
        slots = tuple(self._backend.get_availability(target_date, self._scope, fresh=fresh))
        return SelectingTime(session_id, target_date, slots, message)

    def _select_date(self, state: SelectingDate, target_date: date) -> BookingSnapshot:
        if is_past(target_date, today=self._today):
            return replace(state, message='Dates in the past cannot be booked.')

        listing = self._list_times(state.session_id, target_date)
        if not listing.available_times:
            return replace(state, message=f'No available times on {target_date.isoformat()}.')
        return listing

    def _select_time(self, state: SelectingTime, slot_time: str) -> BookingSnapshot:
        # Read the store directly, bypassing both the listing the user saw and any cache.
        fresh = self._list_times(state.session_id, state.date, fresh=True)
        slot = next((status for status in fresh.slots if status.time == slot_time), None)

        if slot is None:
            return replace(fresh, message=f'{slot_time} is not a bookable time.')
        if not slot.available:
            return replace(fresh, message=f'{slot_time} is no longer available.')

        return EnteringDetails(state.session_id, state.date, slot_time)

    def _update_draft(self, state: EnteringDetails, changes: Mapping[str, Any]) -> EnteringDetails:
        unknown = set(changes) - _DRAFT_FIELDS
        if unknown:
            raise WorkflowError(f'Unknown draft field(s): {", ".join(sorted(unknown))}.')
        return replace(state, draft=replace(state.draft, **changes))

    def _submit(self, state: EnteringDetails) -> BookingSnapshot:
        draft = state.draft
        try:
            candidate = validate_candidate(
                ReservationCandidate(
                    date=state.date,
                    start_time=state.slot,
                    owner_id=self._owner_id,
                    kind=draft.kind,
                    title=draft.title,
                    subject_id=draft.subject_id,
                    assignee_id=draft.assignee_id,
                    location=draft.location,
                    description=draft.description,
                )
            )
        except ValidationError as exc:
            return self._failed(state, str(exc), FailureKind.VALIDATION, field=exc.field)

        try:
            reservation = self._backend.try_book(candidate)
        except ConflictError as exc:
            return self._failed(
                state, str(exc), FailureKind.CONFLICT, conflicting_reservation_id=exc.reservation_id
            )
        except PersistenceTimeoutError as exc:
            return self._failed(state, str(exc), FailureKind.TIMEOUT)
        except ValidationError as exc:
            return self._failed(state, str(exc), FailureKind.VALIDATION, field=exc.field)

        return Confirmed(state.session_id, reservation)

    @staticmethod
    def _failed(state: EnteringDetails, reason: str, failure: FailureKind, **details) -> Failed:
        return Failed(
            session_id=state.session_id,
            date=state.date,
            slot=state.slot,
            draft=state.draft,
            reason=reason,
            failure=failure,
            **details,
        )
