import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.exc import SQLAlchemyError

from booking_engine.scheduling.calendar_view import CalendarView, DayCell
from booking_engine.scheduling.domain import (
    KIND_DURATIONS,
    Reservation,
    ReservationCandidate,
    ReservationKind,
    ReservationStatus,
)
from booking_engine.scheduling.errors import (
    ConflictError,
    NotFoundError,
    ParseError,
    PersistenceTimeoutError,
    ValidationError,
)
from booking_engine.scheduling.time_utils import to_minutes
from booking_engine.service import SchedulingService

router = APIRouter(tags=['scheduling'])

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 600
DATABASE_UNAVAILABLE = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def _normalize_time(value: str | None) -> str | None:
    if value is None:
        return None
    minutes = to_minutes(value)
    return f'{minutes // 60:02d}:{minutes % 60:02d}'


def _normalize_title(value: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError('Title is required.')
    return normalized


def _normalize_kind(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in {kind.value for kind in ReservationKind}:
        raise ValueError('Invalid reservation type.')
    return normalized


def _normalize_description(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_DESCRIPTION_LENGTH:
        raise ValueError(f'Description must be {MAX_DESCRIPTION_LENGTH} characters or fewer.')

    return normalized


class CreateReservationRequest(BaseModel):
    title: str
    kind: str
    date: date
    start_time: str
    end_time: str | None = None
    owner_id: int
    subject_id: int | None = None
    assignee_id: int | None = None
    location: str | None = None
    description: str | None = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str) -> str:
        return _normalize_title(value)

    @field_validator('kind')
    @classmethod
    def validate_kind(cls, value: str) -> str:
        return _normalize_kind(value)

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time(cls, value: str | None) -> str | None:
        return _normalize_time(value)

    @field_validator('description')
    @classmethod
    def validate_description(cls, value: str | None) -> str | None:
        return _normalize_description(value)


class UpdateReservationRequest(BaseModel):
    title: str | None = None
    kind: str | None = None
    subject_id: int | None = None
    assignee_id: int | None = None
    location: str | None = None
    description: str | None = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str | None) -> str | None:
        if value is None:
            raise ValueError('Title cannot be cleared.')
        return _normalize_title(value)

    @field_validator('kind')
    @classmethod
    def validate_kind(cls, value: str | None) -> str | None:
        if value is None:
            raise ValueError('Reservation type cannot be cleared.')
        return _normalize_kind(value)

    @field_validator('description')
    @classmethod
    def validate_description(cls, value: str | None) -> str | None:
        return _normalize_description(value)


class UpdateStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {reservation_status.value for reservation_status in ReservationStatus}:
            raise ValueError('Invalid reservation status.')
        return normalized


class RescheduleRequest(BaseModel):
    date: date
    start_time: str
    end_time: str | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time(cls, value: str | None) -> str | None:
        return _normalize_time(value)


class ReservationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    kind: str
    date: date
    start_time: str
    end_time: str
    status: str
    owner_id: int
    subject_id: int | None = None
    assignee_id: int | None = None
    location: str | None = None
    description: str | None = None

    @classmethod
    def from_record(cls, reservation: Reservation) -> 'ReservationResponse':
        return cls(
            id=reservation.id,
            title=reservation.title,
            kind=reservation.kind.value,
            date=reservation.date,
            start_time=reservation.start_time,
            end_time=reservation.end_time,
            status=reservation.status.value,
            owner_id=reservation.owner_id,
            subject_id=reservation.subject_id,
            assignee_id=reservation.assignee_id,
            location=reservation.location,
            description=reservation.description,
        )


class SlotStatusResponse(BaseModel):
    time: str
    available: bool
    reservation_id: int | None = None
    title: str | None = None


class AvailabilityResponse(BaseModel):
    date: date
    assignee_id: int | None = None
    slots: list[SlotStatusResponse]


class KindOptionResponse(BaseModel):
    kind: str
    label: str
    duration_minutes: int


class DayCellResponse(BaseModel):
    date: date
    dimmed: bool
    is_today: bool
    reservations: list[ReservationResponse]

    @classmethod
    def from_cell(cls, cell: DayCell) -> 'DayCellResponse':
        return cls(
            date=cell.date,
            dimmed=cell.dimmed,
            is_today=cell.is_today,
            reservations=[ReservationResponse.from_record(reservation) for reservation in cell.reservations],
        )


class CalendarViewResponse(BaseModel):
    view: str
    first_day: date
    last_day: date
    rows: list[list[DayCellResponse]]

    @classmethod
    def from_view(cls, view: CalendarView) -> 'CalendarViewResponse':
        return cls(
            view=view.range.kind.value,
            first_day=view.range.first_day,
            last_day=view.range.last_day,
            rows=[[DayCellResponse.from_cell(cell) for cell in row] for row in view.rows],
        )


def get_service(request: Request) -> SchedulingService:
    return request.app.state.scheduling_service


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                'message': str(exc),
                'reservation_id': exc.reservation_id,
                'overlap_start': exc.overlap_start,
                'overlap_end': exc.overlap_end,
            },
        )
    if isinstance(exc, (ValidationError, ParseError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Reservation not found.')
    if isinstance(exc, PersistenceTimeoutError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
            headers={'Retry-After': '1'},
        )
    logger.exception('Database error while scheduling', exc_info=exc)
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE)


@router.get('/kinds', response_model=list[KindOptionResponse])
def list_kinds():
    return [
        KindOptionResponse(kind=kind.value, label=kind.label, duration_minutes=duration_minutes)
        for kind, duration_minutes in KIND_DURATIONS.items()
    ]


@router.get('/availability', response_model=AvailabilityResponse)
def get_availability(
    date_param: date = Query(..., alias='date'),
    assignee_id: int | None = Query(default=None),
    service: SchedulingService = Depends(get_service),
):
    try:
        slots = service.get_availability(date_param, service.scope_for(assignee_id))
    except SQLAlchemyError as exc:
        raise _http_error(exc) from exc

    return AvailabilityResponse(
        date=date_param,
        assignee_id=assignee_id,
        slots=[
            SlotStatusResponse(
                time=slot.time,
                available=slot.available,
                reservation_id=slot.reservation_id,
                title=slot.title,
            )
            for slot in slots
        ],
    )


@router.get('/reservations', response_model=list[ReservationResponse])
def list_reservations(
    start: date = Query(...),
    end: date | None = Query(default=None),
    assignee_id: int | None = Query(default=None),
    subject_id: int | None = Query(default=None),
    owner_id: int | None = Query(default=None),
    service: SchedulingService = Depends(get_service),
):
    if end is not None and end < start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='End date must not be before start date.',
        )

    try:
        reservations = service.repository.list_reservations(
            start,
            end,
            service.scope_for(assignee_id),
            subject_id=subject_id,
            owner_id=owner_id,
        )
    except SQLAlchemyError as exc:
        raise _http_error(exc) from exc

    return [ReservationResponse.from_record(reservation) for reservation in reservations]


@router.post('/reservations', response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
def create_reservation(data: CreateReservationRequest, service: SchedulingService = Depends(get_service)):
    candidate = ReservationCandidate(
        date=data.date,
        start_time=data.start_time,
        end_time=data.end_time,
        owner_id=data.owner_id,
        kind=data.kind,
        title=data.title,
        subject_id=data.subject_id,
        assignee_id=data.assignee_id,
        location=data.location,
        description=data.description,
    )

    try:
        reservation = service.try_book(candidate)
    except (ConflictError, ValidationError, PersistenceTimeoutError, SQLAlchemyError) as exc:
        raise _http_error(exc) from exc

    return ReservationResponse.from_record(reservation)


@router.get('/reservations/{reservation_id}', response_model=ReservationResponse)
def get_reservation(reservation_id: int, service: SchedulingService = Depends(get_service)):
    try:
        reservation = service.repository.get_reservation(reservation_id)
    except (NotFoundError, SQLAlchemyError) as exc:
        raise _http_error(exc) from exc

    return ReservationResponse.from_record(reservation)


@router.patch('/reservations/{reservation_id}', response_model=ReservationResponse)
def update_reservation(
    reservation_id: int,
    data: UpdateReservationRequest,
    service: SchedulingService = Depends(get_service),
):
    try:
        reservation = service.update_details(reservation_id, **data.model_dump(exclude_unset=True))
    except (
        ConflictError,
        ValidationError,
        NotFoundError,
        PersistenceTimeoutError,
        SQLAlchemyError,
    ) as exc:
        raise _http_error(exc) from exc

    return ReservationResponse.from_record(reservation)


@router.patch('/reservations/{reservation_id}/status', response_model=ReservationResponse)
def update_reservation_status(
    reservation_id: int,
    data: UpdateStatusRequest,
    service: SchedulingService = Depends(get_service),
):
    try:
        reservation = service.update_status(reservation_id, data.status)
    except (
        ConflictError,
        ValidationError,
        NotFoundError,
        PersistenceTimeoutError,
        SQLAlchemyError,
    ) as exc:
        raise _http_error(exc) from exc

    return ReservationResponse.from_record(reservation)


@router.put('/reservations/{reservation_id}/schedule', response_model=ReservationResponse)
def reschedule_reservation(
    reservation_id: int,
    data: RescheduleRequest,
    service: SchedulingService = Depends(get_service),
):
    try:
        reservation = service.reschedule(reservation_id, data.date, data.start_time, data.end_time)
    except (
        ConflictError,
        ValidationError,
        NotFoundError,
        PersistenceTimeoutError,
        SQLAlchemyError,
    ) as exc:
        raise _http_error(exc) from exc

    return ReservationResponse.from_record(reservation)


@router.delete('/reservations/{reservation_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_reservation(reservation_id: int, service: SchedulingService = Depends(get_service)):
    try:
        service.delete_reservation(reservation_id)
    except (ValidationError, NotFoundError, SQLAlchemyError) as exc:
        raise _http_error(exc) from exc


@router.get('/calendar/month', response_model=CalendarViewResponse)
def get_month_view(
    year: int = Query(..., ge=1, le=9999),
    month: int = Query(..., ge=1, le=12),
    assignee_id: int | None = Query(default=None),
    include_inactive: bool = Query(default=False),
    service: SchedulingService = Depends(get_service),
):
    try:
        view = service.get_month_view(year, month, service.scope_for(assignee_id), include_inactive)
    except SQLAlchemyError as exc:
        raise _http_error(exc) from exc

    return CalendarViewResponse.from_view(view)


@router.get('/calendar/week', response_model=CalendarViewResponse)
def get_week_view(
    day: date = Query(...),
    assignee_id: int | None = Query(default=None),
    include_inactive: bool = Query(default=False),
    service: SchedulingService = Depends(get_service),
):
    try:
        view = service.get_week_view(day, service.scope_for(assignee_id), include_inactive)
    except SQLAlchemyError as exc:
        raise _http_error(exc) from exc

    return CalendarViewResponse.from_view(view)


@router.get('/calendar/day', response_model=CalendarViewResponse)
def get_day_view(
    day: date = Query(...),
    assignee_id: int | None = Query(default=None),
    include_inactive: bool = Query(default=False),
    service: SchedulingService = Depends(get_service),
):
    try:
        view = service.get_day_view(day, service.scope_for(assignee_id), include_inactive)
    except SQLAlchemyError as exc:
        raise _http_error(exc) from exc

    return CalendarViewResponse.from_view(view)
