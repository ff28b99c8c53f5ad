"""
Availability calculation.

Maps a day's reservations onto the discrete slot grid. A slot is occupied when
a scheduled, in-scope reservation on the same day covers its start minute (or,
when ``duration_minutes`` is given, overlaps ``[slot, slot + duration)``).
Dates before today are fully occupied.
"""

from collections.abc import Iterable, Sequence
from datetime import date

from booking_engine.core import config
from booking_engine.scheduling.domain import GLOBAL_SCOPE, Reservation, Scope, SlotStatus
from booking_engine.scheduling.errors import ParseError
from booking_engine.scheduling.time_utils import format_minutes, is_past, same_day, to_minutes


def build_grid(
    day_start: str = config.SLOT_DAY_START,
    day_end: str = config.SLOT_DAY_END,
    increment_minutes: int = config.SLOT_INCREMENT_MINUTES,
) -> tuple[str, ...]:
    if increment_minutes <= 0:
        raise ParseError('Slot increment must be positive.')

    start = to_minutes(day_start)
    end = to_minutes(day_end)
    if end <= start:
        raise ParseError(f'Grid end {day_end} must be after start {day_start}.')

    return tuple(format_minutes(minute) for minute in range(start, end, increment_minutes))


DEFAULT_GRID = build_grid()


def occupying_reservations(
    target_date: date,
    reservations: Iterable[Reservation],
    scope: Scope = GLOBAL_SCOPE,
) -> list[Reservation]:
    """Scheduled reservations on ``target_date`` that count against ``scope``."""
    return [
        reservation
        for reservation in reservations
        if reservation.is_scheduled
        and same_day(reservation.date, target_date)
        and scope.covers(reservation)
    ]


def compute_availability(
    target_date: date,
    reservations: Iterable[Reservation],
    grid: Sequence[str] = DEFAULT_GRID,
    scope: Scope = GLOBAL_SCOPE,
    *,
    today: date | None = None,
    duration_minutes: int | None = None,
) -> list[SlotStatus]:
    if is_past(target_date, today=today):
        return [SlotStatus(time=slot, available=False) for slot in grid]

    span = duration_minutes or 1
    blocking = sorted(
        occupying_reservations(target_date, reservations, scope),
        key=lambda reservation: (reservation.start_minutes, reservation.id),
    )

    statuses: list[SlotStatus] = []
    for slot in grid:
        slot_start = to_minutes(slot)
        slot_end = slot_start + span
        occupant = next(
            (
                reservation
                for reservation in blocking
                if reservation.start_minutes < slot_end and slot_start < reservation.end_minutes
            ),
            None,
        )
        if occupant is None:
            statuses.append(SlotStatus(time=slot, available=True))
        else:
            statuses.append(
                SlotStatus(
                    time=slot,
                    available=False,
                    reservation_id=occupant.id,
                    title=occupant.title,
                )
            )

    return statuses


def available_times(statuses: Iterable[SlotStatus]) -> list[str]:
    return [status.time for status in statuses if status.available]
