"""
Calendar projection.

Read-side reducer that lays reservations out on month, week or day grids. It
performs no conflict checking: whatever it is given is rendered, overlaps
included.
"""

from __future__ import annotations

import calendar
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum

from booking_engine.core import config
from booking_engine.scheduling.domain import Reservation
from booking_engine.scheduling.time_utils import reference_today, to_local_date


class ViewKind(str, Enum):
    MONTH = 'month'
    WEEK = 'week'
    DAY = 'day'


def shift_days(day: date, days: int) -> date:
    """Move ``day`` by ``days``, stopping at the ends of the supported date range."""
    try:
        return day + timedelta(days=days)
    except OverflowError:
        return date.max if days > 0 else date.min


def start_of_week(day: date, week_starts_on: int) -> date:
    return shift_days(day, -((day.weekday() - week_starts_on) % 7))


@dataclass(frozen=True)
class ViewRange:
    kind: ViewKind
    first_day: date
    last_day: date
    week_starts_on: int = 6

    @classmethod
    def month(cls, year: int, month: int, week_starts_on: int | None = None) -> ViewRange:
        if week_starts_on is None:
            week_starts_on = config.week_start_index()
        last = calendar.monthrange(year, month)[1]
        return cls(ViewKind.MONTH, date(year, month, 1), date(year, month, last), week_starts_on)

    @classmethod
    def week(cls, day: date, week_starts_on: int | None = None) -> ViewRange:
        if week_starts_on is None:
            week_starts_on = config.week_start_index()
        first = start_of_week(day, week_starts_on)
        return cls(ViewKind.WEEK, first, shift_days(first, 6), week_starts_on)

    @classmethod
    def day(cls, day: date) -> ViewRange:
        return cls(ViewKind.DAY, day, day, config.week_start_index())

    def grid_bounds(self) -> tuple[date, date]:
        """First and last day rendered, padded to whole weeks for month views."""
        if self.kind != ViewKind.MONTH:
            return self.first_day, self.last_day
        grid_start = start_of_week(self.first_day, self.week_starts_on)
        grid_end = shift_days(start_of_week(self.last_day, self.week_starts_on), 6)
        return grid_start, grid_end

    def contains(self, day: date) -> bool:
        return self.first_day <= day <= self.last_day


@dataclass(frozen=True)
class DayCell:
    date: date
    dimmed: bool
    is_today: bool
    reservations: tuple[Reservation, ...]


@dataclass(frozen=True)
class CalendarView:
    range: ViewRange
    rows: tuple[tuple[DayCell, ...], ...]

    @property
    def cells(self) -> tuple[DayCell, ...]:
        return tuple(cell for row in self.rows for cell in row)

    def cell_for(self, day: date) -> DayCell | None:
        return next((cell for cell in self.cells if cell.date == day), None)


def _sort_key(reservation: Reservation) -> tuple[int, int]:
    return reservation.start_minutes, reservation.id


def project(
    view_range: ViewRange,
    reservations: Iterable[Reservation],
    *,
    include_inactive: bool = False,
    today: date | None = None,
) -> CalendarView:
    if today is None:
        today = reference_today()

    grid_start, grid_end = view_range.grid_bounds()

    by_day: dict[date, list[Reservation]] = defaultdict(list)
    for reservation in reservations:
        if not include_inactive and not reservation.is_scheduled:
            continue
        day = to_local_date(reservation.date)
        if grid_start <= day <= grid_end:
            by_day[day].append(reservation)

    cells: list[DayCell] = []
    for offset in range((grid_end - grid_start).days + 1):
        current = grid_start + timedelta(days=offset)
        cells.append(
            DayCell(
                date=current,
                dimmed=not view_range.contains(current),
                is_today=current == today,
                reservations=tuple(sorted(by_day.get(current, ()), key=_sort_key)),
            )
        )

    if view_range.kind == ViewKind.DAY:
        return CalendarView(range=view_range, rows=tuple((cell,) for cell in cells))

    # Rows break on the first weekday, so a grid clipped at date.min or date.max
    # ends in a short row instead of shifting every column.
    rows: list[tuple[DayCell, ...]] = []
    row: list[DayCell] = []
    for cell in cells:
        if row and cell.date.weekday() == view_range.week_starts_on:
            rows.append(tuple(row))
            row = []
        row.append(cell)
    if row:
        rows.append(tuple(row))
    return CalendarView(range=view_range, rows=tuple(rows))
