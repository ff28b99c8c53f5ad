import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import date
from threading import Lock
from typing import TypeVar

from booking_engine.core import config
from booking_engine.repository import ReservationRepository
from booking_engine.scheduling.availability import DEFAULT_GRID, compute_availability
from booking_engine.scheduling.calendar_view import CalendarView, ViewRange, project
from booking_engine.scheduling.conflicts import check_conflict
from booking_engine.scheduling.domain import (
    GLOBAL_SCOPE,
    Reservation,
    ReservationCandidate,
    ReservationStatus,
    Scope,
    ScopeMode,
    SlotStatus,
    resolve_scope,
    validate_candidate,
)
from booking_engine.scheduling.errors import ConflictError, PersistenceTimeoutError
from booking_engine.scheduling.time_utils import reference_today

logger = logging.getLogger(__name__)

T = TypeVar('T')

CacheKey = tuple[date, Scope, date]


class AvailabilityCache:
    """Thread-safe LRU of computed slot listings with a short TTL.

    Keys are ``(date, scope, today)``. Every invalidation bumps ``generation``;
    a listing computed from a read that started before the bump is not stored.
    """

    def __init__(
        self,
        ttl_seconds: float = config.AVAILABILITY_CACHE_SECONDS,
        maxsize: int = config.AVAILABILITY_CACHE_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.maxsize = max(1, maxsize)
        self._clock = clock
        self._entries: OrderedDict[CacheKey, tuple[float, tuple[SlotStatus, ...]]] = OrderedDict()
        self._generation = 0
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def get(self, key: CacheKey) -> tuple[SlotStatus, ...] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, statuses = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return statuses

    def put(self, key: CacheKey, statuses: Sequence[SlotStatus], generation: int) -> bool:
        """Store ``statuses`` unless a write happened since ``generation`` was read."""
        if self.ttl_seconds <= 0:
            return False

        with self._lock:
            if generation != self._generation:
                return False

            today = key[2]
            for stale in [cached for cached in self._entries if cached[2] != today]:
                del self._entries[stale]

            self._entries[key] = (self._clock() + self.ttl_seconds, tuple(statuses))
            self._entries.move_to_end(key)
            while len(self._entries) > self.maxsize:
                self._entries.popitem(last=False)
            return True

    def invalidate(self, *dates: date) -> None:
        affected = set(dates)
        with self._lock:
            self._generation += 1
            for key in [key for key in self._entries if key[0] in affected]:
                del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._entries.clear()


class SchedulingService:
    """Entry point for callers: availability, booking and calendar views.

    Reads fetch a snapshot from the repository and hand it to the pure
    components. Listings may be served from a short-lived cache; pass
    ``fresh=True`` to read the store directly, as the booking workflow does
    when a time is picked. Writes pre-check conflicts for fast feedback, then
    commit through the repository, which re-checks atomically.
    """

    def __init__(
        self,
        repository: ReservationRepository,
        grid: Sequence[str] = DEFAULT_GRID,
        commit_timeout: float = config.COMMIT_TIMEOUT_SECONDS,
        today: Callable[[], date] = reference_today,
        cache: AvailabilityCache | None = None,
    ) -> None:
        self.repository = repository
        self.grid = tuple(grid)
        self.commit_timeout = commit_timeout
        self._today = today
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix='reservation-commit')
        self.cache = cache if cache is not None else AvailabilityCache()

    @property
    def scope_mode(self) -> ScopeMode:
        return self.repository.scope_mode

    def scope_for(self, assignee_id: int | None) -> Scope:
        return resolve_scope(assignee_id, self.scope_mode)

    def get_availability(
        self,
        target_date: date,
        scope: Scope = GLOBAL_SCOPE,
        *,
        fresh: bool = False,
    ) -> list[SlotStatus]:
        today = self._today()
        key = (target_date, scope, today)

        if not fresh:
            cached = self.cache.get(key)
            if cached is not None:
                return list(cached)

        generation = self.cache.generation
        reservations = self.repository.list_reservations(target_date, target_date, scope)
        statuses = compute_availability(target_date, reservations, self.grid, scope, today=today)
        self.cache.put(key, statuses, generation)
        return statuses

    def invalidate(self, *dates: date) -> None:
        self.cache.invalidate(*dates)

    def try_book(self, candidate: ReservationCandidate) -> Reservation:
        candidate = validate_candidate(candidate)

        scope = self.scope_for(candidate.assignee_id)
        snapshot = self.repository.list_reservations(candidate.date, candidate.date, scope)
        result = check_conflict(candidate, snapshot, self.scope_mode)
        if result.has_conflict:
            raise ConflictError(result.with_reservation_id, result.overlap_start, result.overlap_end)

        try:
            reservation = self._bounded(self.repository.commit_reservation, candidate)
        finally:
            self.invalidate(candidate.date)
        return reservation

    def update_status(self, reservation_id: int, new_status: ReservationStatus | str) -> Reservation:
        reservation = self._bounded(self.repository.update_status, reservation_id, new_status)
        self.invalidate(reservation.date)
        return reservation

    def reschedule(
        self,
        reservation_id: int,
        new_date: date,
        start_time: str,
        end_time: str | None = None,
    ) -> Reservation:
        previous = self.repository.get_reservation(reservation_id)
        try:
            reservation = self._bounded(
                self.repository.reschedule, reservation_id, new_date, start_time, end_time
            )
        finally:
            self.invalidate(previous.date, new_date)
        return reservation

    def update_details(self, reservation_id: int, **changes) -> Reservation:
        reservation = self._bounded(self.repository.update_details, reservation_id, **changes)
        self.invalidate(reservation.date)
        return reservation

    def delete_reservation(self, reservation_id: int) -> Reservation:
        reservation = self.repository.delete_reservation(reservation_id)
        self.invalidate(reservation.date)
        return reservation

    def get_month_view(
        self,
        year: int,
        month: int,
        scope: Scope = GLOBAL_SCOPE,
        include_inactive: bool = False,
    ) -> CalendarView:
        return self._view(ViewRange.month(year, month), scope, include_inactive)

    def get_week_view(self, day: date, scope: Scope = GLOBAL_SCOPE, include_inactive: bool = False) -> CalendarView:
        return self._view(ViewRange.week(day), scope, include_inactive)

    def get_day_view(self, day: date, scope: Scope = GLOBAL_SCOPE, include_inactive: bool = False) -> CalendarView:
        return self._view(ViewRange.day(day), scope, include_inactive)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _view(self, view_range: ViewRange, scope: Scope, include_inactive: bool) -> CalendarView:
        grid_start, grid_end = view_range.grid_bounds()
        reservations = self.repository.list_reservations(grid_start, grid_end, scope)
        return project(view_range, reservations, include_inactive=include_inactive, today=self._today())

    def _bounded(self, operation: Callable[..., T], *args, **kwargs) -> T:
        future = self._executor.submit(operation, *args, **kwargs)
        try:
            return future.result(timeout=self.commit_timeout)
        except FutureTimeoutError as exc:
            future.cancel()
            logger.warning('%s did not finish within %.1fs', operation.__name__, self.commit_timeout)
            raise PersistenceTimeoutError(
                'Saving the reservation took too long. Check your calendar before trying again.'
            ) from exc
