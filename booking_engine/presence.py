"""
Calendar presence tracking.

Keeps track of who currently has the calendar open. Clients join, send a
heartbeat periodically and leave; entries whose last heartbeat is older than
``timeout_seconds`` are dropped by a background sweep. Presence has no effect
on booking.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from threading import Lock

from booking_engine.core import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PresenceEntry:
    user_id: int
    joined_at: datetime
    last_seen: datetime


class PresenceService:
    def __init__(
        self,
        timeout_seconds: float = config.PRESENCE_TIMEOUT_SECONDS,
        sweep_interval_seconds: float = config.PRESENCE_SWEEP_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._now = now
        self._lock = Lock()
        self._entries: dict[int, PresenceEntry] = {}
        self._last_beat: dict[int, float] = {}
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def join(self, user_id: int) -> PresenceEntry:
        with self._lock:
            existing = self._entries.get(user_id)
            now = self._now()
            entry = PresenceEntry(
                user_id=user_id,
                joined_at=existing.joined_at if existing else now,
                last_seen=now,
            )
            self._entries[user_id] = entry
            self._last_beat[user_id] = self._clock()

        if existing is None:
            logger.info('User %s joined the calendar', user_id)
        return entry

    def heartbeat(self, user_id: int) -> PresenceEntry:
        return self.join(user_id)

    def leave(self, user_id: int) -> bool:
        with self._lock:
            removed = self._entries.pop(user_id, None)
            self._last_beat.pop(user_id, None)

        if removed is not None:
            logger.info('User %s left the calendar', user_id)
        return removed is not None

    def online_users(self) -> list[PresenceEntry]:
        with self._lock:
            return sorted(self._entries.values(), key=lambda entry: entry.user_id)

    def sweep(self) -> list[int]:
        """Drop users whose last heartbeat is older than the timeout."""
        cutoff = self._clock() - self.timeout_seconds
        with self._lock:
            stale = [user_id for user_id, beat in self._last_beat.items() if beat < cutoff]
            for user_id in stale:
                self._entries.pop(user_id, None)
                self._last_beat.pop(user_id, None)

        if stale:
            logger.info('Presence sweep dropped %d stale user(s)', len(stale))
        return stale

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info('Presence sweeper started (timeout %.0fs)', self.timeout_seconds)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info('Presence sweeper stopped')

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                self.sweep()
            except Exception:
                logger.exception('Presence sweep failed')
