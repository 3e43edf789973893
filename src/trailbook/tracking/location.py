"""
Channel-backed Device Location Service.

The recorder talks to any object with this async interface:

    start_watching(accuracy_profile, min_interval_ms, min_distance_m) -> AsyncIterator[LocationFix]
    stop_watching() -> None
    get_current_fix(accuracy_profile) -> LocationFix        (may raise LocationUnavailableError)
    get_best_effort_fix(max_age_ms, max_accuracy_m) -> Optional[LocationFix]

Platform bindings, replay tools and tests all push fixes into a
QueueLocationService; the recorder pulls them in arrival order.
"""
import asyncio
import time
from typing import AsyncIterator, Callable, List, Optional, Tuple

from trailbook.errors import LocationPermissionError
from trailbook.tracking.fixes import LocationFix

_CLOSED = object()


class QueueLocationService:
    """In-process producer/consumer channel of LocationFix samples."""

    def __init__(
        self,
        *,
        permission_granted: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.permission_granted = permission_granted
        self.last_known: Optional[LocationFix] = None
        self.watching = False
        self.watch_requests: List[Tuple[str, int, float]] = []
        self._clock = clock
        self._queue: "asyncio.Queue" = asyncio.Queue()
        self._waiters: List[asyncio.Future] = []

    # ─── Producer side ────────────────────────────────────────────────────────

    def push(self, fix: LocationFix) -> None:
        """Deliver a fix to pending one-shot requests and, if watching, the stream."""
        self.last_known = fix
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(fix)
        if self.watching:
            self._queue.put_nowait(fix)

    # ─── Consumer side ────────────────────────────────────────────────────────

    async def start_watching(
        self,
        accuracy_profile: str,
        min_interval_ms: int,
        min_distance_m: float,
    ) -> AsyncIterator[LocationFix]:
        self._check_permission()
        self.watch_requests.append((accuracy_profile, min_interval_ms, min_distance_m))
        self._queue = asyncio.Queue()
        self.watching = True
        return self._stream(self._queue)

    async def stop_watching(self) -> None:
        if self.watching:
            self.watching = False
            self._queue.put_nowait(_CLOSED)

    async def get_current_fix(self, accuracy_profile: str = "best") -> LocationFix:
        """Wait for the next pushed fix."""
        self._check_permission()
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        return await waiter

    async def get_best_effort_fix(
        self,
        max_age_ms: int,
        max_accuracy_m: float,
    ) -> Optional[LocationFix]:
        """Return the last known fix if it is recent and accurate enough."""
        fix = self.last_known
        if fix is None:
            return None
        age_ms = self._clock() * 1000.0 - fix.timestamp_ms
        if age_ms > max_age_ms:
            return None
        if fix.accuracy_m is not None and fix.accuracy_m > max_accuracy_m:
            return None
        return fix

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _check_permission(self) -> None:
        if not self.permission_granted:
            raise LocationPermissionError()

    @staticmethod
    async def _stream(queue: "asyncio.Queue") -> AsyncIterator[LocationFix]:
        while True:
            item = await queue.get()
            if item is _CLOSED:
                return
            yield item
