"""
Room timers.

LoopClock      — wall clock + asyncio.call_later, the production time source.
TimerRegistry  — named phase timers for one room (roundEnd, votingEnd, ...).
                 Starting a name that is already armed replaces it; an expiry
                 only fires for the handle that is still current, so a cleared
                 or replaced timer can never reach the engine.

Both take the clock as a dependency so engine tests can drive time by hand.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class LoopClock:
    """Time source backed by the running asyncio loop."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> Any:
        """Schedule callback; the returned handle exposes cancel()."""
        loop = asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay_ms) / 1000.0, callback)


class _NamedTimer:
    __slots__ = ("handle", "end_time")

    def __init__(self, handle: Any, end_time: int):
        self.handle = handle
        self.end_time = end_time


class TimerRegistry:
    """Named, replaceable, cancellable phase timers for a single room."""

    def __init__(self, room_code: str, clock, on_expired: Callable[[str], None]):
        self._room_code = room_code
        self._clock = clock
        self._on_expired = on_expired
        self._timers: Dict[str, _NamedTimer] = {}

    def start(self, name: str, duration_ms: int) -> int:
        """Arm (or re-arm) name; returns the absolute end time in ms."""
        self.clear(name)
        end_time = self._clock.now_ms() + int(duration_ms)
        entry = _NamedTimer(None, end_time)
        entry.handle = self._clock.call_later(duration_ms, lambda: self._fire(name, entry))
        self._timers[name] = entry
        logger.debug("[%s] Timer %s armed for %dms", self._room_code, name, duration_ms)
        return end_time

    def clear(self, name: str) -> None:
        entry = self._timers.pop(name, None)
        if entry is not None and entry.handle is not None:
            entry.handle.cancel()

    def clear_all(self) -> None:
        for name in list(self._timers):
            self.clear(name)

    def end_time(self, name: str) -> Optional[int]:
        entry = self._timers.get(name)
        return entry.end_time if entry else None

    def remaining_ms(self, name: str) -> int:
        end = self.end_time(name)
        return max(0, end - self._clock.now_ms()) if end else 0

    def active(self) -> Dict[str, int]:
        return {name: entry.end_time for name, entry in self._timers.items()}

    def _fire(self, name: str, entry: _NamedTimer) -> None:
        # Stale handle: the timer was cleared or replaced after this callback was queued
        if self._timers.get(name) is not entry:
            return
        del self._timers[name]
        try:
            self._on_expired(name)
        except Exception:
            logger.exception("[%s] Timer handler failed for %s", self._room_code, name)
