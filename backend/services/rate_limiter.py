"""
Per-model request budget for the generation gateway.

Rolling window: a model is available when it is not paused and fewer than its
requests-per-minute budget were acquired inside the last window. A quota error
from the API pauses a model until a given wall-clock time.
"""
import logging
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(
        self,
        limits: Dict[str, int],
        default_limit: int = 10,
        window_seconds: float = 60.0,
        now: Optional[Callable[[], float]] = None,
    ):
        self._limits = dict(limits)
        self._default_limit = default_limit
        self._window = window_seconds
        self._now = now or time.monotonic
        self._usage: Dict[str, Deque[float]] = {}
        self._paused_until: Dict[str, float] = {}

    def limit_for(self, model: str) -> int:
        return self._limits.get(model, self._default_limit)

    def is_paused(self, model: str) -> bool:
        until = self._paused_until.get(model)
        if until is None:
            return False
        if self._now() >= until:
            del self._paused_until[model]
            return False
        return True

    def _prune(self, model: str) -> Deque[float]:
        usage = self._usage.setdefault(model, deque())
        cutoff = self._now() - self._window
        while usage and usage[0] <= cutoff:
            usage.popleft()
        return usage

    def available(self, model: str) -> bool:
        if self.is_paused(model):
            return False
        return len(self._prune(model)) < self.limit_for(model)

    def try_acquire(self, model: str) -> bool:
        """Record one request against model if it has budget left."""
        if not self.available(model):
            return False
        self._usage[model].append(self._now())
        return True

    def mark_paused(self, model: str, until: float) -> None:
        """Pause model until the given time (same clock as now())."""
        self._paused_until[model] = until
        logger.info("Model %s paused for %.0fs", model, max(0.0, until - self._now()))

    def pause_for(self, model: str, seconds: float) -> None:
        self.mark_paused(model, self._now() + seconds)

    def usage(self, model: str) -> int:
        return len(self._prune(model))
