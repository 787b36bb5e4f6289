"""Rate limiting of connection opens and client messages."""

from __future__ import annotations

import threading
import time
from typing import Callable, NamedTuple

from .workers import Event

__all__ = ["RateLimiter", "NilLimiter", "LimitManager", "LimitValues"]


class LimitValues(NamedTuple):
    """Current per-second limits; 0 means unlimited."""

    on_open: int
    on_message: int


class RateLimiter:
    """Token bucket allowing ``limit`` events per second with bursts of ``burst``."""

    def __init__(
        self,
        limit: float,
        burst: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limit = float(limit)
        self._burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    @property
    def limit(self) -> float:
        with self._lock:
            return self._limit

    def _advance(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last)
        self._tokens = min(float(self._burst), self._tokens + elapsed * self._limit)
        self._last = now

    def allow(self) -> bool:
        """Take one token if available."""
        with self._lock:
            self._advance()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    def set_limit(self, limit: float) -> None:
        """Change the rate, keeping the tokens accrued so far."""
        with self._lock:
            self._advance()
            self._limit = float(limit)


class NilLimiter:
    """A limiter that never limits."""

    limit = 0

    def allow(self) -> bool:
        return True

    def set_limit(self, limit: float) -> None:
        """Check and ignore a new rate: a disabled limiter stays unlimited."""
        if float(limit) < 0:
            raise ValueError("limit must not be negative")


def _make_limiter(rate: int, clock: Callable[[], float]) -> RateLimiter | NilLimiter:
    return RateLimiter(rate, rate, clock) if rate > 0 else NilLimiter()


class LimitManager:
    """Holds the open and message limiters; a configured 0 disables one."""

    def __init__(
        self,
        on_open: int = 0,
        on_message: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limiters = {
            Event.ON_OPEN: _make_limiter(on_open, clock),
            Event.ON_MESSAGE: _make_limiter(on_message, clock),
        }

    def allow(self, event: Event) -> bool:
        return self._limiters[Event(event)].allow()

    def update(self, on_open: int, on_message: int) -> None:
        """Apply new positive limits that differ from the current ones."""
        for event, value in ((Event.ON_OPEN, on_open), (Event.ON_MESSAGE, on_message)):
            limiter = self._limiters[event]
            if value > 0 and float(value) != float(limiter.limit):
                limiter.set_limit(value)

    def get(self) -> LimitValues:
        """Return the limits actually in force."""
        return LimitValues(
            int(self._limiters[Event.ON_OPEN].limit),
            int(self._limiters[Event.ON_MESSAGE].limit),
        )