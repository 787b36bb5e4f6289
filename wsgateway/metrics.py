"""Service metrics: meters with moving-average rates per tracked item."""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable

__all__ = [
    "Item",
    "Meter",
    "NilMeter",
    "MeterSnapshot",
    "MetricsRespItem",
    "Status",
    "MetricsRegistry",
]

_TICK_SECONDS = 5.0


class Item(IntEnum):
    """Metric items that can be enabled in the configuration."""

    CUSTOMER_CONN_OPEN_COUNT = 1
    CUSTOMER_CONN_CLOSE_COUNT = 2
    CUSTOMER_HEARTBEAT_COUNT = 3
    CUSTOMER_TRANSFER_COUNT = 4
    CUSTOMER_TRANSFER_BYTE = 5
    CUSTOMER_WRITE_COUNT = 6
    CUSTOMER_WRITE_BYTE = 7
    OPEN_RATE_LIMIT_COUNT = 8
    MESSAGE_RATE_LIMIT_COUNT = 9
    WORKER_TO_BUSINESS_FAILED_COUNT = 10
    CUSTOMER_WRITE_FAILED_COUNT = 11
    CUSTOMER_WRITE_FAILED_BYTE = 12


@dataclass(frozen=True)
class MeterSnapshot:
    count: int
    rate1: float
    rate5: float
    rate15: float
    rate_mean: float


@dataclass(frozen=True)
class MetricsRespItem:
    item: int
    count: int
    mean_rate: float
    rate1: float
    rate5: float
    rate15: float


class _EWMA:
    def __init__(self, minutes: float) -> None:
        self.alpha = 1 - math.exp(-_TICK_SECONDS / 60.0 / minutes)
        self.rate = 0.0
        self.uncounted = 0
        self.initialized = False

    def tick(self) -> None:
        instant = self.uncounted / _TICK_SECONDS
        self.uncounted = 0
        if self.initialized:
            self.rate += self.alpha * (instant - self.rate)
        else:
            self.rate = instant
            self.initialized = True

    def idle_ticks(self, count: int) -> None:
        if count > 0:
            self.rate *= (1 - self.alpha) ** count


class Meter:
    """Counts events and tracks 1, 5 and 15 minute moving-average rates."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._start = clock()
        self._last_tick = self._start
        self._count = 0
        self._ewmas = (_EWMA(1), _EWMA(5), _EWMA(15))
        self._lock = threading.Lock()

    def _catch_up(self, now: float) -> None:
        ticks = int((now - self._last_tick) // _TICK_SECONDS)
        if ticks <= 0:
            return
        for ewma in self._ewmas:
            ewma.tick()
            ewma.idle_ticks(ticks - 1)
        self._last_tick += ticks * _TICK_SECONDS

    def mark(self, n: int = 1) -> None:
        """Record ``n`` events."""
        with self._lock:
            self._catch_up(self._clock())
            self._count += n
            for ewma in self._ewmas:
                ewma.uncounted += n

    def snapshot(self) -> MeterSnapshot:
        """Return the current count and rates."""
        with self._lock:
            now = self._clock()
            self._catch_up(now)
            elapsed = now - self._start
            mean = self._count / elapsed if elapsed > 0 else 0.0
            one, five, fifteen = (ewma.rate for ewma in self._ewmas)
            return MeterSnapshot(self._count, one, five, fifteen, mean)


class NilMeter:
    """A meter that records nothing."""

    def mark(self, n: int = 1) -> None:
        return None

    def snapshot(self) -> MeterSnapshot:
        return MeterSnapshot(0, 0.0, 0.0, 0.0, 0.0)


@dataclass
class Status:
    """One metric item and its meter."""

    item: Item
    meter: Meter | NilMeter

    def to_status_resp(self) -> MetricsRespItem | None:
        """Return the report for this item, or None if it is not collected."""
        if isinstance(self.meter, NilMeter):
            return None
        snap = self.meter.snapshot()
        return MetricsRespItem(
            item=int(self.item),
            count=snap.count,
            mean_rate=snap.rate_mean,
            rate1=snap.rate1,
            rate5=snap.rate5,
            rate15=snap.rate15,
        )


class MetricsRegistry:
    """A status for every item; only the enabled items get a real meter."""

    def __init__(
        self,
        items: Iterable[int] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        enabled = set(items)
        self._statuses = {
            item: Status(item, Meter(clock) if int(item) in enabled else NilMeter())
            for item in Item
        }

    def __getitem__(self, item: Item) -> Status:
        return self._statuses[Item(item)]

    def mark(self, item: Item, n: int = 1) -> None:
        self._statuses[Item(item)].meter.mark(n)

    def report(self) -> dict[int, MetricsRespItem]:
        """Return the reports of all enabled items, keyed by item number."""
        result: dict[int, MetricsRespItem] = {}
        for status in self._statuses.values():
            resp = status.to_status_resp()
            if resp is not None:
                result[resp.item] = resp
        return result