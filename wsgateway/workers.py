"""Registry of business connections by the events they handle."""

from __future__ import annotations

import random
import threading
from concurrent.futures import ThreadPoolExecutor
from enum import IntEnum
from typing import Any

__all__ = ["Event", "WorkerCollect", "WorkerManager", "Shutter"]

_UINT32_MASK = 0xFFFFFFFF


class Event(IntEnum):
    """Client events a business connection may register for (bit flags)."""

    PLACEHOLDER = 0
    ON_OPEN = 1
    ON_CLOSE = 2
    ON_MESSAGE = 4


_REAL_EVENTS = tuple(e for e in Event if e is not Event.PLACEHOLDER)


class WorkerCollect:
    """Business connections for one event, handed out round-robin.

    A connection is any object with ``conn_id`` and ``events`` attributes.
    """

    def __init__(self, start_index: int | None = None) -> None:
        self._conns: list[Any] = []
        self._index = (
            random.getrandbits(32) if start_index is None else start_index & _UINT32_MASK
        )
        self._lock = threading.Lock()

    def get(self) -> Any | None:
        """Return the next connection, or None if there is none."""
        with self._lock:
            self._index = (self._index + 1) & _UINT32_MASK
            if not self._conns:
                return None
            return self._conns[self._index % len(self._conns)]

    def set(self, conn: Any) -> None:
        """Add ``conn`` unless it is already present."""
        with self._lock:
            if not any(existing is conn for existing in self._conns):
                self._conns.append(conn)

    def delete(self, conn_id: str) -> bool:
        """Remove the connection with ``conn_id``; return whether one was removed."""
        if not conn_id:
            return False
        with self._lock:
            for position, conn in enumerate(self._conns):
                if conn.conn_id == conn_id:
                    del self._conns[position]
                    return True
        return False


class WorkerManager:
    """Maps each event to the business connections registered for it."""

    def __init__(self) -> None:
        self._collects = {event: WorkerCollect() for event in _REAL_EVENTS}

    def get(self, event: Event) -> Any | None:
        """Return a connection handling ``event``, or None."""
        return self._collects[Event(event)].get()

    def set(self, conn: Any) -> None:
        """Register ``conn`` under every event its ``events`` bits include."""
        events = conn.events
        for event in _REAL_EVENTS:
            if events & event == event:
                self._collects[event].set(conn)

    def delete(self, conn_id: str) -> bool:
        """Remove ``conn_id`` from every event; return whether any was removed."""
        removed = False
        for collect in self._collects.values():
            if collect.delete(conn_id):
                removed = True
        return removed


class Shutter:
    """Tracks live business connections so they can all be closed on shutdown."""

    def __init__(self) -> None:
        self._processors: set[Any] = set()
        self._lock = threading.Lock()

    def add(self, processor: Any) -> None:
        with self._lock:
            self._processors.add(processor)

    def delete(self, processor: Any) -> None:
        with self._lock:
            self._processors.discard(processor)

    def _pop(self) -> Any | None:
        with self._lock:
            return self._processors.pop() if self._processors else None

    def close_all(self, concurrency: int = 32) -> int:
        """Force-close every tracked processor, at most ``concurrency`` at a time.

        Returns how many processors were closed.
        """
        closed = 0
        with ThreadPoolExecutor(max_workers=max(1, concurrency)) as pool:
            futures = []
            while (processor := self._pop()) is not None:
                futures.append(pool.submit(processor.force_close))
                closed += 1
            for future in futures:
                future.exception()
        return closed