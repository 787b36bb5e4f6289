"""Sharded registry of client connections keyed by uniq id."""

from __future__ import annotations

import threading
from typing import Any

__all__ = ["ConnectionManager", "shard_index", "SHARD_COUNT"]

SHARD_COUNT = 8
_FNV_OFFSET = 2166136261
_FNV_PRIME = 16777619


def shard_index(uniq_id: str) -> int:
    """Return the shard of ``uniq_id`` (FNV-1 hash of its bytes)."""
    value = _FNV_OFFSET
    for byte in uniq_id.encode("utf-8"):
        value = (value * _FNV_PRIME) & 0xFFFFFFFF
        value ^= byte
    return value % SHARD_COUNT


class _Shard:
    def __init__(self) -> None:
        self.conns: dict[str, Any] = {}
        self.lock = threading.Lock()


class ConnectionManager:
    """Holds the open connections, split over shards to reduce lock contention."""

    def __init__(self) -> None:
        self._shards = tuple(_Shard() for _ in range(SHARD_COUNT))

    def _shard(self, uniq_id: str) -> _Shard:
        return self._shards[shard_index(uniq_id)]

    def has(self, uniq_id: str) -> bool:
        shard = self._shard(uniq_id)
        with shard.lock:
            return uniq_id in shard.conns

    def get(self, uniq_id: str) -> Any | None:
        """Return the connection of ``uniq_id``, or None."""
        shard = self._shard(uniq_id)
        with shard.lock:
            return shard.conns.get(uniq_id)

    def set(self, uniq_id: str, conn: Any) -> None:
        shard = self._shard(uniq_id)
        with shard.lock:
            shard.conns[uniq_id] = conn

    def delete(self, uniq_id: str) -> None:
        shard = self._shard(uniq_id)
        with shard.lock:
            shard.conns.pop(uniq_id, None)

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.conns)
        return total

    def uniq_ids(self) -> list[str]:
        """Return the uniq ids of all connections."""
        result: list[str] = []
        for shard in self._shards:
            with shard.lock:
                result.extend(shard.conns)
        return result

    def connections(self) -> list[Any]:
        """Return all connections."""
        result: list[Any] = []
        for shard in self._shards:
            with shard.lock:
                result.extend(shard.conns.values())
        return result