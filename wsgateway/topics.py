"""Registry of topic subscriptions: topic -> set of uniq ids."""

from __future__ import annotations

import threading
from collections.abc import Iterable

__all__ = ["TopicRegistry"]


class TopicRegistry:
    """Thread-safe mapping from topics to the uniq ids subscribed to them."""

    def __init__(self) -> None:
        self._topics: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._topics)

    def count_all(self) -> dict[str, int]:
        """Return the subscriber count of every topic."""
        with self._lock:
            return {topic: len(ids) for topic, ids in self._topics.items()}

    def count(self, topics: Iterable[str]) -> dict[str, int]:
        """Return the subscriber count of each known topic among ``topics``."""
        with self._lock:
            return {
                topic: len(self._topics[topic])
                for topic in topics
                if topic in self._topics
            }

    def set_many(self, topics: Iterable[str], uniq_id: str) -> None:
        """Subscribe ``uniq_id`` to every non-empty topic in ``topics``."""
        if not uniq_id:
            return
        with self._lock:
            for topic in topics:
                if topic:
                    self._topics.setdefault(topic, set()).add(uniq_id)

    def pull_and_return_uniq_ids(self, topics: Iterable[str]) -> dict[str, set[str]]:
        """Remove the given topics and return the uniq ids each one held."""
        pulled: dict[str, set[str]] = {}
        with self._lock:
            for topic in topics:
                ids = self._topics.pop(topic, None)
                if ids is not None:
                    pulled[topic] = ids
        return pulled

    def get_uniq_ids(self, topic: str) -> list[str] | None:
        """Return the uniq ids subscribed to ``topic``, or None if it is unknown."""
        with self._lock:
            ids = self._topics.get(topic)
            return None if ids is None else list(ids)

    def get_uniq_ids_by_topics(self, topics: Iterable[str]) -> dict[str, list[str]]:
        """Return the uniq ids of each known topic among ``topics``."""
        with self._lock:
            return {
                topic: list(self._topics[topic])
                for topic in topics
                if topic in self._topics
            }

    def topics(self) -> list[str]:
        """Return every topic that has subscribers."""
        with self._lock:
            return list(self._topics)

    def del_many(self, topics: Iterable[str] | None, uniq_id: str) -> None:
        """Unsubscribe ``uniq_id`` from ``topics``, dropping topics left empty."""
        if not topics:
            return
        with self._lock:
            for topic in topics:
                ids = self._topics.get(topic)
                if ids is None:
                    continue
                ids.discard(uniq_id)
                if not ids:
                    del self._topics[topic]