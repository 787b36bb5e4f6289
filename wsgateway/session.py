"""Per-connection session data kept by the gateway."""

from __future__ import annotations

import threading
from collections.abc import Iterable

__all__ = ["Info"]


class Info:
    """Session of one client connection.

    ``lock`` guards the attributes; commands that change several of them
    hold it with ``with info.lock:``. It is re-entrant so the methods that
    lock on their own may be called while it is held.
    """

    def __init__(self, uniq_id: str) -> None:
        self.uniq_id = uniq_id
        self.customer_id = ""
        self.session = ""
        self.topics: set[str] | None = None
        self.lock = threading.RLock()

    def get_topics(self) -> list[str]:
        """Return the subscribed topics."""
        return list(self.topics or ())

    def is_login(self) -> bool:
        """A connection with a session or a customer id counts as logged in."""
        with self.lock:
            return bool(self.session or self.customer_id)

    def conn_info(
        self, req_session: bool, req_customer_id: bool, req_topic: bool
    ) -> dict[str, object]:
        """Return the requested fields; fields not requested are left empty."""
        with self.lock:
            return {
                "session": self.session if req_session else "",
                "customer_id": self.customer_id if req_customer_id else "",
                "topics": self.get_topics() if req_topic and self.topics else [],
            }

    def conn_info_by_customer_id(
        self, req_session: bool, req_uniq_id: bool, req_topic: bool
    ) -> dict[str, object]:
        """Return the requested fields; fields not requested are left empty."""
        with self.lock:
            return {
                "session": self.session if req_session else "",
                "uniq_id": self.uniq_id if req_uniq_id else "",
                "topics": self.get_topics() if req_topic and self.topics else [],
            }

    def clear(self) -> tuple[str, str, str, list[str]]:
        """Empty the session and return ``(uniq_id, customer_id, session, topics)``."""
        result = (self.uniq_id, self.customer_id, self.session, self.get_topics())
        self.topics = None
        self.uniq_id = ""
        self.session = ""
        self.customer_id = ""
        return result

    def pull_topics(self) -> set[str]:
        """Remove and return all subscribed topics."""
        topics = self.topics or set()
        self.topics = None
        return topics

    def subscribe_topics(self, topics: Iterable[str]) -> None:
        """Add the non-empty topics to the subscriptions."""
        if self.topics is None:
            self.topics = set()
        self.topics.update(topic for topic in topics if topic)

    def unsubscribe_topics(self, topics: Iterable[str]) -> None:
        """Remove the topics from the subscriptions."""
        if self.topics:
            self.topics.difference_update(topics)

    def unsubscribe_topic(self, topic: str) -> bool:
        """Remove one topic under the lock; return whether it was subscribed."""
        with self.lock:
            if self.topics and topic in self.topics:
                self.topics.discard(topic)
                return True
            return False