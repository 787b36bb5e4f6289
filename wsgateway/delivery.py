"""Shared gateway state and delivery of messages to client connections."""

from __future__ import annotations

import time
from typing import Any, Protocol

from .binder import Binder
from .config import TEXT_MESSAGE, Config
from .connections import ConnectionManager
from .limit import LimitManager
from .metrics import Item, MetricsRegistry
from .session import Info
from .topics import TopicRegistry
from .workers import WorkerManager

__all__ = ["ClientConnection", "Gateway"]


class ClientConnection(Protocol):
    """What the gateway needs from a client websocket connection."""

    session: Any

    def set_write_deadline(self, deadline: float) -> None:
        """Set the absolute ``time.time()`` by which writes must finish."""

    def write_message(self, message_type: int, data: bytes) -> None:
        """Send one websocket message."""

    def close(self) -> None:
        """Close the connection."""


class Gateway:
    """Holds the registries the commands act on and writes to clients."""

    def __init__(
        self,
        config: Config,
        *,
        connections: ConnectionManager | None = None,
        binder: Binder | None = None,
        topics: TopicRegistry | None = None,
        workers: WorkerManager | None = None,
        limits: LimitManager | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self.config = config
        self.connections = connections if connections is not None else ConnectionManager()
        self.binder = binder if binder is not None else Binder()
        self.topics = topics if topics is not None else TopicRegistry()
        self.workers = workers if workers is not None else WorkerManager()
        self.limits = (
            limits
            if limits is not None
            else LimitManager(config.limit.on_open, config.limit.on_message)
        )
        self.metrics = (
            metrics if metrics is not None else MetricsRegistry(config.metrics.item)
        )

    def _failed(self, conn: ClientConnection, size: int) -> bool:
        self.metrics.mark(Item.CUSTOMER_WRITE_FAILED_COUNT, 1)
        self.metrics.mark(Item.CUSTOMER_WRITE_FAILED_BYTE, size)
        try:
            conn.close()
        except Exception:
            pass
        return False

    def write_message(self, conn: ClientConnection, data: bytes) -> bool:
        """Send ``data`` to ``conn``; on failure close it and return False."""
        customer = self.config.customer
        try:
            conn.set_write_deadline(time.time() + customer.send_deadline)
        except Exception:
            return self._failed(conn, len(data))
        try:
            conn.write_message(customer.send_message_type or TEXT_MESSAGE, data)
        except Exception:
            return self._failed(conn, len(data))
        self.metrics.mark(Item.CUSTOMER_WRITE_COUNT, 1)
        self.metrics.mark(Item.CUSTOMER_WRITE_BYTE, len(data))
        return True

    def session_of(self, uniq_id: str) -> Info | None:
        """Return the session of the connection ``uniq_id``, or None."""
        conn = self.connections.get(uniq_id)
        if conn is None:
            return None
        session = getattr(conn, "session", None)
        return session if isinstance(session, Info) else None