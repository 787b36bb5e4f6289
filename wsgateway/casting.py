"""Business commands that push data to client connections."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from .delivery import Gateway

__all__ = [
    "single_cast",
    "single_cast_by_customer_id",
    "multicast",
    "multicast_by_customer_id",
    "broadcast",
    "single_cast_bulk",
    "single_cast_bulk_by_customer_id",
    "topic_publish",
]

# Above this many connections a single payload is written by several threads.
_DIRECT_SEND_LIMIT = 100
# Connections handled by one sending thread.
_CONNECTIONS_PER_THREAD = 100
# With more topics than this, publishing always uses sending threads.
_DIRECT_TOPIC_LIMIT = 2


def _send_concurrently(gateway: Gateway, conns: Sequence[Any], data: bytes) -> None:
    workers = len(conns) // _CONNECTIONS_PER_THREAD + 1
    with ThreadPoolExecutor(max_workers=workers) as pool:
        for conn in conns:
            pool.submit(gateway.write_message, conn, data)


def _online(gateway: Gateway, uniq_ids: Iterable[str]) -> list[Any]:
    conns = []
    for uniq_id in uniq_ids:
        conn = gateway.connections.get(uniq_id)
        if conn is not None:
            conns.append(conn)
    return conns


def _write_all(gateway: Gateway, conn: Any, data: Iterable[bytes]) -> None:
    """Write each non-empty datum in order, stopping at the first failure."""
    for datum in data:
        if datum and not gateway.write_message(conn, datum):
            return


def single_cast(gateway: Gateway, uniq_id: str, data: bytes) -> None:
    """Send ``data`` to the connection ``uniq_id``."""
    if not uniq_id or not data:
        return
    conn = gateway.connections.get(uniq_id)
    if conn is not None:
        gateway.write_message(conn, data)


def single_cast_by_customer_id(gateway: Gateway, customer_id: str, data: bytes) -> None:
    """Send ``data`` to every connection bound to ``customer_id``."""
    if not customer_id or not data:
        return
    uniq_ids = gateway.binder.get_uniq_ids_by_customer_id(customer_id) or []
    for conn in _online(gateway, uniq_ids):
        gateway.write_message(conn, data)


def multicast(gateway: Gateway, uniq_ids: Iterable[str], data: bytes) -> None:
    """Send ``data`` to each online connection among ``uniq_ids``."""
    if not data:
        return
    for conn in _online(gateway, uniq_ids):
        gateway.write_message(conn, data)


def multicast_by_customer_id(
    gateway: Gateway, customer_ids: Iterable[str], data: bytes
) -> None:
    """Send ``data`` to every connection of each of ``customer_ids``."""
    if not data:
        return
    bound = gateway.binder.get_uniq_ids_by_customer_ids(customer_ids)
    for uniq_ids in bound.values():
        for conn in _online(gateway, uniq_ids):
            gateway.write_message(conn, data)


def broadcast(gateway: Gateway, data: bytes) -> None:
    """Send ``data`` to every open connection."""
    if not data:
        return
    conns = gateway.connections.connections()
    if not conns:
        return
    if len(conns) <= _DIRECT_SEND_LIMIT:
        for conn in conns:
            gateway.write_message(conn, data)
        return
    _send_concurrently(gateway, conns, data)


def single_cast_bulk(
    gateway: Gateway, uniq_ids: Sequence[str], data: Sequence[bytes]
) -> None:
    """Send several payloads at once.

    With one uniq id and several payloads, all payloads go to that
    connection in order, stopping at the first failed write. With as many
    uniq ids as payloads, each payload goes to the uniq id at the same
    position. Any other shape is ignored.
    """
    if len(uniq_ids) == 1 and len(data) > 1:
        conn = gateway.connections.get(uniq_ids[0])
        if conn is not None:
            _write_all(gateway, conn, data)
        return
    if uniq_ids and len(uniq_ids) == len(data):
        for uniq_id, datum in zip(uniq_ids, data):
            if not datum:
                continue
            conn = gateway.connections.get(uniq_id)
            if conn is not None:
                gateway.write_message(conn, datum)


def single_cast_bulk_by_customer_id(
    gateway: Gateway, customer_ids: Sequence[str], data: Sequence[bytes]
) -> None:
    """Send several payloads at once, addressed by customer id.

    With one customer id and several payloads, every connection of that
    customer gets all payloads in order; a failed write skips the rest for
    that connection only. With as many customer ids as payloads, each
    payload goes to all connections of the customer at the same position.
    """
    if len(customer_ids) == 1 and len(data) > 1:
        uniq_ids = gateway.binder.get_uniq_ids_by_customer_id(customer_ids[0]) or []
        for conn in _online(gateway, uniq_ids):
            _write_all(gateway, conn, data)
        return
    if customer_ids and len(customer_ids) == len(data):
        for customer_id, datum in zip(customer_ids, data):
            if not datum:
                continue
            uniq_ids = gateway.binder.get_uniq_ids_by_customer_id(customer_id) or []
            for conn in _online(gateway, uniq_ids):
                gateway.write_message(conn, datum)


def topic_publish(gateway: Gateway, topics: Sequence[str], data: bytes) -> None:
    """Send ``data`` to the subscribers of each topic.

    A connection subscribed to several of the topics receives ``data`` once
    per topic.
    """
    if not data:
        return
    topics = list(topics)
    for topic in topics:
        if not topic:
            continue
        uniq_ids = gateway.topics.get_uniq_ids(topic)
        if uniq_ids is None:
            continue
        conns = _online(gateway, uniq_ids)
        if len(uniq_ids) <= _DIRECT_SEND_LIMIT and len(topics) <= _DIRECT_TOPIC_LIMIT:
            for conn in conns:
                gateway.write_message(conn, data)
        else:
            _send_concurrently(gateway, conns, data)