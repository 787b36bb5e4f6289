"""Business commands that read or change client sessions and subscriptions."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .delivery import Gateway
from .session import Info

__all__ = [
    "ConnInfoUpdate",
    "ConnInfoDelete",
    "ConnInfoItem",
    "ConnInfoByCustomerIdItem",
    "conn_info_update",
    "conn_info_delete",
    "topic_subscribe",
    "topic_unsubscribe",
    "topic_delete",
    "conn_info",
    "conn_info_by_customer_id",
    "check_online",
]


@dataclass
class ConnInfoUpdate:
    """Request to change a connection's session, customer id or topics."""

    uniq_id: str = ""
    new_session: str = ""
    new_customer_id: str = ""
    new_topics: list[str] = field(default_factory=list)
    data: bytes = b""


@dataclass
class ConnInfoDelete:
    """Request to remove a connection's session, customer id or topics."""

    uniq_id: str = ""
    del_session: bool = False
    del_customer_id: bool = False
    del_topic: bool = False
    data: bytes = b""


@dataclass
class ConnInfoItem:
    """Connection info returned for one uniq id."""

    session: str = ""
    customer_id: str = ""
    topics: list[str] = field(default_factory=list)


@dataclass
class ConnInfoByCustomerIdItem:
    """Connection info returned for one connection of a customer."""

    session: str = ""
    uniq_id: str = ""
    topics: list[str] = field(default_factory=list)


def _locate(gateway: Gateway, uniq_id: str) -> tuple[Any, Info] | None:
    if not uniq_id:
        return None
    conn = gateway.connections.get(uniq_id)
    if conn is None:
        return None
    info = getattr(conn, "session", None)
    if not isinstance(info, Info):
        return None
    return conn, info


def conn_info_update(gateway: Gateway, request: ConnInfoUpdate) -> None:
    """Apply the non-empty fields of ``request`` to its connection."""
    located = _locate(gateway, request.uniq_id)
    if located is None:
        return
    conn, info = located
    with info.lock:
        if not info.uniq_id:
            return
        if request.new_session:
            info.session = request.new_session
        if request.new_customer_id:
            gateway.binder.set(request.uniq_id, request.new_customer_id)
            info.customer_id = request.new_customer_id
        if request.new_topics:
            old_topics = info.pull_topics()
            gateway.topics.del_many(old_topics, request.uniq_id)
            info.subscribe_topics(request.new_topics)
            gateway.topics.set_many(request.new_topics, request.uniq_id)
        if request.data:
            gateway.write_message(conn, request.data)


def conn_info_delete(gateway: Gateway, request: ConnInfoDelete) -> None:
    """Remove the requested parts of a connection's info."""
    located = _locate(gateway, request.uniq_id)
    if located is None:
        return
    conn, info = located
    with info.lock:
        if not info.uniq_id:
            return
        if request.del_topic:
            gateway.topics.del_many(info.pull_topics(), request.uniq_id)
        if request.del_session:
            info.session = ""
        if request.del_customer_id and info.customer_id:
            gateway.binder.del_uniq_id(request.uniq_id)
            info.customer_id = ""
        if request.data:
            gateway.write_message(conn, request.data)


def topic_subscribe(
    gateway: Gateway, uniq_id: str, topics: Iterable[str], data: bytes = b""
) -> None:
    """Subscribe the connection ``uniq_id`` to ``topics``."""
    topics = list(topics)
    if not topics:
        return
    located = _locate(gateway, uniq_id)
    if located is None:
        return
    conn, info = located
    with info.lock:
        if not info.uniq_id:
            return
        info.subscribe_topics(topics)
        gateway.topics.set_many(topics, uniq_id)
        if data:
            gateway.write_message(conn, data)


def topic_unsubscribe(
    gateway: Gateway, uniq_id: str, topics: Iterable[str], data: bytes = b""
) -> None:
    """Unsubscribe the connection ``uniq_id`` from ``topics``."""
    topics = list(topics)
    if not topics:
        return
    located = _locate(gateway, uniq_id)
    if located is None:
        return
    conn, info = located
    with info.lock:
        if not info.uniq_id:
            return
        info.unsubscribe_topics(topics)
        gateway.topics.del_many(topics, uniq_id)
        if data:
            gateway.write_message(conn, data)


def topic_delete(gateway: Gateway, topics: Iterable[str], data: bytes = b"") -> None:
    """Delete ``topics`` and unsubscribe their connections.

    With ``data``, every affected connection receives it once, even if it
    was subscribed to several of the deleted topics.
    """
    pulled = gateway.topics.pull_and_return_uniq_ids(topics)
    if not pulled:
        return
    processed: list[set[str]] = []
    for topic, uniq_ids in pulled.items():
        for uniq_id in uniq_ids:
            located = _locate(gateway, uniq_id)
            if located is None:
                continue
            conn, info = located
            if not info.unsubscribe_topic(topic) or not data:
                continue
            if not any(uniq_id in earlier for earlier in processed):
                gateway.write_message(conn, data)
        processed.append(uniq_ids)


def conn_info(
    gateway: Gateway,
    uniq_ids: Iterable[str],
    req_session: bool = False,
    req_customer_id: bool = False,
    req_topic: bool = False,
) -> dict[str, ConnInfoItem]:
    """Return the requested info of each online connection among ``uniq_ids``."""
    result: dict[str, ConnInfoItem] = {}
    for uniq_id in uniq_ids:
        located = _locate(gateway, uniq_id)
        if located is None:
            continue
        fields = located[1].conn_info(req_session, req_customer_id, req_topic)
        result[uniq_id] = ConnInfoItem(**fields)
    return result


def conn_info_by_customer_id(
    gateway: Gateway,
    customer_ids: Iterable[str],
    req_session: bool = False,
    req_uniq_id: bool = False,
    req_topic: bool = False,
) -> dict[str, list[ConnInfoByCustomerIdItem]]:
    """Return the requested info of every online connection of each customer."""
    result: dict[str, list[ConnInfoByCustomerIdItem]] = {}
    bound = gateway.binder.get_uniq_ids_by_customer_ids(customer_ids)
    for customer_id, uniq_ids in bound.items():
        items = []
        for uniq_id in uniq_ids:
            located = _locate(gateway, uniq_id)
            if located is None:
                continue
            fields = located[1].conn_info_by_customer_id(
                req_session, req_uniq_id, req_topic
            )
            items.append(ConnInfoByCustomerIdItem(**fields))
        if items:
            result[customer_id] = items
    return result


def check_online(gateway: Gateway, uniq_ids: Iterable[str]) -> list[str]:
    """Return those of ``uniq_ids`` that have an open connection, in order."""
    return [uniq_id for uniq_id in uniq_ids if gateway.connections.has(uniq_id)]