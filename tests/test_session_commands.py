import pytest

from wsgateway.config import TEXT_MESSAGE, Config
from wsgateway.delivery import Gateway
from wsgateway.session import Info
from wsgateway.session_commands import (
    ConnInfoByCustomerIdItem,
    ConnInfoDelete,
    ConnInfoItem,
    ConnInfoUpdate,
    check_online,
    conn_info,
    conn_info_by_customer_id,
    conn_info_delete,
    conn_info_update,
    topic_delete,
    topic_subscribe,
    topic_unsubscribe,
)


class FakeConn:
    def __init__(self, uniq_id, fail=False):
        self.session = Info(uniq_id)
        self.messages = []
        self.closed = False
        self.fail = fail

    def set_write_deadline(self, deadline):
        pass

    def write_message(self, message_type, data):
        if self.fail:
            raise OSError("broken")
        self.messages.append((message_type, data))

    def close(self):
        self.closed = True


@pytest.fixture
def gateway():
    return Gateway(Config())


def add_client(gateway, uniq_id, fail=False):
    conn = FakeConn(uniq_id, fail)
    gateway.connections.set(uniq_id, conn)
    return conn


def test_update_sets_everything(gateway):
    conn = add_client(gateway, "u1")
    conn_info_update(
        gateway,
        ConnInfoUpdate("u1", "sess", "c1", ["a", "b"], b"hello"),
    )
    info = conn.session
    assert info.session == "sess"
    assert info.customer_id == "c1"
    assert sorted(info.get_topics()) == ["a", "b"]
    assert gateway.binder.get_uniq_ids_by_customer_id("c1") == ["u1"]
    assert sorted(gateway.topics.topics()) == ["a", "b"]
    assert conn.messages == [(TEXT_MESSAGE, b"hello")]


def test_update_replaces_old_topics(gateway):
    conn = add_client(gateway, "u1")
    topic_subscribe(gateway, "u1", ["a", "b"])
    conn_info_update(gateway, ConnInfoUpdate("u1", new_topics=["c"]))
    assert conn.session.get_topics() == ["c"]
    assert gateway.topics.topics() == ["c"]


def test_update_unknown_connection_changes_nothing(gateway):
    conn_info_update(gateway, ConnInfoUpdate("missing", "s", "c1", ["a"]))
    assert len(gateway.binder) == 0
    assert len(gateway.topics) == 0


def test_update_skips_cleared_session(gateway):
    conn = add_client(gateway, "u1")
    conn.session.clear()
    conn_info_update(gateway, ConnInfoUpdate("u1", "s", "c1", ["a"], b"x"))
    assert conn.session.session == ""
    assert len(gateway.binder) == 0
    assert conn.messages == []


def test_delete_removes_requested_parts(gateway):
    conn = add_client(gateway, "u1")
    conn_info_update(gateway, ConnInfoUpdate("u1", "s", "c1", ["a"]))
    conn_info_delete(
        gateway,
        ConnInfoDelete("u1", True, True, True, b"bye"),
    )
    info = conn.session
    assert info.session == ""
    assert info.customer_id == ""
    assert info.get_topics() == []
    assert len(gateway.binder) == 0
    assert len(gateway.topics) == 0
    assert conn.messages == [(TEXT_MESSAGE, b"bye")]


def test_delete_keeps_unrequested_parts(gateway):
    conn = add_client(gateway, "u1")
    conn_info_update(gateway, ConnInfoUpdate("u1", "s", "c1", ["a"]))
    conn_info_delete(gateway, ConnInfoDelete("u1", del_session=True))
    assert conn.session.session == ""
    assert conn.session.customer_id == "c1"
    assert gateway.topics.get_uniq_ids("a") == ["u1"]


def test_subscribe_and_unsubscribe(gateway):
    conn = add_client(gateway, "u1")
    topic_subscribe(gateway, "u1", ["a", "b", ""], b"sub")
    assert sorted(conn.session.get_topics()) == ["a", "b"]
    assert gateway.topics.count(["a", "b"]) == {"a": 1, "b": 1}
    topic_unsubscribe(gateway, "u1", ["a"], b"unsub")
    assert conn.session.get_topics() == ["b"]
    assert gateway.topics.topics() == ["b"]
    assert [m[1] for m in conn.messages] == [b"sub", b"unsub"]


def test_subscribe_with_no_topics_does_nothing(gateway):
    conn = add_client(gateway, "u1")
    topic_subscribe(gateway, "u1", [], b"data")
    assert conn.messages == []
    assert conn.session.get_topics() == []


def test_topic_delete_sends_once_per_connection(gateway):
    c1 = add_client(gateway, "u1")
    c2 = add_client(gateway, "u2")
    topic_subscribe(gateway, "u1", ["a", "b"])
    topic_subscribe(gateway, "u2", ["b"])
    topic_delete(gateway, ["a", "b"], b"gone")
    assert len(gateway.topics) == 0
    assert c1.messages == [(TEXT_MESSAGE, b"gone")]
    assert c2.messages == [(TEXT_MESSAGE, b"gone")]
    assert c1.session.get_topics() == []


def test_topic_delete_without_data_only_unsubscribes(gateway):
    c1 = add_client(gateway, "u1")
    topic_subscribe(gateway, "u1", ["a", "b"])
    topic_delete(gateway, ["a"])
    assert c1.session.get_topics() == ["b"]
    assert gateway.topics.topics() == ["b"]
    assert c1.messages == []


def test_conn_info_returns_requested_fields(gateway):
    add_client(gateway, "u1")
    conn_info_update(gateway, ConnInfoUpdate("u1", "s", "c1", ["a"]))
    full = conn_info(gateway, ["u1", "missing"], True, True, True)
    assert full == {"u1": ConnInfoItem("s", "c1", ["a"])}
    partial = conn_info(gateway, ["u1"], req_session=True)
    assert partial == {"u1": ConnInfoItem("s", "", [])}


def test_conn_info_by_customer_id(gateway):
    add_client(gateway, "u1")
    add_client(gateway, "u2")
    conn_info_update(gateway, ConnInfoUpdate("u1", "s1", "c1"))
    conn_info_update(gateway, ConnInfoUpdate("u2", "s2", "c1", ["t"]))
    result = conn_info_by_customer_id(gateway, ["c1", "c9"], True, True, True)
    assert list(result) == ["c1"]
    items = sorted(result["c1"], key=lambda item: item.uniq_id)
    assert items == [
        ConnInfoByCustomerIdItem("s1", "u1", []),
        ConnInfoByCustomerIdItem("s2", "u2", ["t"]),
    ]


def test_conn_info_by_customer_id_skips_offline(gateway):
    gateway.binder.set("ghost", "c1")
    assert conn_info_by_customer_id(gateway, ["c1"], True, True, True) == {}


def test_check_online_keeps_order(gateway):
    add_client(gateway, "u1")
    add_client(gateway, "u2")
    assert check_online(gateway, ["u2", "x", "u1"]) == ["u2", "u1"]


def test_failed_write_closes_connection(gateway):
    conn = add_client(gateway, "u1", fail=True)
    topic_subscribe(gateway, "u1", ["a"], b"data")
    assert conn.closed is True
    assert conn.session.get_topics() == ["a"]