from wsgateway.session import Info


def make_info():
    info = Info("u1")
    info.customer_id = "c1"
    info.session = "s1"
    info.subscribe_topics(["a", "", "b"])
    return info


def test_new_info_is_guest():
    info = Info("u1")
    assert info.is_login() is False
    assert info.get_topics() == []
    assert info.uniq_id == "u1"


def test_login_by_session_or_customer_id():
    info = Info("u1")
    info.session = "s"
    assert info.is_login() is True
    other = Info("u2")
    other.customer_id = "c"
    assert other.is_login() is True


def test_subscribe_skips_empty_topic():
    info = make_info()
    assert sorted(info.get_topics()) == ["a", "b"]


def test_unsubscribe():
    info = make_info()
    info.unsubscribe_topics(["a", "zzz"])
    assert info.get_topics() == ["b"]
    assert info.unsubscribe_topic("b") is True
    assert info.unsubscribe_topic("b") is False
    assert Info("u9").unsubscribe_topic("b") is False


def test_conn_info_respects_flags():
    info = make_info()
    full = info.conn_info(True, True, True)
    assert full["session"] == "s1"
    assert full["customer_id"] == "c1"
    assert sorted(full["topics"]) == ["a", "b"]
    empty = info.conn_info(False, False, False)
    assert empty == {"session": "", "customer_id": "", "topics": []}


def test_conn_info_by_customer_id():
    info = make_info()
    item = info.conn_info_by_customer_id(False, True, False)
    assert item == {"session": "", "uniq_id": "u1", "topics": []}


def test_clear_returns_and_empties():
    info = make_info()
    uniq_id, customer_id, session, topics = info.clear()
    assert (uniq_id, customer_id, session) == ("u1", "c1", "s1")
    assert sorted(topics) == ["a", "b"]
    assert info.uniq_id == ""
    assert info.is_login() is False
    assert info.get_topics() == []


def test_pull_topics():
    info = make_info()
    assert info.pull_topics() == {"a", "b"}
    assert info.pull_topics() == set()
    assert info.topics is None


def test_lock_is_reentrant():
    info = make_info()
    with info.lock:
        assert info.unsubscribe_topic("a") is True
        assert info.is_login() is True