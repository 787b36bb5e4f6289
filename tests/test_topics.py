import pytest

from wsgateway.topics import TopicRegistry


@pytest.fixture
def registry():
    r = TopicRegistry()
    r.set_many(["news", "sport"], "u1")
    r.set_many(["news"], "u2")
    return r


def test_set_many_and_lookup(registry):
    assert len(registry) == 2
    assert sorted(registry.topics()) == ["news", "sport"]
    assert sorted(registry.get_uniq_ids("news")) == ["u1", "u2"]
    assert registry.get_uniq_ids("missing") is None


def test_set_many_ignores_empty_topic_and_uniq_id():
    r = TopicRegistry()
    r.set_many(["", "a"], "u1")
    r.set_many(["b"], "")
    assert r.topics() == ["a"]


def test_counts(registry):
    assert registry.count_all() == {"news": 2, "sport": 1}
    assert registry.count(["sport", "missing"]) == {"sport": 1}
    assert registry.count([]) == {}


def test_get_uniq_ids_by_topics(registry):
    result = registry.get_uniq_ids_by_topics(["sport", "missing"])
    assert result == {"sport": ["u1"]}


def test_pull_removes_topics(registry):
    pulled = registry.pull_and_return_uniq_ids(["news", "missing"])
    assert pulled == {"news": {"u1", "u2"}}
    assert registry.topics() == ["sport"]
    assert registry.pull_and_return_uniq_ids([]) == {}


def test_del_many_drops_empty_topics(registry):
    registry.del_many({"news", "sport"}, "u1")
    assert registry.count_all() == {"news": 1}
    registry.del_many(["news"], "u2")
    assert len(registry) == 0
    registry.del_many(None, "u2")
    assert registry.topics() == []


def test_duplicate_subscription_counts_once(registry):
    registry.set_many(["news", "news"], "u1")
    assert registry.count(["news"]) == {"news": 2}