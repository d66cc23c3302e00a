# tests/test_registry.py
from concurrent.futures import ThreadPoolExecutor

import pytest

from infra.registry import SubscriptionRegistry


def _noop(msg):
    return None


def test_register_keeps_registration_order():
    reg = SubscriptionRegistry()
    for t in ["tickers.BTCUSDT", "kline.1.BTCUSDT", "publicTrade.ETHUSDT"]:
        reg.register(t, _noop)
    assert reg.topics() == ["tickers.BTCUSDT", "kline.1.BTCUSDT", "publicTrade.ETHUSDT"]
    assert len(reg) == 3


def test_register_same_topic_replaces_in_place():
    reg = SubscriptionRegistry()
    reg.register("a", _noop)
    reg.register("b", _noop)
    first = reg.lookup("a")
    first.active = True

    def other(msg):
        return None

    sub = reg.register("a", other)
    assert len(reg) == 2
    assert reg.topics() == ["a", "b"]
    assert reg.lookup("a") is sub
    assert sub.callback is other
    assert sub.active is True


def test_register_rejects_empty_topic():
    with pytest.raises(ValueError):
        SubscriptionRegistry().register("", _noop)


def test_unregister_by_handle_and_topic():
    reg = SubscriptionRegistry()
    sub = reg.register("a", _noop)
    reg.register("b", _noop)
    assert reg.unregister(sub) is True
    assert reg.unregister("b") is True
    assert reg.unregister("missing") is False
    assert len(reg) == 0


def test_stale_handle_does_not_remove_replacement():
    reg = SubscriptionRegistry()
    old = reg.register("a", _noop)
    new = reg.register("a", lambda m: None)
    assert reg.unregister(old) is False
    assert reg.lookup("a") is new


def test_lookup_falls_back_to_longest_prefix():
    reg = SubscriptionRegistry()
    reg.register("position", _noop)
    specific = reg.register("order.linear", _noop)
    assert reg.lookup("position.linear").topic == "position"
    assert reg.lookup("order.linear") is specific
    assert reg.lookup("order.spot") is None
    assert reg.lookup("positionx") is None


def test_mark_active_flags():
    reg = SubscriptionRegistry()
    reg.register("a", _noop)
    reg.register("b", _noop)
    reg.mark_active(["a", "missing"])
    assert [s.active for s in reg.replay_all()] == [True, False]
    reg.mark_all_inactive()
    assert not any(s.active for s in reg.replay_all())


def test_replay_all_is_a_snapshot():
    reg = SubscriptionRegistry()
    reg.register("a", _noop)
    snap = reg.replay_all()
    reg.register("b", _noop)
    assert [s.topic for s in snap] == ["a"]


def test_concurrent_register_from_threads():
    reg = SubscriptionRegistry()
    topics = [f"tickers.SYM{i}" for i in range(200)]
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda t: reg.register(t, _noop), topics))
    assert len(reg) == len(topics)
    assert sorted(reg.topics()) == sorted(topics)
    seqs = [s.seq for s in reg.replay_all()]
    assert len(set(seqs)) == len(seqs)
