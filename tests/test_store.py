import threading
import time
from datetime import timedelta

import pytest

from nmanager.store import (
    AlertStore,
    MemoryProvider,
    PushTimeoutError,
    StoreClosedError,
)
from nmanager.types import Alert
from nmanager.utils import NotificationError


def alert(name):
    return Alert(labels={"alertname": name})


def test_pull_returns_in_push_order():
    p = MemoryProvider()
    for n in ("a", "b", "c"):
        p.push(alert(n))
    got = p.pull(10, 0.05)
    assert [a.labels["alertname"] for a in got] == ["a", "b", "c"]


def test_pull_respects_batch_size():
    p = MemoryProvider()
    for n in ("a", "b", "c"):
        p.push(alert(n))
    first = p.pull(2, 1.0)
    second = p.pull(2, 0.05)
    assert [a.labels["alertname"] for a in first] == ["a", "b"]
    assert [a.labels["alertname"] for a in second] == ["c"]


def test_pull_times_out_empty():
    start = time.monotonic()
    assert MemoryProvider().pull(5, timedelta(milliseconds=50)) == []
    assert time.monotonic() - start >= 0.04


def test_push_times_out_when_full():
    p = MemoryProvider(queue_len=1, push_timeout=0.05)
    p.push(alert("a"))
    with pytest.raises(PushTimeoutError) as info:
        p.push(alert("b"))
    assert str(info.value) == "Time out"
    assert isinstance(info.value, NotificationError)


def test_pull_makes_room_for_push():
    p = MemoryProvider(queue_len=1, push_timeout=2.0)
    p.push(alert("a"))
    pusher = threading.Thread(target=p.push, args=(alert("b"),))
    pusher.start()
    first = p.pull(1, 1.0)
    pusher.join(2.0)
    second = p.pull(1, 1.0)
    assert [a.labels["alertname"] for a in first + second] == ["a", "b"]


def test_pull_wakes_on_push_from_thread():
    p = MemoryProvider()
    timer = threading.Timer(0.05, p.push, args=(alert("late"),))
    timer.start()
    got = p.pull(1, 2.0)
    timer.join()
    assert [a.labels["alertname"] for a in got] == ["late"]


def test_closed_store_drains_then_raises():
    p = MemoryProvider()
    p.push(alert("a"))
    p.close()
    with pytest.raises(StoreClosedError) as info:
        p.pull(5, 1.0)
    assert str(info.value) == "Store closed"
    assert [a.labels["alertname"] for a in info.value.alerts] == ["a"]


def test_push_after_close_raises():
    p = MemoryProvider()
    p.close()
    with pytest.raises(StoreClosedError):
        p.push(alert("a"))


def test_context_manager_closes():
    with MemoryProvider() as p:
        p.push(alert("a"))
    with pytest.raises(StoreClosedError):
        p.push(alert("b"))


def test_invalid_queue_length():
    with pytest.raises(ValueError):
        MemoryProvider(queue_len=0)


def test_alert_store_memory():
    store = AlertStore("memory")
    store.push(alert("x"))
    assert [a.labels["alertname"] for a in store.pull(1, 0.5)] == ["x"]
    store.close()
    with pytest.raises(StoreClosedError):
        store.pull(1, 0.5)


def test_alert_store_wraps_provider():
    provider = MemoryProvider(queue_len=2)
    store = AlertStore(provider)
    store.push(alert("y"))
    assert [a.labels["alertname"] for a in provider.pull(1, 0.5)] == ["y"]


def test_alert_store_unknown_provider():
    with pytest.raises(ValueError):
        AlertStore("redis")