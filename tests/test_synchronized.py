import threading

from restorex import Synchronized


def test_concurrent_updates_are_not_lost():
    counter = Synchronized(0)

    def worker():
        for _ in range(1000):
            counter.update(lambda n: n + 1)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert counter.value == 8000


def test_access_mutates_in_place():
    registry = Synchronized({})

    registry.access(lambda d: d.__setitem__("key", True))

    assert registry.value == {"key": True}


def test_value_returns_snapshot():
    items = Synchronized([1, 2])

    snapshot = items.value
    snapshot.append(3)

    assert items.value == [1, 2]


def test_nested_read_inside_update_does_not_deadlock():
    counter = Synchronized(1)

    result = counter.update(lambda n: n + counter.value)

    assert result == 2
    assert counter.access(lambda n: n * 10) == 20


def test_setter_replaces_value():
    holder = Synchronized("a")
    holder.value = "b"

    assert holder.value == "b"
    assert repr(holder) == "Synchronized('b')"
