import threading
from datetime import timedelta

import pytest

from glbc.pools import CloudListingPool, InMemoryPool


def _name_of(item):
    return item["name"]


def test_in_memory_add_get():
    pool = InMemoryPool()
    obj = {"name": "a"}
    pool.add("a", obj)
    assert pool.get("a") is obj
    assert pool.get("missing") is None


def test_in_memory_add_replaces():
    pool = InMemoryPool()
    pool.add("k", 1)
    pool.add("k", 2)
    assert pool.get("k") == 2
    assert pool.list_keys() == ["k"]


def test_in_memory_delete():
    pool = InMemoryPool()
    pool.add("a", 1)
    pool.add("b", 2)
    pool.delete("a")
    pool.delete("never-there")
    assert pool.get("a") is None
    assert sorted(pool.list_keys()) == ["b"]
    assert "a" not in pool
    assert len(pool) == 1


def test_snapshot_contains_all_items():
    pool = InMemoryPool()
    items = {"x": 10, "y": 20, "z": 30}
    for key, value in items.items():
        pool.add(key, value)
    assert pool.snapshot() == items


def test_snapshot_is_a_copy():
    pool = InMemoryPool()
    pool.add("a", 1)
    snap = pool.snapshot()
    snap["b"] = 2
    del snap["a"]
    assert pool.snapshot() == {"a": 1}


def test_replenish_adds_listed_items():
    items = [{"name": "one"}, {"name": "two"}]
    pool = CloudListingPool(_name_of, lambda: items, 60, start=False)
    pool.replenish_pool()
    assert pool.snapshot() == {"one": items[0], "two": items[1]}


def test_replenish_skips_items_without_key():
    def key_func(item):
        if "name" not in item:
            raise KeyError("name")
        return item["name"]

    good = {"name": "good"}
    pool = CloudListingPool(key_func, lambda: [{"other": 1}, good], 60, start=False)
    pool.replenish_pool()
    assert pool.snapshot() == {"good": good}


def test_replenish_lister_failure_keeps_pool():
    def failing():
        raise ConnectionError("cloud unavailable")

    pool = CloudListingPool(_name_of, failing, 60, start=False)
    pool.add("kept", "value")
    pool.replenish_pool()
    assert pool.snapshot() == {"kept": "value"}


def test_replenish_does_not_remove_existing():
    pool = CloudListingPool(_name_of, lambda: [{"name": "listed"}], 60, start=False)
    pool.add("local", "value")
    pool.replenish_pool()
    assert sorted(pool.list_keys()) == ["listed", "local"]


def test_cloud_pool_add_delete():
    pool = CloudListingPool(_name_of, lambda: [], 60, start=False)
    pool.add("a", 1)
    assert pool.get("a") == 1
    pool.delete("a")
    assert pool.snapshot() == {}


def test_background_relist_runs():
    listed = threading.Event()
    items = [{"name": "bg"}]

    def lister():
        listed.set()
        return items

    pool = CloudListingPool(_name_of, lister, timedelta(seconds=60))
    assert listed.wait(5)
    pool.stop()
    assert pool.get("bg") is items[0]


def test_context_manager_stops_thread():
    listed = threading.Event()

    def lister():
        listed.set()
        return []

    with CloudListingPool(_name_of, lister, 60) as pool:
        assert listed.wait(5)
    assert pool._thread is not None
    assert not pool._thread.is_alive()


@pytest.mark.parametrize("keys", [["a"], ["a", "b", "c"], []])
def test_list_keys_matches_snapshot(keys):
    pool = InMemoryPool()
    for key in keys:
        pool.add(key, key.upper())
    assert sorted(pool.list_keys()) == sorted(pool.snapshot())
    assert sorted(pool.list_keys()) == sorted(keys)