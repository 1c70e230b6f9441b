import random

from pairstore.skiplist import SkipList


def test_insert_and_search():
    sl = SkipList()
    sl.insert("b", 2)
    sl.insert("a", 1)
    assert sl.search("a") == 1
    assert sl.search("b") == 2
    assert len(sl) == 2


def test_search_missing_returns_none():
    sl = SkipList()
    sl.insert("a", 1)
    assert sl.search("zzz") is None
    assert "zzz" not in sl


def test_insert_existing_key_updates_in_place():
    sl = SkipList()
    sl.insert("k", "old")
    sl.insert("k", "new")
    assert sl.search("k") == "new"
    assert len(sl) == 1


def test_iteration_is_sorted():
    rng = random.Random(7)
    keys = [f"key-{rng.randint(0, 5000)}" for _ in range(800)]
    sl = SkipList()
    for key in keys:
        sl.insert(key, key.upper())
    assert list(sl) == sorted(set(keys))
    assert len(sl) == len(set(keys))


def test_items_pairs_in_order():
    sl = SkipList()
    for key, value in [("c", 3), ("a", 1), ("b", 2)]:
        sl.insert(key, value)
    assert list(sl.items()) == [("a", 1), ("b", 2), ("c", 3)]


def test_delete():
    sl = SkipList()
    sl.insert("a", 1)
    sl.insert("b", 2)
    assert sl.delete("a") is True
    assert sl.delete("a") is False
    assert "a" not in sl
    assert list(sl) == ["b"]
    assert len(sl) == 1


def test_delete_all_then_reinsert():
    sl = SkipList()
    keys = [str(i) for i in range(200)]
    for key in keys:
        sl.insert(key, int(key))
    for key in keys:
        assert sl.delete(key)
    assert len(sl) == 0
    assert list(sl) == []
    sl.insert("x", 9)
    assert sl.search("x") == 9
    assert list(sl) == ["x"]


def test_contains():
    sl = SkipList()
    sl.insert("tenant:key", None)
    assert "tenant:key" in sl
    assert "tenant:other" not in sl