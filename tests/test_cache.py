from datetime import timedelta

import pytest

from pairstore.cache import CacheConfig, CacheService
from pairstore.model import VectorClock, VectorClockEntry


def _clock(node="c1", ts=1):
    return VectorClock([VectorClockEntry(node, ts)])


def test_put_then_get():
    cache = CacheService(CacheConfig(max_size=10_000))
    cache.put("t:k", b"value", _clock())
    entry = cache.get("t:k")
    assert entry.value == b"value"
    assert entry.vector_clock == _clock()


def test_get_missing_returns_none():
    cache = CacheService(CacheConfig(max_size=10_000))
    assert cache.get("t:none") is None


def test_get_increments_access_count():
    cache = CacheService(CacheConfig(max_size=10_000))
    cache.put("t:k", b"v", VectorClock())
    cache.get("t:k")
    entry = cache.get("t:k")
    assert entry.access_count == 3


def test_update_existing_keeps_single_entry():
    cache = CacheService(CacheConfig(max_size=10_000))
    cache.put("t:k", b"old", _clock(ts=1))
    before = cache.stats()
    cache.put("t:k", b"new", _clock(ts=2))
    after = cache.stats()
    assert cache.get("t:k").value == b"new"
    assert cache.get("t:k").vector_clock == _clock(ts=2)
    assert after.entry_count == 1
    assert after.size == before.size


def test_evicts_lowest_score():
    # each entry costs len(key) + len(value) + 64 = 75 bytes
    cache = CacheService(CacheConfig(max_size=200))
    cache.put("a", b"x" * 10, VectorClock())
    cache.get("a")
    cache.get("a")
    cache.put("b", b"x" * 10, VectorClock())
    cache.put("c", b"x" * 10, VectorClock())
    assert cache.get("b") is None
    assert cache.get("a") is not None and cache.get("c") is not None
    stats = cache.stats()
    assert stats.entry_count == 2
    assert stats.size <= stats.max_size


def test_size_never_exceeds_capacity_after_many_puts():
    cache = CacheService(CacheConfig(max_size=500))
    for i in range(50):
        cache.put(f"t:{i}", b"y" * 20, VectorClock())
        assert cache.stats().size <= 500
    assert len(cache) == cache.stats().entry_count


def test_stats_usage_percent():
    cache = CacheService(CacheConfig(max_size=1000))
    cache.put("k", b"v" * 35, VectorClock())
    stats = cache.stats()
    assert stats.entry_count == 1
    assert stats.usage_percent == pytest.approx(10.0)


def test_adjust_weights_empty_cache_unchanged():
    cache = CacheService(CacheConfig(max_size=1000, frequency_weight=0.5, recency_weight=0.5))
    cache.adjust_weights()
    assert (cache.frequency_weight, cache.recency_weight) == (0.5, 0.5)


def test_adjust_weights_recent_workload_favours_recency():
    cache = CacheService(CacheConfig(max_size=10_000, adaptive_window=timedelta(hours=1)))
    for i in range(5):
        cache.put(f"t:{i}", b"v", VectorClock())
    cache.adjust_weights()
    assert cache.recency_weight == 0.7
    assert cache.frequency_weight == 0.3


def test_adjust_weights_stale_workload_favours_frequency():
    cache = CacheService(CacheConfig(max_size=10_000, adaptive_window=timedelta(0)))
    for i in range(5):
        cache.put(f"t:{i}", b"v", VectorClock())
    for entry_key in ("t:0", "t:1", "t:2", "t:3", "t:4"):
        cache.get(entry_key).last_access -= 10
    cache.adjust_weights()
    assert cache.frequency_weight == 0.7
    assert cache.recency_weight == 0.3