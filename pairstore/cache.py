"""Adaptive cache whose eviction blends access frequency and recency."""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from .model import CacheEntry, VectorClock

logger = logging.getLogger(__name__)

_ENTRY_OVERHEAD = 64


def _entry_size(key: str, value: bytes) -> int:
    return len(key.encode("utf-8")) + len(value) + _ENTRY_OVERHEAD


@dataclass
class CacheConfig:
    """Cache capacity and initial eviction weights."""

    max_size: int
    frequency_weight: float = 0.5
    recency_weight: float = 0.5
    adaptive_window: timedelta = timedelta(0)


@dataclass(frozen=True)
class CacheStats:
    """A snapshot of cache usage."""

    size: int
    max_size: int
    entry_count: int
    usage_percent: float


class CacheService:
    """Thread-safe cache evicting the entry with the lowest adaptive score."""

    def __init__(self, config: CacheConfig) -> None:
        self._config = config
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._current_size = 0
        self._frequency_weight = config.frequency_weight
        self._recency_weight = config.recency_weight

    @property
    def frequency_weight(self) -> float:
        """Current weight given to access frequency."""
        return self._frequency_weight

    @property
    def recency_weight(self) -> float:
        """Current weight given to time since last access."""
        return self._recency_weight

    def __len__(self) -> int:
        return len(self._entries)

    def _score(self, entry: CacheEntry) -> float:
        idle = time.time() - entry.last_access
        return self._frequency_weight * entry.access_count - self._recency_weight * idle

    def _touch(self, entry: CacheEntry) -> None:
        entry.access_count += 1
        entry.last_access = time.time()
        entry.score = self._score(entry)

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the cached entry, updating its statistics, or None on a miss."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            self._touch(entry)
            return entry

    def put(self, key: str, value: bytes, vector_clock: VectorClock) -> None:
        """Add or update an entry, evicting low-scoring entries to make room."""
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None:
                existing.value = value
                existing.vector_clock = vector_clock
                self._touch(existing)
                return

            size = _entry_size(key, value)
            while self._current_size + size > self._config.max_size and self._evict_lowest_score():
                pass

            entry = CacheEntry(key=key, value=value, vector_clock=vector_clock, access_count=1)
            entry.last_access = time.time()
            entry.score = self._score(entry)
            self._entries[key] = entry
            self._current_size += size

    def _evict_lowest_score(self) -> bool:
        if not self._entries:
            return False
        victim = min(self._entries, key=lambda k: self._entries[k].score)
        entry = self._entries.pop(victim)
        self._current_size -= _entry_size(entry.key, entry.value)
        logger.debug("Evicted cache entry key=%s score=%f", victim, entry.score)
        return True

    def adjust_weights(self) -> None:
        """Shift weights towards recency or frequency depending on recent activity."""
        with self._lock:
            if not self._entries:
                return
            threshold = time.time() - self._config.adaptive_window.total_seconds()
            total_accesses = sum(e.access_count for e in self._entries.values())
            recent = sum(1 for e in self._entries.values() if e.last_access > threshold)
            if total_accesses == 0:
                return

            hotness = recent / len(self._entries)
            if hotness > 0.7:
                self._recency_weight, self._frequency_weight = 0.7, 0.3
            elif hotness < 0.3:
                self._recency_weight, self._frequency_weight = 0.3, 0.7
            else:
                self._recency_weight, self._frequency_weight = 0.5, 0.5

            logger.debug(
                "Adjusted cache weights recency=%f frequency=%f hotness=%f",
                self._recency_weight,
                self._frequency_weight,
                hotness,
            )

    def stats(self) -> CacheStats:
        """Return current size, capacity, entry count and usage percentage."""
        with self._lock:
            max_size = self._config.max_size
            if max_size:
                usage = self._current_size / max_size * 100
            else:
                usage = math.inf if self._current_size else math.nan
            return CacheStats(
                size=self._current_size,
                max_size=max_size,
                entry_count=len(self._entries),
                usage_percent=usage,
            )