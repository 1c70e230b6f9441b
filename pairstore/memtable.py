"""In-memory sorted tables and the service that rotates and flushes them."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterator, Optional

from .model import MemTableEntry
from .skiplist import SkipList

if TYPE_CHECKING:
    from .sstable_service import SSTableService

logger = logging.getLogger(__name__)

_ENTRY_OVERHEAD = 64


def hash_in_range(key_hash: int, start_hash: int, end_hash: int) -> bool:
    """Return whether key_hash lies in [start_hash, end_hash), wrapping when end <= start."""
    if end_hash > start_hash:
        return start_hash <= key_hash < end_hash
    return key_hash >= start_hash or key_hash < end_hash


@dataclass
class MemTableConfig:
    """Memtable capacity and flush settings."""

    max_size: int = 67108864
    flush_threshold: int = 60000000
    num_mem_tables: int = 0


class MemTable:
    """A sorted in-memory table of memtable entries keyed by composite key."""

    def __init__(self, max_size: int) -> None:
        self.max_size = max_size
        self._data = SkipList()
        self._size = 0
        self._lock = threading.RLock()

    def put(self, entry: MemTableEntry) -> None:
        """Insert or replace an entry; the approximate size always grows."""
        with self._lock:
            self._data.insert(entry.key, entry)
            self._size += len(entry.key.encode("utf-8")) + len(entry.value) + _ENTRY_OVERHEAD

    def get(self, key: str) -> Optional[MemTableEntry]:
        """Return the entry under key, or None."""
        with self._lock:
            return self._data.search(key)

    def size(self) -> int:
        """Approximate number of bytes written into the table."""
        with self._lock:
            return self._size

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __iter__(self) -> Iterator[MemTableEntry]:
        with self._lock:
            entries = [value for _, value in self._data.items()]
        return iter(entries)


class MemTableService:
    """Holds the active memtable and, during a flush, the one being written out."""

    def __init__(self, config: MemTableConfig) -> None:
        self.config = config
        self._memtable = MemTable(config.max_size)
        self._immutable: Optional[MemTable] = None
        self._lock = threading.RLock()
        self._flush_lock = threading.Lock()

    def put(self, entry: MemTableEntry) -> None:
        """Insert or update an entry in the active memtable."""
        with self._lock:
            self._memtable.put(entry)

    def get(self, key: str) -> Optional[MemTableEntry]:
        """Look the key up in the active memtable, then in the one being flushed."""
        with self._lock:
            entry = self._memtable.get(key)
            if entry is not None:
                return entry
            if self._immutable is not None:
                return self._immutable.get(key)
            return None

    def should_flush(self) -> bool:
        """Return whether the active memtable has reached the flush threshold."""
        with self._lock:
            return self._memtable.size() >= self.config.flush_threshold

    def scan_keys_in_range(
        self, start_hash: int, end_hash: int, hash_func: Callable[[str], int]
    ) -> list[MemTableEntry]:
        """Return entries whose key hash lies in the (possibly wrapping) range."""
        with self._lock:
            tables = [self._memtable]
            if self._immutable is not None:
                tables.append(self._immutable)
            results = [
                entry
                for table in tables
                for entry in table
                if entry is not None
                and hash_in_range(hash_func(entry.key), start_hash, end_hash)
            ]
        logger.debug(
            "Scanned memtable start_hash=%d end_hash=%d keys_found=%d",
            start_hash,
            end_hash,
            len(results),
        )
        return results

    def flush(self, sstable_service: "SSTableService") -> None:
        """Swap in a fresh memtable and write the old one to a new SSTable."""
        with self._flush_lock:
            with self._lock:
                if self._memtable.size() == 0:
                    return
                immutable = self._memtable
                self._immutable = immutable
                self._memtable = MemTable(self.config.max_size)

            logger.info(
                "Starting memtable flush size=%d entries=%d", immutable.size(), len(immutable)
            )
            try:
                sstable_service.write_from_memtable(immutable)
            except Exception:
                logger.exception("Failed to flush memtable")
                raise

            with self._lock:
                self._immutable = None
            logger.info("Memtable flush completed")