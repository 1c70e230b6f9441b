"""Tracks SSTables by level and serves reads and range scans across them."""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Union

from .bloom_filter import BloomFilter
from .memtable import MemTable, hash_in_range
from .model import KeyRange, KeyValueEntry, SSTableLevel, SSTableMetadata
from .sstable import SSTableConfig, SSTableReader, SSTableWriter

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


@dataclass
class SSTableServiceConfig:
    """Level sizes and file settings for SSTables."""

    l0_size: int = 0
    l1_size: int = 0
    l2_size: int = 0
    level_multiplier: int = 0
    bloom_filter_fp: float = 0.01
    block_size: int = 0
    index_interval: int = 0


def _key_in_range(key: str, key_range: KeyRange) -> bool:
    return key_range.start_key <= key <= key_range.end_key


class SSTableService:
    """Manages persistent storage in SSTables arranged in levels L0 to L4."""

    def __init__(self, config: SSTableServiceConfig, data_dir: PathLike) -> None:
        self.config = config
        self.data_dir = os.fspath(data_dir)
        self._levels: dict[SSTableLevel, list[SSTableMetadata]] = {}
        self._lock = threading.RLock()
        self._last_id = 0
        for level in SSTableLevel:
            level_dir = os.path.join(self.data_dir, f"l{int(level)}")
            try:
                os.makedirs(level_dir, exist_ok=True)
            except OSError as exc:
                logger.warning("Failed to create level directory %s: %s", level_dir, exc)

    def _next_id(self) -> str:
        stamp = max(time.time_ns(), self._last_id + 1)
        self._last_id = stamp
        return f"sstable-{stamp}"

    def write_from_memtable(self, memtable: MemTable) -> SSTableMetadata:
        """Write the memtable's entries to a new L0 SSTable and register it."""
        with self._lock:
            sstable_id = self._next_id()
            file_path = os.path.join(self.data_dir, "l0", sstable_id + ".sst")
            writer_config = SSTableConfig(
                bloom_filter_fp=self.config.bloom_filter_fp,
                block_size=self.config.block_size,
                index_interval=self.config.index_interval,
            )
            key_range = KeyRange()
            count = 0
            with SSTableWriter(file_path, writer_config) as writer:
                for entry in memtable:
                    if count == 0:
                        key_range.start_key = entry.key
                    key_range.end_key = entry.key
                    writer.write(entry)
                    count += 1
                writer.finalize()
                size = writer.size()

            metadata = SSTableMetadata(
                sstable_id=sstable_id,
                level=int(SSTableLevel.L0),
                size=size,
                key_range=key_range,
                created_at=datetime.now(timezone.utc),
                file_path=file_path,
                index_path=file_path + ".idx",
                bloom_path=file_path + ".bloom",
            )
            self._levels.setdefault(SSTableLevel.L0, []).append(metadata)
            logger.info(
                "Created new SSTable id=%s level=0 entries=%d size=%d", sstable_id, count, size
            )
            return metadata

    def get(self, tenant_id: str, key: str) -> Optional[KeyValueEntry]:
        """Return the newest entry for the key across all levels, or None."""
        composite_key = f"{tenant_id}:{key}"
        latest: Optional[KeyValueEntry] = None
        latest_timestamp = 0
        with self._lock:
            for level in SSTableLevel:
                for table in self._levels.get(level, []):
                    if not _key_in_range(composite_key, table.key_range):
                        continue
                    try:
                        bloom = BloomFilter.load(table.bloom_path)
                    except (OSError, ValueError) as exc:
                        logger.warning("Failed to load bloom filter: %s", exc)
                        continue
                    if not bloom.may_contain(composite_key):
                        continue
                    try:
                        with SSTableReader(table.file_path, table.index_path) as reader:
                            entry = reader.get(composite_key)
                    except (OSError, ValueError) as exc:
                        logger.debug("Failed to read sstable %s: %s", table.sstable_id, exc)
                        continue
                    if entry is not None and entry.timestamp > latest_timestamp:
                        latest = entry
                        latest_timestamp = entry.timestamp
        return latest

    def scan_keys_in_range(
        self, start_hash: int, end_hash: int, hash_func: Callable[[str], int]
    ) -> list[KeyValueEntry]:
        """Return the newest entry for every key whose hash lies in the range."""
        found: dict[str, KeyValueEntry] = {}
        with self._lock:
            for level in SSTableLevel:
                for table in self._levels.get(level, []):
                    try:
                        reader = SSTableReader(table.file_path, table.index_path)
                    except (OSError, ValueError) as exc:
                        logger.error(
                            "Failed to open sstable %s for scanning: %s", table.sstable_id, exc
                        )
                        continue
                    with reader:
                        for key in reader.keys():
                            if not hash_in_range(hash_func(key), start_hash, end_hash):
                                continue
                            try:
                                entry = reader.get(key)
                            except (OSError, ValueError):
                                continue
                            if entry is None:
                                continue
                            composite = f"{entry.tenant_id}:{entry.key}"
                            seen = found.get(composite)
                            if seen is None or entry.timestamp > seen.timestamp:
                                found[composite] = entry
        results = list(found.values())
        logger.debug(
            "Scanned SSTables start_hash=%d end_hash=%d keys_found=%d",
            start_hash,
            end_hash,
            len(results),
        )
        return results

    def tables_for_level(self, level: SSTableLevel) -> list[SSTableMetadata]:
        """Return the tables registered at a level."""
        with self._lock:
            return list(self._levels.get(SSTableLevel(level), []))

    def add_table(self, level: SSTableLevel, table: SSTableMetadata) -> None:
        """Register a table at a level."""
        with self._lock:
            self._levels.setdefault(SSTableLevel(level), []).append(table)

    def remove_tables(self, level: SSTableLevel, table_ids: Iterable[str]) -> None:
        """Drop the tables with the given ids from a level."""
        remove = set(table_ids)
        with self._lock:
            level = SSTableLevel(level)
            self._levels[level] = [
                t for t in self._levels.get(level, []) if t.sstable_id not in remove
            ]