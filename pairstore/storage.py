"""Orchestrates writes, reads and repairs across log, memtable, cache and SSTables."""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional, Protocol

from .cache import CacheService
from .commitlog import CommitLogError, CommitLogService
from .memtable import MemTableService
from .model import CommitLogEntry, MemTableEntry, OperationType, VectorClock
from .sstable_service import SSTableService

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a storage operation fails."""


class ValidationError(StorageError):
    """Raised when a request is missing a required field."""


class KeyNotFoundError(StorageError, KeyError):
    """Raised when a key is not stored anywhere."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class _WriteInterceptor(Protocol):
    def intercept_write(
        self,
        tenant_id: str,
        key: str,
        value: bytes,
        vector_clock: VectorClock,
        key_hash: int,
    ) -> None: ...


@dataclass
class WriteResponse:
    """Outcome of a write."""

    success: bool
    vector_clock: VectorClock


@dataclass
class ReadResponse:
    """Outcome of a read; source is "cache", "memtable" or "sstable"."""

    success: bool
    value: bytes
    vector_clock: VectorClock
    source: str


def build_key(tenant_id: str, key: str) -> str:
    """Return the composite key "tenant:key"."""
    return f"{tenant_id}:{key}"


def compute_key_hash(tenant_id: str, key: str) -> int:
    """Hash the composite key for consistent hashing: first 8 SHA-256 bytes, big-endian."""
    digest = hashlib.sha256(build_key(tenant_id, key).encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


class StorageService:
    """The main storage layer: log first for durability, then memtable and cache."""

    def __init__(
        self,
        commit_log: CommitLogService,
        memtable: MemTableService,
        sstables: SSTableService,
        cache: CacheService,
        node_id: str,
    ) -> None:
        self.commit_log = commit_log
        self.memtable = memtable
        self.sstables = sstables
        self.cache = cache
        self.node_id = node_id
        self.streaming_manager: Optional[_WriteInterceptor] = None

    @staticmethod
    def _validate(tenant_id: str, key: str, value: Optional[bytes]) -> None:
        if not tenant_id:
            raise ValidationError("validation failed: tenant_id is required")
        if not key:
            raise ValidationError("validation failed: key is required")
        if value is None:
            raise ValidationError("validation failed: value is required")

    def _apply(
        self,
        tenant_id: str,
        key: str,
        value: bytes,
        vector_clock: VectorClock,
        operation: OperationType,
        label: str,
    ) -> str:
        entry = CommitLogEntry(
            tenant_id=tenant_id,
            key=key,
            value=value,
            vector_clock=vector_clock,
            timestamp=int(time.time()),
            operation_type=operation,
        )
        try:
            self.commit_log.append(entry)
        except CommitLogError as exc:
            logger.error(
                "Failed to write to commit log tenant_id=%s key=%s: %s", tenant_id, key, exc
            )
            raise StorageError(f"{label} commit log failed: {exc}") from exc

        composite = build_key(tenant_id, key)
        try:
            self.memtable.put(
                MemTableEntry(
                    key=composite,
                    value=value,
                    vector_clock=vector_clock,
                    timestamp=entry.timestamp,
                )
            )
        except Exception as exc:
            logger.error("Failed to write to memtable key=%s: %s", composite, exc)
            raise StorageError(f"{label} memtable failed: {exc}") from exc

        self.cache.put(composite, value, vector_clock)
        return composite

    def write(
        self, tenant_id: str, key: str, value: bytes, vector_clock: VectorClock
    ) -> WriteResponse:
        """Store a value durably and make it readable."""
        started = time.monotonic()
        self._validate(tenant_id, key, value)
        self._apply(tenant_id, key, value, vector_clock, OperationType.WRITE, "write")

        if self.streaming_manager is not None:
            self.streaming_manager.intercept_write(
                tenant_id, key, value, vector_clock, compute_key_hash(tenant_id, key)
            )

        if self.memtable.should_flush():
            threading.Thread(
                target=self._background_flush, name="memtable-flush", daemon=True
            ).start()

        logger.debug(
            "Write completed tenant_id=%s key=%s latency=%.6fs",
            tenant_id,
            key,
            time.monotonic() - started,
        )
        return WriteResponse(success=True, vector_clock=vector_clock)

    def read(self, tenant_id: str, key: str) -> ReadResponse:
        """Return the value from the cache, the memtable or the SSTables, in that order."""
        started = time.monotonic()
        composite = build_key(tenant_id, key)

        cached = self.cache.get(composite)
        if cached is not None:
            logger.debug("Cache hit tenant_id=%s key=%s", tenant_id, key)
            return ReadResponse(True, cached.value, cached.vector_clock, "cache")

        mem_entry = self.memtable.get(composite)
        if mem_entry is not None:
            logger.debug("MemTable hit tenant_id=%s key=%s", tenant_id, key)
            self.cache.put(composite, mem_entry.value, mem_entry.vector_clock)
            return ReadResponse(True, mem_entry.value, mem_entry.vector_clock, "memtable")

        try:
            entry = self.sstables.get(tenant_id, key)
        except Exception as exc:
            logger.error("SSTable read failed tenant_id=%s key=%s: %s", tenant_id, key, exc)
            raise StorageError(f"sstable read failed: {exc}") from exc
        if entry is None:
            raise KeyNotFoundError("key not found")

        self.cache.put(composite, entry.value, entry.vector_clock)
        logger.debug(
            "Read completed tenant_id=%s key=%s source=sstable latency=%.6fs",
            tenant_id,
            key,
            time.monotonic() - started,
        )
        return ReadResponse(True, entry.value, entry.vector_clock, "sstable")

    def repair(
        self, tenant_id: str, key: str, value: bytes, vector_clock: VectorClock
    ) -> None:
        """Overwrite a key with a repaired value from another replica."""
        self._apply(tenant_id, key, value, vector_clock, OperationType.REPAIR, "repair")
        logger.info("Repair completed tenant_id=%s key=%s", tenant_id, key)

    def flush(self) -> None:
        """Write the current memtable out to a new SSTable."""
        logger.info("Triggering memtable flush")
        self.memtable.flush(self.sstables)

    def _background_flush(self) -> None:
        try:
            self.flush()
        except Exception as exc:  # noqa: BLE001 - background task reports and ends
            logger.error("Memtable flush failed: %s", exc)