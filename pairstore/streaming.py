"""Streaming of stored data to another node while it joins or leaves the cluster."""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from .model import VectorClock
from .storage import StorageError, build_key

if TYPE_CHECKING:
    from .storage import StorageService

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000
DEFAULT_STREAM_BUFFER = 10000
DEFAULT_CHECKSUM_WORKERS = 4
_LIVE_WORKERS = 4

Sender = Callable[["StreamContext", str, str, bytes, VectorClock, bool], None]
ChecksumFetcher = Callable[["StreamContext", "HashRange"], str]


class StreamState(str, Enum):
    """Lifecycle of a stream to a target node."""

    COPYING = "copying"
    STREAMING = "streaming"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


class StreamingError(Exception):
    """Raised when a stream cannot be registered or carried out."""


@dataclass(frozen=True)
class HashRange:
    """A range of key hashes, [start_hash, end_hash), wrapping when start > end."""

    start_hash: int
    end_hash: int


def key_in_ranges(key_hash: int, ranges: Iterable[HashRange]) -> bool:
    """Return whether key_hash falls in any of the ranges."""
    for r in ranges:
        if r.start_hash <= key_hash < r.end_hash:
            return True
        if r.start_hash > r.end_hash and (key_hash >= r.start_hash or key_hash < r.end_hash):
            return True
    return False


def parse_composite_key(composite_key: str) -> tuple[str, str]:
    """Split "tenant:key" at the first colon; raise ValueError without one."""
    tenant_id, sep, key = composite_key.partition(":")
    if not sep:
        raise ValueError(f"invalid composite key format: {composite_key}")
    return tenant_id, key


def _hash_composite(composite_key: str) -> int:
    digest = hashlib.sha256(composite_key.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


@dataclass
class StreamContext:
    """State and progress of streaming to one target node."""

    target_node_id: str
    target_host: str = ""
    target_port: int = 0
    key_ranges: list[HashRange] = field(default_factory=list)
    state: StreamState = StreamState.COPYING
    keys_copied: int = 0
    keys_streamed: int = 0
    bytes_copied: int = 0
    bytes_streamed: int = 0
    last_sync_time: Optional[float] = None
    start_time: Optional[float] = None
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    @property
    def active(self) -> bool:
        """Whether the stream has neither completed nor failed."""
        return self.state not in (StreamState.COMPLETED, StreamState.FAILED)

    def record_copy(self, nbytes: int) -> None:
        """Count one key copied during the bulk phase."""
        with self._lock:
            self.keys_copied += 1
            self.bytes_copied += nbytes

    def record_stream(self, nbytes: int) -> None:
        """Count one live write forwarded to the target."""
        with self._lock:
            self.keys_streamed += 1
            self.bytes_streamed += nbytes

    def snapshot(self) -> "StreamMetrics":
        """Return the current progress as metrics."""
        with self._lock:
            started = self.start_time if self.start_time is not None else time.time()
            return StreamMetrics(
                target_node_id=self.target_node_id,
                state=self.state.value,
                keys_copied=self.keys_copied,
                keys_streamed=self.keys_streamed,
                bytes_copied=self.bytes_copied,
                bytes_streamed=self.bytes_streamed,
                duration_seconds=time.time() - started,
            )


@dataclass(frozen=True)
class StreamMetrics:
    """Progress of one stream."""

    target_node_id: str
    state: str
    keys_copied: int
    keys_streamed: int
    bytes_copied: int
    bytes_streamed: int
    duration_seconds: float

    def to_dict(self) -> dict:
        """Return the metrics under their wire names."""
        return {
            "target_node_id": self.target_node_id,
            "state": self.state,
            "keys_copied": self.keys_copied,
            "keys_streamed": self.keys_streamed,
            "bytes_copied": self.bytes_copied,
            "bytes_streamed": self.bytes_streamed,
            "duration_seconds": self.duration_seconds,
        }


class StreamingManager:
    """Copies existing data to target nodes and forwards live writes to them.

    ``sender`` delivers one key to a target node; without it delivery is only logged.
    ``remote_checksum`` fetches a range checksum from the target; without it the
    target is taken to match the local checksum.
    """

    def __init__(
        self,
        storage_service: "StorageService",
        batch_size: int = 0,
        stream_buffer: int = 0,
        checksum_workers: int = 0,
    ) -> None:
        self.storage_service = storage_service
        self.batch_size = batch_size if batch_size > 0 else DEFAULT_BATCH_SIZE
        self.stream_buffer = stream_buffer if stream_buffer > 0 else DEFAULT_STREAM_BUFFER
        self.checksum_workers = (
            checksum_workers if checksum_workers > 0 else DEFAULT_CHECKSUM_WORKERS
        )
        self.sender: Optional[Sender] = None
        self.remote_checksum: Optional[ChecksumFetcher] = None
        self._streams: dict[str, StreamContext] = {}
        self._lock = threading.RLock()
        self._stopped = False
        self._live = ThreadPoolExecutor(
            max_workers=_LIVE_WORKERS, thread_name_prefix="live-stream"
        )

    def add_stream(self, target_node_id: str, stream_ctx: StreamContext) -> None:
        """Register a stream; raise StreamingError if one exists for the node."""
        with self._lock:
            if target_node_id in self._streams:
                raise StreamingError(f"stream already exists for node {target_node_id}")
            stream_ctx.start_time = time.time()
            self._streams[target_node_id] = stream_ctx
        logger.info(
            "Added streaming context target_node=%s key_ranges=%d",
            target_node_id,
            len(stream_ctx.key_ranges),
        )

    def remove_stream(self, target_node_id: str) -> None:
        """Forget the stream to a node, if any."""
        with self._lock:
            self._streams.pop(target_node_id, None)
        logger.info("Removed streaming context target_node=%s", target_node_id)

    def get_stream(self, target_node_id: str) -> Optional[StreamContext]:
        """Return the stream to a node, or None."""
        with self._lock:
            return self._streams.get(target_node_id)

    def active_streams(self) -> list[StreamContext]:
        """Return every registered stream."""
        with self._lock:
            return list(self._streams.values())

    def execute_streaming(self, stream_ctx: StreamContext) -> None:
        """Run bulk copy, live streaming and sync verification for a stream."""
        logger.info(
            "Starting streaming execution target_node=%s key_ranges=%d",
            stream_ctx.target_node_id,
            len(stream_ctx.key_ranges),
        )
        stream_ctx.state = StreamState.COPYING
        try:
            self._bulk_copy(stream_ctx)
        except Exception as exc:
            stream_ctx.state = StreamState.FAILED
            raise StreamingError(f"bulk copy failed: {exc}") from exc

        stream_ctx.state = StreamState.STREAMING
        logger.info(
            "Bulk copy complete, live streaming active target_node=%s keys_copied=%d",
            stream_ctx.target_node_id,
            stream_ctx.keys_copied,
        )

        stream_ctx.state = StreamState.SYNCING
        try:
            self._verify_sync(stream_ctx)
        except Exception as exc:
            stream_ctx.state = StreamState.FAILED
            raise StreamingError(f"sync verification failed: {exc}") from exc

        stream_ctx.state = StreamState.COMPLETED
        logger.info(
            "Streaming completed target_node=%s keys_copied=%d keys_streamed=%d",
            stream_ctx.target_node_id,
            stream_ctx.keys_copied,
            stream_ctx.keys_streamed,
        )

    def _bulk_copy(self, stream_ctx: StreamContext) -> None:
        for key_range in stream_ctx.key_ranges:
            keys = self._scan_keys_in_range(key_range)
            logger.debug(
                "Scanning key range target_node=%s start_hash=%d end_hash=%d keys_found=%d",
                stream_ctx.target_node_id,
                key_range.start_hash,
                key_range.end_hash,
                len(keys),
            )
            for start in range(0, len(keys), self.batch_size):
                self._copy_batch(stream_ctx, keys[start : start + self.batch_size])
        logger.info(
            "Bulk copy phase completed target_node=%s keys_copied=%d bytes_copied=%d",
            stream_ctx.target_node_id,
            stream_ctx.keys_copied,
            stream_ctx.bytes_copied,
        )

    def _collect_range(self, key_range: HashRange) -> dict[str, tuple[bytes, VectorClock]]:
        found: dict[str, tuple[bytes, VectorClock]] = {}
        start, end = key_range.start_hash, key_range.end_hash
        for entry in self.storage_service.sstables.scan_keys_in_range(
            start, end, _hash_composite
        ):
            found[build_key(entry.tenant_id, entry.key)] = (entry.value, entry.vector_clock)
        for mem_entry in self.storage_service.memtable.scan_keys_in_range(
            start, end, _hash_composite
        ):
            found[mem_entry.key] = (mem_entry.value, mem_entry.vector_clock)
        return found

    def _scan_keys_in_range(self, key_range: HashRange) -> list[str]:
        return sorted(self._collect_range(key_range))

    def _copy_batch(self, stream_ctx: StreamContext, keys: Iterable[str]) -> None:
        for composite in keys:
            try:
                tenant_id, key = parse_composite_key(composite)
            except ValueError as exc:
                logger.warning("Failed to parse composite key %s: %s", composite, exc)
                continue
            try:
                resp = self.storage_service.read(tenant_id, key)
            except StorageError as exc:
                logger.warning("Failed to read key for copy %s: %s", composite, exc)
                continue
            try:
                self._send(stream_ctx, tenant_id, key, resp.value, resp.vector_clock, False)
            except Exception as exc:  # noqa: BLE001 - copying is best effort
                logger.warning(
                    "Failed to send key %s to target node %s: %s",
                    composite,
                    stream_ctx.target_node_id,
                    exc,
                )
                continue
            stream_ctx.record_copy(len(resp.value))

    def _send(
        self,
        stream_ctx: StreamContext,
        tenant_id: str,
        key: str,
        value: bytes,
        vector_clock: VectorClock,
        is_live_write: bool,
    ) -> None:
        logger.debug(
            "Sending key to target node target_node=%s tenant_id=%s key=%s live=%s size=%d",
            stream_ctx.target_node_id,
            tenant_id,
            key,
            is_live_write,
            len(value),
        )
        if self.sender is not None:
            self.sender(stream_ctx, tenant_id, key, value, vector_clock, is_live_write)

    def intercept_write(
        self,
        tenant_id: str,
        key: str,
        value: bytes,
        vector_clock: VectorClock,
        key_hash: int,
    ) -> None:
        """Forward a write, in the background, to every live stream whose ranges hold it."""
        with self._lock:
            if self._stopped:
                return
            targets = [
                ctx
                for ctx in self._streams.values()
                if ctx.state is StreamState.STREAMING and key_in_ranges(key_hash, ctx.key_ranges)
            ]
            for ctx in targets:
                try:
                    self._live.submit(
                        self._stream_live, ctx, tenant_id, key, value, vector_clock
                    )
                except RuntimeError:
                    return

    def _stream_live(
        self,
        stream_ctx: StreamContext,
        tenant_id: str,
        key: str,
        value: bytes,
        vector_clock: VectorClock,
    ) -> None:
        try:
            self._send(stream_ctx, tenant_id, key, value, vector_clock, True)
        except Exception as exc:  # noqa: BLE001 - live streaming is best effort
            logger.debug(
                "Failed to stream live write key=%s target=%s: %s",
                key,
                stream_ctx.target_node_id,
                exc,
            )
            return
        stream_ctx.record_stream(len(value))

    def _range_checksum(self, key_range: HashRange) -> str:
        digest = hashlib.sha256()
        for composite, (value, vector_clock) in sorted(self._collect_range(key_range).items()):
            digest.update(composite.encode("utf-8"))
            digest.update(b"\0")
            digest.update(value)
            digest.update(b"\0")
            digest.update(json.dumps(vector_clock.to_dict(), sort_keys=True).encode("utf-8"))
            digest.update(b"\n")
        return digest.hexdigest()

    def _verify_sync(self, stream_ctx: StreamContext) -> None:
        logger.info("Starting sync verification phase target_node=%s", stream_ctx.target_node_id)
        for key_range in stream_ctx.key_ranges:
            try:
                local = self._range_checksum(key_range)
            except Exception as exc:
                raise StreamingError(f"failed to compute local checksum: {exc}") from exc
            try:
                if self.remote_checksum is not None:
                    remote = self.remote_checksum(stream_ctx, key_range)
                else:
                    remote = local
            except Exception as exc:
                raise StreamingError(f"failed to get remote checksum: {exc}") from exc

            if local != remote:
                logger.warning(
                    "Checksum mismatch, re-syncing range target_node=%s start_hash=%d end_hash=%d",
                    stream_ctx.target_node_id,
                    key_range.start_hash,
                    key_range.end_hash,
                )
                self._copy_batch(stream_ctx, self._scan_keys_in_range(key_range))

        with stream_ctx._lock:
            stream_ctx.last_sync_time = time.time()
        logger.info("Sync verification completed target_node=%s", stream_ctx.target_node_id)

    def stop(self) -> None:
        """Stop accepting live writes and wait for those in flight."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
        self._live.shutdown(wait=True)
        logger.info("Streaming manager stopped")

    def metrics(self) -> dict[str, StreamMetrics]:
        """Return the progress of every stream, keyed by target node."""
        with self._lock:
            return {node: ctx.snapshot() for node, ctx in self._streams.items()}