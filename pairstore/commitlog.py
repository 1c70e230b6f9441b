"""Write-ahead log that makes writes durable before they reach the memtable."""

from __future__ import annotations

import glob
import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import IO, TYPE_CHECKING, Optional, Union

from .model import CommitLogEntry, MemTableEntry

if TYPE_CHECKING:
    from .memtable import MemTableService

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

_ROTATION_INTERVAL = 60.0
_SEGMENT_PATTERN = "commitlog-*.log"


class CommitLogError(Exception):
    """Raised when the commit log cannot be opened, written or synced."""


@dataclass
class CommitLogConfig:
    """Segment size, age limit and durability settings of the commit log."""

    segment_size: int = 0
    max_age: timedelta = timedelta(0)
    sync_writes: bool = False
    buffer_size: int = 0


class CommitLogService:
    """Appends entries as JSON lines to segment files and replays them on startup."""

    def __init__(self, config: CommitLogConfig, data_dir: PathLike) -> None:
        self.config = config
        self.data_dir = os.fspath(data_dir)
        try:
            os.makedirs(self.data_dir, exist_ok=True)
        except OSError as exc:
            raise CommitLogError(f"failed to create commit log directory: {exc}") from exc

        self._lock = threading.Lock()
        self._file: Optional[IO[str]] = None
        self._current_path: Optional[str] = None
        self._segment_id = int(time.time())
        try:
            self._open_new_segment()
        except CommitLogError as exc:
            raise CommitLogError(f"failed to open commit log segment: {exc}") from exc

        self._stop = threading.Event()
        self._rotation_interval = _ROTATION_INTERVAL
        self._rotator = threading.Thread(
            target=self._rotation_loop, name="commitlog-rotation", daemon=True
        )
        self._rotator.start()

    @property
    def current_path(self) -> Optional[str]:
        """Path of the segment currently being written."""
        return self._current_path

    def _open_new_segment(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            except OSError as exc:
                logger.warning("Failed to close commit log segment: %s", exc)
            self._file = None

        path = os.path.join(self.data_dir, f"commitlog-{self._segment_id}.log")
        try:
            self._file = open(path, "a", encoding="utf-8")
        except OSError as exc:
            raise CommitLogError(f"failed to open commit log file: {exc}") from exc
        self._current_path = path
        self._segment_id = max(int(time.time()), self._segment_id + 1)
        logger.info("Opened new commit log segment path=%s", path)

    def append(self, entry: CommitLogEntry) -> None:
        """Write one entry as a JSON line, syncing to disk if configured."""
        line = json.dumps(entry.to_dict(), separators=(",", ":")) + "\n"
        with self._lock:
            if self._file is None:
                raise CommitLogError("failed to write to commit log: log is closed")
            try:
                self._file.write(line)
                self._file.flush()
            except (OSError, ValueError) as exc:
                raise CommitLogError(f"failed to write to commit log: {exc}") from exc
            if self.config.sync_writes:
                try:
                    os.fsync(self._file.fileno())
                except (OSError, ValueError) as exc:
                    raise CommitLogError(f"failed to sync commit log: {exc}") from exc

    def _rotation_loop(self) -> None:
        while not self._stop.wait(self._rotation_interval):
            self.check_rotation()

    def check_rotation(self) -> bool:
        """Start a new segment when the current one reached the segment size."""
        with self._lock:
            if self._file is None:
                return False
            try:
                size = os.fstat(self._file.fileno()).st_size
            except (OSError, ValueError) as exc:
                logger.error("Failed to stat commit log: %s", exc)
                return False
            if size < self.config.segment_size:
                return False
            logger.info(
                "Rotating commit log due to size size=%d threshold=%d",
                size,
                self.config.segment_size,
            )
            try:
                self._open_new_segment()
            except CommitLogError as exc:
                logger.error("Failed to rotate commit log: %s", exc)
                return False
            return True

    def recover(self, memtable_service: "MemTableService") -> int:
        """Replay every segment into the memtable; return the number of entries replayed."""
        logger.info("Starting commit log recovery")
        recovered = 0
        for path in sorted(glob.glob(os.path.join(self.data_dir, _SEGMENT_PATTERN))):
            try:
                recovered += self._recover_file(path, memtable_service)
            except OSError as exc:
                logger.error("Failed to recover from file %s: %s", path, exc)
        logger.info("Commit log recovery completed entries=%d", recovered)
        return recovered

    def _recover_file(self, path: str, memtable_service: "MemTableService") -> int:
        count = 0
        with open(path, "r", encoding="utf-8", errors="replace") as stream:
            for line in stream:
                try:
                    entry = CommitLogEntry.from_dict(json.loads(line))
                except (ValueError, TypeError, AttributeError) as exc:
                    logger.warning("Failed to unmarshal commit log entry: %s", exc)
                    continue
                mem_entry = MemTableEntry(
                    key=f"{entry.tenant_id}:{entry.key}",
                    value=entry.value,
                    vector_clock=entry.vector_clock,
                    timestamp=entry.timestamp,
                )
                try:
                    memtable_service.put(mem_entry)
                except Exception as exc:  # noqa: BLE001 - replay is best effort
                    logger.warning("Failed to replay entry to memtable: %s", exc)
                    continue
                count += 1
        return count

    def close(self) -> None:
        """Stop rotation checks and close the current segment."""
        self._stop.set()
        if self._rotator.is_alive() and threading.current_thread() is not self._rotator:
            self._rotator.join()
        with self._lock:
            if self._file is not None:
                stream, self._file = self._file, None
                stream.close()

    def __enter__(self) -> "CommitLogService":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()