"""Background compaction that merges SSTables of one level into the next."""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .model import CompactionJob, CompactionStatus, SSTableLevel, SSTableMetadata
from .sstable_service import SSTableService

logger = logging.getLogger(__name__)

_QUEUE_CAPACITY = 100
_SCHEDULE_INTERVAL = 30.0
_WORKER_POLL = 0.1


class CompactionError(Exception):
    """Raised when a compaction job cannot be carried out."""


@dataclass
class CompactionConfig:
    """Triggers, level sizes and worker count for compaction."""

    l0_trigger: int = 0
    l0_size: int = 0
    l1_size: int = 0
    l2_size: int = 0
    workers: int = 0
    throttle: int = 0
    level_multiplier: int = 0


class CompactionService:
    """Schedules compaction jobs and runs them on a pool of worker threads."""

    def __init__(
        self,
        config: CompactionConfig,
        sstable_service: SSTableService,
        start: bool = True,
    ) -> None:
        self.config = config
        self.sstable_service = sstable_service
        self._queue: "queue.Queue[CompactionJob]" = queue.Queue(maxsize=_QUEUE_CAPACITY)
        self._stop = threading.Event()
        self._workers: list[threading.Thread] = []
        self._scheduler: Optional[threading.Thread] = None
        if start:
            for worker_id in range(config.workers):
                thread = threading.Thread(
                    target=self._worker, args=(worker_id,), name=f"compaction-{worker_id}",
                    daemon=True,
                )
                thread.start()
                self._workers.append(thread)
            self._scheduler = threading.Thread(
                target=self._schedule, name="compaction-scheduler", daemon=True
            )
            self._scheduler.start()

    def _schedule(self) -> None:
        while not self._stop.wait(_SCHEDULE_INTERVAL):
            self.check_compaction_needed()

    def _enqueue(self, job: CompactionJob) -> bool:
        try:
            self._queue.put_nowait(job)
        except queue.Full:
            logger.warning("Compaction queue full")
            return False
        return True

    def check_compaction_needed(self) -> None:
        """Queue an L0 job when enough L0 tables exist, then check levels L1 to L3."""
        l0_tables = self.sstable_service.tables_for_level(SSTableLevel.L0)
        if len(l0_tables) >= self.config.l0_trigger:
            logger.info("L0 compaction triggered table_count=%d", len(l0_tables))
            self._enqueue(
                CompactionJob(
                    job_id=f"compact-l0-{int(time.time())}",
                    level=SSTableLevel.L0,
                    input_tables=l0_tables,
                    output_level=SSTableLevel.L1,
                    started_at=datetime.now(timezone.utc),
                    status=CompactionStatus.PENDING,
                )
            )

        for level in (SSTableLevel.L1, SSTableLevel.L2, SSTableLevel.L3):
            if self.should_compact_level(level):
                self.trigger_level_compaction(level)

    def should_compact_level(self, level: SSTableLevel) -> bool:
        """Return whether the tables of a level exceed its size threshold."""
        total = sum(t.size for t in self.sstable_service.tables_for_level(level))
        return total > self.level_threshold(level)

    def level_threshold(self, level: SSTableLevel) -> int:
        """Size threshold of a level; above L2 it grows by the level multiplier."""
        level = SSTableLevel(level)
        if level is SSTableLevel.L0:
            return self.config.l0_size
        if level is SSTableLevel.L1:
            return self.config.l1_size
        if level is SSTableLevel.L2:
            return self.config.l2_size
        multiplier = self.config.level_multiplier ** (int(level) - int(SSTableLevel.L2))
        return self.config.l2_size * multiplier

    def trigger_level_compaction(self, level: SSTableLevel) -> None:
        """Queue a job merging every table of a level into the next one."""
        level = SSTableLevel(level)
        tables = self.sstable_service.tables_for_level(level)
        if not tables:
            return
        self._enqueue(
            CompactionJob(
                job_id=f"compact-l{int(level)}-{int(time.time())}",
                level=level,
                input_tables=tables,
                output_level=SSTableLevel(int(level) + 1),
                started_at=datetime.now(timezone.utc),
                status=CompactionStatus.PENDING,
            )
        )

    def _worker(self, worker_id: int) -> None:
        logger.info("Compaction worker started worker_id=%d", worker_id)
        while not self._stop.is_set():
            try:
                job = self._queue.get(timeout=_WORKER_POLL)
            except queue.Empty:
                continue
            try:
                self.execute_compaction(job)
            finally:
                self._queue.task_done()

    def execute_compaction(self, job: CompactionJob) -> Optional[SSTableMetadata]:
        """Run a job, updating its status; return the output table, or None on failure."""
        logger.info(
            "Starting compaction job_id=%s level=%d input_tables=%d",
            job.job_id,
            int(job.level),
            len(job.input_tables),
        )
        job.status = CompactionStatus.RUNNING
        started = time.monotonic()
        try:
            output = self._merge(job)
        except CompactionError as exc:
            logger.error("Compaction failed job_id=%s: %s", job.job_id, exc)
            job.status = CompactionStatus.FAILED
            return None
        job.status = CompactionStatus.COMPLETED
        logger.info(
            "Compaction completed job_id=%s duration=%.3fs", job.job_id, time.monotonic() - started
        )
        return output

    def _merge(self, job: CompactionJob) -> SSTableMetadata:
        if not job.input_tables:
            raise CompactionError("no input tables to compact")
        output_level = int(job.output_level)
        logger.info(
            "Merging SSTables input_count=%d output_level=%d", len(job.input_tables), output_level
        )
        total_size = 0
        for table in job.input_tables:
            total_size += table.size
            logger.debug(
                "Input table sstable_id=%s size=%d level=%d",
                table.sstable_id,
                table.size,
                table.level,
            )

        stamp = time.time_ns()
        base = f"/data/sstables/sstable_l{output_level}_{stamp}"
        output = SSTableMetadata(
            sstable_id=f"sstable_l{output_level}_{stamp}",
            level=output_level,
            size=total_size,
            created_at=datetime.now(timezone.utc),
            file_path=base + ".sst",
            index_path=base + ".idx",
            bloom_path=base + ".bloom",
        )
        logger.info(
            "Created output SSTable sstable_id=%s file_path=%s", output.sstable_id, output.file_path
        )
        for table in job.input_tables:
            logger.debug(
                "Marking input table for deletion sstable_id=%s file_path=%s",
                table.sstable_id,
                table.file_path,
            )
        logger.info(
            "Compaction merge completed input_tables=%d total_input_size=%d output_sstable=%s",
            len(job.input_tables),
            total_size,
            output.sstable_id,
        )
        return output

    def pending_jobs(self) -> list[CompactionJob]:
        """Return the jobs waiting in the queue, oldest first."""
        with self._queue.mutex:
            return list(self._queue.queue)

    def stop(self) -> None:
        """Stop the scheduler and wait for the workers to finish."""
        self._stop.set()
        for thread in self._workers:
            thread.join()
        if self._scheduler is not None:
            self._scheduler.join()