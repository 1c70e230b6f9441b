"""Periodic health checks behind the liveness and readiness probes."""

from __future__ import annotations

import logging
import math
import os
import shutil
import threading
import time
from dataclasses import dataclass
from typing import Optional, Union

from .model import HealthMetrics, HealthStatus, NodeStatus

try:
    import resource
except ImportError:  # pragma: no cover - platforms without rlimits
    resource = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

HEALTHY = "healthy"
WARNING = "warning"
CRITICAL = "critical"


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one check; status is "healthy", "warning" or "critical"."""

    name: str
    status: str
    message: str
    timestamp: float


def _result(name: str, status: str, message: str) -> CheckResult:
    return CheckResult(name, status, message, time.time())


class HealthChecker:
    """Runs node health checks and derives liveness, readiness and overall status."""

    def __init__(self, node_id: str, data_dir: PathLike) -> None:
        self.node_id = node_id
        self.data_dir = os.fspath(data_dir)
        self._lock = threading.Lock()
        self._last_check = 0.0
        self._status = NodeStatus.HEALTHY
        self._checks: dict[str, CheckResult] = {}
        self._live = True
        self._ready = True

    @property
    def live(self) -> bool:
        """Liveness probe result."""
        with self._lock:
            return self._live

    @live.setter
    def live(self, value: bool) -> None:
        with self._lock:
            self._live = value

    @property
    def ready(self) -> bool:
        """Readiness probe result."""
        with self._lock:
            return self._ready

    @ready.setter
    def ready(self, value: bool) -> None:
        with self._lock:
            self._ready = value

    def run(self, stop_event: threading.Event, interval: float = 10.0) -> None:
        """Run checks now and then every interval seconds until stop_event is set."""
        self.run_checks()
        while not stop_event.wait(interval):
            self.run_checks()
        logger.info("Health checker stopped")

    def run_checks(self) -> NodeStatus:
        """Run every check, update the probes and return the overall status."""
        results = [
            self._check_disk_space(),
            self._check_data_dir_accessible(),
            self._check_file_descriptors(),
            self._check_memory_pressure(),
        ]
        all_healthy = all(r.status == HEALTHY for r in results)
        all_ready = all(r.status != CRITICAL for r in results)
        if all_healthy:
            status = NodeStatus.HEALTHY
        elif all_ready:
            status = NodeStatus.DEGRADED
        else:
            status = NodeStatus.UNHEALTHY

        with self._lock:
            self._last_check = time.time()
            for result in results:
                self._checks[result.name] = result
            self._status = status
            self._live = True
            self._ready = all_ready

        logger.debug(
            "Health check completed status=%s liveness=%s readiness=%s",
            status.value,
            True,
            all_ready,
        )
        return status

    def _check_disk_space(self) -> CheckResult:
        name = "disk_space"
        try:
            usage = shutil.disk_usage(self.data_dir)
        except OSError as exc:
            return _result(name, CRITICAL, f"Failed to stat filesystem: {exc}")
        percent = usage.used / usage.total * 100 if usage.total else math.nan
        if percent > 95:
            return _result(name, CRITICAL, f"Disk usage critical: {percent:.2f}%")
        if percent > 90:
            return _result(name, WARNING, f"Disk usage high: {percent:.2f}%")
        available_gb = usage.free / 1024 / 1024 / 1024
        return _result(
            name, HEALTHY, f"Disk usage: {percent:.2f}%, available: {available_gb:.2f} GB"
        )

    def _check_data_dir_accessible(self) -> CheckResult:
        name = "data_dir_accessible"
        try:
            is_dir = os.path.isdir(self.data_dir)
            os.stat(self.data_dir)
        except OSError as exc:
            return _result(name, CRITICAL, f"Data directory not accessible: {exc}")
        if not is_dir:
            return _result(name, CRITICAL, "Data path is not a directory")

        probe = os.path.join(self.data_dir, f".health_check_{time.time_ns()}")
        try:
            with open(probe, "w"):
                pass
        except OSError as exc:
            return _result(name, CRITICAL, f"Cannot write to data directory: {exc}")
        try:
            os.remove(probe)
        except OSError as exc:
            logger.warning("Failed to remove health probe file %s: %s", probe, exc)
        return _result(name, HEALTHY, "Data directory is accessible and writable")

    def _check_file_descriptors(self) -> CheckResult:
        name = "file_descriptors"
        if resource is None:
            return _result(name, WARNING, "Failed to get rlimit: not supported")
        try:
            soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
        except (OSError, ValueError) as exc:
            return _result(name, WARNING, f"Failed to get rlimit: {exc}")
        try:
            open_fds = len(os.listdir("/proc/self/fd"))
        except OSError:
            return _result(name, HEALTHY, f"Soft limit: {soft}, hard limit: {hard}")

        if soft == resource.RLIM_INFINITY or soft <= 0:
            percent = 0.0
        else:
            percent = open_fds / soft * 100
        detail = f"{percent:.2f}% ({open_fds}/{soft})"
        if percent > 90:
            return _result(name, WARNING, f"File descriptor usage high: {detail}")
        return _result(name, HEALTHY, f"File descriptor usage: {detail}")

    @staticmethod
    def _check_memory_pressure() -> CheckResult:
        name = "memory_pressure"
        try:
            with open("/proc/meminfo", "rb") as stream:
                stream.read()
        except OSError:
            return _result(name, HEALTHY, "Memory check not available on this platform")
        return _result(name, HEALTHY, "Memory pressure acceptable")

    def status(self) -> HealthStatus:
        """Return the node's current health status."""
        with self._lock:
            return HealthStatus(
                node_id=self.node_id,
                status=self._status,
                timestamp=int(self._last_check),
                metrics=HealthMetrics(),
            )

    def checks(self) -> dict[str, CheckResult]:
        """Return a copy of the latest result of each check."""
        with self._lock:
            return dict(self._checks)

    def last_check(self) -> Optional[float]:
        """Return when checks last ran, or None if they never did."""
        with self._lock:
            return self._last_check or None