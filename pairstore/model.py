"""Data records shared by the storage node components."""

from __future__ import annotations

import base64
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Mapping, Optional


def _encode_bytes(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def _decode_bytes(raw: Optional[str]) -> bytes:
    if raw is None:
        return b""
    return base64.b64decode(raw, validate=True)


@dataclass
class VectorClockEntry:
    """One coordinator's logical timestamp."""

    coordinator_node_id: str
    logical_timestamp: int = 0


@dataclass
class VectorClock:
    """Causality tracking across coordinators."""

    entries: list[VectorClockEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready representation."""
        return {
            "Entries": [
                {
                    "CoordinatorNodeID": entry.coordinator_node_id,
                    "LogicalTimestamp": entry.logical_timestamp,
                }
                for entry in self.entries
            ]
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "VectorClock":
        """Build a vector clock from its JSON representation."""
        if not data:
            return cls()
        raw_entries = data.get("Entries") or []
        return cls(
            [
                VectorClockEntry(
                    str(item.get("CoordinatorNodeID", "")),
                    int(item.get("LogicalTimestamp", 0)),
                )
                for item in raw_entries
            ]
        )


class OperationType(str, Enum):
    """Kind of mutation recorded in the commit log."""

    WRITE = "write"
    REPAIR = "repair"
    DELETE = "delete"


@dataclass
class KeyValueEntry:
    """A complete key-value pair with metadata."""

    tenant_id: str
    key: str
    value: bytes
    vector_clock: VectorClock = field(default_factory=VectorClock)
    timestamp: int = 0


@dataclass
class CommitLogEntry:
    """An entry in the write-ahead log."""

    tenant_id: str
    key: str
    value: bytes
    vector_clock: VectorClock = field(default_factory=VectorClock)
    timestamp: int = 0
    operation_type: OperationType = OperationType.WRITE

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready representation."""
        return {
            "TenantID": self.tenant_id,
            "Key": self.key,
            "Value": _encode_bytes(self.value),
            "VectorClock": self.vector_clock.to_dict(),
            "Timestamp": self.timestamp,
            "OperationType": OperationType(self.operation_type).value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CommitLogEntry":
        """Build an entry from its JSON representation."""
        return cls(
            tenant_id=str(data.get("TenantID", "")),
            key=str(data.get("Key", "")),
            value=_decode_bytes(data.get("Value")),
            vector_clock=VectorClock.from_dict(data.get("VectorClock")),
            timestamp=int(data.get("Timestamp", 0)),
            operation_type=OperationType(data.get("OperationType", "write")),
        )


@dataclass
class MemTableEntry:
    """An entry in the memtable; the key has the form "tenant:key"."""

    key: str
    value: bytes
    vector_clock: VectorClock = field(default_factory=VectorClock)
    timestamp: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready representation."""
        return {
            "Key": self.key,
            "Value": _encode_bytes(self.value),
            "VectorClock": self.vector_clock.to_dict(),
            "Timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MemTableEntry":
        """Build an entry from its JSON representation."""
        return cls(
            key=str(data.get("Key", "")),
            value=_decode_bytes(data.get("Value")),
            vector_clock=VectorClock.from_dict(data.get("VectorClock")),
            timestamp=int(data.get("Timestamp", 0)),
        )


@dataclass
class CacheEntry:
    """A cached value with the statistics used for eviction."""

    key: str
    value: bytes
    vector_clock: VectorClock = field(default_factory=VectorClock)
    access_count: int = 0
    last_access: float = field(default_factory=time.time)
    score: float = 0.0


class NodeStatus(str, Enum):
    """Operational status of a node."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthMetrics:
    """Health figures reported by a node."""

    cpu_usage: float = 0.0
    memory_usage: float = 0.0
    disk_usage: float = 0.0
    request_rate: float = 0.0
    error_rate: float = 0.0
    cache_hit_rate: float = 0.0


@dataclass
class HealthStatus:
    """The health state of a storage node."""

    node_id: str
    status: NodeStatus = NodeStatus.HEALTHY
    timestamp: int = 0
    metrics: HealthMetrics = field(default_factory=HealthMetrics)


@dataclass
class KeyRange:
    """The inclusive range of keys held by an SSTable."""

    start_key: str = ""
    end_key: str = ""


class SSTableLevel(IntEnum):
    """Compaction level."""

    L0 = 0
    L1 = 1
    L2 = 2
    L3 = 3
    L4 = 4


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SSTableMetadata:
    """Metadata describing one SSTable on disk."""

    sstable_id: str
    tenant_id: str = ""
    level: int = 0
    size: int = 0
    key_range: KeyRange = field(default_factory=KeyRange)
    created_at: datetime = field(default_factory=_now)
    file_path: str = ""
    index_path: str = ""
    bloom_path: str = ""


class CompactionStatus(str, Enum):
    """State of a compaction job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class CompactionJob:
    """A compaction task merging tables of one level into the next."""

    job_id: str
    level: SSTableLevel
    input_tables: list[SSTableMetadata] = field(default_factory=list)
    output_level: SSTableLevel = SSTableLevel.L1
    started_at: datetime = field(default_factory=_now)
    status: CompactionStatus = CompactionStatus.PENDING