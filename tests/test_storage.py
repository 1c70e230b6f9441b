import time

import pytest

from pairstore.cache import CacheConfig, CacheService
from pairstore.commitlog import CommitLogConfig, CommitLogService
from pairstore.memtable import MemTableConfig, MemTableService
from pairstore.model import SSTableLevel, VectorClock, VectorClockEntry
from pairstore.sstable_service import SSTableService, SSTableServiceConfig
from pairstore.storage import (
    KeyNotFoundError,
    StorageError,
    StorageService,
    ValidationError,
    build_key,
    compute_key_hash,
)


def _make(tmp_path, cache_size=1 << 20, flush_threshold=1 << 30):
    log = CommitLogService(CommitLogConfig(segment_size=1 << 20), tmp_path / "log")
    memtable = MemTableService(MemTableConfig(max_size=1 << 30, flush_threshold=flush_threshold))
    sstables = SSTableService(SSTableServiceConfig(), tmp_path / "sst")
    cache = CacheService(CacheConfig(max_size=cache_size))
    return StorageService(log, memtable, sstables, cache, "node-1")


@pytest.fixture
def storage(tmp_path):
    service = _make(tmp_path)
    yield service
    service.commit_log.close()


@pytest.fixture
def tiny_cache_storage(tmp_path):
    service = _make(tmp_path, cache_size=1)
    yield service
    service.commit_log.close()


def _clock(ts=1):
    return VectorClock([VectorClockEntry("coord-a", ts)])


def test_build_key():
    assert build_key("tenant", "key") == "tenant:key"


def test_compute_key_hash_is_stable_and_64_bit():
    first = compute_key_hash("t", "k")
    assert first == compute_key_hash("t", "k")
    assert 0 <= first < 2**64
    assert compute_key_hash("t", "other") != first


def test_write_then_read_from_cache(storage):
    clock = _clock(3)
    response = storage.write("t", "k", b"value", clock)
    assert response.success is True
    assert response.vector_clock == clock
    read = storage.read("t", "k")
    assert read.value == b"value"
    assert read.vector_clock == clock
    assert read.source == "cache"


def test_write_goes_to_commit_log_and_memtable(storage):
    storage.write("t", "k", b"v", _clock())
    entry = storage.memtable.get(build_key("t", "k"))
    assert entry.value == b"v"
    with open(storage.commit_log.current_path, encoding="utf-8") as stream:
        lines = stream.read().splitlines()
    assert len(lines) == 1
    assert '"OperationType":"write"' in lines[0]


@pytest.mark.parametrize(
    "tenant, key, value, field",
    [("", "k", b"v", "tenant_id"), ("t", "", b"v", "key"), ("t", "k", None, "value")],
)
def test_write_validation(storage, tenant, key, value, field):
    with pytest.raises(ValidationError, match=f"{field} is required"):
        storage.write(tenant, key, value, _clock())


def test_empty_value_is_accepted(storage):
    storage.write("t", "k", b"", _clock())
    assert storage.read("t", "k").value == b""


def test_read_missing_key(storage):
    with pytest.raises(KeyNotFoundError):
        storage.read("t", "missing")


def test_read_from_memtable_after_cache_eviction(tiny_cache_storage):
    tiny_cache_storage.write("t", "a", b"1", _clock())
    tiny_cache_storage.write("t", "b", b"2", _clock())
    read = tiny_cache_storage.read("t", "a")
    assert read.source == "memtable"
    assert read.value == b"1"


def test_read_from_sstable_after_flush(tiny_cache_storage):
    clock = _clock(7)
    tiny_cache_storage.write("t", "a", b"stored", clock)
    tiny_cache_storage.flush()
    tiny_cache_storage.write("t", "b", b"other", _clock())
    assert len(tiny_cache_storage.sstables.tables_for_level(SSTableLevel.L0)) == 1
    read = tiny_cache_storage.read("t", "a")
    assert read.source == "sstable"
    assert read.value == b"stored"
    assert read.vector_clock == clock


def test_repair_overwrites_value(storage):
    storage.write("t", "k", b"old", _clock(1))
    storage.repair("t", "k", b"new", _clock(2))
    read = storage.read("t", "k")
    assert read.value == b"new"
    with open(storage.commit_log.current_path, encoding="utf-8") as stream:
        lines = stream.read().splitlines()
    assert '"OperationType":"repair"' in lines[-1]


def test_write_fails_when_commit_log_closed(storage):
    storage.commit_log.close()
    with pytest.raises(StorageError, match="commit log failed"):
        storage.write("t", "k", b"v", _clock())
    assert storage.memtable.get(build_key("t", "k")) is None


def test_repair_fails_when_commit_log_closed(storage):
    storage.commit_log.close()
    with pytest.raises(StorageError, match="repair commit log failed"):
        storage.repair("t", "k", b"v", _clock())


def test_write_notifies_streaming_manager(storage):
    calls = []

    class Recorder:
        def intercept_write(self, tenant_id, key, value, vector_clock, key_hash):
            calls.append((tenant_id, key, value, key_hash))

    storage.streaming_manager = Recorder()
    storage.write("t", "k", b"v", _clock())
    assert calls == [("t", "k", b"v", compute_key_hash("t", "k"))]


def test_write_triggers_background_flush(tmp_path):
    service = _make(tmp_path, flush_threshold=1)
    try:
        service.write("t", "k", b"v", _clock())
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            if service.sstables.tables_for_level(SSTableLevel.L0):
                break
            time.sleep(0.01)
        assert len(service.sstables.tables_for_level(SSTableLevel.L0)) == 1
        assert service.sstables.get("t", "k").value == b"v"
    finally:
        service.commit_log.close()