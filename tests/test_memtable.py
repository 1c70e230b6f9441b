import pytest

from pairstore.memtable import MemTable, MemTableConfig, MemTableService, hash_in_range
from pairstore.model import MemTableEntry, VectorClock, VectorClockEntry


def _entry(key, value=b"v", ts=1):
    return MemTableEntry(key, value, VectorClock([VectorClockEntry("c1", ts)]), ts)


class _RecordingSSTables:
    def __init__(self, service=None, fail=False):
        self.service = service
        self.fail = fail
        self.written = []
        self.seen_during_write = None

    def write_from_memtable(self, memtable):
        if self.service is not None:
            self.seen_during_write = self.service.get("t:a")
        if self.fail:
            raise OSError("disk gone")
        self.written.append([e.key for e in memtable])


def test_hash_in_range_normal():
    assert hash_in_range(5, 5, 10)
    assert hash_in_range(9, 5, 10)
    assert not hash_in_range(10, 5, 10)
    assert not hash_in_range(4, 5, 10)


def test_hash_in_range_wraparound():
    assert hash_in_range(100, 90, 10)
    assert hash_in_range(3, 90, 10)
    assert not hash_in_range(50, 90, 10)


def test_memtable_put_get_and_missing():
    table = MemTable(1000)
    entry = _entry("t:k", b"abc")
    table.put(entry)
    assert table.get("t:k") is entry
    assert table.get("t:other") is None
    assert len(table) == 1


def test_memtable_size_grows_on_overwrite():
    table = MemTable(1000)
    table.put(_entry("t:k", b"abc"))
    first = table.size()
    assert first > 0
    table.put(_entry("t:k", b"abc"))
    assert len(table) == 1
    assert table.size() == 2 * first


def test_memtable_iterates_in_key_order():
    table = MemTable(1000)
    for key in ["t:c", "t:a", "t:b"]:
        table.put(_entry(key))
    assert [e.key for e in table] == ["t:a", "t:b", "t:c"]


def test_service_put_get():
    service = MemTableService(MemTableConfig(max_size=1000, flush_threshold=10_000))
    service.put(_entry("t:a", b"x"))
    assert service.get("t:a").value == b"x"
    assert service.get("t:b") is None


def test_should_flush_threshold():
    service = MemTableService(MemTableConfig(max_size=1000, flush_threshold=100))
    assert not service.should_flush()
    service.put(_entry("t:a", b"x" * 200))
    assert service.should_flush()


def test_scan_keys_in_range():
    hashes = {"t:a": 1, "t:b": 5, "t:c": 9}
    service = MemTableService(MemTableConfig())
    for key in hashes:
        service.put(_entry(key))
    found = service.scan_keys_in_range(4, 10, hashes.__getitem__)
    assert sorted(e.key for e in found) == ["t:b", "t:c"]
    wrapped = service.scan_keys_in_range(8, 2, hashes.__getitem__)
    assert sorted(e.key for e in wrapped) == ["t:a", "t:c"]


def test_flush_writes_and_keeps_entry_visible_during_write():
    service = MemTableService(MemTableConfig(max_size=1000, flush_threshold=10))
    service.put(_entry("t:a", b"x"))
    service.put(_entry("t:b", b"y"))
    sstables = _RecordingSSTables(service)
    service.flush(sstables)
    assert sstables.written == [["t:a", "t:b"]]
    assert sstables.seen_during_write.value == b"x"
    assert service.get("t:a") is None
    assert not service.should_flush()


def test_flush_empty_does_nothing():
    service = MemTableService(MemTableConfig())
    sstables = _RecordingSSTables()
    service.flush(sstables)
    assert sstables.written == []


def test_flush_failure_propagates():
    service = MemTableService(MemTableConfig())
    service.put(_entry("t:a"))
    with pytest.raises(OSError):
        service.flush(_RecordingSSTables(fail=True))