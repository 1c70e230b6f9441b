import json
import os
import struct

import pytest

from pairstore.bloom_filter import BloomFilter
from pairstore.model import MemTableEntry, VectorClock, VectorClockEntry
from pairstore.sstable import (
    IndexEntry,
    SSTableConfig,
    SSTableReader,
    SSTableWriter,
    split_composite_key,
)


def _entries():
    return [
        MemTableEntry("t1:alpha", b"one", VectorClock([VectorClockEntry("c1", 3)]), 100),
        MemTableEntry("t1:beta", b"two", VectorClock(), 101),
        MemTableEntry("t2:gamma", b"\x00\xffbin", VectorClock([VectorClockEntry("c2", 7)]), 102),
    ]


@pytest.fixture
def table(tmp_path):
    path = str(tmp_path / "table.sst")
    with SSTableWriter(path, SSTableConfig(bloom_filter_fp=0.01)) as writer:
        for entry in _entries():
            writer.write(entry)
        writer.finalize()
        written = writer.size()
    return path, written


def test_round_trip(table):
    path, _ = table
    with SSTableReader(path, path + ".idx") as reader:
        for entry in _entries():
            found = reader.get(entry.key)
            tenant, key = split_composite_key(entry.key)
            assert found.tenant_id == tenant
            assert found.key == key
            assert found.value == entry.value
            assert found.vector_clock == entry.vector_clock
            assert found.timestamp == entry.timestamp


def test_missing_key_returns_none(table):
    path, _ = table
    with SSTableReader(path, path + ".idx") as reader:
        assert reader.get("t9:nothing") is None
        assert reader.has_key("t9:nothing") is False
        assert reader.has_key("t1:alpha") is True


def test_keys_lists_every_entry(table):
    path, _ = table
    with SSTableReader(path, path + ".idx") as reader:
        assert sorted(reader.keys()) == sorted(e.key for e in _entries())


def test_size_matches_data_file(table):
    path, written = table
    assert written == os.path.getsize(path)


def test_data_file_layout(table):
    path, _ = table
    with open(path, "rb") as stream:
        raw = stream.read()
    (length,) = struct.unpack("<i", raw[:4])
    record = json.loads(raw[4 : 4 + length])
    assert record == _entries()[0].to_dict()


def test_index_file_layout(table):
    path, _ = table
    with open(path, "rb") as stream:
        (first_len,) = struct.unpack("<i", stream.read(4))
    with open(path + ".idx", "rb") as stream:
        raw = stream.read()
    expected = struct.pack("<i", 8) + b"t1:alpha" + struct.pack("<qi", 0, first_len)
    assert raw.startswith(expected)


def test_bloom_file_holds_keys(table):
    path, _ = table
    bloom = BloomFilter.load(path + ".bloom")
    assert all(bloom.may_contain(e.key) for e in _entries())


def test_duplicate_key_last_write_wins(tmp_path):
    path = str(tmp_path / "dup.sst")
    with SSTableWriter(path, SSTableConfig()) as writer:
        writer.write(MemTableEntry("t:k", b"old", VectorClock(), 1))
        writer.write(MemTableEntry("t:k", b"new", VectorClock(), 2))
        writer.finalize()
    with SSTableReader(path, path + ".idx") as reader:
        assert reader.get("t:k").value == b"new"
        assert reader.keys() == ["t:k"]


def test_empty_table(tmp_path):
    path = str(tmp_path / "empty.sst")
    with SSTableWriter(path, SSTableConfig()) as writer:
        writer.finalize()
        assert writer.size() == 0
    with SSTableReader(path, path + ".idx") as reader:
        assert reader.keys() == []


def test_truncated_index_raises(tmp_path):
    data = tmp_path / "d.sst"
    index = tmp_path / "d.sst.idx"
    data.write_bytes(b"")
    index.write_bytes(struct.pack("<i", 5) + b"ab")
    with pytest.raises(ValueError):
        SSTableReader(str(data), str(index))


def test_truncated_length_raises(tmp_path):
    data = tmp_path / "d.sst"
    index = tmp_path / "d.sst.idx"
    data.write_bytes(b"")
    index.write_bytes(b"\x01\x00")
    with pytest.raises(ValueError):
        SSTableReader(str(data), str(index))


def test_missing_data_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        SSTableReader(str(tmp_path / "none.sst"), str(tmp_path / "none.sst.idx"))


def test_bad_false_positive_rate_raises(tmp_path):
    with pytest.raises(ValueError):
        SSTableWriter(str(tmp_path / "x.sst"), SSTableConfig(bloom_filter_fp=0.0))


@pytest.mark.parametrize(
    "composite, expected",
    [
        ("tenant:key", ("tenant", "key")),
        ("a:b:c", ("a", "b:c")),
        ("nocolon", ("", "nocolon")),
        (":lead", ("", "lead")),
    ],
)
def test_split_composite_key(composite, expected):
    assert split_composite_key(composite) == expected


def test_index_entry_fields():
    entry = IndexEntry("k", 12, 34)
    assert (entry.key, entry.offset, entry.size) == ("k", 12, 34)