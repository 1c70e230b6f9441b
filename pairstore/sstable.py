"""On-disk sorted string tables: a data file, an index file and a bloom filter file."""

from __future__ import annotations

import json
import os
import struct
from contextlib import ExitStack
from dataclasses import dataclass
from typing import BinaryIO, Optional, Union

from .bloom_filter import BloomFilter
from .model import KeyValueEntry, MemTableEntry

PathLike = Union[str, "os.PathLike[str]"]

_SIZE = struct.Struct("<i")
_INDEX_TAIL = struct.Struct("<qi")
_BLOOM_EXPECTED_ELEMENTS = 10000


def split_composite_key(composite_key: str) -> tuple[str, str]:
    """Split "tenant:key" at the first colon; without a colon the tenant is empty."""
    tenant_id, sep, key = composite_key.partition(":")
    if not sep:
        return "", composite_key
    return tenant_id, key


def _read_exact(stream: BinaryIO, count: int, what: str) -> bytes:
    data = stream.read(count)
    if len(data) != count:
        raise ValueError(f"truncated {what}")
    return data


@dataclass(frozen=True)
class IndexEntry:
    """Location of one entry in the data file."""

    key: str
    offset: int
    size: int


@dataclass
class SSTableConfig:
    """Settings used when writing an SSTable."""

    bloom_filter_fp: float = 0.01
    block_size: int = 0
    index_interval: int = 0


class SSTableWriter:
    """Writes memtable entries to a new SSTable at file_path.

    The index goes to file_path + ".idx" and the bloom filter to file_path + ".bloom".
    """

    def __init__(self, file_path: PathLike, config: SSTableConfig) -> None:
        path = os.fspath(file_path)
        self.file_path = path
        self.index_path = path + ".idx"
        self.bloom_path = path + ".bloom"
        self.config = config
        with ExitStack() as stack:
            self._data = stack.enter_context(open(path, "wb"))
            self._index_file = stack.enter_context(open(self.index_path, "wb"))
            self._bloom_file = stack.enter_context(open(self.bloom_path, "wb"))
            self._bloom = BloomFilter(_BLOOM_EXPECTED_ELEMENTS, config.bloom_filter_fp)
            stack.pop_all()
        self._offset = 0
        self._index: list[IndexEntry] = []

    def write(self, entry: MemTableEntry) -> None:
        """Append one entry: a little-endian int32 length followed by its JSON form."""
        data = json.dumps(entry.to_dict(), separators=(",", ":")).encode("utf-8")
        self._data.write(_SIZE.pack(len(data)))
        self._data.write(data)
        self._index.append(IndexEntry(entry.key, self._offset, len(data)))
        self._bloom.add(entry.key)
        self._offset += _SIZE.size + len(data)

    def finalize(self) -> None:
        """Write the index and bloom filter and sync all three files."""
        for item in self._index:
            key_bytes = item.key.encode("utf-8")
            self._index_file.write(_SIZE.pack(len(key_bytes)))
            self._index_file.write(key_bytes)
            self._index_file.write(_INDEX_TAIL.pack(item.offset, item.size))
        self._bloom.write_to(self._bloom_file)
        for stream in (self._data, self._index_file, self._bloom_file):
            stream.flush()
            os.fsync(stream.fileno())

    def size(self) -> int:
        """Bytes written to the data file so far."""
        return self._offset

    def close(self) -> None:
        """Close all files, raising the last error met."""
        error: Optional[OSError] = None
        for stream in (self._data, self._index_file, self._bloom_file):
            try:
                stream.close()
            except OSError as exc:
                error = exc
        if error is not None:
            raise error

    def __enter__(self) -> "SSTableWriter":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


class SSTableReader:
    """Reads entries from an SSTable, with its whole index held in memory."""

    def __init__(self, data_path: PathLike, index_path: PathLike) -> None:
        with ExitStack() as stack:
            self._data = stack.enter_context(open(data_path, "rb"))
            self._index_file = stack.enter_context(open(index_path, "rb"))
            self._index: dict[str, IndexEntry] = {}
            self._load_index()
            stack.pop_all()

    def _load_index(self) -> None:
        while True:
            head = self._index_file.read(_SIZE.size)
            if not head:
                break
            if len(head) < _SIZE.size:
                raise ValueError("truncated index key length")
            (key_len,) = _SIZE.unpack(head)
            if key_len < 0:
                raise ValueError(f"negative index key length {key_len}")
            key = _read_exact(self._index_file, key_len, "index key").decode("utf-8")
            offset, size = _INDEX_TAIL.unpack(
                _read_exact(self._index_file, _INDEX_TAIL.size, "index entry")
            )
            self._index[key] = IndexEntry(key, offset, size)

    def get(self, key: str) -> Optional[KeyValueEntry]:
        """Return the entry stored under the composite key, or None if absent."""
        item = self._index.get(key)
        if item is None:
            return None
        self._data.seek(item.offset)
        (entry_size,) = _SIZE.unpack(_read_exact(self._data, _SIZE.size, "entry size"))
        if entry_size < 0:
            raise ValueError(f"negative entry size {entry_size}")
        raw = _read_exact(self._data, entry_size, "entry data")
        mem_entry = MemTableEntry.from_dict(json.loads(raw))
        tenant_id, actual_key = split_composite_key(mem_entry.key)
        return KeyValueEntry(
            tenant_id=tenant_id,
            key=actual_key,
            value=mem_entry.value,
            vector_clock=mem_entry.vector_clock,
            timestamp=mem_entry.timestamp,
        )

    def has_key(self, key: str) -> bool:
        """Return whether the index holds the key."""
        return key in self._index

    def keys(self) -> list[str]:
        """Return every key in the table."""
        return list(self._index)

    def close(self) -> None:
        """Close both files, raising the last error met."""
        error: Optional[OSError] = None
        for stream in (self._data, self._index_file):
            try:
                stream.close()
            except OSError as exc:
                error = exc
        if error is not None:
            raise error

    def __enter__(self) -> "SSTableReader":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()