"""Bloom filter with FNV-1 double hashing and a compact file format."""

from __future__ import annotations

import math
import struct
from typing import BinaryIO, Iterator, Union
import os

_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK = (1 << 64) - 1
_HEADER = struct.Struct("<QQ")


def _fnv1_64(data: bytes) -> int:
    h = _FNV_OFFSET
    for byte in data:
        h = (h * _FNV_PRIME) & _MASK
        h ^= byte
    return h


class BloomFilter:
    """Probabilistic set membership: no false negatives, tunable false positives."""

    def __init__(self, expected_elements: int, false_positive_rate: float) -> None:
        if expected_elements <= 0:
            raise ValueError("expected_elements must be positive")
        if not 0 < false_positive_rate < 1:
            raise ValueError("false_positive_rate must be between 0 and 1")
        ln2 = math.log(2)
        size = int(-expected_elements * math.log(false_positive_rate) / (ln2 * ln2))
        if size == 0:
            raise ValueError("bloom filter would have no bits")
        hash_count = int(size / expected_elements * ln2) or 1
        self._size = size
        self._hash_count = hash_count
        self._bits = bytearray((size + 7) // 8)

    @property
    def size(self) -> int:
        """Number of bits in the filter."""
        return self._size

    @property
    def hash_count(self) -> int:
        """Number of hash functions applied per key."""
        return self._hash_count

    def _indices(self, key: str) -> Iterator[int]:
        data = key.encode("utf-8")
        hash1 = _fnv1_64(data)
        hash2 = _fnv1_64(data + b"salt")
        for i in range(self._hash_count):
            yield ((hash1 + i * hash2) & _MASK) % self._size

    def add(self, key: str) -> None:
        """Insert a key."""
        for index in self._indices(key):
            self._bits[index >> 3] |= 1 << (index & 7)

    def may_contain(self, key: str) -> bool:
        """Return False if key is definitely absent, True if it may be present."""
        return all(self._bits[index >> 3] & (1 << (index & 7)) for index in self._indices(key))

    def write_to(self, stream: BinaryIO) -> None:
        """Serialize the filter: size and hash count as little-endian u64, then packed bits."""
        stream.write(_HEADER.pack(self._size, self._hash_count))
        stream.write(bytes(self._bits))

    @classmethod
    def read_from(cls, stream: BinaryIO) -> "BloomFilter":
        """Read a filter written by write_to."""
        header = stream.read(_HEADER.size)
        if len(header) < _HEADER.size:
            raise ValueError("truncated bloom filter header")
        size, hash_count = _HEADER.unpack(header)
        if size == 0:
            raise ValueError("bloom filter has no bits")
        byte_count = (size + 7) // 8
        payload = stream.read(byte_count)
        if len(payload) < byte_count:
            raise ValueError("truncated bloom filter bit array")
        bloom = cls.__new__(cls)
        bloom._size = size
        bloom._hash_count = hash_count
        bloom._bits = bytearray(payload)
        return bloom

    @classmethod
    def load(cls, path: Union[str, "os.PathLike[str]"]) -> "BloomFilter":
        """Load a filter from a file."""
        with open(path, "rb") as stream:
            return cls.read_from(stream)