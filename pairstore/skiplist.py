"""Ordered in-memory map backed by a probabilistic skip list."""

from __future__ import annotations

import random
from typing import Any, Iterator, Optional

MAX_LEVEL = 16
PROBABILITY = 0.5


class _Node:
    __slots__ = ("key", "value", "forward")

    def __init__(self, key: str, value: Any, height: int) -> None:
        self.key = key
        self.value = value
        self.forward: list[Optional[_Node]] = [None] * height


class SkipList:
    """A sorted string-keyed map with expected logarithmic operations."""

    def __init__(self) -> None:
        self._head = _Node("", None, MAX_LEVEL)
        self._level = 0
        self._size = 0

    @staticmethod
    def _random_level() -> int:
        level = 0
        while random.random() < PROBABILITY and level < MAX_LEVEL - 1:
            level += 1
        return level

    def _predecessors(self, key: str) -> list[_Node]:
        update = [self._head] * MAX_LEVEL
        current = self._head
        for i in range(self._level, -1, -1):
            nxt = current.forward[i]
            while nxt is not None and nxt.key < key:
                current = nxt
                nxt = current.forward[i]
            update[i] = current
        return update

    def _find(self, key: str) -> Optional[_Node]:
        candidate = self._predecessors(key)[0].forward[0]
        if candidate is not None and candidate.key == key:
            return candidate
        return None

    def insert(self, key: str, value: Any) -> None:
        """Add a key or replace the value of an existing one."""
        update = self._predecessors(key)
        existing = update[0].forward[0]
        if existing is not None and existing.key == key:
            existing.value = value
            return

        new_level = self._random_level()
        if new_level > self._level:
            for i in range(self._level + 1, new_level + 1):
                update[i] = self._head
            self._level = new_level

        node = _Node(key, value, new_level + 1)
        for i in range(new_level + 1):
            node.forward[i] = update[i].forward[i]
            update[i].forward[i] = node
        self._size += 1

    def search(self, key: str) -> Any:
        """Return the value stored under key, or None when absent."""
        node = self._find(key)
        return node.value if node is not None else None

    def delete(self, key: str) -> bool:
        """Remove key; return whether it was present."""
        update = self._predecessors(key)
        target = update[0].forward[0]
        if target is None or target.key != key:
            return False

        for i in range(self._level + 1):
            if update[i].forward[i] is not target:
                break
            update[i].forward[i] = target.forward[i]

        while self._level > 0 and self._head.forward[self._level] is None:
            self._level -= 1

        self._size -= 1
        return True

    def items(self) -> Iterator[tuple[str, Any]]:
        """Yield (key, value) pairs in key order."""
        node = self._head.forward[0]
        while node is not None:
            yield node.key, node.value
            node = node.forward[0]

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[str]:
        return (key for key, _ in self.items())

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self._find(key) is not None