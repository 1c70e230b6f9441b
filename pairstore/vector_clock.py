"""Comparison, merging and incrementing of vector clocks."""

from __future__ import annotations

from .model import VectorClock, VectorClockEntry


def _to_map(vc: VectorClock) -> dict[str, int]:
    return {e.coordinator_node_id: e.logical_timestamp for e in vc.entries}


def _from_map(stamps: dict[str, int]) -> VectorClock:
    return VectorClock([VectorClockEntry(node, ts) for node, ts in stamps.items()])


def compare(a: VectorClock, b: VectorClock) -> int:
    """Return 1 if a happened after b, -1 if before, 0 if equal or concurrent."""
    a_map = _to_map(a)
    b_map = _to_map(b)
    a_greater = False
    b_greater = False

    for node, a_ts in a_map.items():
        b_ts = b_map.get(node)
        if b_ts is None or a_ts > b_ts:
            a_greater = True
        elif a_ts < b_ts:
            b_greater = True

    if any(node not in a_map and b_ts > 0 for node, b_ts in b_map.items()):
        b_greater = True

    if a_greater and not b_greater:
        return 1
    if b_greater and not a_greater:
        return -1
    return 0


def merge(a: VectorClock, b: VectorClock) -> VectorClock:
    """Return the clock holding each node's highest timestamp from a and b."""
    merged = _to_map(a)
    for node, ts in _to_map(b).items():
        if node not in merged or ts > merged[node]:
            merged[node] = ts
    return _from_map(merged)


def increment(vc: VectorClock, node_id: str) -> VectorClock:
    """Return a copy of vc with node_id's timestamp advanced by one."""
    stamps = _to_map(vc)
    stamps[node_id] = stamps.get(node_id, 0) + 1
    return _from_map(stamps)