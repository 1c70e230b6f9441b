import pytest

from pairstore.model import VectorClock, VectorClockEntry
from pairstore.vector_clock import compare, increment, merge


def vc(**stamps):
    return VectorClock([VectorClockEntry(node, ts) for node, ts in stamps.items()])


def as_dict(clock):
    return {e.coordinator_node_id: e.logical_timestamp for e in clock.entries}


@pytest.mark.parametrize(
    "a, b, expected",
    [
        (vc(x=1, y=2), vc(x=1, y=2), 0),
        (vc(x=2, y=2), vc(x=1, y=2), 1),
        (vc(x=1, y=2), vc(x=1, y=3), -1),
        (vc(x=2, y=1), vc(x=1, y=2), 0),
        (vc(x=1), vc(x=1, y=0), 0),
        (vc(x=1), vc(x=1, y=1), -1),
        (vc(x=1, y=0), vc(x=1), 1),
        (vc(), vc(), 0),
        (vc(), vc(x=1), -1),
    ],
)
def test_compare(a, b, expected):
    assert compare(a, b) == expected


def test_compare_is_antisymmetric():
    a, b = vc(x=3, y=1), vc(x=1, y=1)
    assert compare(a, b) == -compare(b, a)


def test_merge_takes_maximum():
    merged = merge(vc(x=1, y=5), vc(x=3, z=2))
    assert as_dict(merged) == {"x": 3, "y": 5, "z": 2}


def test_merge_dominates_both_inputs():
    a, b = vc(x=2, y=1), vc(x=1, y=4)
    merged = merge(a, b)
    assert compare(merged, a) == 1
    assert compare(merged, b) == 1


def test_merge_with_empty_is_identity():
    a = vc(x=2, y=1)
    assert as_dict(merge(a, vc())) == as_dict(a)


def test_increment_existing_node():
    assert as_dict(increment(vc(x=4), "x")) == {"x": 5}


def test_increment_new_node():
    assert as_dict(increment(vc(x=4), "y")) == {"x": 4, "y": 1}


def test_increment_leaves_input_unchanged():
    original = vc(x=1)
    bumped = increment(original, "x")
    assert as_dict(original) == {"x": 1}
    assert compare(bumped, original) == 1