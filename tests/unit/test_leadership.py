import itertools
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from leadership import LeadershipIndex, build_index, is_earlier, make_comparable  # noqa: E402
from models import Item  # noqa: E402


def _item(addr, age_ms, pos, keys=("S:pepe",)):
    return Item(chain="sol", address=addr, group_keys=frozenset(keys), recency_ms=age_ms, position=pos)


ALL = make_comparable(None)


def test_older_item_leads_group():
    a = _item("A", 40_000, 0)
    b = _item("B", 10_000, 1)
    index, dups = build_index([a, b], ALL)
    assert index["S:pepe"].leader_identity == "sol:A"
    assert dups == {"S:pepe"}


def test_equal_age_prefers_larger_position():
    a = _item("A", 5_000, 2)
    b = _item("B", 5_000, 7)
    index, _ = build_index([a, b], ALL)
    assert index["S:pepe"].leader_identity == "sol:B"


def test_tie_break_direction_is_configurable():
    a = _item("A", 5_000, 2)
    b = _item("B", 5_000, 7)
    index, _ = build_index([a, b], ALL, prefer_later_position=False)
    assert index["S:pepe"].leader_identity == "sol:A"


def test_full_tie_resolved_by_identity():
    assert is_earlier(1, 1, "sol:A", 1, 1, "sol:B")
    assert not is_earlier(1, 1, "sol:B", 1, 1, "sol:A")


def test_leader_independent_of_input_order():
    items = [
        _item("A", 30_000, 4),
        _item("B", 30_000, 9),
        _item("C", 10_000, 1),
        _item("D", 45_000, 0, keys=("S:pepe", "N:frog")),
        _item("E", 45_000, 0, keys=("N:frog",)),
    ]
    expected = build_index(items, ALL)
    for perm in itertools.permutations(items):
        assert build_index(list(perm), ALL) == expected


def test_non_comparable_items_do_not_compete():
    a = _item("A", None, 0)
    b = _item("B", 10_000, 1)
    index, dups = build_index([a, b], ALL)
    assert index["S:pepe"].leader_identity == "sol:B"
    assert dups == set()


def test_window_excludes_old_items():
    comparable = make_comparable(60_000)
    old = _item("A", 120_000, 0)
    fresh = _item("B", 30_000, 1)
    index, dups = build_index([old, fresh], comparable)
    assert index["S:pepe"].leader_identity == "sol:B"
    assert not dups


def test_same_identity_twice_is_not_a_duplicate():
    a1 = _item("A", 40_000, 0)
    a2 = _item("A", 40_000, 5)
    _, dups = build_index([a1, a2], ALL)
    assert dups == set()


def test_publish_swaps_render_side_only_at_end():
    idx = LeadershipIndex()
    idx.build([_item("A", 40_000, 0), _item("B", 10_000, 1)], ALL)
    assert idx.render_records == {}
    assert idx.leader_for({"S:pepe"}).leader_identity == "sol:A"  # build fallback
    idx.publish()
    idx.build([_item("C", 90_000, 0)], ALL)
    # readers keep the last completed cycle until the next publish
    assert idx.leader_for({"S:pepe"}).leader_identity == "sol:A"
    idx.publish()
    assert idx.leader_for({"S:pepe"}).leader_identity == "sol:C"


def test_competitor_evidence():
    idx = LeadershipIndex()
    idx.build([_item("A", 40_000, 0), _item("B", 10_000, 1)], ALL)
    assert idx.has_competitor("sol:B", {"S:pepe"})
    assert not idx.has_competitor("sol:A", {"S:pepe"})
    assert not idx.has_competitor("sol:B", {"S:other"})
