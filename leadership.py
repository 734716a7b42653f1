"""Earliest-item-per-group index with build/render double buffering."""
from __future__ import annotations

from typing import Callable, Dict, Iterable, Optional, Set, Tuple

from models import GroupRecord, Item


def is_earlier(
    recency_a: int,
    position_a: int,
    identity_a: str,
    recency_b: int,
    position_b: int,
    identity_b: str,
    prefer_later_position: bool = True,
) -> bool:
    """True if A comes before B: older first, then position, then identity."""
    if recency_a != recency_b:
        return recency_a > recency_b
    if position_a != position_b:
        if prefer_later_position:
            return position_a > position_b
        return position_a < position_b
    return identity_a < identity_b


def make_comparable(window_ms: Optional[int]) -> Callable[[Item], bool]:
    """Items without a recency (or outside the window) never compete."""

    def comparable(item: Item) -> bool:
        if item.recency_ms is None:
            return False
        if window_ms is not None and item.recency_ms > window_ms:
            return False
        return True

    return comparable


def build_index(
    items: Iterable[Item],
    comparable: Callable[[Item], bool],
    prefer_later_position: bool = True,
) -> Tuple[Dict[str, GroupRecord], Set[str]]:
    index: Dict[str, GroupRecord] = {}
    dup_keys: Set[str] = set()

    for item in items:
        if not item.group_keys or not comparable(item):
            continue
        identity = item.identity
        for key in item.group_keys:
            rec = index.get(key)
            if rec is not None and rec.leader_identity != identity:
                dup_keys.add(key)
            if rec is None or is_earlier(
                item.recency_ms, item.position, identity,
                rec.leader_recency_ms, rec.leader_position, rec.leader_identity,
                prefer_later_position,
            ):
                index[key] = GroupRecord(
                    leader_identity=identity,
                    leader_recency_ms=item.recency_ms,
                    leader_position=item.position,
                    leader_chain=item.chain,
                )
    return index, dup_keys


class LeadershipIndex:
    """Double-buffered group index.

    A scan writes only the build side; ``publish()`` swaps it into the render
    side in one step so readers never see a half-built index.
    """

    def __init__(self, prefer_later_position: bool = True) -> None:
        self.prefer_later_position = prefer_later_position
        self.build_records: Dict[str, GroupRecord] = {}
        self.build_dup_keys: Set[str] = set()
        self.render_records: Dict[str, GroupRecord] = {}
        self.render_dup_keys: Set[str] = set()

    def build(self, items: Iterable[Item], comparable: Callable[[Item], bool]) -> None:
        self.build_records, self.build_dup_keys = build_index(
            items, comparable, self.prefer_later_position
        )

    def publish(self) -> None:
        self.render_records = dict(self.build_records)
        self.render_dup_keys = set(self.build_dup_keys)

    def clear(self) -> None:
        self.build_records = {}
        self.build_dup_keys = set()
        self.render_records = {}
        self.render_dup_keys = set()

    def is_first(self, identity: str, keys: Iterable[str]) -> bool:
        for key in keys:
            rec = self.build_records.get(key)
            if rec is not None and rec.leader_identity != identity:
                return False
        return True

    def has_competitor(self, identity: str, keys: Iterable[str]) -> bool:
        """Positive evidence: the current build names someone else as leader."""
        return not self.is_first(identity, keys)

    def competitor_for(self, identity: str, keys: Iterable[str]) -> Optional[GroupRecord]:
        for key in sorted(keys):
            rec = self.build_records.get(key)
            if rec is not None and rec.leader_identity != identity:
                return rec
        return None

    def in_dup_group(self, keys: Iterable[str]) -> bool:
        return any(k in self.build_dup_keys for k in keys)

    def leader_for(self, keys: Iterable[str]) -> Optional[GroupRecord]:
        """Leader lookup for "goto first": stable render side, then build side."""
        keys = sorted(keys)
        for key in keys:
            rec = self.render_records.get(key)
            if rec is not None:
                return rec
        for key in keys:
            rec = self.build_records.get(key)
            if rec is not None:
                return rec
        return None
