"""Typed records passed between the feed, the engine and the presentation layer."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional

FIRST = "first"
DUPLICATE = "duplicate"


@dataclass(frozen=True)
class Item:
    chain: str
    address: str
    group_keys: FrozenSet[str]
    recency_ms: Optional[int]  # time since creation, larger = older
    position: int
    visible: bool = True

    @property
    def identity(self) -> str:
        return f"{self.chain}:{self.address}"


@dataclass(frozen=True)
class GroupRecord:
    leader_identity: str
    leader_recency_ms: int
    leader_position: int
    leader_chain: str

    @property
    def leader_address(self) -> str:
        return self.leader_identity.split(":", 1)[1]


@dataclass
class LockedState:
    identity: str
    is_first: bool
    confirmed_at_ms: int
    group_keys: FrozenSet[str]


@dataclass(frozen=True)
class HistoryEntry:
    identity: str
    chain: str
    address: str
    recency_ms: Optional[int]
    position: int
    timestamp_ms: int


@dataclass(frozen=True)
class Decision:
    identity: str
    classification: str  # FIRST | DUPLICATE
    hide: bool
    leader: Optional[str] = None  # only set for duplicates
    changed: bool = True

    @property
    def is_first(self) -> bool:
        return self.classification == FIRST


@dataclass(frozen=True)
class AutoTrigger:
    group_key: str
    winner: HistoryEntry
    distinct_count: int
    epoch: int = 0


@dataclass
class ScanResult:
    generation: int
    decisions: List[Decision] = field(default_factory=list)
    triggers: List[AutoTrigger] = field(default_factory=list)
    needs_relayout: bool = False

    def by_identity(self) -> dict:
        return {d.identity: d for d in self.decisions}
