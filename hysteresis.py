"""State lock that keeps confirmed first/duplicate classifications from flickering."""
from __future__ import annotations

from typing import Callable, Dict, FrozenSet, Iterable, Optional

from models import LockedState
from utils import log_debug, now_ms


class StateLock:
    """Per-identity classification lock.

    Virtualized feeds can briefly drop the true earliest row while they
    re-render. Within ``lock_duration_ms`` a locked "first" only turns into a
    duplicate when the current build index names a different leader for one
    of the item's keys.
    """

    def __init__(self, lock_duration_ms: int = 2000, clock: Callable[[], int] = now_ms, debug: bool = False) -> None:
        self.lock_duration_ms = int(lock_duration_ms)
        self._clock = clock
        self.debug = debug
        self._states: Dict[str, LockedState] = {}

    def __len__(self) -> int:
        return len(self._states)

    def get(self, identity: str) -> Optional[LockedState]:
        """Return the lock if it is still inside its window."""
        state = self._states.get(identity)
        if state is None:
            return None
        if self._clock() - state.confirmed_at_ms >= self.lock_duration_ms:
            return None
        return state

    def lock(self, identity: str, is_first: bool, keys: Iterable[str]) -> LockedState:
        state = LockedState(
            identity=identity,
            is_first=bool(is_first),
            confirmed_at_ms=self._clock(),
            group_keys=frozenset(keys),
        )
        self._states[identity] = state
        return state

    def classify(self, identity: str, keys: Iterable[str], computed_is_first: bool, index) -> bool:
        keys = frozenset(keys)
        locked = self.get(identity)
        if locked is None or locked.is_first == computed_is_first:
            self.lock(identity, computed_is_first, keys)
            return computed_is_first

        if computed_is_first:
            # dup -> first is always fine, an extra "first" badge is harmless
            self.lock(identity, True, keys)
            return True

        if index.has_competitor(identity, keys):
            self.lock(identity, False, keys)
            return False

        # No proof of an earlier competitor in this scan: keep "first" and let
        # the earlier confirmation time run out.
        if self.debug:
            log_debug(f"[LOCK] Retained first for {identity} (no competing leader in build)")
        return locked.is_first

    def keys_for(self, identity: str, default: Iterable[str]) -> FrozenSet[str]:
        """Keys stored with the current lock, or ``default`` when there is none."""
        state = self._states.get(identity)
        if state is None:
            return frozenset(default)
        return state.group_keys

    def sweep(self) -> int:
        """Drop locks older than twice the lock duration. Returns the count removed."""
        now = self._clock()
        limit = self.lock_duration_ms * 2
        stale = [k for k, s in self._states.items() if now - s.confirmed_at_ms >= limit]
        for k in stale:
            del self._states[k]
        return len(stale)

    def clear(self) -> None:
        self._states.clear()
