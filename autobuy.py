"""Windowed duplicate detection that fires one auto-buy per group episode."""
from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional, Set

from config import AUTO_BUY_HISTORY_MAX_AGE_MS
from leadership import is_earlier
from models import AutoTrigger, HistoryEntry, Item
from utils import log_debug, log_text, now_ms, short_addr


def find_first_in_history(history: List[HistoryEntry], prefer_later_position: bool = True) -> Optional[HistoryEntry]:
    """Earliest entry by recency; entries without recency lose to any that have one."""
    first = None
    for entry in history:
        if first is None:
            first = entry
            continue
        if entry.recency_ms is None:
            continue
        if first.recency_ms is None or is_earlier(
            entry.recency_ms, entry.position, entry.identity,
            first.recency_ms, first.position, first.identity,
            prefer_later_position,
        ):
            first = entry
    return first


class AutoTriggerEngine:
    def __init__(
        self,
        time_window_ms: int = 10_000,
        min_duplicates: int = 2,
        cooldown_ms: int = 1000,
        prefer_later_position: bool = True,
        clock: Callable[[], int] = now_ms,
        stats=None,
        debug: bool = False,
    ) -> None:
        self.time_window_ms = int(time_window_ms)
        self.min_duplicates = int(min_duplicates)
        self.cooldown_ms = int(cooldown_ms)
        self.prefer_later_position = prefer_later_position
        self._clock = clock
        self.stats = stats
        self.debug = debug

        self.history: Dict[str, List[HistoryEntry]] = {}
        self.fired_keys: Set[str] = set()
        self.purchased: Set[str] = set()
        # winners whose executor call has not returned yet, kept across resets
        self.in_flight: Set[str] = set()
        self.epoch = 0
        self._busy = False
        self._cooldown_until_ms = 0

    # ---- detection -------------------------------------------------------
    def on_new_item(self, keys: Iterable[str], item: Item) -> Optional[AutoTrigger]:
        now = self._clock()
        for key in sorted(keys):
            if key in self.fired_keys:
                continue
            history = self.history.setdefault(key, [])
            history.append(HistoryEntry(
                identity=item.identity,
                chain=item.chain,
                address=item.address,
                recency_ms=item.recency_ms,
                position=item.position,
                timestamp_ms=now,
            ))
            valid = [h for h in history if now - h.timestamp_ms <= self.time_window_ms]
            self.history[key] = valid
            distinct = len({h.identity for h in valid})
            if self.debug:
                log_debug(f"[AUTO-BUY] Group {key}: {distinct}/{self.min_duplicates} within {self.time_window_ms}ms")
            if distinct < self.min_duplicates:
                continue

            winner = find_first_in_history(valid, self.prefer_later_position)
            self.fired_keys.add(key)
            del self.history[key]
            if self.stats is not None:
                self.stats.record("detection")
            log_debug(f"[AUTO-BUY] Triggered for group {key}, first: {short_addr(winner.identity)} age={winner.recency_ms}ms")
            log_text(f"[AUTO-BUY] group={key} distinct={distinct} winner={winner.identity}\n" + "\n".join(
                f"  {h.identity} age={h.recency_ms}ms pos={h.position} seen_at={h.timestamp_ms}" for h in valid
            ))
            return AutoTrigger(group_key=key, winner=winner, distinct_count=distinct, epoch=self.epoch)
        return None

    # ---- execution guard -------------------------------------------------
    def is_locked(self) -> bool:
        return self._busy or self._clock() < self._cooldown_until_ms

    def acquire(self, trigger: AutoTrigger) -> bool:
        if trigger.epoch != self.epoch:
            log_debug(f"[AUTO-BUY] Stale trigger for {trigger.group_key}, skipped")
            return False
        if self.is_locked():
            log_debug("[AUTO-BUY] Locked, skipping...")
            return False
        if trigger.winner.identity in self.purchased:
            log_debug(f"[AUTO-BUY] Already purchased: {trigger.winner.identity}")
            return False
        if trigger.winner.identity in self.in_flight:
            log_debug(f"[AUTO-BUY] Still executing for {trigger.winner.identity}")
            return False
        self._busy = True
        self.in_flight.add(trigger.winner.identity)
        return True

    def complete(self, trigger: AutoTrigger, success: bool) -> None:
        self.in_flight.discard(trigger.winner.identity)
        if trigger.epoch != self.epoch:
            # reset happened while the action ran
            return
        self._busy = False
        self._cooldown_until_ms = self._clock() + self.cooldown_ms
        if success:
            self.purchased.add(trigger.winner.identity)
            if self.stats is not None:
                self.stats.record("auto_buy")
            log_debug(f"[AUTO-BUY] Bought first token {short_addr(trigger.winner.identity)}")
        else:
            log_debug(f"[AUTO-BUY] Could not complete purchase of {short_addr(trigger.winner.identity)}")

    def fire(self, trigger: AutoTrigger, executor: Callable[[HistoryEntry], bool]) -> bool:
        """Synchronous acquire -> execute -> complete."""
        if not self.acquire(trigger):
            return False
        success = False
        try:
            success = bool(executor(trigger.winner))
        except Exception as exc:
            log_debug(f"[AUTO-BUY] Executor error: {exc}")
            success = False
        finally:
            self.complete(trigger, success)
        return success

    # ---- maintenance -----------------------------------------------------
    def sweep(self) -> None:
        now = self._clock()
        for key in list(self.history):
            if key in self.fired_keys:
                del self.history[key]
                continue
            valid = [h for h in self.history[key] if now - h.timestamp_ms <= AUTO_BUY_HISTORY_MAX_AGE_MS]
            if valid:
                self.history[key] = valid
            else:
                del self.history[key]

    def reset(self) -> None:
        self.history.clear()
        self.fired_keys.clear()
        self.purchased.clear()
        self._busy = False
        self._cooldown_until_ms = 0
        self.epoch += 1
