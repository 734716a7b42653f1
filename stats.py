"""Debounced batching of auto-buy / detection counters."""
from __future__ import annotations

import threading
from typing import Any, Callable, Optional

from config import STATS_UPDATE_DELAY_S
from utils import log_debug

KIND_TO_COUNTER = {
    "auto_buy": "auto_buys",
    "detection": "detections",
}


def _thread_timer(delay: float, callback: Callable[[], Any]):
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


class StatsAggregator:
    """Collects counters in memory and persists them in one delayed write.

    Every ``record`` restarts the delay. A failed write puts the counters back
    on top of whatever was recorded meanwhile, so nothing is lost or counted
    twice on the next attempt.
    """

    def __init__(
        self,
        store,
        delay_s: float = STATS_UPDATE_DELAY_S,
        schedule: Optional[Callable[[float, Callable[[], Any]], Any]] = None,
    ) -> None:
        self.store = store
        self.delay_s = delay_s
        self._schedule = schedule or _thread_timer
        self._timer = None
        self._lock = threading.RLock()
        self.pending = {counter: 0 for counter in KIND_TO_COUNTER.values()}
        self.flush_failures = 0

    def set_scheduler(self, schedule: Optional[Callable[[float, Callable[[], Any]], Any]]) -> None:
        """Swap the timer factory (threading.Timer by default, loop.call_later in the pipeline)."""
        with self._lock:
            self._schedule = schedule or _thread_timer

    def record(self, kind: str) -> None:
        counter = KIND_TO_COUNTER.get(kind)
        if counter is None:
            raise ValueError(f"unknown stats kind: {kind!r}")
        with self._lock:
            self.pending[counter] += 1
            self._cancel_timer()
            self._timer = self._schedule(self.delay_s, self.flush)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def has_pending(self) -> bool:
        with self._lock:
            return any(self.pending.values())

    def flush(self) -> bool:
        with self._lock:
            self._timer = None
            if not any(self.pending.values()):
                return True
            to_update = dict(self.pending)
            self.pending = {counter: 0 for counter in KIND_TO_COUNTER.values()}

        try:
            self.store.increment(to_update)
        except Exception as exc:
            # restore the unsaved counts (add, never overwrite)
            with self._lock:
                for counter, value in to_update.items():
                    self.pending[counter] += value
                self.flush_failures += 1
            log_debug(f"[STATS] Update failed: {exc}")
            return False
        log_debug(f"[STATS] Flushed {to_update}")
        return True

    def shutdown(self) -> bool:
        with self._lock:
            self._cancel_timer()
        return self.flush()
