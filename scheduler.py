"""Rate-limited, non-overlapping scan scheduling as a small state machine."""
from __future__ import annotations

from typing import Callable, Optional

from config import (
    MUTATION_BURST_DEBOUNCE_S,
    MUTATION_BURST_THRESHOLD,
    MUTATION_DEBOUNCE_S,
    SCROLL_DEBOUNCE_S,
)
from utils import now_ms

IDLE = "idle"
SCHEDULED = "scheduled"
RUNNING = "running"


class ScanScheduler:
    """Coalesces triggers into at most one scan per ``min_interval_ms``.

    The scheduler does not own timers. ``trigger`` and ``finish`` return the
    delay (seconds) after which the owner should call ``begin``; ``None``
    means nothing new has to be scheduled.
    """

    def __init__(self, min_interval_ms: int = 80, clock: Callable[[], int] = now_ms) -> None:
        self.min_interval_ms = int(min_interval_ms)
        self._clock = clock
        self.state = IDLE
        self.pending = False
        self.enabled = True
        self.generation = 0
        self.last_completed_ms: Optional[int] = None
        self.triggers_coalesced = 0

    def trigger(self, reason: str = "tick") -> Optional[float]:
        if not self.enabled:
            return None
        if self.state == RUNNING:
            self.pending = True
            self.triggers_coalesced += 1
            return None
        if self.state == SCHEDULED:
            self.triggers_coalesced += 1
            return None
        self.state = SCHEDULED
        return self._delay_s()

    def _delay_s(self) -> float:
        if self.last_completed_ms is None:
            return 0.0
        elapsed = self._clock() - self.last_completed_ms
        if elapsed >= self.min_interval_ms:
            return 0.0
        return (self.min_interval_ms - elapsed) / 1000.0

    def begin(self) -> Optional[int]:
        """Move SCHEDULED -> RUNNING and stamp a new generation."""
        if self.state != SCHEDULED or not self.enabled:
            return None
        self.state = RUNNING
        self.generation += 1
        return self.generation

    def finish(self, generation: int) -> Optional[float]:
        if self.state != RUNNING:
            return None
        self.state = IDLE
        self.last_completed_ms = self._clock()
        if self.pending:
            self.pending = False
            return self.trigger("pending")
        return None

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    def invalidate(self) -> int:
        """Bump the generation so in-flight work is discarded (reset)."""
        self.generation += 1
        return self.generation

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = bool(enabled)
        if not self.enabled:
            self.pending = False
            if self.state == SCHEDULED:
                self.state = IDLE


class TriggerDebouncer:
    """Smooths raw change notifications before they reach the scheduler."""

    def __init__(self) -> None:
        self.mutation_batch = 0

    def mutation_delay(self) -> float:
        self.mutation_batch += 1
        if self.mutation_batch > MUTATION_BURST_THRESHOLD:
            return MUTATION_BURST_DEBOUNCE_S
        return MUTATION_DEBOUNCE_S

    def scroll_delay(self) -> float:
        return SCROLL_DEBOUNCE_S

    def settled(self) -> None:
        self.mutation_batch = 0
