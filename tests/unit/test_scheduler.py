import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scheduler import IDLE, RUNNING, SCHEDULED, ScanScheduler, TriggerDebouncer  # noqa: E402


class _Clock:
    def __init__(self, now=0):
        self.now = now

    def __call__(self):
        return self.now


def test_first_trigger_runs_immediately_and_coalesces():
    s = ScanScheduler(80, clock=_Clock(1000))
    assert s.trigger("mutation") == 0.0
    assert s.state == SCHEDULED
    assert s.trigger("scroll") is None
    assert s.trigger("resize") is None
    assert s.triggers_coalesced == 2


def test_min_interval_delays_next_scan_exactly():
    clock = _Clock(1000)
    s = ScanScheduler(80, clock=clock)
    s.trigger()
    gen = s.begin()
    assert s.finish(gen) is None
    clock.now = 1030
    assert abs(s.trigger() - 0.05) < 1e-9
    clock.now = 2000
    s.begin()
    s.finish(s.generation)
    clock.now = 2100
    assert s.trigger() == 0.0


def test_trigger_while_running_sets_pending_and_one_followup():
    clock = _Clock(0)
    s = ScanScheduler(80, clock=clock)
    s.trigger()
    gen = s.begin()
    assert s.state == RUNNING
    assert s.trigger("mutation") is None
    assert s.trigger("mutation") is None
    assert s.pending is True
    assert s.begin() is None, "never two scans at once"
    clock.now = 10
    delay = s.finish(gen)
    assert abs(delay - 0.08) < 1e-9
    assert s.state == SCHEDULED
    assert s.pending is False


def test_generation_increases_and_invalidate_makes_work_stale():
    s = ScanScheduler(0, clock=_Clock())
    s.trigger()
    g1 = s.begin()
    s.finish(g1)
    s.trigger()
    g2 = s.begin()
    assert g2 == g1 + 1
    s.invalidate()
    assert not s.is_current(g2)
    s.finish(g2)
    assert s.state == IDLE


def test_disabled_scheduler_ignores_triggers():
    s = ScanScheduler(80, clock=_Clock())
    s.set_enabled(False)
    assert s.trigger() is None
    assert s.state == IDLE


def test_mutation_bursts_use_longer_debounce():
    d = TriggerDebouncer()
    delays = [d.mutation_delay() for _ in range(5)]
    assert delays[:3] == [0.04, 0.04, 0.04]
    assert delays[3:] == [0.12, 0.12]
    d.settled()
    assert d.mutation_delay() == 0.04
