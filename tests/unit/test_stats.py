import sqlite3
import sys
from datetime import date
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import database  # noqa: E402
from stats import StatsAggregator  # noqa: E402


class _FakeTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class _Timers:
    def __init__(self):
        self.created = []

    def __call__(self, delay, callback):
        timer = _FakeTimer(delay, callback)
        self.created.append(timer)
        return timer

    def fire_last(self):
        live = [t for t in self.created if not t.cancelled]
        assert len(live) == 1
        live[0].callback()


class _Store:
    def __init__(self, fail_times=0):
        self.fail_times = fail_times
        self.calls = []

    def increment(self, counters):
        if self.fail_times:
            self.fail_times -= 1
            raise sqlite3.OperationalError("database is locked")
        self.calls.append(dict(counters))


def test_record_restarts_the_delay():
    timers = _Timers()
    agg = StatsAggregator(_Store(), delay_s=5.0, schedule=timers)
    agg.record("detection")
    agg.record("auto_buy")
    agg.record("detection")
    assert len(timers.created) == 3
    assert [t.cancelled for t in timers.created] == [True, True, False]
    assert timers.created[-1].delay == 5.0


def test_flush_sends_batch_and_resets():
    timers = _Timers()
    store = _Store()
    agg = StatsAggregator(store, schedule=timers)
    agg.record("detection")
    agg.record("detection")
    agg.record("auto_buy")
    timers.fire_last()
    assert store.calls == [{"auto_buys": 1, "detections": 2}]
    assert not agg.has_pending()
    assert agg.flush() is True
    assert len(store.calls) == 1, "nothing pending, no write"


def test_failed_flush_restores_and_adds_new_counts():
    timers = _Timers()
    store = _Store(fail_times=1)
    agg = StatsAggregator(store, schedule=timers)
    agg.record("auto_buy")
    assert agg.flush() is False
    assert agg.pending == {"auto_buys": 1, "detections": 0}
    agg.record("auto_buy")
    agg.record("detection")
    assert agg.flush() is True
    assert store.calls == [{"auto_buys": 2, "detections": 1}]


def test_shutdown_flushes_and_cancels_timer():
    timers = _Timers()
    store = _Store()
    agg = StatsAggregator(store, schedule=timers)
    agg.record("detection")
    assert agg.shutdown() is True
    assert timers.created[0].cancelled
    assert store.calls == [{"auto_buys": 0, "detections": 1}]


def test_unknown_kind_rejected():
    agg = StatsAggregator(_Store(), schedule=_Timers())
    with pytest.raises(ValueError):
        agg.record("sells")


def test_sqlite_store_resets_daily_counter():
    database.increment_stats(auto_buys=2, detections=3, today=date(2026, 1, 1))
    stats = database.increment_stats(auto_buys=1, detections=0, today=date(2026, 1, 1))
    assert stats["today_buys"] == 3
    stats = database.increment_stats(auto_buys=1, detections=1, today=date(2026, 1, 2))
    assert stats == {
        "auto_buys": 4,
        "detections": 4,
        "today_buys": 1,
        "last_reset_date": "2026-01-02",
    }


def test_sqlite_store_with_aggregator():
    timers = _Timers()
    store = database.SqliteStatsStore(today_fn=lambda: date(2026, 3, 4))
    agg = StatsAggregator(store, schedule=timers)
    agg.record("auto_buy")
    agg.record("detection")
    timers.fire_last()
    assert database.get_stats()["auto_buys"] == 1
    assert database.get_stats()["today_buys"] == 1
    database.reset_stats()
    assert database.get_stats()["auto_buys"] == 0
