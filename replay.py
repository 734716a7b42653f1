"""Replay recorded feed snapshots through the tracker.

CSV columns: tick_ms, chain, address, symbol, name, age, position[, visible]
Every distinct tick_ms is one complete snapshot; the simulated clock is set to
tick_ms before the snapshot is processed, so lock and auto-buy windows behave
as they did when the feed was recorded.
"""
import argparse
from dataclasses import asdict
from typing import List, Optional

import pandas as pd

from config import SniperConfig, load_config, save_config, set_debug_mode
from database import get_connection
from models import HistoryEntry, Item
from parsing import make_item
from stats import StatsAggregator
from tracker import LaunchTracker
from utils import log_debug

REQUIRED_COLUMNS = ("tick_ms", "chain", "address", "symbol", "name", "age", "position")


class _SimClock:
    def __init__(self) -> None:
        self.now = 0

    def __call__(self) -> int:
        return self.now


class _MemoryStatsStore:
    def __init__(self) -> None:
        self.totals = {"auto_buys": 0, "detections": 0}

    def increment(self, counters: dict) -> dict:
        for key, value in counters.items():
            self.totals[key] = self.totals.get(key, 0) + value
        return dict(self.totals)


def _dry_run_executor(winner: HistoryEntry) -> bool:
    log_debug(f"[REPLAY] Would buy {winner.identity} (age={winner.recency_ms}ms)")
    return True


def _cell(value) -> Optional[str]:
    if pd.isna(value):
        return None
    return str(value)


def _age(value):
    text = _cell(value)
    if text is not None and text.strip().isdigit():
        return int(text)  # raw milliseconds
    return text


def _flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def load_snapshots(path: str, match_mode: str) -> List[tuple]:
    df = pd.read_csv(path, dtype={"chain": str, "address": str, "symbol": str, "name": str, "age": str})
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"missing columns in {path}: {', '.join(missing)}")
    if "visible" not in df.columns:
        df["visible"] = True

    snapshots = []
    for tick_ms, frame in df.sort_values(["tick_ms", "position"]).groupby("tick_ms", sort=True):
        items: List[Item] = [
            make_item(
                chain=str(row.chain),
                address=str(row.address),
                symbol=_cell(row.symbol),
                name=_cell(row.name),
                age=_age(row.age),
                position=int(row.position),
                mode=match_mode,
                visible=_flag(row.visible),
            )
            for row in frame.itertuples(index=False)
        ]
        snapshots.append((int(tick_ms), items))
    return snapshots


def replay(path: str, cfg: SniperConfig, debug: Optional[bool] = None) -> tuple:
    """Run every snapshot; returns (decisions DataFrame, triggers DataFrame, stats totals)."""
    clock = _SimClock()
    store = _MemoryStatsStore()
    stats = StatsAggregator(store, schedule=lambda _delay, _cb: None)
    tracker = LaunchTracker(cfg=cfg, executor=_dry_run_executor, stats=stats, clock=clock, debug=debug)

    decision_rows = []
    trigger_rows = []
    for tick_ms, items in load_snapshots(path, cfg.match_mode):
        clock.now = tick_ms
        result = tracker.process_scan(items)
        for d in result.decisions:
            decision_rows.append({
                "tick_ms": tick_ms,
                "identity": d.identity,
                "classification": d.classification,
                "hide": d.hide,
                "leader": d.leader,
                "changed": d.changed,
            })
        for trigger in result.triggers:
            bought = tracker.execute_trigger(trigger)
            trigger_rows.append({
                "tick_ms": tick_ms,
                "group_key": trigger.group_key,
                "winner": trigger.winner.identity,
                "distinct_count": trigger.distinct_count,
                "bought": bought,
            })
        if tracker.scan_count % 10 == 0:
            tracker.sweep()

    stats.shutdown()
    decisions = pd.DataFrame(decision_rows, columns=["tick_ms", "identity", "classification", "hide", "leader", "changed"])
    triggers = pd.DataFrame(trigger_rows, columns=["tick_ms", "group_key", "winner", "distinct_count", "bought"])
    return decisions, triggers, dict(store.totals)


def stats_frame() -> pd.DataFrame:
    return pd.read_sql_query("SELECT * FROM sniper_stats", get_connection())


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Replay recorded launch snapshots")
    parser.add_argument("csv", nargs="?", help="recorded snapshots")
    # unset options fall back to the settings stored in tracker_settings
    parser.add_argument("--match-mode")
    parser.add_argument("--show-mode")
    parser.add_argument("--window-minutes", type=int)
    parser.add_argument("--auto-buy", action="store_true", default=None)
    parser.add_argument("--threshold", type=int)
    parser.add_argument("--time-window", type=float)
    parser.add_argument("--debug", action="store_true", default=None, help="write [LOCK]/[AUTO-BUY] details to the debug log")
    parser.add_argument("--save-config", action="store_true", help="persist the effective settings for the next run")
    parser.add_argument("--out", help="write the decision table to this CSV")
    parser.add_argument("--show-stats", action="store_true", help="print persisted sniper_stats")
    args = parser.parse_args(argv)

    if args.show_stats:
        print(stats_frame().to_string(index=False))
        if not args.csv:
            return 0
    if not args.csv:
        parser.error("csv is required unless --show-stats is given")

    settings = asdict(load_config())
    overrides = {
        "match_mode": args.match_mode,
        "show_mode": args.show_mode,
        "window_minutes": args.window_minutes,
        "auto_buy_enabled": args.auto_buy,
        "auto_buy_min_duplicates": args.threshold,
        "auto_buy_time_window_s": args.time_window,
    }
    settings.update({k: v for k, v in overrides.items() if v is not None})
    cfg = SniperConfig.from_mapping(settings)
    if args.save_config:
        save_config(cfg)
        if args.debug is not None:
            set_debug_mode(args.debug)
        print("Settings saved.")
    decisions, triggers, totals = replay(args.csv, cfg, debug=args.debug)

    if decisions.empty:
        print("No classifiable items in replay.")
        return 0

    final = decisions.groupby("identity").tail(1).sort_values("identity")
    print(final[["identity", "classification", "hide", "leader"]].to_string(index=False))
    flips = int(decisions["changed"].sum()) - decisions["identity"].nunique()
    print(f"\nScans: {decisions['tick_ms'].nunique()}  items: {decisions['identity'].nunique()}  re-renders: {flips}")
    if not triggers.empty:
        print("\nAuto-buy triggers:")
        print(triggers.to_string(index=False))
    print(f"\nStats: {totals}")

    if args.out:
        decisions.to_csv(args.out, index=False)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
