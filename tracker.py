import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from autobuy import AutoTriggerEngine
from config import SniperConfig, get_debug_mode
from database import SqliteStatsStore
from hysteresis import StateLock
from leadership import LeadershipIndex, make_comparable
from models import DUPLICATE, FIRST, AutoTrigger, Decision, HistoryEntry, Item, ScanResult
from scheduler import SCHEDULED, ScanScheduler, TriggerDebouncer
from stats import StatsAggregator
from utils import log_debug, now_ms

Feed = Callable[[], List[Item]]
Executor = Callable[[HistoryEntry], bool]
Presenter = Callable[[ScanResult], None]


# -----------------------
# Entscheidungslogik: first / duplicate pro Scan
# -----------------------
class LaunchTracker:
    """Runs one scan cycle end to end and owns all cross-scan state.

    All state is meant to be touched from one thread only: either the caller
    of ``single_scan`` or the event loop of ``AsyncPipelineController``.
    """

    def __init__(
        self,
        cfg: Optional[SniperConfig] = None,
        feed: Optional[Feed] = None,
        executor: Optional[Executor] = None,
        presenter: Optional[Presenter] = None,
        stats: Optional[StatsAggregator] = None,
        clock: Callable[[], int] = now_ms,
        debug: Optional[bool] = None,
    ):
        self.cfg = cfg or SniperConfig()
        self.feed = feed
        self.executor = executor
        self.presenter = presenter
        self.clock = clock
        self.debug = get_debug_mode() if debug is None else bool(debug)
        self.running = False

        if stats is None:
            stats = StatsAggregator(SqliteStatsStore(), delay_s=self.cfg.stats_flush_delay_s)
        self.stats = stats

        self.scheduler = ScanScheduler(self.cfg.min_scan_interval_ms, clock=clock)
        self.index = LeadershipIndex()
        self.locks = StateLock(clock=clock, debug=self.debug)
        self.autobuy = AutoTriggerEngine(clock=clock, stats=self.stats, debug=self.debug)
        self._configure()

        self._known: set = set()
        self._presented: Dict[str, Tuple[str, bool, Optional[str]]] = {}
        self._async_controller = None
        self.scan_count = 0

        if self.debug:
            log_debug(f"[INIT] match={self.cfg.match_mode} show={self.cfg.show_mode} "
                      f"lock={self.cfg.lock_duration_ms}ms auto_buy={self.cfg.auto_buy_enabled}")

    def _configure(self) -> None:
        cfg = self.cfg
        self.scheduler.min_interval_ms = cfg.min_scan_interval_ms
        self.scheduler.set_enabled(cfg.enabled)
        self.index.prefer_later_position = cfg.prefer_later_position
        self.locks.lock_duration_ms = cfg.lock_duration_ms
        self.autobuy.time_window_ms = cfg.auto_buy_time_window_ms
        self.autobuy.min_duplicates = cfg.auto_buy_min_duplicates
        self.autobuy.cooldown_ms = cfg.auto_buy_cooldown_ms
        self.autobuy.prefer_later_position = cfg.prefer_later_position
        self.stats.delay_s = cfg.stats_flush_delay_s
        self._comparable = make_comparable(cfg.window_ms if cfg.only_within_window else None)

    # ---- classification ---------------------------------------------------
    def is_comparable(self, item: Item) -> bool:
        return self._comparable(item)

    def should_hide(self, is_first: bool, keys: Iterable[str]) -> bool:
        mode = self.cfg.show_mode
        if mode == "onlyFirst":
            return not is_first
        if mode == "onlyDup":
            return is_first
        if mode == "hideNonDupFirst":
            return not self.index.in_dup_group(keys)
        return False

    def _leader_reference(self, identity: str, keys) -> Optional[str]:
        rec = self.index.competitor_for(identity, keys)
        if rec is None:
            rec = self.index.leader_for(keys)
        if rec is None or rec.leader_identity == identity:
            return None
        return rec.leader_identity

    def process_scan(self, items: List[Item], generation: Optional[int] = None, primary: bool = True) -> Optional[ScanResult]:
        """Classify one complete snapshot of the feed.

        Returns None without touching any state when ``generation`` is stale.
        """
        if generation is not None and not self.scheduler.is_current(generation):
            log_debug(f"[SCAN] Generation {generation} is stale, dropping scan")
            return None
        gen = self.scheduler.generation if generation is None else generation
        result = ScanResult(generation=gen)
        if not self.cfg.enabled:
            return result

        self.index.build(items, self._comparable)
        watch_new = self.cfg.auto_buy_enabled and primary

        new_known = set()
        presented = {}
        hide_changed = False
        for item in items:
            keys = item.group_keys
            if not keys:
                continue
            identity = item.identity
            if identity in presented:
                # same row reported twice in one snapshot
                continue
            new_known.add(identity)

            computed = self.index.is_first(identity, keys) if self._comparable(item) else True

            if watch_new and identity not in self._known and item.visible:
                trigger = self.autobuy.on_new_item(keys, item)
                if trigger is not None:
                    result.triggers.append(trigger)

            is_first = self.locks.classify(identity, keys, computed, self.index)
            # a retained lock keeps presenting with the keys it was confirmed under
            keys = self.locks.keys_for(identity, keys)
            hide = self.should_hide(is_first, keys)
            leader = None if is_first else self._leader_reference(identity, keys)
            state = (FIRST if is_first else DUPLICATE, hide, leader)

            previous = self._presented.get(identity)
            if (previous is None and hide) or (previous is not None and previous[1] != hide):
                hide_changed = True
            presented[identity] = state
            result.decisions.append(Decision(
                identity=identity,
                classification=state[0],
                hide=hide,
                leader=leader,
                changed=previous != state,
            ))

        self._known = new_known
        self._presented = presented
        self.index.publish()
        self.scan_count += 1
        result.needs_relayout = hide_changed or self.cfg.show_mode != "all"
        return result

    # ---- actions ----------------------------------------------------------
    def execute_trigger(self, trigger: AutoTrigger) -> bool:
        if self.executor is None:
            log_debug(f"[AUTO-BUY] No executor configured, trigger for {trigger.group_key} dropped")
            return False
        return self.autobuy.fire(trigger, self.executor)

    def leader_for(self, keys: Iterable[str]):
        return self.index.leader_for(keys)

    # ---- lifecycle --------------------------------------------------------
    def sweep(self) -> None:
        removed = self.locks.sweep()
        self.autobuy.sweep()
        if self.debug and removed:
            log_debug(f"[SWEEP] Dropped {removed} expired locks")

    def reset(self) -> None:
        """Forget everything learned so far and invalidate in-flight scans."""
        self.index.clear()
        self.locks.clear()
        self.autobuy.reset()
        self._known = set()
        self._presented = {}
        self.scheduler.invalidate()
        log_debug("[RESET] All indices, locks and histories cleared")

    def apply_config(self, cfg: SniperConfig) -> bool:
        """Swap the configuration snapshot. Returns True if a rescan is wanted."""
        was_enabled = self.cfg.enabled
        self.cfg = cfg
        self._configure()
        self.reset()
        if was_enabled and not cfg.enabled:
            return False
        return cfg.enabled

    def single_scan(self) -> Optional[ScanResult]:
        delay = self.scheduler.trigger("manual")
        if self.scheduler.state != SCHEDULED:
            return None
        if delay:
            # keep the minimum interval to the previous scan
            time.sleep(delay)
        gen = self.scheduler.begin()
        try:
            items = self.feed() if self.feed is not None else []
            result = self.process_scan(items, generation=gen)
        finally:
            self.scheduler.finish(gen)
        if result is None:
            return None
        if self.presenter is not None:
            self.presenter(result)
        for trigger in result.triggers:
            self.execute_trigger(trigger)
        return result

    def auto_track(self):
        if self.running:
            print("Auto-tracking already running.")
            return
        self.running = True
        print("▶ Auto-tracking started (async pipeline) ...")
        controller = AsyncPipelineController(tracker=self)
        self._async_controller = controller
        try:
            controller.run()
        except Exception as exc:
            print("Error in auto-scan:", exc)
        finally:
            self._async_controller = None
            self.running = False
            print("⏹ Auto-tracking stopped.")

    def notify(self, reason: str = "mutation") -> None:
        if self._async_controller:
            self._async_controller.notify(reason)

    def stop(self):
        self.running = False
        if self._async_controller:
            self._async_controller.request_stop()


class AsyncPipelineController:
    """Serialized event loop that owns the tracker while auto-tracking.

    Outside threads only enqueue events; scans, resets, timers and action
    completions all run on this loop, so no two of them ever interleave
    inside the tracker.
    """

    def __init__(self, tracker: LaunchTracker, max_workers: int = 2) -> None:
        self.tracker = tracker
        self.executor = ThreadPoolExecutor(max_workers=max(1, int(max_workers)))
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.queue: Optional[asyncio.Queue] = None
        self.debouncer = TriggerDebouncer()
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._tasks: set = set()
        self._late_actions: set = set()
        self._stop_requested = False
        self.ready = threading.Event()

    def run(self) -> None:
        try:
            asyncio.run(self._run())
        finally:
            self.executor.shutdown(wait=True)

    # ---- thread-safe entry points ---------------------------------------
    def _post(self, event: str, payload=None) -> None:
        if self.loop is None or self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self._enqueue, event, payload)

    def notify(self, reason: str = "mutation") -> None:
        self._post("notify", reason)

    def request_reset(self, cfg: Optional[SniperConfig] = None) -> None:
        self._post("reset", cfg)

    def request_stop(self) -> None:
        self._stop_requested = True
        self._post("stop")

    # ---- loop internals -------------------------------------------------
    def _enqueue(self, event: str, payload=None) -> None:
        if self.queue is not None:
            self.queue.put_nowait((event, payload))

    def _call_later(self, name: str, delay: float, event: str, payload=None) -> None:
        old = self._timers.pop(name, None)
        if old is not None:
            old.cancel()
        self._timers[name] = self.loop.call_later(delay, self._enqueue, event, payload)

    def _schedule_stats(self, delay: float, callback):
        # the flush writes to sqlite, keep it off the loop thread
        return self.loop.call_later(delay, lambda: self.loop.run_in_executor(self.executor, callback))

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self) -> None:
        self.loop = asyncio.get_running_loop()
        self.queue = asyncio.Queue()
        self.tracker.stats.set_scheduler(self._schedule_stats)
        cfg = self.tracker.cfg
        self._call_later("heartbeat", cfg.heartbeat_interval_s, "heartbeat")
        self._call_later("sweep", cfg.sweep_interval_s, "sweep")
        self._enqueue("trigger", "startup")
        self.ready.set()

        try:
            while not self._stop_requested or not self.queue.empty():
                event, payload = await self.queue.get()
                if event == "stop":
                    break
                self._handle(event, payload)
        finally:
            self._stop_requested = True
            for handle in self._timers.values():
                handle.cancel()
            self._timers.clear()
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            if self._late_actions:
                await asyncio.gather(*list(self._late_actions), return_exceptions=True)
            self.tracker.stats.set_scheduler(None)
            await self.loop.run_in_executor(self.executor, self.tracker.stats.shutdown)

    def _handle(self, event: str, payload) -> None:
        tracker = self.tracker
        if event == "notify":
            self._on_notify(payload)
        elif event == "trigger":
            if payload == "mutation":
                self.debouncer.settled()
            delay = tracker.scheduler.trigger(payload or "tick")
            if delay is not None:
                self._call_later("scan", delay, "scan")
        elif event == "scan":
            self._spawn(self._scan())
        elif event == "heartbeat":
            if tracker.cfg.enabled:
                self._enqueue("trigger", "heartbeat")
            self._call_later("heartbeat", tracker.cfg.heartbeat_interval_s, "heartbeat")
        elif event == "sweep":
            tracker.sweep()
            self._call_later("sweep", tracker.cfg.sweep_interval_s, "sweep")
        elif event == "reset":
            if payload is not None:
                rescan = tracker.apply_config(payload)
            else:
                tracker.reset()
                rescan = tracker.cfg.enabled
            if rescan:
                self._enqueue("trigger", "reset")

    def _on_notify(self, reason: str) -> None:
        if not self.tracker.cfg.enabled:
            return
        if reason == "scroll":
            self._call_later("scroll", self.debouncer.scroll_delay(), "trigger", "scroll")
        elif reason == "mutation":
            self._call_later("mutation", self.debouncer.mutation_delay(), "trigger", "mutation")
        else:
            self._enqueue("trigger", reason)

    async def _scan(self) -> None:
        tracker = self.tracker
        gen = tracker.scheduler.begin()
        if gen is None:
            return
        try:
            items = []
            if tracker.feed is not None:
                items = await self.loop.run_in_executor(self.executor, tracker.feed)
            result = tracker.process_scan(items, generation=gen)
            if result is not None:
                if tracker.presenter is not None:
                    tracker.presenter(result)
                for trigger in result.triggers:
                    self._spawn(self._execute(trigger))
        except Exception as exc:
            log_debug(f"[SCAN] Scan {gen} failed: {exc}")
        finally:
            delay = tracker.scheduler.finish(gen)
            if delay is not None and not self._stop_requested:
                self._call_later("scan", delay, "scan")

    async def _execute(self, trigger: AutoTrigger) -> None:
        tracker = self.tracker
        if tracker.executor is None:
            log_debug(f"[AUTO-BUY] No executor configured, trigger for {trigger.group_key} dropped")
            return
        if not tracker.autobuy.acquire(trigger):
            return
        future = self.loop.run_in_executor(self.executor, tracker.executor, trigger.winner)
        success = False
        try:
            success = bool(await asyncio.wait_for(asyncio.shield(future), timeout=tracker.cfg.action_timeout_s))
        except asyncio.TimeoutError:
            # the worker thread cannot be interrupted; the lock stays held until it returns
            log_debug(f"[AUTO-BUY] Executor still running after {tracker.cfg.action_timeout_s}s, waiting for its result")
            self._late_actions.add(future)
            future.add_done_callback(lambda done: self._finish_late(trigger, done))
            return
        except Exception as exc:
            log_debug(f"[AUTO-BUY] Executor error: {exc}")
        tracker.autobuy.complete(trigger, success)

    def _finish_late(self, trigger: AutoTrigger, future: asyncio.Future) -> None:
        self._late_actions.discard(future)
        success = False
        if future.cancelled():
            log_debug(f"[AUTO-BUY] Late executor call for {trigger.winner.identity} was cancelled")
        elif future.exception() is not None:
            log_debug(f"[AUTO-BUY] Executor error: {future.exception()}")
        else:
            success = bool(future.result())
            log_debug(f"[AUTO-BUY] Late executor result for {trigger.winner.identity}: {success}")
        self.tracker.autobuy.complete(trigger, success)
