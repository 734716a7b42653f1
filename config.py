import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional

# -----------------------
# Konfiguration
# -----------------------
DB_PATH = os.getenv("SNIPER_DB_PATH", "sniper_tracker.db")
LOG_PATH = os.getenv("SNIPER_LOG_PATH", "sniper_log.txt")
LOG_ROTATE_BYTES = 10 * 1024 * 1024  # 10 MB, then rotate to .old

# Scan-Takt: 80ms minimum between completed scans, heartbeat keeps the feed fresh
MIN_SCAN_INTERVAL_MS = max(0, int(os.getenv("SNIPER_MIN_SCAN_INTERVAL_MS", "80") or "80"))
HEARTBEAT_INTERVAL_S = 0.8
SWEEP_INTERVAL_S = 5.0

# Trigger smoothing (scroll / mutation bursts)
SCROLL_DEBOUNCE_S = 0.06
MUTATION_DEBOUNCE_S = 0.04
MUTATION_BURST_DEBOUNCE_S = 0.12
MUTATION_BURST_THRESHOLD = 3

# Anti-Flicker: a confirmed classification survives at least this long
STATE_LOCK_DURATION_MS = 2000

# Auto-Buy
AUTO_BUY_COOLDOWN_MS = 1000
AUTO_BUY_HISTORY_MAX_AGE_MS = 300_000
ACTION_TIMEOUT_S = float(os.getenv("SNIPER_ACTION_TIMEOUT", "5.0") or "5.0")

# Stats batching
STATS_UPDATE_DELAY_S = 5.0

MATCH_MODES = ("symbol-only", "name-only", "both-required", "either")
MATCH_MODE_ALIASES = {
    "symbol": "symbol-only",
    "name": "name-only",
    "both": "both-required",
    "any": "either",
}
SHOW_MODES = ("all", "onlyFirst", "onlyDup", "hideNonDupFirst")
SHOW_MODE_ALIASES = {"hideNonSameNameFirst": "hideNonDupFirst"}

DEFAULTS = {
    "enabled": True,
    "match_mode": "symbol-only",
    "window_minutes": 120,
    "only_within_window": True,
    "show_mode": "all",
    "lock_duration_ms": STATE_LOCK_DURATION_MS,
    "min_scan_interval_ms": MIN_SCAN_INTERVAL_MS,
    "auto_buy_enabled": False,
    "auto_buy_time_window_s": 10.0,
    "auto_buy_min_duplicates": 2,
    "auto_buy_cooldown_ms": AUTO_BUY_COOLDOWN_MS,
    "action_timeout_s": ACTION_TIMEOUT_S,
    "prefer_later_position": True,
    "stats_flush_delay_s": STATS_UPDATE_DELAY_S,
    "heartbeat_interval_s": HEARTBEAT_INTERVAL_S,
    "sweep_interval_s": SWEEP_INTERVAL_S,
}


class ConfigError(ValueError):
    """Raised for configuration values the tracker cannot work with."""


def normalize_match_mode(mode: str) -> str:
    mode = MATCH_MODE_ALIASES.get(mode, mode)
    if mode not in MATCH_MODES:
        raise ConfigError(f"unknown match mode: {mode!r}")
    return mode


def normalize_show_mode(mode: str) -> str:
    mode = SHOW_MODE_ALIASES.get(mode, mode)
    if mode not in SHOW_MODES:
        raise ConfigError(f"unknown show mode: {mode!r}")
    return mode


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass(frozen=True)
class SniperConfig:
    """Read-only configuration snapshot handed to the tracker per cycle."""

    enabled: bool = DEFAULTS["enabled"]
    match_mode: str = DEFAULTS["match_mode"]
    window_minutes: int = DEFAULTS["window_minutes"]
    only_within_window: bool = DEFAULTS["only_within_window"]
    show_mode: str = DEFAULTS["show_mode"]
    lock_duration_ms: int = DEFAULTS["lock_duration_ms"]
    min_scan_interval_ms: int = DEFAULTS["min_scan_interval_ms"]
    auto_buy_enabled: bool = DEFAULTS["auto_buy_enabled"]
    auto_buy_time_window_s: float = DEFAULTS["auto_buy_time_window_s"]
    auto_buy_min_duplicates: int = DEFAULTS["auto_buy_min_duplicates"]
    auto_buy_cooldown_ms: int = DEFAULTS["auto_buy_cooldown_ms"]
    action_timeout_s: float = DEFAULTS["action_timeout_s"]
    prefer_later_position: bool = DEFAULTS["prefer_later_position"]
    stats_flush_delay_s: float = DEFAULTS["stats_flush_delay_s"]
    heartbeat_interval_s: float = DEFAULTS["heartbeat_interval_s"]
    sweep_interval_s: float = DEFAULTS["sweep_interval_s"]

    def __post_init__(self) -> None:
        object.__setattr__(self, "match_mode", normalize_match_mode(self.match_mode))
        object.__setattr__(self, "show_mode", normalize_show_mode(self.show_mode))
        if self.window_minutes <= 0:
            raise ConfigError("window_minutes must be positive")
        if self.lock_duration_ms < 0 or self.min_scan_interval_ms < 0:
            raise ConfigError("durations must not be negative")
        if self.auto_buy_min_duplicates < 2:
            raise ConfigError("auto_buy_min_duplicates must be at least 2")
        if self.auto_buy_time_window_s <= 0:
            raise ConfigError("auto_buy_time_window_s must be positive")

    @property
    def window_ms(self) -> int:
        return int(self.window_minutes * 60_000)

    @property
    def auto_buy_time_window_ms(self) -> int:
        return int(self.auto_buy_time_window_s * 1000)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]] = None) -> "SniperConfig":
        """Build a snapshot from loosely typed values (settings table, env, CLI)."""
        merged = dict(DEFAULTS)
        if data:
            merged.update({k: v for k, v in data.items() if v is not None})
        kwargs = {}
        for f in fields(cls):
            raw = merged.get(f.name)
            default = DEFAULTS[f.name]
            try:
                if isinstance(default, bool):
                    kwargs[f.name] = _as_bool(raw)
                elif isinstance(default, int):
                    kwargs[f.name] = int(raw)
                elif isinstance(default, float):
                    kwargs[f.name] = float(raw)
                else:
                    kwargs[f.name] = str(raw)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"invalid value for {f.name}: {raw!r}") from exc
        return cls(**kwargs)

    def with_changes(self, **changes: Any) -> "SniperConfig":
        return replace(self, **changes)


# -----------------------
# Persistente Einstellungen (tracker_settings)
# -----------------------
def get_setting(key: str, default: Optional[str] = None) -> Optional[str]:
    from database import load_setting

    return load_setting(key, default)


def set_setting(key: str, value: Any) -> None:
    from database import save_setting

    save_setting(key, "" if value is None else str(value))


def get_debug_mode(default: bool = False) -> bool:
    raw = get_setting("debug_mode")
    if raw is None:
        return default
    return _as_bool(raw)


def set_debug_mode(enabled: bool) -> None:
    set_setting("debug_mode", "1" if enabled else "0")


def load_config() -> SniperConfig:
    """Merge DEFAULTS with whatever the user persisted in tracker_settings."""
    stored = {}
    for key in DEFAULTS:
        raw = get_setting(key)
        if raw is not None and raw != "":
            stored[key] = raw
    return SniperConfig.from_mapping(stored)


def save_config(cfg: SniperConfig) -> None:
    for f in fields(cfg):
        value = getattr(cfg, f.name)
        if isinstance(value, bool):
            value = "1" if value else "0"
        set_setting(f.name, value)
