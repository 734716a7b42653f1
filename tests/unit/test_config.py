import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import config  # noqa: E402
from config import ConfigError, SniperConfig  # noqa: E402
from utils import log_debug, log_text  # noqa: E402


def test_from_mapping_coerces_loose_values():
    cfg = SniperConfig.from_mapping({
        "enabled": "0",
        "match_mode": "any",
        "window_minutes": "30",
        "auto_buy_enabled": "true",
        "auto_buy_time_window_s": "2.5",
        "show_mode": "hideNonSameNameFirst",
        "lock_duration_ms": None,
    })
    assert cfg.enabled is False
    assert cfg.match_mode == "either"
    assert cfg.window_ms == 30 * 60_000
    assert cfg.auto_buy_enabled is True
    assert cfg.auto_buy_time_window_ms == 2500
    assert cfg.show_mode == "hideNonDupFirst"
    assert cfg.lock_duration_ms == config.STATE_LOCK_DURATION_MS


@pytest.mark.parametrize("changes", [
    {"match_mode": "fuzzy"},
    {"show_mode": "some"},
    {"window_minutes": 0},
    {"auto_buy_min_duplicates": 1},
    {"auto_buy_time_window_s": 0},
    {"lock_duration_ms": -1},
])
def test_invalid_values_raise(changes):
    with pytest.raises(ConfigError):
        SniperConfig(**changes)


def test_unparsable_number_raises_config_error():
    with pytest.raises(ConfigError):
        SniperConfig.from_mapping({"window_minutes": "two hours"})


def test_save_and_load_config_roundtrip_through_settings():
    assert config.load_config() == SniperConfig()
    cfg = SniperConfig(match_mode="name-only", show_mode="onlyDup", auto_buy_enabled=True, auto_buy_min_duplicates=3)
    config.save_config(cfg)
    assert config.load_config() == cfg


def test_debug_mode_setting():
    assert config.get_debug_mode() is False
    config.set_debug_mode(True)
    assert config.get_debug_mode() is True
    assert config.get_setting("debug_mode") == "1"


def test_log_helpers_write_to_configured_path():
    log_debug("[TEST] hello")
    log_text("block")
    content = Path(config.LOG_PATH).read_text(encoding="utf-8")
    assert "[DEBUG] [TEST] hello" in content
    assert "block" in content


def test_log_text_rotates(monkeypatch):
    monkeypatch.setattr(config, "LOG_ROTATE_BYTES", 10)
    Path(config.LOG_PATH).write_text("x" * 50, encoding="utf-8")
    log_text("fresh")
    assert Path(config.LOG_PATH + ".old").exists()
    assert "x" * 50 not in Path(config.LOG_PATH).read_text(encoding="utf-8")
