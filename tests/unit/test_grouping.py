import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import ConfigError  # noqa: E402
from parsing import (  # noqa: E402
    build_group_keys,
    make_item,
    normalize_text,
    parse_age_to_ms,
    parse_token_href,
)


def test_normalize_is_stable_for_display_variants():
    assert normalize_text("  PEPE  Coin ") == "pepe coin"
    assert normalize_text("Pepe\tCoin!!") == "pepe coin"
    assert normalize_text("Pepe - Coin") == "pepe coin"
    assert normalize_text(None) == ""


def test_normalize_keeps_cjk():
    assert normalize_text("狗狗 Coin$") == "狗狗 coin"


def test_symbol_only_mode():
    assert build_group_keys("PEPE", "Pepe Coin", "symbol-only") == {"S:pepe"}
    assert build_group_keys("$$$", "Pepe Coin", "symbol-only") == frozenset()


def test_name_only_mode():
    assert build_group_keys("PEPE", "Pepe Coin", "name-only") == {"N:pepe coin"}


def test_both_required_needs_both_fields():
    assert build_group_keys("PEPE", "Pepe Coin", "both-required") == {"SN:pepe|pepe coin"}
    assert build_group_keys("PEPE", "", "both-required") == frozenset()


def test_either_mode_keys_never_collide():
    keys = build_group_keys("doge", "doge", "either")
    assert keys == {"S:doge", "N:doge"}


def test_legacy_mode_aliases():
    assert build_group_keys("PEPE", None, "symbol") == {"S:pepe"}
    assert build_group_keys("PEPE", "x", "any") == {"S:pepe", "N:x"}


def test_unknown_mode_rejected():
    with pytest.raises(ConfigError):
        build_group_keys("a", "b", "fuzzy")


@pytest.mark.parametrize("text,expected", [
    ("40s", 40_000),
    ("3 m", 180_000),
    ("2H", 7_200_000),
    ("1d", 86_400_000),
    ("", None),
    ("abc", None),
    ("5y", None),
    (None, None),
])
def test_parse_age_to_ms(text, expected):
    assert parse_age_to_ms(text) == expected


def test_parse_token_href():
    assert parse_token_href("/sol/token/AbC123?tab=1") == ("sol", "AbC123")
    assert parse_token_href("/sol/pool/AbC123") is None


def test_make_item_missing_age_is_not_fatal():
    item = make_item("sol", "A1", "PEPE", "Pepe", "just now", 3, "symbol-only")
    assert item.recency_ms is None
    assert item.identity == "sol:A1"
    assert item.group_keys == {"S:pepe"}
