import re
from typing import FrozenSet, Optional, Tuple, Union

from config import normalize_match_mode
from models import Item

# -----------------------
# Performance: Pre-compiled Regex Patterns
# -----------------------
# Anything outside a-z, 0-9, CJK unified ideographs and space is dropped
_DISALLOWED_CHARS_PATTERN = re.compile(r"[^a-z0-9一-龥 ]+")
_WHITESPACE_PATTERN = re.compile(r"\s+")
_AGE_PATTERN = re.compile(r"^(\d+)\s*([smhd])$", re.IGNORECASE)
_TOKEN_HREF_PATTERN = re.compile(r"^/([^/]+)/token/([^/?#]+)")

_AGE_UNIT_MS = {"s": 1000, "m": 60_000, "h": 3_600_000, "d": 86_400_000}

SYMBOL_PREFIX = "S:"
NAME_PREFIX = "N:"
COMBINED_PREFIX = "SN:"


def normalize_text(s: Optional[str]) -> str:
    """Lowercase, drop disallowed characters, collapse whitespace, trim.

    Identical display text always yields the identical normalized form.
    """
    text = (s or "").lower()
    text = _WHITESPACE_PATTERN.sub(" ", text)
    text = _DISALLOWED_CHARS_PATTERN.sub("", text)
    text = _WHITESPACE_PATTERN.sub(" ", text)
    return text.strip()


def build_group_keys(symbol: Optional[str], name: Optional[str], mode: str) -> FrozenSet[str]:
    """Map an item's symbol/name to its group keys for the given match mode.

    Modes:
        symbol-only:    one ``S:`` key if the symbol survives normalization
        name-only:      one ``N:`` key if the name survives normalization
        both-required:  one combined ``SN:`` key, only when both are present
        either:         one key per non-empty field; prefixes keep them apart

    An empty result means the item takes no part in grouping at all.
    """
    mode = normalize_match_mode(mode)
    sym = normalize_text(symbol)
    nm = normalize_text(name)

    if mode == "symbol-only":
        return frozenset([SYMBOL_PREFIX + sym]) if sym else frozenset()
    if mode == "name-only":
        return frozenset([NAME_PREFIX + nm]) if nm else frozenset()
    if mode == "both-required":
        return frozenset([f"{COMBINED_PREFIX}{sym}|{nm}"]) if (sym and nm) else frozenset()

    keys = []
    if sym:
        keys.append(SYMBOL_PREFIX + sym)
    if nm:
        keys.append(NAME_PREFIX + nm)
    return frozenset(keys)


def parse_age_to_ms(text: Optional[str]) -> Optional[int]:
    """'40s' -> 40000, '3 m' -> 180000. Returns None for anything unparsable."""
    s = (text or "").strip()
    m = _AGE_PATTERN.match(s)
    if not m:
        return None
    return int(m.group(1)) * _AGE_UNIT_MS[m.group(2).lower()]


def parse_token_href(href: Optional[str]) -> Optional[Tuple[str, str]]:
    m = _TOKEN_HREF_PATTERN.match(href or "")
    if not m:
        return None
    return m.group(1), m.group(2)


def make_item(
    chain: str,
    address: str,
    symbol: Optional[str],
    name: Optional[str],
    age: Union[str, int, None],
    position: int,
    mode: str,
    visible: bool = True,
) -> Item:
    """Build a typed Item from raw display fields as a feed would report them."""
    if isinstance(age, str):
        recency_ms = parse_age_to_ms(age)
    elif age is None:
        recency_ms = None
    else:
        recency_ms = int(age)
    return Item(
        chain=chain,
        address=address,
        group_keys=build_group_keys(symbol, name, mode),
        recency_ms=recency_ms,
        position=int(position),
        visible=bool(visible),
    )
