"""Normalization functions for roster identity matching.

All functions are pure and total: they accept str | None (or any value
coming out of a parsed file) and never raise.
"""

from __future__ import annotations

import math
import re

_NON_ALNUM = re.compile(r"[^A-Z0-9]")
_NON_DIGIT = re.compile(r"[^0-9]")
_ISO2 = re.compile(r"^[A-Za-z]{2}$")

# Offset from an ASCII capital letter to its regional indicator symbol.
_REGIONAL_INDICATOR_OFFSET = 0x1F1E6 - ord("A")

NEUTRAL_FLAG = "\U0001F3F3\uFE0F"

# Bounds of the PostgreSQL integer column bows are stored in.
_BOW_MIN = -(2**31)
_BOW_MAX = 2**31 - 1


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = str(value).strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: normalize_sail  (roster matching key)
# ---------------------------------------------------------------------------

def normalize_sail(value: str | None) -> str:
    """Return the canonical matching key for a raw sail number.

    Upper-cases, drops everything that is not A-Z/0-9, then keeps only the
    digits.  If no digits remain the alphanumeric residue is the key, so
    "USA 214567", "usa-214567" and "214567" all map to "214567" while a
    purely alphabetic sail such as "Kiwi" maps to "KIWI".

    Empty or None input returns "" which never matches a roster entry.
    """
    if value is None:
        return ""
    compact = _NON_ALNUM.sub("", str(value).strip().upper())
    digits = _NON_DIGIT.sub("", compact)
    return digits or compact


# ---------------------------------------------------------------------------
# Rule 4: flag_emoji
# ---------------------------------------------------------------------------

def flag_emoji(country: str | None) -> str:
    """Map a two-letter country code to its flag glyph.

    Anything other than exactly two ASCII letters (after trimming) yields
    a neutral white flag.
    """
    c = trim(country)
    if c is None or not _ISO2.match(c):
        return NEUTRAL_FLAG
    return "".join(chr(ord(ch) + _REGIONAL_INDICATOR_OFFSET) for ch in c.upper())


# ---------------------------------------------------------------------------
# Rule 5: parse_bow
# ---------------------------------------------------------------------------

def parse_bow(value: str | int | float | None) -> int | None:
    """Parse a bow number, returning None unless it is a finite integer.

    "12", " 12 ", "12.0" and 12 → 12.  "12.5", "nan", "inf", "1_000", "" → None.
    Values outside the 32-bit integer range are rejected as well.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if _BOW_MIN <= value <= _BOW_MAX else None
    v = trim(str(value))
    if v is None or "_" in v:
        return None
    try:
        num = float(v)
    except ValueError:
        return None
    if not math.isfinite(num) or not num.is_integer():
        return None
    if not _BOW_MIN <= num <= _BOW_MAX:
        return None
    return int(num)
