"""
Numeric / date normalization for ingested cells.

Parsing is permissive: anything that cannot be read as a number becomes 0,
never an exception.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

MONTH_SUFFIX = "월"

_NUMBER_NOISE = re.compile(r"[\",\s]")
_CURRENCY_NOISE = re.compile(r"[₩$,\s\"]")
_LEADING_FLOAT = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

_UNBROKEN_INT = re.compile(r"^-?\d+$")
_CONTINUATION = re.compile(r"^\d{2,3}(?:\.\d+)?$")
_GROUP_CHAIN = re.compile(r"^\d{3}(?:,\d{3})+(?:\.\d+)?$")
_DATE_PARTS = re.compile(r"^\s*(\d{4})\s*[-./년]\s*(\d{1,2})")


def _leading_float(text: str) -> float:
    match = _LEADING_FLOAT.match(text)
    if not match:
        return 0.0
    try:
        return float(match.group(0))
    except ValueError:
        return 0.0


def parse_number(value: Optional[str]) -> float:
    """`"2,482,192"` -> 2482192.0; blank or garbage -> 0.0."""
    if value is None:
        return 0.0
    return _leading_float(_NUMBER_NOISE.sub("", str(value)))


def parse_currency(value: Optional[str]) -> float:
    """Like `parse_number` but also drops currency symbols (`"₩9,180"` -> 9180.0)."""
    if value is None:
        return 0.0
    return _leading_float(_CURRENCY_NOISE.sub("", str(value)))


def is_numeric_cell(value: Optional[str]) -> bool:
    if value is None:
        return False
    cleaned = _NUMBER_NOISE.sub("", value)
    return bool(cleaned) and bool(re.fullmatch(r"[+-]?(?:\d+\.?\d*|\.\d+)", cleaned))


def merge_split_thousands(first: str, second: str) -> Optional[str]:
    """
    Rejoin a number that an unquoted thousands separator split into two cells.

    `("1", "234")` -> `"1,234"`; `("15", "6")` -> None. The left cell must be an
    unbroken integer, the right cell a 2-3 digit continuation (or an
    already-rejoined chain of 3-digit groups) with an optional decimal remainder.
    """
    left = (first or "").strip()
    right = (second or "").strip()
    if not _UNBROKEN_INT.match(left):
        return None
    if _CONTINUATION.match(right) or _GROUP_CHAIN.match(right):
        return f"{left},{right}"
    return None


def trim_trailing_empty(cells: Sequence[str], width: int) -> List[str]:
    """Drop empty cells past `width` from the end of a row (trailing delimiters)."""
    out = list(cells)
    while len(out) > width and not (out[-1] or "").strip():
        out.pop()
    return out


def repair_split_numbers(cells: Sequence[str], expected_width: Optional[int] = None) -> List[str]:
    """
    Merge mis-split number cells until the row is back to `expected_width`.

    Pairs are merged right to left: split amounts sit at the end of a row,
    while the leading cells (sequence number, month) must stay apart.
    Empty overflow is trimmed first, so a trailing delimiter never counts as
    a split. With no expected width every mergeable adjacent pair is merged.
    """
    out = trim_trailing_empty(cells, expected_width) if expected_width is not None else list(cells)
    i = len(out) - 2
    while i >= 0:
        if expected_width is not None and len(out) <= expected_width:
            break
        merged = merge_split_thousands(out[i], out[i + 1])
        if merged is not None:
            out[i:i + 2] = [merged]
        i -= 1
    return out


def normalize_month(value: Optional[str]) -> str:
    """`"1"`, `"01"`, `"1월"` -> `"01월"`; values outside 1-12 pass through unchanged."""
    if not value:
        return f"00{MONTH_SUFFIX}"
    cleaned = value.replace(MONTH_SUFFIX, "").strip()
    match = re.match(r"^\d+", cleaned)
    if not match:
        return value
    num = int(match.group(0))
    if num < 1 or num > 12:
        return value
    return f"{num:02d}{MONTH_SUFFIX}"


def parse_period(value: Optional[str], default_year: Optional[int] = None) -> Tuple[int, str]:
    """
    Split a period cell into (year, month label).

    Full dates (`2024-03-15`, `2024.3`, `2024년 3월`) take their own year; month-only
    cells take `default_year` (current year when omitted).
    """
    fallback_year = default_year or datetime.now().year
    text = (value or "").strip()
    match = _DATE_PARTS.match(text)
    if match:
        year = int(match.group(1))
        return year, normalize_month(match.group(2))
    return fallback_year, normalize_month(text)


def parse_date_parts(value: Optional[str]) -> Tuple[int, str]:
    """Year and month label of a `YYYY-MM-DD` cell; blank -> (current year, "01월")."""
    text = (value or "").strip()
    if not text:
        return datetime.now().year, f"01{MONTH_SUFFIX}"
    match = _DATE_PARTS.match(text)
    if match:
        return int(match.group(1)), normalize_month(match.group(2))
    parts = text.split("-")
    try:
        year = int(parts[0])
    except ValueError:
        year = datetime.now().year
    return year, normalize_month(parts[1] if len(parts) > 1 else "1")
