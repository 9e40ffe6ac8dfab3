"""
Path extraction helpers for loosely-structured API payloads.

Alpha Vantage style documents nest the values we chart under arbitrary keys
("Monthly Adjusted Time Series" -> date -> "5. adjusted close", or
"annualReports" -> [record] -> "totalRevenue"), encode numbers as strings and
use "None" for missing fields. These helpers never raise on bad input.
"""

import calendar
import logging
import math
from datetime import date
from typing import Any, Sequence

logger = logging.getLogger(__name__)

_MISSING_MARKERS = {"", "None", "none", "null", "-"}


# ---------------------------------------------------------------------------
# Nested access
# ---------------------------------------------------------------------------

def get_nested_value(root: Any, path: Sequence[Any]) -> Any:
    """
    Walk `root` following `path` and return the value found, or None as soon
    as any step is missing.

    Mappings are looked up by key membership only. Lists accept an int index
    or a digit string ("0"), mirroring how JSON paths are usually written.
    """
    node = root
    for key in path:
        if node is None:
            return None
        if isinstance(node, dict):
            if key not in node:
                return None
            node = node[key]
        elif isinstance(node, (list, tuple)):
            index = _list_index(key)
            if index is None or index >= len(node):
                return None
            node = node[index]
        else:
            return None
    return node


def _list_index(key: Any) -> int | None:
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key if key >= 0 else None
    if isinstance(key, str) and key.isdigit():
        return int(key)
    return None


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def parse_date(value: Any) -> date | None:
    """Parse a YYYY-MM-DD prefixed string (or pass a date through)."""
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def find_valid_date(item: Any, candidate_keys: str | Sequence[str] | None) -> str | None:
    """
    Return the first candidate key's value that is a usable calendar date.

    Values are trimmed; empty strings and "None" are skipped. The returned
    string is the trimmed original, so the point keeps the source's spelling.
    """
    if not isinstance(item, dict) or candidate_keys is None:
        return None
    keys = [candidate_keys] if isinstance(candidate_keys, str) else list(candidate_keys)

    for key in keys:
        raw = item.get(key) if key in item else None
        if not isinstance(raw, str):
            continue
        date_str = raw.strip()
        if not date_str or date_str == "None":
            continue
        if parse_date(date_str) is not None:
            return date_str
    return None


def round_date_to_end_of_month(date_string: str) -> str | None:
    """'2024-02-10' -> '2024-02-29'. None for anything that is not a date."""
    d = parse_date(date_string)
    if d is None:
        return None
    last_day = calendar.monthrange(d.year, d.month)[1]
    return d.replace(day=last_day).isoformat()


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

def parse_number(value: Any) -> float | None:
    """
    Parse a payload field into a finite float.

    Accepts numbers and numeric strings; "None", empty strings and anything
    non-numeric or non-finite give None so the caller drops the point.
    Stricter than a prefix parse: "12abc" or "1,200" is rejected whole rather
    than read as 12 or 1.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        f = float(value)
        return f if math.isfinite(f) else None
    if isinstance(value, str):
        text = value.strip()
        if text in _MISSING_MARKERS:
            return None
        try:
            f = float(text)
        except ValueError:
            return None
        return f if math.isfinite(f) else None
    return None
