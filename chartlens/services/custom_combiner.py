"""
Year-aligned combination of two series at their native dates.

Annual figures from different statements rarely share an exact date
(e.g. revenue dated at fiscal year end, shares dated at the balance sheet
date), so operands are matched on calendar year:

  - the second operand becomes a year -> value lookup; when several points
    fall in one year, the point with the latest date wins regardless of the
    order the points arrive in;
  - each point of the first operand whose year has a match emits one result
    point, dated with the first operand's own date.

Division by zero drops the point; no placeholder is emitted.
"""

import logging
from typing import Any, Literal

from chartlens.models import Series
from chartlens.normalizers.path_extractor import parse_date

logger = logging.getLogger(__name__)

Operation = Literal["subtract", "divide"]

OPERATIONS: dict[str, Operation] = {"-": "subtract", "/": "divide"}


def _by_year(series: Series) -> dict[int, Any]:
    lookup: dict[int, Any] = {}
    dated = [(parse_date(p.get("date")), p.get("value")) for p in series]
    for d, v in sorted((x for x in dated if x[0] is not None), key=lambda x: x[0]):
        lookup[d.year] = v
    return lookup


def combine_by_year(first: Series | None, second: Series | None, operation: Operation) -> Series:
    """Apply `operation` to year-matched points of `first` and `second`."""
    if operation not in ("subtract", "divide"):
        raise ValueError(f"Unsupported operation {operation!r}")

    second_by_year = _by_year(second or [])
    out: Series = []
    for p in first or []:
        d = parse_date(p.get("date"))
        if d is None or d.year not in second_by_year:
            continue
        val1 = p.get("value")
        val2 = second_by_year[d.year]
        if val1 is None or val2 is None:
            continue
        if operation == "subtract":
            out.append({"date": p["date"], "value": val1 - val2})
        elif val2 != 0:
            out.append({"date": p["date"], "value": val1 / val2})
    out.sort(key=lambda x: parse_date(x["date"]))
    return out
