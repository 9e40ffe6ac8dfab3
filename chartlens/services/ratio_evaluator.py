"""
Pointwise ratio of two series already interpolated onto the same axis.
"""

import logging
import math
from typing import Any

from chartlens.models import Series

logger = logging.getLogger(__name__)


def _is_num(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)


def compute_ratio(numerator: Series | None, denominator: Series | None, dates: list[str]) -> Series:
    """
    numerator / denominator for each date on the shared axis.

    None wherever either side is missing or non-finite, the denominator is
    zero, or the quotient itself is not finite.
    """
    num_map = {p["date"]: p["value"] for p in numerator or []}
    den_map = {p["date"]: p["value"] for p in denominator or []}

    out: Series = []
    for d in dates:
        num = num_map.get(d)
        den = den_map.get(d)
        value = None
        if _is_num(num) and _is_num(den) and den != 0:
            q = num / den
            value = q if math.isfinite(q) else None
        out.append({"date": d, "value": value})
    return out
