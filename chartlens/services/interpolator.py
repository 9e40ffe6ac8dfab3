"""
Forward-fill interpolation onto a target date axis.

Each target date takes the value of the latest source point dated on or
before it. Target dates before the first source point get None; nothing is
extrapolated backwards. Two-pointer walk, O(len(source) + len(targets)).
"""

import logging

from chartlens.models import Series
from chartlens.normalizers.path_extractor import parse_date

logger = logging.getLogger(__name__)


def interpolate(source: Series | None, target_dates: list[str]) -> Series:
    """Forward-fill `source` onto `target_dates` (which must be ascending)."""
    dated = [(parse_date(p.get("date")), p.get("value")) for p in source or []]
    pts = sorted(((d, v) for d, v in dated if d is not None), key=lambda x: x[0])

    out: Series = []
    cursor = 0
    last_value: float | None = None
    for target in target_dates:
        t = parse_date(target)
        while t is not None and cursor < len(pts) and pts[cursor][0] <= t:
            last_value = pts[cursor][1]
            cursor += 1
        out.append({"date": target, "value": last_value})
    return out
