"""
TTM (trailing twelve months) aggregation.

Two windows are supported:

  build_ttm           4-period rolling sum. Assumes the input is already
                      quarterly; it does not calendar-align.
  build_calendar_ttm  event series (e.g. dividend ex-dates) bucketed by calendar
                      month, summed over the 12 months ending at each month
                      with events, dated at that month's last day.
"""

import logging
from datetime import date

from chartlens.models import Series
from chartlens.normalizers.path_extractor import parse_date, round_date_to_end_of_month

logger = logging.getLogger(__name__)

TTM_PERIODS = 4
TTM_MONTHS = 12


def _sorted_points(series: Series | None) -> Series:
    pts = [p for p in series or [] if parse_date(p.get("date")) is not None]
    return sorted(pts, key=lambda p: parse_date(p["date"]))


def build_ttm(series: Series | None) -> Series:
    """
    Rolling 4-period sum, one point per input point from the 4th onwards.

    Fewer than 4 points gives an empty series. A window containing a
    missing value yields None for that date rather than a partial sum.
    """
    pts = _sorted_points(series)
    if len(pts) < TTM_PERIODS:
        return []

    out: Series = []
    for i in range(TTM_PERIODS - 1, len(pts)):
        window = [pts[j]["value"] for j in range(i - TTM_PERIODS + 1, i + 1)]
        total = sum(window) if all(v is not None for v in window) else None
        out.append({"date": pts[i]["date"], "value": total})
    return out


def _month_index(d: date) -> int:
    return d.year * 12 + (d.month - 1)


def build_calendar_ttm(series: Series | None) -> Series:
    """
    12-month calendar-window sum for irregular event series.

    Each month that has at least one event emits the total of every event in
    that month and the 11 months before it.
    """
    monthly: dict[int, float] = {}
    month_end: dict[int, str] = {}
    for p in _sorted_points(series):
        if p["value"] is None:
            continue
        d = parse_date(p["date"])
        idx = _month_index(d)
        monthly[idx] = monthly.get(idx, 0.0) + p["value"]
        month_end[idx] = round_date_to_end_of_month(d.isoformat())

    months = sorted(monthly)
    out: Series = []
    for current in months:
        total = sum(monthly[m] for m in months if current - TTM_MONTHS < m <= current)
        out.append({"date": month_end[current], "value": total})
    return out
