"""
Shared value types for the metric pipeline.

A Series is an ordered-by-date list of {"date": "YYYY-MM-DD", "value": float | None}
points. Every stage returns a fresh list; nothing is mutated after a stage returns.
"""

from enum import Enum
from typing import TypedDict


class SeriesPoint(TypedDict):
    date: str
    value: float | None


Series = list[SeriesPoint]

# metric id -> Series
MetricResultMap = dict[str, Series]


class MetricKind(str, Enum):
    RAW_TIME_SERIES = "raw_time_series"
    RAW_FUNDAMENTAL = "raw_fundamental"
    DERIVED_TTM = "derived_ttm"
    DERIVED_RATIO = "derived_ratio"
    DERIVED_CUSTOM = "derived_custom"

    @property
    def is_raw(self) -> bool:
        return self.value.startswith("raw_")
