"""
Raw extraction stage.

Reads every raw_* metric in the catalog out of its source payload:

  time series   container[date_str][*value_path]      (date-keyed mapping)
  fundamentals  container[i][*value_path], dated by find_valid_date(record, date_keys)

where container = payload[source_path[0]] and value_path = source_path[1:].

Only points with a date inside [start_date, end_date] (inclusive) and a value
that parses as a finite number are kept. Fundamentals flagged fx_adjust are
multiplied by the run's single FX rate; the price series never is.

Failure policy: a missing or errored payload, a missing container or an
unexpected container shape gives an empty series for that metric. Nothing
here raises on bad data.
"""

import logging
from datetime import date
from typing import Any, Iterable

from chartlens.catalog.metric_catalog import PRICE_METRIC_ID, MetricDescriptor
from chartlens.models import MetricResultMap, Series
from chartlens.normalizers.path_extractor import (
    find_valid_date,
    get_nested_value,
    parse_date,
    parse_number,
)

logger = logging.getLogger(__name__)


def _source_container(metric: MetricDescriptor, raw_payloads: dict[str, Any]) -> Any:
    payload = raw_payloads.get(metric.source_function or "")
    if payload is None:
        logger.warning("[EXTRACT] %s: no payload for %s", metric.id, metric.source_function)
        return None
    if isinstance(payload, dict) and "error" in payload:
        logger.warning("[EXTRACT] %s: %s payload errored: %s",
                       metric.id, metric.source_function, payload["error"])
        return None
    if not metric.source_path:
        return None
    container = get_nested_value(payload, [metric.source_path[0]])
    if container is None:
        logger.warning("[EXTRACT] %s: '%s' missing from %s payload",
                       metric.id, metric.source_path[0], metric.source_function)
    return container


def _in_window(d: date | None, start: date, end: date) -> bool:
    return d is not None and start <= d <= end


def extract_time_series(
    metric: MetricDescriptor,
    container: Any,
    start: date,
    end: date,
) -> Series:
    """Date-keyed mapping -> ascending Series. No FX conversion."""
    if not isinstance(container, dict):
        return []
    value_path = list(metric.source_path[1:])
    points: Series = []
    dropped = 0
    for date_str, record in container.items():
        if not _in_window(parse_date(date_str), start, end):
            continue
        value = parse_number(get_nested_value(record, value_path))
        if value is None:
            dropped += 1
            continue
        points.append({"date": date_str, "value": value})
    if dropped:
        logger.debug("[EXTRACT] %s: dropped %d non-numeric points", metric.id, dropped)
    points.sort(key=lambda p: parse_date(p["date"]))
    return points


def extract_fundamentals(
    metric: MetricDescriptor,
    container: Any,
    start: date,
    end: date,
    fx_rate: float,
) -> Series:
    """List of dated records -> ascending Series, FX-converted when flagged."""
    if not isinstance(container, list):
        return []
    value_path = list(metric.source_path[1:])
    points: Series = []
    undated = 0
    for record in container:
        date_str = find_valid_date(record, metric.date_keys)
        if date_str is None:
            undated += 1
            continue
        if not _in_window(parse_date(date_str), start, end):
            continue
        value = parse_number(get_nested_value(record, value_path))
        if value is None:
            continue
        points.append({"date": date_str, "value": value * fx_rate})
    if undated:
        logger.debug("[EXTRACT] %s: dropped %d records without a valid date", metric.id, undated)
    points.sort(key=lambda p: parse_date(p["date"]))
    return points


def extract_raw_metrics(
    raw_payloads: dict[str, Any],
    fx_rate: float,
    start_date: date | str,
    end_date: date | str,
    catalog: Iterable[MetricDescriptor],
    price_metric_id: str = PRICE_METRIC_ID,
) -> MetricResultMap:
    """
    Extract every raw metric in the catalog.

    Returns a mapping with an entry (possibly empty) for each raw metric id.
    """
    start = parse_date(start_date)
    end = parse_date(end_date)
    if start is None or end is None:
        raise ValueError(f"Invalid date window: {start_date!r} .. {end_date!r}")

    out: MetricResultMap = {}
    for metric in catalog:
        if not metric.kind.is_raw:
            continue
        container = _source_container(metric, raw_payloads)
        if container is None:
            out[metric.id] = []
            continue

        if metric.is_time_series:
            series = extract_time_series(metric, container, start, end)
        else:
            rate = fx_rate if metric.fx_adjust and metric.id != price_metric_id else 1.0
            series = extract_fundamentals(metric, container, start, end, rate)

        logger.info("[EXTRACT] %s: %d points", metric.id, len(series))
        out[metric.id] = series
    return out
