"""
Metric pipeline orchestrator.

Execution order (fixed; a stage only sees what earlier stages produced):
  EXTRACT_RAW      raw_* metrics from source payloads, FX applied
  AGGREGATE_TTM    derived_ttm, in catalog order
  COMBINE_CUSTOM   derived_custom, in catalog order (fcf before fcfPerShare)
  INTERPOLATE      forward-fill onto the price calendar
  EVALUATE_RATIOS  derived_ratio, in catalog order, on the price calendar

Failure behaviour:
  - A missing input for any metric degrades it to an empty series and a
    warning in the run log.
  - An empty price series after extraction raises NoPriceDataError; every
    interpolation and ratio depends on the price calendar.

The orchestrator keeps no state between calls. Everything a run produces is
returned on its PipelineRun.
"""

import logging
from datetime import date
from typing import Any, Iterable

from chartlens.catalog.metric_catalog import (
    DEFAULT_CATALOG,
    PRICE_METRIC_ID,
    MetricDescriptor,
)
from chartlens.models import MetricKind, MetricResultMap, Series
from chartlens.services.custom_combiner import OPERATIONS, combine_by_year
from chartlens.services.formula_evaluator import (
    FormulaSyntaxError,
    binary_operands,
    evaluate_formula,
    formula_variables,
    parse_formula,
)
from chartlens.services.interpolator import interpolate
from chartlens.services.ratio_evaluator import compute_ratio
from chartlens.services.raw_extractor import extract_raw_metrics
from chartlens.services.ttm_aggregator import build_calendar_ttm, build_ttm

logger = logging.getLogger(__name__)


class NoPriceDataError(RuntimeError):
    """The price series is empty for the requested window."""


class PipelineRun:
    def __init__(self, fx_rate: float, start_date: Any, end_date: Any):
        self.fx_rate = fx_rate
        self.start_date = str(start_date)
        self.end_date = str(end_date)
        self.stage: str = "INIT"
        self.metrics: MetricResultMap = {}
        self.price_dates: list[str] = []
        self.warnings: list[str] = []
        self.logs: list[str] = []

    def log(self, msg: str) -> None:
        logger.info(msg)
        self.logs.append(msg)

    def warn(self, msg: str) -> None:
        logger.warning(msg)
        self.logs.append(msg)
        self.warnings.append(msg)

    def enter(self, stage: str) -> None:
        self.stage = stage
        self.log(f"[PIPELINE] {stage}")


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def _stage_ttm(run: PipelineRun, processed: MetricResultMap, catalog: list[MetricDescriptor]) -> None:
    for m in catalog:
        if m.kind is not MetricKind.DERIVED_TTM:
            continue
        basis = processed.get(m.calculation_basis or "")
        if basis is None:
            run.warn(f"[TTM] {m.id}: basis '{m.calculation_basis}' not available")
            processed[m.id] = []
            continue
        if m.ttm_window == "calendar":
            result = build_calendar_ttm(basis)
        else:
            result = build_ttm(basis)
        if basis and not result:
            run.warn(f"[TTM] {m.id}: only {len(basis)} points in '{m.calculation_basis}', need 4")
        processed[m.id] = result
        run.log(f"[TTM] {m.id}: {len(result)} points")


def _stage_custom(run: PipelineRun, processed: MetricResultMap, catalog: list[MetricDescriptor]) -> None:
    for m in catalog:
        if m.kind is not MetricKind.DERIVED_CUSTOM:
            continue
        operands = binary_operands(m.calculation_formula or "")
        if operands is None or operands[0] not in OPERATIONS:
            run.warn(f"[CUSTOM] {m.id}: unsupported formula {m.calculation_formula!r}")
            processed[m.id] = []
            continue
        op, first_id, second_id = operands
        first, second = processed.get(first_id), processed.get(second_id)
        if first is None or second is None:
            run.warn(f"[CUSTOM] {m.id}: missing operand data ({first_id}, {second_id})")
            processed[m.id] = []
            continue
        processed[m.id] = combine_by_year(first, second, OPERATIONS[op])
        run.log(f"[CUSTOM] {m.id}: {len(processed[m.id])} points")


def _ratio_inputs(catalog: list[MetricDescriptor]) -> set[str]:
    refs: set[str] = set()
    for m in catalog:
        if m.kind is not MetricKind.DERIVED_RATIO or not m.calculation_formula:
            continue
        try:
            refs.update(formula_variables(parse_formula(m.calculation_formula)))
        except FormulaSyntaxError:
            continue
    return refs


def _stage_interpolate(
    run: PipelineRun,
    processed: MetricResultMap,
    catalog: list[MetricDescriptor],
    price_metric_id: str,
) -> MetricResultMap:
    targets = {m.id for m in catalog if m.is_plottable} | _ratio_inputs(catalog)
    aligned: MetricResultMap = {}
    count = 0
    for metric_id, series in processed.items():
        if metric_id == price_metric_id or metric_id not in targets:
            aligned[metric_id] = series
            continue
        aligned[metric_id] = interpolate(series, run.price_dates)
        count += 1
    run.log(f"[INTERPOLATE] {count} metrics aligned to {len(run.price_dates)} price dates")
    return aligned


def _stage_ratios(run: PipelineRun, aligned: MetricResultMap, catalog: list[MetricDescriptor]) -> None:
    for m in catalog:
        if m.kind is not MetricKind.DERIVED_RATIO:
            continue
        formula = m.calculation_formula or ""
        operands = binary_operands(formula)
        if operands is not None and operands[0] == "/":
            _, num_id, den_id = operands
            if num_id not in aligned or den_id not in aligned:
                run.warn(f"[RATIO] {m.id}: missing operand data ({num_id}, {den_id})")
                aligned[m.id] = []
                continue
            result = compute_ratio(aligned[num_id], aligned[den_id], run.price_dates)
        else:
            result = evaluate_formula(formula, aligned, run.price_dates)
        aligned[m.id] = result
        defined = sum(1 for p in result if p["value"] is not None)
        run.log(f"[RATIO] {m.id}: {defined}/{len(result)} dates defined")


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def run_pipeline(
    raw_payloads: dict[str, Any],
    fx_rate: float,
    start_date: date | str,
    end_date: date | str,
    catalog: Iterable[MetricDescriptor] = DEFAULT_CATALOG,
    price_metric_id: str = PRICE_METRIC_ID,
) -> PipelineRun:
    """Run every stage and return the PipelineRun (metrics + run log)."""
    descriptors = list(catalog)
    run = PipelineRun(fx_rate, start_date, end_date)
    run.log(f"[PIPELINE] window {run.start_date}..{run.end_date}, fx_rate={fx_rate}")

    run.enter("EXTRACT_RAW")
    processed = extract_raw_metrics(raw_payloads, fx_rate, start_date, end_date, descriptors, price_metric_id)
    for metric_id, series in processed.items():
        if not series:
            run.warn(f"[EXTRACT] {metric_id}: no data in window")

    run.enter("AGGREGATE_TTM")
    _stage_ttm(run, processed, descriptors)

    run.enter("COMBINE_CUSTOM")
    _stage_custom(run, processed, descriptors)

    run.enter("INTERPOLATE")
    price: Series = processed.get(price_metric_id) or []
    run.price_dates = sorted({p["date"] for p in price})
    if not run.price_dates:
        logger.error("[PIPELINE] no price data for %s..%s", run.start_date, run.end_date)
        raise NoPriceDataError(f"No price data available for {run.start_date}..{run.end_date}")
    aligned = _stage_interpolate(run, processed, descriptors, price_metric_id)

    run.enter("EVALUATE_RATIOS")
    _stage_ratios(run, aligned, descriptors)

    run.metrics = aligned
    run.enter("DONE")
    return run


def process(
    raw_payloads: dict[str, Any],
    fx_rate: float,
    start_date: date | str,
    end_date: date | str,
    catalog: Iterable[MetricDescriptor] = DEFAULT_CATALOG,
    price_metric_id: str = PRICE_METRIC_ID,
) -> MetricResultMap:
    """Metric id -> Series for one run. Raises NoPriceDataError."""
    return run_pipeline(raw_payloads, fx_rate, start_date, end_date, catalog, price_metric_id).metrics
