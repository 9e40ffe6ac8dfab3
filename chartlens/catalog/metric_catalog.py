"""
Metric Catalog — single source of truth for every chartable metric.

Each MetricDescriptor says where a raw metric lives in which source payload,
or how a derived metric is built from other metrics:

  raw_time_series  date-keyed mapping inside the payload (monthly prices)
  raw_fundamental  list of dated records (annual / quarterly reports, events)
  derived_ttm      4-period trailing sum of `calculation_basis`
                   (or 12-month calendar sum for event series)
  derived_custom   year-aligned `A - B` or `A / B` over native dates
  derived_ratio    formula over series interpolated onto the price calendar

Descriptors are immutable and shared read-only by all pipeline runs.

Usage:
    from chartlens.catalog.metric_catalog import DEFAULT_CATALOG, validate_catalog
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Literal, Sequence

from chartlens.config import PRICE_FUNCTION
from chartlens.models import MetricKind
from chartlens.services.formula_evaluator import (
    FormulaSyntaxError,
    binary_operands,
    formula_variables,
    parse_formula,
)

logger = logging.getLogger(__name__)

TtmWindow = Literal["periods", "calendar"]

PRICE_METRIC_ID = "price"


class CatalogError(ValueError):
    """Raised when a catalog fails validation; `problems` lists every issue."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("Invalid metric catalog: " + "; ".join(problems))


# ---------------------------------------------------------------------------
# Descriptor
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MetricDescriptor:
    id: str
    label: str
    kind: MetricKind
    source_function: str | None = None
    source_path: tuple[str, ...] = ()
    date_keys: str | tuple[str, ...] | None = None
    calculation_basis: str | None = None
    calculation_formula: str | None = None
    is_time_series: bool = False
    is_plottable: bool = False
    fx_adjust: bool = True
    ttm_window: TtmWindow = "periods"
    color: str | None = None
    axis: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["kind"] = self.kind.value
        d["source_path"] = list(self.source_path)
        if isinstance(self.date_keys, tuple):
            d["date_keys"] = list(self.date_keys)
        return d


def _raw_series(id: str, label: str, function: str, path: Sequence[str], **kw: Any) -> MetricDescriptor:
    return MetricDescriptor(
        id=id, label=label, kind=MetricKind.RAW_TIME_SERIES,
        source_function=function, source_path=tuple(path), is_time_series=True, **kw,
    )


def _raw_fundamental(
    id: str, label: str, function: str, path: Sequence[str],
    date_keys: str | Sequence[str] = "fiscalDateEnding", **kw: Any,
) -> MetricDescriptor:
    keys = date_keys if isinstance(date_keys, str) else tuple(date_keys)
    return MetricDescriptor(
        id=id, label=label, kind=MetricKind.RAW_FUNDAMENTAL,
        source_function=function, source_path=tuple(path), date_keys=keys, **kw,
    )


# ---------------------------------------------------------------------------
# Built-in catalog (Alpha Vantage payload shapes)
# ---------------------------------------------------------------------------

DEFAULT_CATALOG: tuple[MetricDescriptor, ...] = (
    _raw_series(
        PRICE_METRIC_ID, "Adjusted Close Price", PRICE_FUNCTION,
        ["Monthly Adjusted Time Series", "5. adjusted close"],
        is_plottable=True, fx_adjust=False, color="rgb(75, 192, 192)", axis="y-price",
    ),
    _raw_fundamental(
        "quarterlyEPS", "Reported EPS (Quarterly)", "EARNINGS",
        ["quarterlyEarnings", "reportedEPS"],
    ),
    MetricDescriptor(
        id="ttmEps", label="TTM EPS", kind=MetricKind.DERIVED_TTM,
        calculation_basis="quarterlyEPS",
    ),
    _raw_fundamental(
        "annualRevenue", "Total Revenue (Annual)", "INCOME_STATEMENT",
        ["annualReports", "totalRevenue"],
    ),
    _raw_fundamental(
        "commonSharesOutstanding", "Shares Outstanding", "BALANCE_SHEET",
        ["annualReports", "commonStockSharesOutstanding"],
        is_plottable=True, fx_adjust=False, color="rgb(0, 123, 255)", axis="y-ratio",
    ),
    _raw_fundamental(
        "dividends", "Dividend Amount (Raw)", "DIVIDENDS", ["data", "amount"],
        date_keys=["ex_dividend_date", "payment_date"], fx_adjust=False,
    ),
    MetricDescriptor(
        id="ttmDividends", label="TTM Dividends", kind=MetricKind.DERIVED_TTM,
        calculation_basis="dividends", is_plottable=True, ttm_window="calendar",
        color="rgb(255, 159, 64)", axis="y-ratio",
    ),
    _raw_fundamental(
        "operatingCashflow", "Operating Cash Flow", "CASH_FLOW",
        ["annualReports", "operatingCashflow"], is_plottable=True, axis="y-ratio",
    ),
    _raw_fundamental(
        "capitalExpenditures", "Capital Expenditures", "CASH_FLOW",
        ["annualReports", "capitalExpenditures"],
    ),
    _raw_fundamental(
        "dividendPayout", "Dividend Payout", "CASH_FLOW",
        ["annualReports", "dividendPayout"],
    ),
    MetricDescriptor(
        id="rps", label="Revenue Per Share", kind=MetricKind.DERIVED_CUSTOM,
        calculation_formula="annualRevenue / commonSharesOutstanding",
    ),
    MetricDescriptor(
        id="fcf", label="Free Cash Flow", kind=MetricKind.DERIVED_CUSTOM,
        calculation_formula="operatingCashflow - capitalExpenditures",
    ),
    MetricDescriptor(
        id="fcfPerShare", label="FCF Per Share", kind=MetricKind.DERIVED_CUSTOM,
        calculation_formula="fcf / commonSharesOutstanding",
    ),
    MetricDescriptor(
        id="operatingCashflowPerShare", label="Operating Cash Flow Per Share",
        kind=MetricKind.DERIVED_CUSTOM,
        calculation_formula="operatingCashflow / commonSharesOutstanding",
    ),
    MetricDescriptor(
        id="peRatio", label="PE Ratio", kind=MetricKind.DERIVED_RATIO,
        calculation_formula="price / ttmEps", is_plottable=True,
        color="rgb(255, 99, 132)", axis="y-ratio",
    ),
    MetricDescriptor(
        id="psRatio", label="PS Ratio", kind=MetricKind.DERIVED_RATIO,
        calculation_formula="price / rps", is_plottable=True,
        color="rgb(54, 162, 235)", axis="y-ratio",
    ),
    MetricDescriptor(
        id="pOcfRatio", label="P/OCF", kind=MetricKind.DERIVED_RATIO,
        calculation_formula="price / operatingCashflowPerShare", is_plottable=True, axis="y-ratio",
    ),
    MetricDescriptor(
        id="pFcfRatio", label="P/FCF", kind=MetricKind.DERIVED_RATIO,
        calculation_formula="price / fcfPerShare", is_plottable=True, axis="y-ratio",
    ),
    MetricDescriptor(
        id="payoutRatioFcf", label="Payout Ratio (FCF)", kind=MetricKind.DERIVED_RATIO,
        calculation_formula="dividendPayout / fcf", is_plottable=True, axis="y-ratio",
    ),
    MetricDescriptor(
        id="payoutRatioOcf", label="Payout Ratio (OCF)", kind=MetricKind.DERIVED_RATIO,
        calculation_formula="dividendPayout / operatingCashflow", is_plottable=True, axis="y-ratio",
    ),
    MetricDescriptor(
        id="marketCap", label="Market Capitalisation", kind=MetricKind.DERIVED_RATIO,
        calculation_formula="price * commonSharesOutstanding", is_plottable=True, axis="y-ratio",
    ),
)


# ---------------------------------------------------------------------------
# Loading from plain mappings
# ---------------------------------------------------------------------------

def _pick(entry: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if k in entry and entry[k] is not None:
            return entry[k]
    return default


def _opt_str(metric_id: str, name: str, value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    raise CatalogError([f"{metric_id}: {name} must be a string, got {type(value).__name__}"])


def _str_tuple(metric_id: str, name: str, value: Any) -> tuple[str, ...]:
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise CatalogError([f"{metric_id}: {name} must be a list of strings, got {value!r}"])


def _flag(metric_id: str, name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise CatalogError([f"{metric_id}: {name} must be true or false, got {value!r}"])


def descriptor_from_dict(entry: dict[str, Any]) -> MetricDescriptor:
    """
    Build a descriptor from a JSON-style mapping.

    Accepts both snake_case and the camelCase spellings used by front-end
    configs (`type` / `kind`, `isTimeSeries` / `is_time_series`, ...).
    Raises CatalogError for an unknown kind, a missing id or a field of the
    wrong type (flags must be real booleans, paths lists of strings).
    """
    if not isinstance(entry, dict):
        raise CatalogError([f"catalog entry must be a mapping, got {type(entry).__name__}"])
    metric_id = entry.get("id")
    if not isinstance(metric_id, str) or not metric_id:
        raise CatalogError([f"entry without id: {entry!r}"])

    kind_raw = _pick(entry, "kind", "type")
    try:
        kind = MetricKind(kind_raw)
    except (ValueError, TypeError):
        raise CatalogError([f"{metric_id}: unknown kind {kind_raw!r}"]) from None

    date_keys = _pick(entry, "date_keys", "dateKeys")
    if date_keys is not None and not isinstance(date_keys, str):
        date_keys = _str_tuple(metric_id, "date_keys", date_keys)

    ttm_window = _pick(entry, "ttm_window", "ttmWindow", default="periods")
    if ttm_window not in ("periods", "calendar"):
        raise CatalogError([f"{metric_id}: unknown ttm_window {ttm_window!r}"])

    return MetricDescriptor(
        id=metric_id,
        label=_opt_str(metric_id, "label", entry.get("label")) or metric_id,
        kind=kind,
        source_function=_opt_str(metric_id, "source_function", _pick(entry, "source_function", "sourceFunction")),
        source_path=_str_tuple(metric_id, "source_path", _pick(entry, "source_path", "sourcePath", default=())),
        date_keys=date_keys,
        calculation_basis=_opt_str(
            metric_id, "calculation_basis", _pick(entry, "calculation_basis", "calculationBasis"),
        ),
        calculation_formula=_opt_str(
            metric_id, "calculation_formula", _pick(entry, "calculation_formula", "calculationFormula"),
        ),
        is_time_series=_flag(
            metric_id, "is_time_series",
            _pick(entry, "is_time_series", "isTimeSeries", default=kind is MetricKind.RAW_TIME_SERIES),
        ),
        is_plottable=_flag(metric_id, "is_plottable", _pick(entry, "is_plottable", "isPlottable", default=False)),
        fx_adjust=_flag(metric_id, "fx_adjust", _pick(entry, "fx_adjust", "fxAdjust", default=True)),
        ttm_window=ttm_window,
        color=_opt_str(metric_id, "color", entry.get("color")),
        axis=_opt_str(metric_id, "axis", entry.get("axis")),
    )


def load_catalog(entries: Iterable[dict[str, Any]]) -> tuple[MetricDescriptor, ...]:
    """Build and validate a catalog from JSON-style entries."""
    return validate_catalog(descriptor_from_dict(e) for e in entries)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def check_catalog(
    catalog: Iterable[MetricDescriptor],
    price_metric_id: str = PRICE_METRIC_ID,
) -> list[str]:
    """
    Return every problem found in the catalog (empty list when valid).

    References are checked against the whole catalog; the pipeline's fixed
    stage order decides whether a forward reference is actually usable.
    """
    descriptors = list(catalog)
    problems: list[str] = []

    seen: set[str] = set()
    for m in descriptors:
        if m.id in seen:
            problems.append(f"{m.id}: duplicate id")
        seen.add(m.id)

    for m in descriptors:
        if m.kind.is_raw:
            if not m.source_function:
                problems.append(f"{m.id}: raw metric without source_function")
            if len(m.source_path) < 2:
                problems.append(f"{m.id}: source_path needs a container key and a value path")
            if not m.is_time_series and not m.date_keys:
                problems.append(f"{m.id}: record-based metric without date_keys")

        elif m.kind is MetricKind.DERIVED_TTM:
            if not m.calculation_basis:
                problems.append(f"{m.id}: TTM metric without calculation_basis")
            elif not isinstance(m.calculation_basis, str):
                problems.append(f"{m.id}: calculation_basis must be a metric id, got {m.calculation_basis!r}")
            elif m.calculation_basis not in seen:
                problems.append(f"{m.id}: calculation_basis {m.calculation_basis!r} is not in the catalog")
            if m.ttm_window not in ("periods", "calendar"):
                problems.append(f"{m.id}: unknown ttm_window {m.ttm_window!r}")

        else:
            formula = m.calculation_formula
            if not formula:
                problems.append(f"{m.id}: derived metric without calculation_formula")
                continue
            try:
                node = parse_formula(formula)
            except FormulaSyntaxError as exc:
                problems.append(f"{m.id}: {exc}")
                continue
            for ref in formula_variables(node):
                if ref not in seen:
                    problems.append(f"{m.id}: formula references unknown metric {ref!r}")
            if m.kind is MetricKind.DERIVED_CUSTOM:
                operands = binary_operands(formula)
                if operands is None or operands[0] not in ("-", "/"):
                    problems.append(f"{m.id}: custom formula must be 'A - B' or 'A / B'")

    price = next((m for m in descriptors if m.id == price_metric_id), None)
    if price is None:
        problems.append(f"price metric {price_metric_id!r} is not in the catalog")
    elif price.kind is not MetricKind.RAW_TIME_SERIES or not price.is_time_series:
        problems.append(f"price metric {price_metric_id!r} must be a raw time series")

    return problems


def validate_catalog(
    catalog: Iterable[MetricDescriptor],
    price_metric_id: str = PRICE_METRIC_ID,
) -> tuple[MetricDescriptor, ...]:
    """Return the catalog as a tuple, or raise CatalogError listing all problems."""
    descriptors = tuple(catalog)
    problems = check_catalog(descriptors, price_metric_id)
    if problems:
        for p in problems:
            logger.warning("[CATALOG] %s", p)
        raise CatalogError(problems)
    return descriptors


def get_descriptor(catalog: Iterable[MetricDescriptor], metric_id: str) -> MetricDescriptor | None:
    return next((m for m in catalog if m.id == metric_id), None)
