"""
Reporting-currency detection and FX rate resolution.

Works on payloads the data source has already fetched:
  - statements (CASH_FLOW, INCOME_STATEMENT, BALANCE_SHEET) carry
    `reportedCurrency`, either on annualReports[0] or at the top level;
  - an FX_MONTHLY payload carries "Time Series FX (Monthly)" keyed by date.

A single rate (the most recent monthly close) is applied to every
fx-adjusted metric in a pipeline run; there is no per-date conversion.
"""

import logging
from dataclasses import dataclass
from typing import Any

from chartlens.config import BASE_CURRENCY
from chartlens.normalizers.path_extractor import get_nested_value, parse_date, parse_number

logger = logging.getLogger(__name__)

CURRENCY_FUNCTIONS: tuple[str, ...] = ("CASH_FLOW", "INCOME_STATEMENT", "BALANCE_SHEET")
FX_SERIES_KEY = "Time Series FX (Monthly)"
FX_CLOSE_KEY = "4. close"


@dataclass(frozen=True)
class FxResolution:
    currency: str
    rate: float


def _payload_currency(payload: Any) -> str | None:
    if not isinstance(payload, dict) or "error" in payload:
        return None
    for path in (["annualReports", "0", "reportedCurrency"], ["reportedCurrency"]):
        value = get_nested_value(payload, path)
        if isinstance(value, str) and value.strip():
            return value.strip().upper()
    return None


def detect_reporting_currency(
    raw_payloads: dict[str, Any],
    base_currency: str = BASE_CURRENCY,
) -> str:
    """
    Return the first non-base reporting currency found across the statement
    payloads (checked in CURRENCY_FUNCTIONS order), else the base currency.
    """
    for function in CURRENCY_FUNCTIONS:
        currency = _payload_currency(raw_payloads.get(function))
        if currency and currency != base_currency:
            logger.info("[FX] %s reports in %s", function, currency)
            return currency
    return base_currency


def latest_fx_rate(fx_payload: Any) -> float:
    """
    Most recent monthly close from an FX_MONTHLY payload.

    Falls back to 1.0 when the series is missing, empty or its latest close
    is not a positive number.
    """
    series = get_nested_value(fx_payload, [FX_SERIES_KEY])
    if not isinstance(series, dict) or not series:
        logger.warning("[FX] no '%s' in FX payload; using 1.0", FX_SERIES_KEY)
        return 1.0

    dated = [(parse_date(k), k) for k in series]
    dated = [(d, k) for d, k in dated if d is not None]
    if not dated:
        logger.warning("[FX] FX payload has no dated entries; using 1.0")
        return 1.0

    _, latest_key = max(dated)
    rate = parse_number(get_nested_value(series, [latest_key, FX_CLOSE_KEY]))
    if rate is None or rate <= 0:
        logger.warning("[FX] unusable close %r on %s; using 1.0",
                       get_nested_value(series, [latest_key, FX_CLOSE_KEY]), latest_key)
        return 1.0
    return rate


def resolve_fx_rate(
    raw_payloads: dict[str, Any],
    fx_payload: Any = None,
    base_currency: str = BASE_CURRENCY,
) -> FxResolution:
    """Detect the reporting currency and the single rate to convert it to base."""
    currency = detect_reporting_currency(raw_payloads, base_currency)
    if currency == base_currency:
        return FxResolution(currency=currency, rate=1.0)
    if fx_payload is None:
        logger.warning("[FX] %s detected but no FX payload supplied; using 1.0", currency)
        return FxResolution(currency=currency, rate=1.0)
    rate = latest_fx_rate(fx_payload)
    logger.info("[FX] %s -> %s at %.6f", currency, base_currency, rate)
    return FxResolution(currency=currency, rate=rate)
