"""
Raw extraction stage.

Rules:
  - Only dates inside [start, end] (inclusive) are kept.
  - Non-numeric values drop the point; missing dates drop the record.
  - fx_adjust fundamentals are multiplied by the FX rate; price never is.
  - Missing / errored payloads degrade to an empty series.
"""

from datetime import date

import pytest
from chartlens.catalog.metric_catalog import DEFAULT_CATALOG, MetricDescriptor, get_descriptor
from chartlens.models import MetricKind
from chartlens.services.raw_extractor import extract_raw_metrics

_PRICE = get_descriptor(DEFAULT_CATALOG, "price")
_REVENUE = get_descriptor(DEFAULT_CATALOG, "annualRevenue")
_SHARES = get_descriptor(DEFAULT_CATALOG, "commonSharesOutstanding")
_DIVIDENDS = get_descriptor(DEFAULT_CATALOG, "dividends")
_CATALOG = [_PRICE, _REVENUE, _SHARES, _DIVIDENDS]

_PAYLOADS = {
    "TIME_SERIES_MONTHLY_ADJUSTED": {
        "Monthly Adjusted Time Series": {
            "2023-03-31": {"5. adjusted close": "120"},
            "2023-02-28": {"5. adjusted close": "110"},
            "2023-01-31": {"5. adjusted close": "100"},
            "2022-12-30": {"5. adjusted close": "90"},
            "2023-04-28": {"5. adjusted close": "None"},
        }
    },
    "INCOME_STATEMENT": {
        "annualReports": [
            {"fiscalDateEnding": "2023-01-31", "totalRevenue": "200", "reportedCurrency": "EUR"},
            {"fiscalDateEnding": "None", "totalRevenue": "210"},
            {"fiscalDateEnding": "2023-02-28", "totalRevenue": "N/A"},
            {"fiscalDateEnding": "2023-03-31", "totalRevenue": "240"},
        ]
    },
    "BALANCE_SHEET": {"error": "Failed to fetch BALANCE_SHEET: rate limited"},
}


def _run(fx_rate=1.2, start="2023-01-01", end="2023-03-31", catalog=_CATALOG, payloads=_PAYLOADS):
    return extract_raw_metrics(payloads, fx_rate, start, end, catalog)


def test_time_series_window_and_sorting():
    out = _run()
    assert out["price"] == [
        {"date": "2023-01-31", "value": 100.0},
        {"date": "2023-02-28", "value": 110.0},
        {"date": "2023-03-31", "value": 120.0},
    ]


def test_price_ignores_fx_rate():
    assert [p["value"] for p in _run(fx_rate=5.0)["price"]] == [100.0, 110.0, 120.0]


def test_fx_applied_to_adjusted_fundamentals():
    """Scenario: 200 at fx 1.2 -> 240."""
    out = _run()
    assert [p["date"] for p in out["annualRevenue"]] == ["2023-01-31", "2023-03-31"]
    assert out["annualRevenue"][0]["value"] == pytest.approx(240.0)
    assert out["annualRevenue"][1]["value"] == pytest.approx(288.0)


def test_fx_not_applied_when_flag_off():
    unadjusted = MetricDescriptor(
        id="revenueLocal", label="Revenue (local)", kind=MetricKind.RAW_FUNDAMENTAL,
        source_function="INCOME_STATEMENT", source_path=("annualReports", "totalRevenue"),
        date_keys="fiscalDateEnding", fx_adjust=False,
    )
    out = _run(catalog=[_PRICE, unadjusted])
    assert out["revenueLocal"][0]["value"] == 200.0


def test_errored_and_missing_payloads_are_empty():
    out = _run()
    assert out["commonSharesOutstanding"] == []
    assert out["dividends"] == []


def test_missing_container_is_empty():
    out = _run(payloads={**_PAYLOADS, "DIVIDENDS": {"symbol": "IBM"}})
    assert out["dividends"] == []


def test_dividend_date_key_fallback():
    payloads = {
        **_PAYLOADS,
        "DIVIDENDS": {"data": [
            {"ex_dividend_date": "None", "payment_date": "2023-02-10", "amount": "0.5"},
            {"ex_dividend_date": "2023-03-01", "amount": "0.6"},
        ]},
    }
    out = _run(payloads=payloads)
    assert out["dividends"] == [
        {"date": "2023-02-10", "value": 0.5},
        {"date": "2023-03-01", "value": 0.6},
    ]


def test_date_objects_accepted_for_window():
    out = _run(start=date(2023, 2, 1), end=date(2023, 2, 28))
    assert [p["date"] for p in out["price"]] == ["2023-02-28"]


def test_invalid_window_raises():
    with pytest.raises(ValueError):
        _run(start="yesterday")


def test_derived_metrics_are_not_extracted():
    out = extract_raw_metrics(_PAYLOADS, 1.0, "2023-01-01", "2023-12-31", DEFAULT_CATALOG)
    assert "peRatio" not in out and "ttmEps" not in out
    assert "quarterlyEPS" in out
