"""
HTTP boundary: /metrics/process and /catalog.
"""

from fastapi.testclient import TestClient

from chartlens.main import app

client = TestClient(app)

_PAYLOADS = {
    "TIME_SERIES_MONTHLY_ADJUSTED": {
        "Monthly Adjusted Time Series": {
            "2023-12-29": {"5. adjusted close": "120"},
            "2024-01-31": {"5. adjusted close": "130"},
        }
    },
    "INCOME_STATEMENT": {
        "annualReports": [
            {"fiscalDateEnding": "2023-12-31", "reportedCurrency": "EUR", "totalRevenue": "1000"},
        ]
    },
    "BALANCE_SHEET": {
        "annualReports": [
            {"fiscalDateEnding": "2023-12-31", "commonStockSharesOutstanding": "100"},
        ]
    },
}

_FX = {"Time Series FX (Monthly)": {"2024-01-31": {"4. close": "1.1"}}}


def test_health():
    assert client.get("/health").json() == {"status": "ok"}


def test_catalog_lists_default_metrics():
    ids = [m["id"] for m in client.get("/catalog").json()]
    assert "price" in ids and "peRatio" in ids


def test_process_resolves_fx_from_payloads():
    resp = client.post("/metrics/process", json={
        "payloads": _PAYLOADS, "fx_payload": _FX,
        "start_date": "2023-01-01", "end_date": "2024-01-31",
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["currency"] == "EUR"
    assert abs(body["fx_rate_used"] - 1.1) < 1e-9
    ps = body["metrics"]["psRatio"]
    assert [p["date"] for p in ps] == ["2023-12-29", "2024-01-31"]
    assert ps[0]["value"] is None
    assert abs(ps[1]["value"] - 130 / 11) < 1e-9


def test_explicit_fx_rate_wins():
    resp = client.post("/metrics/process", json={
        "payloads": _PAYLOADS, "fx_payload": _FX, "fx_rate": 1.0,
        "start_date": "2023-01-01", "end_date": "2024-01-31",
    })
    assert resp.json()["fx_rate_used"] == 1.0
    assert abs(resp.json()["metrics"]["psRatio"][1]["value"] - 13.0) < 1e-9


def test_no_price_data_is_422():
    resp = client.post("/metrics/process", json={
        "payloads": _PAYLOADS, "start_date": "2010-01-01", "end_date": "2010-12-31",
    })
    assert resp.status_code == 422


def test_inverted_window_is_400():
    resp = client.post("/metrics/process", json={
        "payloads": _PAYLOADS, "start_date": "2024-01-01", "end_date": "2023-01-01",
    })
    assert resp.status_code == 400


def test_invalid_catalog_is_400():
    resp = client.post("/metrics/process", json={
        "payloads": _PAYLOADS, "start_date": "2023-01-01", "end_date": "2024-01-31",
        "catalog": [{"id": "peRatio", "type": "derived_ratio", "calculation_formula": "price / eps"}],
    })
    assert resp.status_code == 400
    assert any("price" in p for p in resp.json()["detail"])


def test_wrongly_typed_catalog_field_is_400():
    resp = client.post("/metrics/process", json={
        "payloads": _PAYLOADS, "start_date": "2023-01-01", "end_date": "2024-01-31",
        "catalog": [
            {"id": "price", "type": "raw_time_series", "source_function": "TIME_SERIES_MONTHLY_ADJUSTED",
             "source_path": ["Monthly Adjusted Time Series", "5. adjusted close"], "isTimeSeries": True},
            {"id": "ttmEps", "type": "derived_ttm", "calculation_basis": ["quarterlyEPS"]},
        ],
    })
    assert resp.status_code == 400
    assert any("calculation_basis" in p for p in resp.json()["detail"])


def test_deeply_nested_catalog_formula_is_400():
    resp = client.post("/metrics/process", json={
        "payloads": _PAYLOADS, "start_date": "2023-01-01", "end_date": "2024-01-31",
        "catalog": [
            {"id": "price", "type": "raw_time_series", "source_function": "TIME_SERIES_MONTHLY_ADJUSTED",
             "source_path": ["Monthly Adjusted Time Series", "5. adjusted close"], "isTimeSeries": True},
            {"id": "deep", "type": "derived_ratio",
             "calculation_formula": "(" * 3000 + "price" + ")" * 3000},
        ],
    })
    assert resp.status_code == 400
