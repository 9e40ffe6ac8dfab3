"""
Metric catalog validation.

Rules:
  - The built-in catalog is valid.
  - Every calculation_basis / formula reference must name a catalog id.
  - Custom metrics only support `A - B` and `A / B`.
  - A catalog can be loaded from JSON-style dicts.
"""

import pytest
from chartlens.catalog.metric_catalog import (
    DEFAULT_CATALOG,
    PRICE_METRIC_ID,
    CatalogError,
    MetricDescriptor,
    check_catalog,
    descriptor_from_dict,
    get_descriptor,
    load_catalog,
    validate_catalog,
)
from chartlens.models import MetricKind

_PRICE = {
    "id": "price",
    "label": "Adjusted Close Price",
    "type": "raw_time_series",
    "source_function": "TIME_SERIES_MONTHLY_ADJUSTED",
    "source_path": ["Monthly Adjusted Time Series", "5. adjusted close"],
    "isTimeSeries": True,
    "is_plottable": True,
    "fx_adjust": False,
}


def test_default_catalog_is_valid():
    assert check_catalog(DEFAULT_CATALOG) == []
    assert validate_catalog(DEFAULT_CATALOG) == DEFAULT_CATALOG


def test_default_catalog_ids_unique():
    ids = [m.id for m in DEFAULT_CATALOG]
    assert len(ids) == len(set(ids))


def test_price_is_not_fx_adjusted():
    price = get_descriptor(DEFAULT_CATALOG, PRICE_METRIC_ID)
    assert price.kind is MetricKind.RAW_TIME_SERIES
    assert price.fx_adjust is False


def test_unknown_formula_reference_reported():
    bad = DEFAULT_CATALOG + (
        MetricDescriptor(id="evRatio", label="EV", kind=MetricKind.DERIVED_RATIO,
                         calculation_formula="price / enterpriseValue"),
    )
    problems = check_catalog(bad)
    assert any("enterpriseValue" in p for p in problems)
    with pytest.raises(CatalogError) as exc:
        validate_catalog(bad)
    assert exc.value.problems == problems


def test_unknown_ttm_basis_reported():
    bad = DEFAULT_CATALOG + (
        MetricDescriptor(id="ttmX", label="TTM X", kind=MetricKind.DERIVED_TTM, calculation_basis="x"),
    )
    assert any("ttmX" in p for p in check_catalog(bad))


def test_custom_formula_must_be_binary():
    bad = DEFAULT_CATALOG + (
        MetricDescriptor(id="odd", label="Odd", kind=MetricKind.DERIVED_CUSTOM,
                         calculation_formula="annualRevenue * commonSharesOutstanding"),
    )
    assert any("odd" in p and "custom formula" in p for p in check_catalog(bad))


def test_duplicate_ids_and_missing_price_reported():
    eps = get_descriptor(DEFAULT_CATALOG, "quarterlyEPS")
    problems = check_catalog([eps, eps])
    assert any("duplicate" in p for p in problems)
    assert any("price metric" in p for p in problems)


def test_raw_metric_shape_checked():
    bad = [descriptor_from_dict(_PRICE), MetricDescriptor(id="r", label="R", kind=MetricKind.RAW_FUNDAMENTAL)]
    problems = check_catalog(bad)
    assert any("source_function" in p for p in problems)
    assert any("source_path" in p for p in problems)
    assert any("date_keys" in p for p in problems)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def test_load_catalog_from_dicts():
    catalog = load_catalog([
        _PRICE,
        {
            "id": "annualRevenue", "label": "Total Revenue (Annual)", "type": "raw_fundamental",
            "source_function": "INCOME_STATEMENT", "source_path": ["annualReports", "totalRevenue"],
            "date_keys": "fiscalDateEnding", "isTimeSeries": False, "fx_adjust": True,
        },
        {"id": "psLike", "type": "derived_ratio", "calculation_formula": "price / annualRevenue"},
    ])
    assert [m.id for m in catalog] == ["price", "annualRevenue", "psLike"]
    assert catalog[0].is_time_series and not catalog[0].fx_adjust
    assert catalog[1].source_path == ("annualReports", "totalRevenue")
    assert catalog[2].label == "psLike"


def test_unknown_kind_rejected():
    with pytest.raises(CatalogError):
        descriptor_from_dict({"id": "x", "type": "raw_magic"})


def test_to_dict_round_trips_through_loader():
    for m in DEFAULT_CATALOG:
        assert descriptor_from_dict(m.to_dict()) == m


@pytest.mark.parametrize("field, value", [
    ("calculation_basis", ["quarterlyEPS"]),
    ("source_path", 5),
    ("source_path", ["annualReports", 3]),
    ("date_keys", 7),
    ("fx_adjust", "false"),
    ("is_plottable", 1),
    ("label", {"en": "X"}),
])
def test_wrongly_typed_field_rejected(field, value):
    entry = {"id": "x", "type": "raw_fundamental", "source_function": "CASH_FLOW",
             "source_path": ["annualReports", "operatingCashflow"], "date_keys": "fiscalDateEnding"}
    entry[field] = value
    with pytest.raises(CatalogError) as exc:
        descriptor_from_dict(entry)
    assert any(field in p for p in exc.value.problems)


def test_non_mapping_entry_rejected():
    with pytest.raises(CatalogError):
        load_catalog([_PRICE, "ttmEps"])


def test_unhashable_kind_rejected():
    with pytest.raises(CatalogError):
        descriptor_from_dict({"id": "x", "type": ["derived_ttm"]})


def test_non_string_ttm_basis_reported():
    bad = DEFAULT_CATALOG + (
        MetricDescriptor(id="ttmX", label="TTM X", kind=MetricKind.DERIVED_TTM,
                         calculation_basis=["quarterlyEPS"]),
    )
    assert any("ttmX" in p and "calculation_basis" in p for p in check_catalog(bad))
