import logging
from datetime import date
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from chartlens.catalog.metric_catalog import DEFAULT_CATALOG, CatalogError, load_catalog
from chartlens.config import BASE_CURRENCY, CORS_ORIGINS, LOG_LEVEL
from chartlens.normalizers.fx_normalizer import resolve_fx_rate
from chartlens.orchestrator.metric_pipeline import NoPriceDataError, run_pipeline

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="ChartLens Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ProcessRequest(BaseModel):
    payloads: dict[str, Any]
    start_date: date
    end_date: date
    fx_rate: float | None = None
    fx_payload: dict[str, Any] | None = None
    catalog: list[dict[str, Any]] | None = None


@app.get("/health")
def healthcheck():
    return {"status": "ok"}


@app.get("/catalog")
def list_catalog():
    return [m.to_dict() for m in DEFAULT_CATALOG]


@app.post("/metrics/process")
def process_metrics(body: ProcessRequest):
    """
    Turn already-fetched source payloads into chart-ready series.

    fx_rate, when omitted, is resolved from the statements' reportedCurrency
    and the optional FX_MONTHLY payload.
    """
    if body.start_date > body.end_date:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")

    try:
        catalog = load_catalog(body.catalog) if body.catalog is not None else DEFAULT_CATALOG
    except CatalogError as exc:
        raise HTTPException(status_code=400, detail=exc.problems) from exc

    fx = resolve_fx_rate(body.payloads, body.fx_payload, BASE_CURRENCY)
    fx_rate = body.fx_rate if body.fx_rate is not None else fx.rate

    try:
        run = run_pipeline(body.payloads, fx_rate, body.start_date, body.end_date, catalog)
    except NoPriceDataError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return {
        "metrics": run.metrics,
        "currency": fx.currency,
        "fx_rate_used": fx_rate,
        "warnings": run.warnings,
        "logs": run.logs,
    }
