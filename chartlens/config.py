"""
Environment-driven settings.

.env at the repo root is loaded first (never overriding variables already set
in the shell), then every setting is read once from os.environ at import time.
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH, override=False)


def _log_level(raw: str) -> int:
    level = logging.getLevelName(raw.strip().upper())
    return level if isinstance(level, int) else logging.INFO


LOG_LEVEL: int = _log_level(os.environ.get("CHARTLENS_LOG_LEVEL", "INFO"))

CORS_ORIGINS: list[str] = [
    origin.strip()
    for origin in os.environ.get(
        "CHARTLENS_CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173,http://127.0.0.1:5173",
    ).split(",")
    if origin.strip()
]

BASE_CURRENCY: str = os.environ.get("CHARTLENS_BASE_CURRENCY", "USD").strip().upper() or "USD"

# Source function whose payload carries the monthly price calendar
PRICE_FUNCTION: str = os.environ.get("CHARTLENS_PRICE_FUNCTION", "TIME_SERIES_MONTHLY_ADJUSTED")
