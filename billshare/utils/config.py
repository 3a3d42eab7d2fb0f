"""Application settings loaded once from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    currency_minor_units: int
    round_charges: bool
    enforce_fit_quality: bool
    min_rsquared: float
    max_prediction_error: float
    record_delimiter: str
    record_date_format: str


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Read settings from ``BILLSHARE_*`` environment variables."""
    return Settings(
        app_name=os.getenv("BILLSHARE_APP_NAME", "billshare"),
        app_version=os.getenv("BILLSHARE_APP_VERSION", "0.1.0"),
        log_level=os.getenv("BILLSHARE_LOG_LEVEL", "INFO"),
        currency_minor_units=_env_int("BILLSHARE_CURRENCY_MINOR_UNITS", 2),
        round_charges=_env_bool("BILLSHARE_ROUND_CHARGES", False),
        enforce_fit_quality=_env_bool("BILLSHARE_ENFORCE_FIT_QUALITY", False),
        min_rsquared=_env_float("BILLSHARE_MIN_RSQUARED", 0.70),
        max_prediction_error=_env_float("BILLSHARE_MAX_PREDICTION_ERROR", 0.20),
        record_delimiter=os.getenv("BILLSHARE_RECORD_DELIMITER", "\t"),
        record_date_format=os.getenv("BILLSHARE_RECORD_DATE_FORMAT", "%Y-%m-%d"),
    )
