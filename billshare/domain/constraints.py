"""Domain-level validation rules for estimation and rounding policy."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FitQualityConfig:
    min_rsquared: float
    max_prediction_error: float


@dataclass(frozen=True)
class RoundingConfig:
    currency_minor_units: int


def validate_fit_quality_config(config: FitQualityConfig) -> None:
    if not 0.0 <= config.min_rsquared <= 1.0:
        raise ValueError("min_rsquared must be between 0 and 1")
    if config.max_prediction_error < 0.0:
        raise ValueError("max_prediction_error must be >= 0")


def validate_rounding_config(config: RoundingConfig) -> None:
    if config.currency_minor_units < 0:
        raise ValueError("currency_minor_units must be >= 0")
    if config.currency_minor_units > 8:
        raise ValueError("currency_minor_units must be <= 8")
