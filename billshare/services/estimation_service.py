"""Linear cost model fitting and fixed-cost extrapolation."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

import numpy as np
from sklearn.linear_model import LinearRegression
from sklearn.metrics import mean_absolute_percentage_error, r2_score

from billshare.domain.constraints import FitQualityConfig, validate_fit_quality_config
from billshare.domain.models import (
    Bill,
    FitDiagnostics,
    HistoricalPoint,
    LinearModel,
    PresenceRecord,
)
from billshare.utils.logger import get_logger


logger = get_logger(__name__)


class EstimationError(Exception):
    """Base exception for cost model estimation failures."""


class InsufficientDataError(EstimationError):
    """Raised when fewer than two historical points are supplied."""


class DegenerateModelError(EstimationError):
    """Raised when every historical point has the same occupancy."""


class ModelFitsPoorlyError(EstimationError):
    """Raised when the fitted model explains too little of the bill history."""

    def __init__(self, r_squared: float) -> None:
        super().__init__(
            "A good estimator could not be created from the given bill history "
            f"(rsquared == {r_squared:.4f})"
        )
        self.r_squared = r_squared


class ModelPredictsPoorlyError(EstimationError):
    """Raised when the fitted model misses the current bill by too much."""

    def __init__(self, prediction_error: float) -> None:
        super().__init__(
            "The model has a high mean absolute percentage error of "
            f"{prediction_error:.4f} predicting the given bill"
        )
        self.prediction_error = prediction_error


def _as_arrays(dataset: Sequence[HistoricalPoint]) -> tuple[np.ndarray, np.ndarray]:
    occupancy = np.asarray([point.occupancy for point in dataset], dtype=float)
    cost = np.asarray([point.cost for point in dataset], dtype=float)
    if not (np.all(np.isfinite(occupancy)) and np.all(np.isfinite(cost))):
        raise EstimationError("bill history contains non-finite values")
    return occupancy, cost


def _predictions(model: LinearModel, dataset: Sequence[HistoricalPoint]) -> np.ndarray:
    try:
        return np.asarray(
            [model.predict(point.occupancy, point.temperature_index) for point in dataset],
            dtype=float,
        )
    except ValueError as exc:
        raise EstimationError(str(exc)) from exc


def fit_linear_model(dataset: Sequence[HistoricalPoint]) -> LinearModel:
    """Fit ``cost = intercept + slope * occupancy`` by ordinary least squares.

    Uses the closed form over centered values, so the result is deterministic
    and independent of the order of ``dataset``.

    Raises:
        InsufficientDataError: fewer than two points.
        DegenerateModelError: all occupancy values are identical.
    """
    points = list(dataset)
    if len(points) < 2:
        raise InsufficientDataError(
            f"at least 2 historical bills are required, got {len(points)}"
        )

    occupancy, cost = _as_arrays(points)
    if np.all(occupancy == occupancy[0]):
        raise DegenerateModelError(
            "historical occupancy has zero variance; the cost slope is undefined"
        )

    occupancy_centered = occupancy - occupancy.mean()
    cost_centered = cost - cost.mean()
    slope = float(
        np.dot(occupancy_centered, cost_centered)
        / np.dot(occupancy_centered, occupancy_centered)
    )
    intercept = float(cost.mean() - slope * occupancy.mean())

    logger.info(
        "Cost model fitted | points=%s | intercept=%.6f | slope=%.6f",
        len(points),
        intercept,
        slope,
    )
    return LinearModel(intercept=intercept, slope=slope)


def fit_temperature_model(dataset: Sequence[HistoricalPoint]) -> LinearModel:
    """Fit ``cost ~ occupancy + temperature_index`` for weather-sensitive bills.

    Every point must carry a temperature index. Three points are the minimum
    for two regressors, and the regressors must not be collinear.
    """
    points = list(dataset)
    if len(points) < 3:
        raise InsufficientDataError(
            f"at least 3 historical bills are required with a temperature index, got {len(points)}"
        )
    if any(point.temperature_index is None for point in points):
        raise EstimationError("every historical bill needs a temperature index")

    occupancy, cost = _as_arrays(points)
    temperature = np.asarray([point.temperature_index for point in points], dtype=float)
    if not np.all(np.isfinite(temperature)):
        raise EstimationError("bill history contains non-finite values")

    features = np.column_stack([occupancy, temperature])
    if np.linalg.matrix_rank(features - features.mean(axis=0)) < 2:
        raise DegenerateModelError(
            "occupancy and temperature index do not vary independently in the history"
        )

    regression = LinearRegression().fit(features, cost)
    slope, temperature_slope = (float(value) for value in regression.coef_)
    intercept = float(regression.intercept_)

    logger.info(
        "Cost model fitted | points=%s | intercept=%.6f | slope=%.6f | temperature_slope=%.6f",
        len(points),
        intercept,
        slope,
        temperature_slope,
    )
    return LinearModel(intercept=intercept, slope=slope, temperature_slope=temperature_slope)


def fit_cost_model(dataset: Sequence[HistoricalPoint]) -> LinearModel:
    """Pick the occupancy-only or the occupancy + temperature model.

    The temperature model is used only when every point has a temperature
    index; a history that mixes both kinds is rejected.
    """
    points = list(dataset)
    with_index = sum(point.temperature_index is not None for point in points)
    if with_index == 0:
        return fit_linear_model(points)
    if with_index < len(points):
        raise EstimationError(
            f"{len(points) - with_index} of {len(points)} historical bills lack a temperature index"
        )
    return fit_temperature_model(points)


def estimate_fixed_cost(model: LinearModel, temperature_index: Optional[float] = None) -> float:
    """Return the bill's cost at zero occupancy.

    This extrapolates outside the observed occupancy range. The value is never
    clamped; a negative result points at a poorly fitting model. A temperature
    model keeps the current bill's ``temperature_index``, since heating or
    cooling an empty home still costs money.
    """
    if model.uses_temperature and temperature_index is None:
        raise EstimationError("the current bill needs a temperature index for this model")

    fixed_cost = model.predict(0.0, temperature_index)
    if fixed_cost < 0:
        logger.warning(
            "Estimated fixed cost is negative | fixed_cost=%.6f | slope=%.6f",
            fixed_cost,
            model.slope,
        )
    return fixed_cost


def compute_diagnostics(
    model: LinearModel,
    dataset: Sequence[HistoricalPoint],
    current_point: Optional[HistoricalPoint] = None,
) -> FitDiagnostics:
    points = list(dataset)
    _, cost = _as_arrays(points)
    r_squared = float(r2_score(cost, _predictions(model, points)))

    prediction_error = None
    if current_point is not None:
        prediction_error = float(
            mean_absolute_percentage_error(
                [current_point.cost],
                _predictions(model, [current_point]),
            )
        )
    return FitDiagnostics(r_squared=r_squared, prediction_error=prediction_error)


def assess_fit(
    model: LinearModel,
    dataset: Sequence[HistoricalPoint],
    config: FitQualityConfig,
    current_point: Optional[HistoricalPoint] = None,
) -> FitDiagnostics:
    """Reject models that explain the history or the current bill poorly."""
    validate_fit_quality_config(config)
    diagnostics = compute_diagnostics(model, dataset, current_point)
    if diagnostics.r_squared < config.min_rsquared:
        raise ModelFitsPoorlyError(diagnostics.r_squared)
    if (
        diagnostics.prediction_error is not None
        and diagnostics.prediction_error > config.max_prediction_error
    ):
        raise ModelPredictsPoorlyError(diagnostics.prediction_error)
    return diagnostics


def build_dataset(
    bills: Iterable[Bill],
    presence: PresenceRecord,
) -> list[HistoricalPoint]:
    """Pair each past bill with the occupancy the presence record shows for it.

    Itemised fixed charges are left out of the cost so the model only sees
    the part of each bill that can vary.
    """
    return [
        HistoricalPoint(
            occupancy=float(presence.occupancy_over(bill.start, bill.end)),
            cost=float(bill.variable_amount),
            temperature_index=bill.temperature_index,
        )
        for bill in bills
    ]
