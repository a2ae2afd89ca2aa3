r"""merchcore\engine\services\forecasting_service.py

Weekly sales forecasting for merchandise planning.

Three stateless estimators (moving average, Holt's exponential smoothing with
trend, and an ordinary least-squares trend line) are blended by a weighted
ensemble.  ``ForecastingService`` drives multi-period runs over a historical
series, rolling each forecast forward into a working copy of the series so
later periods build on earlier ones, and scores accuracy against held-out
history with MAPE.

Multi-step forecasts compound estimation error: period ``i + 1`` is computed
from a series that already contains the synthetic value for period ``i``.
"""

from __future__ import annotations

import logging
import os
from statistics import NormalDist
from typing import List, NamedTuple, Optional, Sequence

import numpy as np

from ..core.config import get_settings, load_section
from ..core.errors import EmptyInputError
from ..core.numeric import round_half_up
from ..core.observability import observe_operation
from ..models.schemas import (
    AccuracyScore,
    ComponentBreakdown,
    ForecastConfig,
    ForecastMethod,
    ForecastPoint,
    ForecastRun,
    HistoricalPoint,
    MethodComparison,
    MethodComparisonEntry,
    RunStatus,
)

LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Estimators (kept top-level for straightforward unit testing)


class TrendFit(NamedTuple):
    """Least-squares line fitted with ``x = index`` and ``y = value``."""

    forecast: float
    slope: float
    intercept: float

    def project(self, index: float) -> float:
        return self.intercept + self.slope * index


class EnsembleResult(NamedTuple):
    forecast: float
    components: ComponentBreakdown


def _as_array(series: Sequence[float]) -> np.ndarray:
    return np.asarray(list(series), dtype=float)


def moving_average(series: Sequence[float], periods: int) -> float:
    """Return the mean of the last ``periods`` values.

    When the series is shorter than the window the whole series is averaged.
    """

    values = _as_array(series)
    if values.size == 0:
        raise EmptyInputError("moving average requires at least one observation")
    if periods <= 0:
        raise ValueError("periods must be a positive integer")

    window = min(int(periods), values.size)
    return float(values[-window:].mean())


def exponential_smoothing(
    series: Sequence[float],
    alpha: float = 0.3,
    beta: float = 0.1,
    periods_ahead: int = 1,
) -> float:
    """Holt's two-parameter exponential smoothing.

    The level starts at the first observation and the trend at the first
    difference.  Returns ``level + periods_ahead * trend`` after smoothing the
    whole series; an empty series yields ``0.0`` and a single observation is
    returned unchanged.
    """

    values = _as_array(series)
    if values.size == 0:
        return 0.0
    if values.size == 1:
        return float(values[0])

    level = float(values[0])
    trend = float(values[1] - values[0])
    for observation in values[1:]:
        previous_level = level
        level = alpha * float(observation) + (1 - alpha) * (level + trend)
        trend = beta * (level - previous_level) + (1 - beta) * trend

    return level + periods_ahead * trend


def trend_adjusted(series: Sequence[float]) -> TrendFit:
    """Fit an OLS trend line and evaluate it at the next index."""

    values = _as_array(series)
    n = values.size
    if n == 0:
        return TrendFit(0.0, 0.0, 0.0)
    if n == 1:
        only = float(values[0])
        return TrendFit(only, 0.0, only)

    x = np.arange(n, dtype=float)
    x_mean = (n - 1) / 2
    y_mean = float(values.mean())

    numerator = float(np.sum((x - x_mean) * (values - y_mean)))
    denominator = float(np.sum((x - x_mean) ** 2))
    slope = numerator / denominator if denominator != 0 else 0.0
    intercept = y_mean - slope * x_mean

    return TrendFit(intercept + slope * n, slope, intercept)


def ensemble_forecast(
    series: Sequence[float],
    config: ForecastConfig,
    periods_ahead: int = 1,
) -> EnsembleResult:
    """Blend the three estimators with the configured weights.

    The point forecast is floored at zero and rounded to two decimals.  The
    component values are returned unrounded (each floored at zero) so callers
    can inspect how the blend was formed.
    """

    values = list(series)
    if not values:
        raise EmptyInputError("ensemble forecast requires at least one observation")

    ma_value = moving_average(values, min(4, len(values)))
    exp_value = exponential_smoothing(values, config.alpha, config.beta, periods_ahead)
    trend_value = trend_adjusted(values).project(len(values) + periods_ahead - 1)

    blended = (
        config.moving_avg_weight * ma_value
        + config.exp_smooth_weight * exp_value
        + config.trend_weight * trend_value
    )

    components = ComponentBreakdown(
        moving_average=max(0.0, ma_value),
        exponential_smoothing=max(0.0, exp_value),
        trend=max(0.0, trend_value),
    )
    return EnsembleResult(max(0.0, round_half_up(blended, 2)), components)


def z_for_confidence(confidence_level: float) -> float:
    """Return the two-sided z-score, rounded to two decimals (0.95 -> 1.96)."""

    if not 0.0 < confidence_level < 1.0:
        raise ValueError("confidence_level must be strictly between 0 and 1")
    return round_half_up(NormalDist().inv_cdf(0.5 + confidence_level / 2.0), 2)


def confidence_interval(
    forecast: float,
    history: Sequence[float],
    confidence_level: float = 0.95,
) -> tuple[float, float]:
    """Return ``(lower, upper)`` bounds around ``forecast``.

    With fewer than two historical points a +/-20% band is used.  Otherwise
    the band is ``z * sample_std`` of the history.  The lower bound is never
    negative.
    """

    values = _as_array(history)
    if values.size < 2:
        lower, upper = forecast * 0.8, forecast * 1.2
        lower, upper = min(lower, upper), max(lower, upper)
        return max(0.0, round_half_up(lower, 2)), round_half_up(upper, 2)

    spread = float(np.std(values, ddof=1))
    z_value = z_for_confidence(confidence_level)
    lower = max(0.0, round_half_up(forecast - z_value * spread, 2))
    upper = round_half_up(forecast + z_value * spread, 2)
    return lower, upper


def calculate_mape(actuals: Sequence[float], forecasts: Sequence[float]) -> float:
    """Mean absolute percentage error, in percent, rounded to two decimals.

    A zero actual contributes zero error but still counts towards the mean.
    """

    actual_arr = _as_array(actuals)
    pred_arr = _as_array(forecasts)
    if actual_arr.size == 0 or actual_arr.size != pred_arr.size:
        return 0.0

    zero = actual_arr == 0
    safe_actuals = np.where(zero, 1.0, actual_arr)
    errors = np.where(zero, 0.0, np.abs((actual_arr - pred_arr) / safe_actuals))
    return round_half_up(float(errors.mean()) * 100, 2)


def interpret_mape(mape: float) -> str:
    if mape < 10:
        return "Excellent"
    if mape < 20:
        return "Good"
    if mape < 30:
        return "Reasonable"
    return "Poor"


# ---------------------------------------------------------------------------
# Core service implementation


class ForecastingService:
    """Run multi-period forecasts and compare forecasting methods."""

    MOVING_AVERAGE_WINDOW: int = 4
    ACCURACY_HOLDOUT: int = 4
    HISTORY_CONTEXT: int = 8

    def __init__(
        self,
        config_root: str | None = None,
        defaults: ForecastConfig | None = None,
    ) -> None:
        self.config_root = config_root or get_settings().config_dir
        self.defaults: ForecastConfig = (defaults or self._load_configuration()).ensure_valid()

    # ------------------------------------------------------------------
    def _load_configuration(self) -> ForecastConfig:
        section = load_section(self.config_root, "settings.yaml", "forecasting")
        known = {k: v for k, v in section.items() if k in ForecastConfig.model_fields}
        if known:
            LOGGER.debug(
                "Loaded forecasting defaults from %s: %s",
                os.path.join(self.config_root, "settings.yaml"),
                known,
            )
        return ForecastConfig(**known)

    # ------------------------------------------------------------------
    def resolve_config(self, **overrides: object) -> ForecastConfig:
        """Merge non-``None`` overrides onto the loaded defaults and validate."""

        merged = self.defaults.model_dump()
        merged.update({k: v for k, v in overrides.items() if v is not None})
        return ForecastConfig(**merged).ensure_valid()

    # ------------------------------------------------------------------
    def forecast_value(
        self,
        method: ForecastMethod,
        working_series: Sequence[float],
        config: ForecastConfig,
        periods_ahead: int = 1,
    ) -> tuple[float, Optional[ComponentBreakdown]]:
        """Return one forecast for ``method`` and, for the ensemble, its components."""

        components: Optional[ComponentBreakdown] = None
        if method == ForecastMethod.MOVING_AVERAGE:
            value = moving_average(working_series, self.MOVING_AVERAGE_WINDOW)
        elif method == ForecastMethod.EXPONENTIAL_SMOOTHING:
            value = exponential_smoothing(working_series, config.alpha, config.beta, periods_ahead)
        elif method == ForecastMethod.TREND_ADJUSTED:
            value = trend_adjusted(working_series).project(len(working_series) + periods_ahead - 1)
        else:
            value, components = ensemble_forecast(working_series, config, periods_ahead)

        return max(value, 0.0), components

    # ------------------------------------------------------------------
    def score_accuracy(
        self,
        series: Sequence[float],
        method: ForecastMethod,
        config: ForecastConfig,
    ) -> AccuracyScore:
        """Back-test one-step forecasts over the last few observations."""

        values = list(series)
        if len(values) < 2:
            return AccuracyScore(mape=0.0, interpretation=interpret_mape(0.0))

        holdout = min(self.ACCURACY_HOLDOUT, len(values) - 1)
        actuals: List[float] = []
        predicted: List[float] = []
        for cutoff in range(len(values) - holdout, len(values)):
            value, _ = self.forecast_value(method, values[:cutoff], config, 1)
            actuals.append(values[cutoff])
            predicted.append(round_half_up(value, 2))

        mape = calculate_mape(actuals, predicted)
        return AccuracyScore(mape=mape, interpretation=interpret_mape(mape))

    # ------------------------------------------------------------------
    def run(
        self,
        history: Sequence[HistoricalPoint],
        method: ForecastMethod | str = ForecastMethod.ENSEMBLE,
        config: ForecastConfig | None = None,
        confidence_level: float = 0.95,
    ) -> ForecastRun:
        """Forecast ``config.forecast_weeks`` periods past the end of ``history``."""

        method = ForecastMethod(method)
        config = (config or self.defaults).ensure_valid()
        lookback = list(history)[-config.lookback_weeks :]
        if not lookback:
            raise EmptyInputError("history must contain at least one observation")

        status = RunStatus.INITIALIZED
        LOGGER.info(
            "Forecast run method=%s data_points=%s forecast_weeks=%s",
            method.value,
            len(lookback),
            config.forecast_weeks,
        )

        with observe_operation(
            "forecast_run", method=method.value, data_points=len(lookback)
        ) as extra:
            values = [float(point.value) for point in lookback]
            has_units = all(point.units is not None for point in lookback)

            # Local copies: synthetic forecasts are appended here, never to ``history``.
            working_values = list(values)
            working_units = [float(point.units) for point in lookback] if has_units else []

            status = RunStatus.FORECASTING
            last_period = lookback[-1].period_index
            points: List[ForecastPoint] = []

            for step in range(1, config.forecast_weeks + 1):
                raw_value, components = self.forecast_value(method, working_values, config, step)
                point_forecast = round_half_up(raw_value, 2)
                lower, upper = confidence_interval(point_forecast, values, confidence_level)

                forecast_units: Optional[int] = None
                if has_units:
                    raw_units, _ = self.forecast_value(method, working_units, config, step)
                    forecast_units = round_half_up(raw_units)
                    working_units.append(raw_units)

                points.append(
                    ForecastPoint(
                        period_index=last_period + step,
                        point_forecast=point_forecast,
                        confidence_lower=lower,
                        confidence_upper=upper,
                        forecast_units=forecast_units,
                        components=components,
                    )
                )
                working_values.append(raw_value)

            accuracy = self.score_accuracy(values, method, config)
            status = RunStatus.ACCURACY_SCORED
            LOGGER.debug("Forecast run %s scored mape=%.2f", method.value, accuracy.mape)
            extra["mape"] = accuracy.mape

        status = RunStatus.COMPLETED
        return ForecastRun(
            method=method,
            status=status,
            parameters=config,
            data_points=len(lookback),
            confidence_level=confidence_level,
            points=points,
            accuracy=accuracy,
            history_tail=lookback[-self.HISTORY_CONTEXT :],
        )

    # ------------------------------------------------------------------
    def compare_methods(
        self,
        history: Sequence[HistoricalPoint],
        config: ForecastConfig | None = None,
    ) -> MethodComparison:
        """Run every method over identical inputs and rank them by MAPE."""

        config = (config or self.defaults).ensure_valid()
        with observe_operation("compare_methods", data_points=len(history)) as extra:
            entries = []
            for method in ForecastMethod:
                run = self.run(history, method=method, config=config)
                entries.append(
                    MethodComparisonEntry(
                        method=method,
                        mape=run.accuracy.mape,
                        interpretation=run.accuracy.interpretation,
                        forecasts=run.points,
                    )
                )

            entries.sort(key=lambda entry: entry.mape)
            best = entries[0]
            extra["recommendation"] = best.method.value

        return MethodComparison(
            comparison=entries,
            recommendation=best.method,
            recommendation_reason=f"{best.method.value} has the lowest MAPE ({best.mape}%)",
        )
