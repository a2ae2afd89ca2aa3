r"""merchcore\engine\models\schemas.py

Pydantic models used throughout the engine.

These models describe both the inputs handed over by the data-access layer
(historical series, SKU snapshots, configurations) and the records returned
to the persistence/presentation layer (forecast points, recommendations,
summaries).  Output records are frozen once produced.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..core.errors import ConfigurationError
from ..core.numeric import round_half_up

WEIGHT_TOLERANCE = 0.01


class ForecastMethod(str, Enum):
    MOVING_AVERAGE = "MOVING_AVERAGE"
    EXPONENTIAL_SMOOTHING = "EXPONENTIAL_SMOOTHING"
    TREND_ADJUSTED = "TREND_ADJUSTED"
    ENSEMBLE = "ENSEMBLE"


class RunStatus(str, Enum):
    INITIALIZED = "INITIALIZED"
    FORECASTING = "FORECASTING"
    ACCURACY_SCORED = "ACCURACY_SCORED"
    COMPLETED = "COMPLETED"


class Strategy(str, Enum):
    MAXIMIZE_RECOVERY = "MAXIMIZE_RECOVERY"
    MAXIMIZE_SELL_THROUGH = "MAXIMIZE_SELL_THROUGH"
    BALANCED = "BALANCED"


class UrgencyLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class RecommendedAction(str, Enum):
    MARKDOWN = "MARKDOWN"
    TRANSFER = "TRANSFER"
    BUNDLE = "BUNDLE"
    PROMOTE = "PROMOTE"
    DISCONTINUE = "DISCONTINUE"
    HOLD = "HOLD"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


# ---------------------------------------------------------------------------
# Forecasting


class HistoricalPoint(BaseModel):
    """One weekly observation of the series being forecast."""

    model_config = ConfigDict(frozen=True)

    period_index: int
    value: float = Field(..., description="Sales value for the period")
    units: Optional[float] = Field(None, description="Sales units for the period, when known")


class ForecastConfig(BaseModel):
    """Ensemble weights, smoothing parameters and run horizon."""

    model_config = ConfigDict(frozen=True)

    moving_avg_weight: float = Field(0.25, ge=0.0, le=1.0)
    exp_smooth_weight: float = Field(0.35, ge=0.0, le=1.0)
    trend_weight: float = Field(0.40, ge=0.0, le=1.0)
    alpha: float = Field(0.30, ge=0.0, le=1.0, description="Level smoothing factor")
    beta: float = Field(0.10, ge=0.0, le=1.0, description="Trend smoothing factor")
    lookback_weeks: int = Field(12, description="Number of trailing history points used")
    forecast_weeks: int = Field(8, description="Number of future periods to forecast")

    def ensure_valid(self) -> "ForecastConfig":
        """Raise ``ConfigurationError`` when the configuration is inconsistent."""

        total = self.moving_avg_weight + self.exp_smooth_weight + self.trend_weight
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ConfigurationError(
                f"Ensemble weights must sum to 1.0 (got {total:.3f})",
                {
                    "moving_avg_weight": self.moving_avg_weight,
                    "exp_smooth_weight": self.exp_smooth_weight,
                    "trend_weight": self.trend_weight,
                },
            )
        if self.lookback_weeks < 1:
            raise ConfigurationError("lookback_weeks must be a positive integer")
        if self.forecast_weeks < 1:
            raise ConfigurationError("forecast_weeks must be a positive integer")
        return self


class ComponentBreakdown(BaseModel):
    """Unrounded estimator outputs behind an ensemble forecast."""

    model_config = ConfigDict(frozen=True)

    moving_average: float
    exponential_smoothing: float
    trend: float


class ForecastPoint(BaseModel):
    """A single future period in a forecast run."""

    model_config = ConfigDict(frozen=True)

    period_index: int
    point_forecast: float
    confidence_lower: float = Field(..., description="Lower bound of the confidence interval")
    confidence_upper: float = Field(..., description="Upper bound of the confidence interval")
    forecast_units: Optional[int] = None
    components: Optional[ComponentBreakdown] = None


class AccuracyScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    mape: float = Field(..., description="Mean absolute percentage error, in percent")
    interpretation: str


class ForecastRun(BaseModel):
    """Outcome of forecasting one series with one method."""

    model_config = ConfigDict(frozen=True)

    method: ForecastMethod
    status: RunStatus
    parameters: ForecastConfig
    data_points: int
    confidence_level: float
    points: List[ForecastPoint]
    accuracy: AccuracyScore
    history_tail: List[HistoricalPoint]


class MethodComparisonEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    method: ForecastMethod
    mape: float
    interpretation: str
    forecasts: List[ForecastPoint]


class MethodComparison(BaseModel):
    model_config = ConfigDict(frozen=True)

    comparison: List[MethodComparisonEntry]
    recommendation: ForecastMethod
    recommendation_reason: str


# ---------------------------------------------------------------------------
# Clearance optimisation


class SKUSnapshot(BaseModel):
    """Inventory and sales facts for one SKU at one point in time."""

    model_config = ConfigDict(frozen=True)

    sku_id: str
    sku_code: str = ""
    sku_name: str = ""
    current_stock: float = Field(..., ge=0)
    current_price: float
    original_price: float = 0.0
    cost_price: float
    current_stock_value: float = Field(
        0.0, description="Stock valued at the current price; derived when omitted"
    )
    weeks_on_hand: float = 0.0
    sell_through_rate: float = Field(0.0, description="Units sold / units available, in percent")
    weeks_to_season_end: float = 0.0
    avg_weekly_sales: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def _derive_stock_value(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("current_stock_value") is None:
            try:
                stock = float(data.get("current_stock", 0) or 0)
                price = float(data.get("current_price", 0) or 0)
            except (TypeError, ValueError):
                return data
            data = {**data, "current_stock_value": round_half_up(stock * price, 2)}
        return data


class OptimizationConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy: Strategy = Strategy.BALANCED
    max_markdown_pct: float = 70.0
    min_margin_pct: float = Field(0.0, description="Margin floor in percent; -100 disables it")
    analyze_elasticity: bool = True

    def ensure_valid(self) -> "OptimizationConfig":
        """Raise ``ConfigurationError`` when the configuration is inconsistent."""

        if not 0.0 <= self.max_markdown_pct <= 100.0:
            raise ConfigurationError(
                "max_markdown_pct must be between 0 and 100",
                {"max_markdown_pct": self.max_markdown_pct},
            )
        if self.min_margin_pct < -100.0:
            raise ConfigurationError(
                "min_margin_pct cannot be below -100",
                {"min_margin_pct": self.min_margin_pct},
            )
        return self


class SalesProjection(BaseModel):
    model_config = ConfigDict(frozen=True)

    units: int
    revenue: float
    days_to_sell: int
    new_price: float
    weekly_sales: int


class SKURecommendation(BaseModel):
    """Clearance recommendation for one SKU."""

    model_config = ConfigDict(frozen=True)

    sku_id: str
    sku_code: str
    sku_name: str
    current_stock: float
    current_price: float
    cost_price: float
    urgency_score: float = Field(..., ge=0.0, le=1.0)
    urgency_level: UrgencyLevel
    demand_elasticity: float
    recommended_action: RecommendedAction
    recommended_markdown_pct: float
    recommended_new_price: float
    projected_units_sold: int
    projected_revenue: float
    projected_margin_loss: float
    projected_days_to_sell: int
    reasoning: str


class ExpectedOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_recovery: float
    total_margin_loss: float
    avg_sell_through: float
    avg_days_to_sell: int


class PortfolioSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_skus_analyzed: int
    skus_by_urgency: Dict[str, int]
    skus_by_action: Dict[str, int]
    expected_outcome: ExpectedOutcome


# ---------------------------------------------------------------------------
# Scenario simulation


class ScenarioRequest(BaseModel):
    """Parameters of a what-if markdown simulation."""

    model_config = ConfigDict(frozen=True)

    scenario_name: str = "Default Scenario"
    global_markdown_pct: float = Field(30.0, ge=0.0, le=100.0)
    sku_overrides: Dict[str, float] = Field(
        default_factory=dict, description="Per-SKU markdown percentages keyed by sku_id"
    )
    elasticity_factor: float = Field(1.0, ge=0.1, le=3.0)
    weeks_to_simulate: int = Field(8, ge=1, le=52)
    start_date: date = Field(default_factory=date.today)


class WeeklyProjection(BaseModel):
    model_config = ConfigDict(frozen=True)

    week_number: int
    week_start_date: date
    opening_stock: float
    opening_value: float
    projected_sales: float
    projected_revenue: float
    avg_selling_price: float
    closing_stock: float
    closing_value: float
    cumulative_sell_through: float
    cumulative_recovery: float


class RiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    stockout_risk: RiskLevel
    margin_erosion_risk: RiskLevel
    overall_risk: RiskLevel
    warnings: List[str]


class SimulationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    scenario_name: str
    total_skus: int
    starting_inventory_value: float
    projected_recovery_value: float
    projected_margin_loss: float
    projected_sell_through_pct: float
    projected_remaining_stock: float
    projected_remaining_value: float
    weekly_projections: List[WeeklyProjection]
    risk_assessment: RiskAssessment
