"""Score SKUs for clearance urgency and recommend markdown actions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from ..core.config import get_settings, load_section
from ..core.numeric import round_half_up
from ..core.observability import observe_operation
from ..models.schemas import (
    ExpectedOutcome,
    OptimizationConfig,
    PortfolioSummary,
    RecommendedAction,
    SalesProjection,
    SKURecommendation,
    SKUSnapshot,
    Strategy,
    UrgencyLevel,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_ELASTICITY = 1.5
DEFAULT_WEEKS_TO_PROJECT = 8
UNSOLD_DAYS_SENTINEL = 999
MAX_DAYS_TO_SELL = 365

COVER_WEEKS_SCALE = 12.0
SEASON_WEEKS_SCALE = 12.0
STOCK_VALUE_SCALE = 50_000.0

STRATEGY_MULTIPLIERS: Mapping[Strategy, float] = {
    Strategy.MAXIMIZE_RECOVERY: 0.7,
    Strategy.MAXIMIZE_SELL_THROUGH: 1.3,
    Strategy.BALANCED: 1.0,
}


@dataclass(frozen=True)
class UrgencyWeights:
    weeks_of_cover: float = 0.35
    sell_through: float = 0.25
    time_to_season_end: float = 0.25
    stock_value: float = 0.15


@dataclass(frozen=True)
class UrgencyThresholds:
    """Lower bounds of each urgency level, checked from CRITICAL down."""

    critical: float = 0.8
    high: float = 0.6
    medium: float = 0.4


@dataclass(frozen=True)
class DecisionRules:
    """Cutoffs of the ordered action decision table."""

    hold_max_stock: float = 10
    discontinue_max_sell_through: float = 5
    discontinue_min_markdown: float = 60
    promote_min_sell_through: float = 30
    promote_max_sell_through: float = 50
    promote_max_markdown: float = 30
    bundle_max_stock: float = 50
    bundle_min_stock_value: float = 1_000
    bundle_max_sell_through: float = 25


DEFAULT_WEIGHTS = UrgencyWeights()
DEFAULT_THRESHOLDS = UrgencyThresholds()
DEFAULT_DECISION_RULES = DecisionRules()


def _clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    return max(lower, min(value, upper))


# ---------------------------------------------------------------------------
# Urgency and elasticity


def urgency_score(sku: SKUSnapshot, weights: UrgencyWeights = DEFAULT_WEIGHTS) -> float:
    """Return a 0-1 score where higher means more urgent to clear."""

    cover_score = _clamp(sku.weeks_on_hand / COVER_WEEKS_SCALE)
    sell_through_score = _clamp(1 - sku.sell_through_rate / 100)
    time_score = _clamp(1 - sku.weeks_to_season_end / SEASON_WEEKS_SCALE)
    value_score = _clamp(sku.current_stock_value / STOCK_VALUE_SCALE)

    score = (
        weights.weeks_of_cover * cover_score
        + weights.sell_through * sell_through_score
        + weights.time_to_season_end * time_score
        + weights.stock_value * value_score
    )
    return round_half_up(_clamp(score), 2)


def urgency_level(score: float, thresholds: UrgencyThresholds = DEFAULT_THRESHOLDS) -> UrgencyLevel:
    if score >= thresholds.critical:
        return UrgencyLevel.CRITICAL
    if score >= thresholds.high:
        return UrgencyLevel.HIGH
    if score >= thresholds.medium:
        return UrgencyLevel.MEDIUM
    return UrgencyLevel.LOW


def estimate_elasticity(sku: SKUSnapshot) -> float:
    """Estimate how strongly demand reacts to a markdown.

    Slow sellers and aged stock respond more; strong sellers respond less.
    """

    elasticity = DEFAULT_ELASTICITY
    if sku.sell_through_rate < 20:
        elasticity *= 1.3
    elif sku.sell_through_rate > 60:
        elasticity *= 0.8

    if sku.weeks_on_hand > 10:
        elasticity *= 1.2

    return round_half_up(elasticity, 2)


# ---------------------------------------------------------------------------
# Markdown optimisation


def current_margin_pct(sku: SKUSnapshot) -> float:
    if sku.current_price <= 0:
        return 0.0
    return (sku.current_price - sku.cost_price) / sku.current_price * 100


def optimal_markdown(
    sku: SKUSnapshot,
    urgency: float,
    elasticity: float,
    config: OptimizationConfig,
) -> float:
    """Return the recommended markdown percentage, rounded to one decimal.

    ``elasticity`` is accepted for signature parity with the projection step;
    the markdown itself is driven by urgency, strategy, sell-through and
    time pressure.
    """

    markdown = urgency * 50
    markdown *= STRATEGY_MULTIPLIERS.get(config.strategy, 1.0)

    if sku.sell_through_rate < 10:
        markdown += 15
    elif sku.sell_through_rate > 50:
        markdown -= 10

    if sku.weeks_to_season_end < 4:
        markdown += 20
    elif sku.weeks_to_season_end < 8:
        markdown += 10

    markdown = min(markdown, config.max_markdown_pct)

    if config.min_margin_pct > -100:
        margin_cap = current_margin_pct(sku) - config.min_margin_pct
        markdown = min(markdown, max(0.0, margin_cap))

    return round_half_up(max(0.0, markdown), 1)


def determine_action(
    sku: SKUSnapshot,
    urgency: float,
    markdown: float,
    rules: DecisionRules = DEFAULT_DECISION_RULES,
) -> RecommendedAction:
    """Walk the decision table in order; the first matching row wins."""

    if sku.current_stock < rules.hold_max_stock:
        return RecommendedAction.HOLD
    if (
        sku.sell_through_rate < rules.discontinue_max_sell_through
        and markdown > rules.discontinue_min_markdown
    ):
        return RecommendedAction.DISCONTINUE
    if (
        rules.promote_min_sell_through <= sku.sell_through_rate <= rules.promote_max_sell_through
        and markdown < rules.promote_max_markdown
    ):
        return RecommendedAction.PROMOTE
    if (
        sku.current_stock < rules.bundle_max_stock
        and sku.current_stock_value > rules.bundle_min_stock_value
        and sku.sell_through_rate < rules.bundle_max_sell_through
    ):
        return RecommendedAction.BUNDLE
    return RecommendedAction.MARKDOWN


def project_sales(
    sku: SKUSnapshot,
    markdown: float,
    elasticity: float,
    weeks_ahead: int = DEFAULT_WEEKS_TO_PROJECT,
) -> SalesProjection:
    """Project units, revenue and days-to-sell under the marked-down price."""

    new_price = sku.current_price * (1 - markdown / 100)
    demand_multiplier = 1 + (markdown / 100) * elasticity

    base_weekly_sales = sku.avg_weekly_sales or sku.current_stock / 12
    weekly_sales = round_half_up(base_weekly_sales * demand_multiplier)

    units = min(sku.current_stock, weekly_sales * weeks_ahead)
    revenue = units * new_price

    if weekly_sales > 0:
        days_to_sell = min(round_half_up(sku.current_stock / weekly_sales * 7), MAX_DAYS_TO_SELL)
    else:
        days_to_sell = UNSOLD_DAYS_SENTINEL

    return SalesProjection(
        units=round_half_up(units),
        revenue=round_half_up(revenue, 2),
        days_to_sell=days_to_sell,
        new_price=round_half_up(new_price, 2),
        weekly_sales=weekly_sales,
    )


def generate_reasoning(
    sku: SKUSnapshot,
    level: UrgencyLevel,
    action: RecommendedAction,
    markdown: float,
) -> str:
    parts: List[str] = []

    if level == UrgencyLevel.CRITICAL:
        parts.append("Critical urgency due to high stock levels and low sell-through.")
    elif level == UrgencyLevel.HIGH:
        parts.append("High priority for clearance action.")

    if sku.weeks_on_hand > 10:
        parts.append(f"{round_half_up(sku.weeks_on_hand)} weeks of stock on hand.")
    if sku.sell_through_rate < 20:
        parts.append(f"Low sell-through rate of {sku.sell_through_rate:.1f}%.")
    if sku.weeks_to_season_end < 8:
        parts.append(f"Only {sku.weeks_to_season_end:g} weeks until season end.")

    if action == RecommendedAction.MARKDOWN:
        parts.append(f"Recommend {markdown:g}% markdown to accelerate sales.")
    elif action == RecommendedAction.DISCONTINUE:
        parts.append("Consider discontinuing due to poor performance.")
    elif action == RecommendedAction.BUNDLE:
        parts.append("Consider bundling with other products to increase value.")
    elif action == RecommendedAction.PROMOTE:
        parts.append("Consider a promotion to lift a moderate performer.")
    elif action == RecommendedAction.HOLD:
        parts.append("Stock is low enough to hold at the current price.")

    return " ".join(parts)


# ---------------------------------------------------------------------------
# Portfolio summary

_SUMMARY_COLUMNS = [
    "urgency_level",
    "recommended_action",
    "current_stock",
    "projected_units_sold",
    "projected_revenue",
    "projected_margin_loss",
    "projected_days_to_sell",
]


def summarize(recommendations: Iterable[SKURecommendation]) -> PortfolioSummary:
    """Roll per-SKU recommendations up into portfolio counts and totals."""

    records = [rec.model_dump(mode="json") for rec in recommendations]
    frame = pd.DataFrame(records, columns=_SUMMARY_COLUMNS)

    level_counts = frame["urgency_level"].value_counts()
    action_counts = frame["recommended_action"].value_counts()

    total_stock = float(frame["current_stock"].sum())
    total_units = float(frame["projected_units_sold"].sum())
    total_days = float(frame["projected_days_to_sell"].sum())
    count = len(frame)

    return PortfolioSummary(
        total_skus_analyzed=count,
        skus_by_urgency={
            level.value.lower(): int(level_counts.get(level.value, 0)) for level in UrgencyLevel
        },
        skus_by_action={
            action.value.lower(): int(action_counts.get(action.value, 0))
            for action in RecommendedAction
        },
        expected_outcome=ExpectedOutcome(
            total_recovery=round_half_up(float(frame["projected_revenue"].sum()), 2),
            total_margin_loss=round_half_up(float(frame["projected_margin_loss"].sum()), 2),
            avg_sell_through=round_half_up(total_units / total_stock * 100, 2) if total_stock > 0 else 0.0,
            avg_days_to_sell=round_half_up(total_days / count) if count else 0,
        ),
    )


# ---------------------------------------------------------------------------
# Service


def _dataclass_from_mapping(cls: type, data: Mapping[str, Any]) -> Any:
    names = {f.name for f in fields(cls)}
    return cls(**{k: float(v) for k, v in data.items() if k in names})


class ClearanceOptimizerService:
    """Clearance recommendation engine over SKU snapshots."""

    def __init__(
        self,
        config_root: str | None = None,
        thresholds: UrgencyThresholds | None = None,
        rules: DecisionRules | None = None,
        weights: UrgencyWeights | None = None,
    ) -> None:
        self.config_root = config_root or get_settings().config_dir
        clearance = load_section(self.config_root, "thresholds.yaml", "clearance")

        self.thresholds = thresholds or _dataclass_from_mapping(
            UrgencyThresholds, clearance.get("urgency_thresholds") or {}
        )
        self.rules = rules or _dataclass_from_mapping(
            DecisionRules, clearance.get("decision_rules") or {}
        )
        self.weights = weights or _dataclass_from_mapping(
            UrgencyWeights, clearance.get("urgency_weights") or {}
        )

        defaults = load_section(self.config_root, "settings.yaml", "clearance")
        known = {k: v for k, v in defaults.items() if k in OptimizationConfig.model_fields}
        self.default_config = OptimizationConfig(**known).ensure_valid()
        self.weeks_to_project = int(defaults.get("weeks_to_project", DEFAULT_WEEKS_TO_PROJECT))

    # ------------------------------------------------------------------
    @staticmethod
    def filter_eligible(
        skus: Iterable[SKUSnapshot],
        sku_ids: Optional[Sequence[str]] = None,
        min_weeks_on_hand: Optional[float] = None,
        max_sell_through: Optional[float] = None,
    ) -> List[SKUSnapshot]:
        """Narrow a snapshot list to the SKUs a plan should consider."""

        wanted = set(sku_ids) if sku_ids else None
        eligible = []
        for sku in skus:
            if wanted is not None and sku.sku_id not in wanted:
                continue
            if min_weeks_on_hand is not None and sku.weeks_on_hand < min_weeks_on_hand:
                continue
            if max_sell_through is not None and sku.sell_through_rate > max_sell_through:
                continue
            eligible.append(sku)
        return eligible

    # ------------------------------------------------------------------
    def recommend(
        self,
        sku: SKUSnapshot,
        config: OptimizationConfig,
        weeks_to_project: int,
    ) -> SKURecommendation:
        score = urgency_score(sku, self.weights)
        level = urgency_level(score, self.thresholds)
        elasticity = estimate_elasticity(sku) if config.analyze_elasticity else DEFAULT_ELASTICITY

        markdown = optimal_markdown(sku, score, elasticity, config)
        action = determine_action(sku, score, markdown, self.rules)
        projection = project_sales(sku, markdown, elasticity, weeks_to_project)

        original_revenue = sku.current_stock * sku.current_price
        margin_loss = original_revenue - projection.revenue

        return SKURecommendation(
            sku_id=sku.sku_id,
            sku_code=sku.sku_code,
            sku_name=sku.sku_name,
            current_stock=sku.current_stock,
            current_price=sku.current_price,
            cost_price=sku.cost_price,
            urgency_score=score,
            urgency_level=level,
            demand_elasticity=elasticity,
            recommended_action=action,
            recommended_markdown_pct=markdown,
            recommended_new_price=projection.new_price,
            projected_units_sold=projection.units,
            projected_revenue=projection.revenue,
            projected_margin_loss=round_half_up(margin_loss, 2),
            projected_days_to_sell=projection.days_to_sell,
            reasoning=generate_reasoning(sku, level, action, markdown),
        )

    # ------------------------------------------------------------------
    def optimize(
        self,
        skus: Iterable[SKUSnapshot],
        config: OptimizationConfig | None = None,
        weeks_to_project: int | None = None,
    ) -> List[SKURecommendation]:
        """Return one recommendation per SKU, most urgent first."""

        config = (config or self.default_config).ensure_valid()
        weeks = int(self.weeks_to_project if weeks_to_project is None else weeks_to_project)
        if weeks <= 0:
            raise ValueError("weeks_to_project must be a positive integer")

        snapshots = list(skus)
        with observe_operation(
            "clearance_optimize", strategy=config.strategy.value, skus=len(snapshots)
        ) as extra:
            results = [self.recommend(sku, config, weeks) for sku in snapshots]
            results.sort(key=lambda rec: rec.urgency_score, reverse=True)
            extra["critical"] = sum(
                1 for rec in results if rec.urgency_level == UrgencyLevel.CRITICAL
            )

        LOGGER.info(
            "Optimised %d SKUs strategy=%s max_markdown=%.1f min_margin=%.1f",
            len(results),
            config.strategy.value,
            config.max_markdown_pct,
            config.min_margin_pct,
        )
        return results

    # ------------------------------------------------------------------
    def summarize(self, recommendations: Iterable[SKURecommendation]) -> PortfolioSummary:
        return summarize(recommendations)

    # ------------------------------------------------------------------
    def optimize_with_summary(
        self,
        skus: Iterable[SKUSnapshot],
        config: OptimizationConfig | None = None,
        weeks_to_project: int | None = None,
    ) -> Dict[str, Any]:
        """Convenience wrapper returning recommendations and their summary."""

        recommendations = self.optimize(skus, config, weeks_to_project)
        return {"recommendations": recommendations, "summary": summarize(recommendations)}
