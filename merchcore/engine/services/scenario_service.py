"""What-if simulation of a markdown scenario across a set of SKUs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, List

from ..core.numeric import round_half_up
from ..core.observability import observe_operation
from ..models.schemas import (
    RiskAssessment,
    RiskLevel,
    ScenarioRequest,
    SimulationResult,
    SKUSnapshot,
    WeeklyProjection,
)
from .clearance_optimizer_service import DEFAULT_ELASTICITY

LOGGER = logging.getLogger(__name__)

FALLBACK_WEEKLY_SALES = 5.0


@dataclass(slots=True)
class _SimulatedItem:
    sku_id: str
    stock: float
    new_price: float
    weekly_demand: int


def _rank(level: RiskLevel) -> int:
    return {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}[level]


def assess_risk(sell_through_pct: float, margin_loss: float, starting_value: float) -> RiskAssessment:
    """Classify stockout and margin-erosion risk of a simulated outcome."""

    warnings: List[str] = []
    stockout_risk = RiskLevel.LOW
    margin_risk = RiskLevel.LOW

    if sell_through_pct < 50:
        warnings.append("Sell-through below 50% - consider more aggressive markdowns")
    elif sell_through_pct > 95:
        warnings.append("May sell out too quickly - consider phased approach")
        stockout_risk = RiskLevel.HIGH

    if margin_loss > starting_value * 0.5:
        warnings.append("Significant margin erosion expected (>50%)")
        margin_risk = RiskLevel.HIGH
    elif margin_loss > starting_value * 0.3:
        margin_risk = RiskLevel.MEDIUM

    overall = max(stockout_risk, margin_risk, key=_rank)
    return RiskAssessment(
        stockout_risk=stockout_risk,
        margin_erosion_risk=margin_risk,
        overall_risk=overall,
        warnings=warnings,
    )


class ScenarioService:
    """Simulate week-by-week sell-down under a uniform or per-SKU markdown."""

    def simulate(self, skus: Iterable[SKUSnapshot], request: ScenarioRequest | None = None) -> SimulationResult:
        request = request or ScenarioRequest()
        snapshots = list(skus)
        elasticity = DEFAULT_ELASTICITY * request.elasticity_factor

        items: List[_SimulatedItem] = []
        total_stock = 0.0
        starting_value = 0.0
        for sku in snapshots:
            markdown = request.sku_overrides.get(sku.sku_id, request.global_markdown_pct)
            multiplier = 1 + (markdown / 100) * elasticity
            base_sales = sku.avg_weekly_sales or FALLBACK_WEEKLY_SALES
            items.append(
                _SimulatedItem(
                    sku_id=sku.sku_id,
                    stock=sku.current_stock,
                    new_price=sku.current_price * (1 - markdown / 100),
                    weekly_demand=max(1, round_half_up(base_sales * multiplier)),
                )
            )
            total_stock += sku.current_stock
            starting_value += sku.current_stock_value

        with observe_operation(
            "scenario_simulation",
            scenario=request.scenario_name,
            skus=len(items),
            weeks=request.weeks_to_simulate,
        ) as extra:
            projections: List[WeeklyProjection] = []
            cumulative_recovery = 0.0
            cumulative_sales = 0.0

            for week in range(1, request.weeks_to_simulate + 1):
                opening_stock = opening_value = 0.0
                week_sales = week_revenue = 0.0
                closing_stock = closing_value = 0.0

                for item in items:
                    opening_stock += item.stock
                    opening_value += item.stock * item.new_price

                    sold = min(item.stock, item.weekly_demand)
                    week_sales += sold
                    week_revenue += sold * item.new_price

                    item.stock -= sold
                    closing_stock += item.stock
                    closing_value += item.stock * item.new_price

                cumulative_recovery += week_revenue
                cumulative_sales += week_sales

                projections.append(
                    WeeklyProjection(
                        week_number=week,
                        week_start_date=request.start_date + timedelta(days=(week - 1) * 7),
                        opening_stock=opening_stock,
                        opening_value=round_half_up(opening_value, 2),
                        projected_sales=week_sales,
                        projected_revenue=round_half_up(week_revenue, 2),
                        avg_selling_price=(
                            round_half_up(week_revenue / week_sales, 2) if week_sales > 0 else 0.0
                        ),
                        closing_stock=closing_stock,
                        closing_value=round_half_up(closing_value, 2),
                        cumulative_sell_through=(
                            round_half_up(cumulative_sales / total_stock * 100, 2) if total_stock > 0 else 0.0
                        ),
                        cumulative_recovery=round_half_up(cumulative_recovery, 2),
                    )
                )

            sell_through = cumulative_sales / total_stock * 100 if total_stock > 0 else 0.0
            margin_loss = starting_value - cumulative_recovery
            risk = assess_risk(sell_through, margin_loss, starting_value)
            extra["overall_risk"] = risk.overall_risk.value

        final = projections[-1]
        LOGGER.info(
            "Scenario %s: skus=%d sell_through=%.2f recovery=%.2f risk=%s",
            request.scenario_name,
            len(items),
            sell_through,
            cumulative_recovery,
            risk.overall_risk.value,
        )

        return SimulationResult(
            scenario_name=request.scenario_name,
            total_skus=len(items),
            starting_inventory_value=round_half_up(starting_value, 2),
            projected_recovery_value=round_half_up(cumulative_recovery, 2),
            projected_margin_loss=round_half_up(margin_loss, 2),
            projected_sell_through_pct=round_half_up(sell_through, 2),
            projected_remaining_stock=final.closing_stock,
            projected_remaining_value=final.closing_value,
            weekly_projections=projections,
            risk_assessment=risk,
        )
