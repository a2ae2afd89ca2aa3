from __future__ import annotations

from pathlib import Path
import sys

import pytest
import yaml

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from merchcore.engine.core.errors import ConfigurationError
from merchcore.engine.models.schemas import (
    OptimizationConfig,
    RecommendedAction,
    SKUSnapshot,
    Strategy,
    UrgencyLevel,
)
from merchcore.engine.services.clearance_optimizer_service import (
    ClearanceOptimizerService,
    UNSOLD_DAYS_SENTINEL,
    UrgencyThresholds,
    determine_action,
    estimate_elasticity,
    generate_reasoning,
    optimal_markdown,
    project_sales,
    summarize,
    urgency_level,
    urgency_score,
)


def _sku(**overrides) -> SKUSnapshot:
    data = {
        "sku_id": "SKU-1",
        "sku_code": "TS-001",
        "sku_name": "Basic Tee",
        "current_stock": 100,
        "current_price": 50.0,
        "cost_price": 20.0,
        "weeks_on_hand": 6,
        "sell_through_rate": 30,
        "weeks_to_season_end": 10,
        "avg_weekly_sales": 10,
    }
    data.update(overrides)
    return SKUSnapshot(**data)


def _slow_mover() -> SKUSnapshot:
    return _sku(
        sku_id="SKU-SLOW",
        current_stock=300,
        current_price=299.99,
        cost_price=149.99,
        weeks_on_hand=20,
        sell_through_rate=10,
        weeks_to_season_end=6,
        avg_weekly_sales=25,
    )


def test_stock_value_is_derived_when_omitted() -> None:
    assert _sku().current_stock_value == pytest.approx(5000.0)
    assert _sku(current_stock_value=1234.5).current_stock_value == 1234.5


def test_urgency_is_monotone_in_weeks_on_hand() -> None:
    scores = [urgency_score(_sku(weeks_on_hand=weeks)) for weeks in range(0, 25, 2)]
    assert scores == sorted(scores)
    assert all(0.0 <= s <= 1.0 for s in scores)


def test_urgency_is_monotone_in_sell_through() -> None:
    scores = [urgency_score(_sku(sell_through_rate=rate)) for rate in range(0, 101, 10)]
    assert scores == sorted(scores, reverse=True)


def test_urgency_saturates_at_one() -> None:
    sku = _sku(
        weeks_on_hand=40,
        sell_through_rate=0,
        weeks_to_season_end=0,
        current_stock_value=500_000,
    )
    assert urgency_score(sku) == 1.0


@pytest.mark.parametrize(
    "score,level",
    [
        (0.95, UrgencyLevel.CRITICAL),
        (0.8, UrgencyLevel.CRITICAL),
        (0.79, UrgencyLevel.HIGH),
        (0.6, UrgencyLevel.HIGH),
        (0.4, UrgencyLevel.MEDIUM),
        (0.39, UrgencyLevel.LOW),
        (0.0, UrgencyLevel.LOW),
    ],
)
def test_urgency_level_thresholds(score: float, level: UrgencyLevel) -> None:
    assert urgency_level(score) == level


def test_urgency_level_accepts_custom_thresholds() -> None:
    strict = UrgencyThresholds(critical=0.9, high=0.7, medium=0.5)
    assert urgency_level(0.85, strict) == UrgencyLevel.HIGH
    assert urgency_level(0.45, strict) == UrgencyLevel.LOW


@pytest.mark.parametrize(
    "sell_through,weeks_on_hand,expected",
    [
        (10, 12, 2.34),
        (10, 5, 1.95),
        (40, 5, 1.5),
        (70, 5, 1.2),
        (70, 12, 1.44),
    ],
)
def test_elasticity_factors_compound(sell_through: float, weeks_on_hand: float, expected: float) -> None:
    sku = _sku(sell_through_rate=sell_through, weeks_on_hand=weeks_on_hand)
    assert estimate_elasticity(sku) == pytest.approx(expected)


@pytest.mark.parametrize(
    "strategy,expected",
    [
        (Strategy.MAXIMIZE_RECOVERY, 17.5),
        (Strategy.BALANCED, 25.0),
        (Strategy.MAXIMIZE_SELL_THROUGH, 32.5),
    ],
)
def test_markdown_scales_with_strategy(strategy: Strategy, expected: float) -> None:
    config = OptimizationConfig(strategy=strategy)
    assert optimal_markdown(_sku(), 0.5, 1.5, config) == pytest.approx(expected)


def test_markdown_is_capped_by_max_and_margin() -> None:
    sku = _sku(sell_through_rate=5, weeks_to_season_end=2)

    assert optimal_markdown(sku, 1.0, 1.5, OptimizationConfig()) == pytest.approx(60.0)
    assert optimal_markdown(sku, 1.0, 1.5, OptimizationConfig(min_margin_pct=-100)) == pytest.approx(70.0)
    assert optimal_markdown(
        sku, 1.0, 1.5, OptimizationConfig(max_markdown_pct=40, min_margin_pct=-100)
    ) == pytest.approx(40.0)


def test_markdown_is_floored_at_zero() -> None:
    healthy = _sku(sell_through_rate=60, weeks_to_season_end=20)
    underwater = _sku(cost_price=60.0)

    assert optimal_markdown(healthy, 0.0, 1.5, OptimizationConfig()) == 0.0
    assert optimal_markdown(underwater, 0.9, 1.5, OptimizationConfig()) == 0.0


def test_markdown_bounds_hold_across_inputs() -> None:
    for strategy in Strategy:
        for min_margin in (-100.0, 0.0, 20.0):
            config = OptimizationConfig(strategy=strategy, max_markdown_pct=55, min_margin_pct=min_margin)
            for urgency in (0.0, 0.3, 0.7, 1.0):
                for sell_through in (2, 30, 80):
                    for weeks in (1, 6, 12):
                        sku = _sku(sell_through_rate=sell_through, weeks_to_season_end=weeks)
                        markdown = optimal_markdown(sku, urgency, 1.5, config)
                        assert 0.0 <= markdown <= config.max_markdown_pct
                        if min_margin > -100:
                            margin = (sku.current_price - sku.cost_price) / sku.current_price * 100
                            assert margin - markdown >= min_margin - 0.05


@pytest.mark.parametrize(
    "overrides,markdown,expected",
    [
        ({"current_stock": 5, "sell_through_rate": 1}, 90, RecommendedAction.HOLD),
        ({"sell_through_rate": 3}, 65, RecommendedAction.DISCONTINUE),
        ({"sell_through_rate": 3}, 60, RecommendedAction.MARKDOWN),
        ({"sell_through_rate": 40}, 20, RecommendedAction.PROMOTE),
        ({"sell_through_rate": 40}, 30, RecommendedAction.MARKDOWN),
        ({"current_stock": 30, "current_price": 100.0, "sell_through_rate": 10}, 40, RecommendedAction.BUNDLE),
        ({"current_stock": 30, "current_price": 20.0, "sell_through_rate": 10}, 40, RecommendedAction.MARKDOWN),
    ],
)
def test_decision_table_first_match_wins(overrides, markdown: float, expected: RecommendedAction) -> None:
    assert determine_action(_sku(**overrides), 0.5, markdown) == expected


def test_project_sales_applies_elasticity() -> None:
    projection = project_sales(_sku(), 20, 1.5, weeks_ahead=8)

    assert projection.weekly_sales == 13
    assert projection.units == 100
    assert projection.new_price == pytest.approx(40.0)
    assert projection.revenue == pytest.approx(4000.0)
    assert projection.days_to_sell == 54


def test_project_sales_without_demand_uses_sentinel() -> None:
    projection = project_sales(_sku(current_stock=0, avg_weekly_sales=0), 30, 1.5)

    assert projection.weekly_sales == 0
    assert projection.units == 0
    assert projection.days_to_sell == UNSOLD_DAYS_SENTINEL


def test_project_sales_derives_base_rate_and_caps_days() -> None:
    derived = project_sales(_sku(current_stock=120, avg_weekly_sales=0), 0, 1.5)
    assert derived.weekly_sales == 10

    slow = project_sales(_sku(current_stock=1000, avg_weekly_sales=1), 0, 1.5)
    assert slow.days_to_sell == 365


def test_reasoning_mentions_drivers() -> None:
    text = generate_reasoning(_slow_mover(), UrgencyLevel.CRITICAL, RecommendedAction.MARKDOWN, 50.0)

    assert text.startswith("Critical urgency")
    assert "20 weeks of stock on hand." in text
    assert "Low sell-through rate of 10.0%." in text
    assert "Only 6 weeks until season end." in text
    assert "Recommend 50% markdown" in text


def test_optimize_slow_mover_end_to_end(tmp_path: Path) -> None:
    service = ClearanceOptimizerService(config_root=str(tmp_path))
    [rec] = service.optimize([_slow_mover()], OptimizationConfig(), weeks_to_project=8)

    assert rec.urgency_score == pytest.approx(0.85)
    assert rec.urgency_level == UrgencyLevel.CRITICAL
    assert rec.demand_elasticity == pytest.approx(2.34)
    assert rec.recommended_action == RecommendedAction.MARKDOWN
    assert rec.recommended_markdown_pct == pytest.approx(50.0)
    assert rec.recommended_new_price == pytest.approx(150.0, abs=0.01)
    assert rec.projected_units_sold == 300
    assert rec.projected_revenue == pytest.approx(44998.5, abs=0.01)
    assert rec.projected_days_to_sell == 39
    assert rec.projected_margin_loss == pytest.approx(300 * 299.99 - rec.projected_revenue, abs=0.01)


def test_optimize_sorts_by_urgency(tmp_path: Path) -> None:
    skus = [
        _sku(sku_id="calm", weeks_on_hand=1, sell_through_rate=80, weeks_to_season_end=20),
        _slow_mover(),
        _sku(sku_id="middle"),
    ]
    results = ClearanceOptimizerService(config_root=str(tmp_path)).optimize(skus)

    scores = [rec.urgency_score for rec in results]
    assert scores == sorted(scores, reverse=True)
    assert results[0].sku_id == "SKU-SLOW"
    assert results[-1].sku_id == "calm"


def test_optimize_without_elasticity_analysis(tmp_path: Path) -> None:
    config = OptimizationConfig(analyze_elasticity=False)
    [rec] = ClearanceOptimizerService(config_root=str(tmp_path)).optimize([_slow_mover()], config)

    assert rec.demand_elasticity == pytest.approx(1.5)


def test_optimize_rejects_invalid_config(tmp_path: Path) -> None:
    service = ClearanceOptimizerService(config_root=str(tmp_path))

    with pytest.raises(ConfigurationError):
        service.optimize([_sku()], OptimizationConfig(max_markdown_pct=120))
    with pytest.raises(ConfigurationError):
        service.optimize([_sku()], OptimizationConfig(min_margin_pct=-150))


def test_thresholds_are_loaded_from_yaml(tmp_path: Path) -> None:
    (tmp_path / "thresholds.yaml").write_text(
        yaml.safe_dump({"clearance": {"urgency_thresholds": {"critical": 0.95}}}),
        encoding="utf-8",
    )
    (tmp_path / "settings.yaml").write_text(
        yaml.safe_dump({"clearance": {"strategy": "MAXIMIZE_RECOVERY", "weeks_to_project": 4}}),
        encoding="utf-8",
    )
    service = ClearanceOptimizerService(config_root=str(tmp_path))

    assert service.thresholds.critical == 0.95
    assert service.thresholds.high == 0.6
    assert service.default_config.strategy == Strategy.MAXIMIZE_RECOVERY
    assert service.weeks_to_project == 4

    [rec] = service.optimize([_slow_mover()])
    assert rec.urgency_level == UrgencyLevel.HIGH


def test_injected_thresholds_override_yaml(tmp_path: Path) -> None:
    service = ClearanceOptimizerService(
        config_root=str(tmp_path), thresholds=UrgencyThresholds(critical=0.4, high=0.3, medium=0.1)
    )
    [rec] = service.optimize([_sku()])
    assert rec.urgency_level == UrgencyLevel.CRITICAL


def test_filter_eligible() -> None:
    skus = [
        _sku(sku_id="a", weeks_on_hand=2, sell_through_rate=70),
        _sku(sku_id="b", weeks_on_hand=12, sell_through_rate=20),
        _sku(sku_id="c", weeks_on_hand=15, sell_through_rate=45),
    ]

    assert [s.sku_id for s in ClearanceOptimizerService.filter_eligible(skus)] == ["a", "b", "c"]
    assert [s.sku_id for s in ClearanceOptimizerService.filter_eligible(skus, sku_ids=["c", "a"])] == ["a", "c"]
    assert [
        s.sku_id
        for s in ClearanceOptimizerService.filter_eligible(skus, min_weeks_on_hand=10, max_sell_through=30)
    ] == ["b"]


def test_summary_counts_and_outcome(tmp_path: Path) -> None:
    service = ClearanceOptimizerService(config_root=str(tmp_path))
    skus = [
        _slow_mover(),
        _sku(sku_id="hold", current_stock=5),
        _sku(sku_id="promo", sell_through_rate=40, weeks_on_hand=2, weeks_to_season_end=20),
    ]
    bundle = service.optimize_with_summary(skus)
    recommendations = bundle["recommendations"]
    summary = bundle["summary"]

    assert summary.total_skus_analyzed == 3
    assert sum(summary.skus_by_urgency.values()) == 3
    assert sum(summary.skus_by_action.values()) == 3
    assert set(summary.skus_by_action) == {
        "markdown",
        "transfer",
        "bundle",
        "promote",
        "discontinue",
        "hold",
    }
    assert summary.skus_by_action["transfer"] == 0
    assert summary.skus_by_action["hold"] == 1

    outcome = summary.expected_outcome
    assert outcome.total_recovery == pytest.approx(sum(r.projected_revenue for r in recommendations), abs=0.01)
    total_stock = sum(r.current_stock for r in recommendations)
    total_units = sum(r.projected_units_sold for r in recommendations)
    assert outcome.avg_sell_through == pytest.approx(round(total_units / total_stock * 100, 2))
    assert outcome.avg_days_to_sell == round(sum(r.projected_days_to_sell for r in recommendations) / 3)


def test_summary_of_nothing_is_zeroed() -> None:
    summary = summarize([])

    assert summary.total_skus_analyzed == 0
    assert all(count == 0 for count in summary.skus_by_urgency.values())
    assert summary.expected_outcome.total_recovery == 0.0
    assert summary.expected_outcome.avg_sell_through == 0.0
    assert summary.expected_outcome.avg_days_to_sell == 0


def test_project_sales_rounds_ties_up() -> None:
    # 6 * (1 + 0.5 * 1.5) = 10.5
    assert project_sales(_sku(avg_weekly_sales=6), 50, 1.5).weekly_sales == 11

    # 3 units at 2 a week: 10.5 days
    projection = project_sales(_sku(current_stock=3, avg_weekly_sales=2), 0, 1.5)
    assert projection.weekly_sales == 2
    assert projection.days_to_sell == 11
    assert projection.units == 3


def test_optimize_rejects_zero_weeks(tmp_path: Path) -> None:
    service = ClearanceOptimizerService(config_root=str(tmp_path))

    with pytest.raises(ValueError, match="weeks_to_project"):
        service.optimize([_sku()], weeks_to_project=0)
