"""Tests for strategy assessment tiers, viability and run comparison."""

from dataclasses import replace
from types import SimpleNamespace

import pytest

from backtest.runner import run_backtest
from sim_core.assessment import (
    AssessmentThresholds,
    PerformanceTier,
    assess_strategy,
    compare_results,
)
from sim_core.contracts import StrategySpec, StrategyType
from sim_core.metrics import compute_metrics

_BASE = compute_metrics(10_000.0, 10_000.0, [], 30.0)


def _result(strategy_id: str = "s1", **metrics) -> SimpleNamespace:
    return SimpleNamespace(strategy_id=strategy_id, metrics=replace(_BASE, **metrics))


STRONG = dict(sharpe_ratio=2.0, win_rate=60.0, max_drawdown=10.0, profit_factor=2.0, total_trades=20)


class TestAssessStrategy:
    def test_all_pass_is_excellent_and_active(self) -> None:
        a = assess_strategy(_result(**STRONG))
        assert a.tier is PerformanceTier.EXCELLENT
        assert a.is_viable
        assert a.should_activate
        assert a.recommendations == []
        assert len(a.reasons) == 5

    def test_small_sample_viable_but_not_activated(self) -> None:
        a = assess_strategy(_result(**{**STRONG, "total_trades": 3}))
        assert a.tier is PerformanceTier.EXCELLENT
        assert a.is_viable
        assert not a.should_activate
        assert any("Sample size 3" in r for r in a.reasons)

    def test_low_sharpe_is_good_not_viable(self) -> None:
        a = assess_strategy(_result(**{**STRONG, "sharpe_ratio": 0.5}))
        assert a.tier is PerformanceTier.GOOD
        assert not a.is_viable
        assert not a.should_activate

    def test_acceptable(self) -> None:
        a = assess_strategy(_result(**{**STRONG, "win_rate": 40.0, "profit_factor": 1.0}))
        assert a.tier is PerformanceTier.ACCEPTABLE
        assert not a.is_viable

    def test_poor(self) -> None:
        a = assess_strategy(_result(**{**STRONG, "sharpe_ratio": 0.0, "win_rate": 40.0}))
        assert a.tier is PerformanceTier.POOR
        assert len(a.recommendations) == 2

    def test_rejected(self) -> None:
        a = assess_strategy(
            _result(sharpe_ratio=-1.0, win_rate=10.0, max_drawdown=50.0, profit_factor=0.2, total_trades=2)
        )
        assert a.tier is PerformanceTier.REJECTED
        assert len(a.recommendations) == 5

    def test_custom_thresholds(self) -> None:
        lenient = AssessmentThresholds(min_sharpe=0.1, min_win_rate=30.0, max_drawdown=60.0,
                                       min_profit_factor=0.5, min_total_trades=1)
        a = assess_strategy(_result(sharpe_ratio=0.2, win_rate=35.0, max_drawdown=50.0,
                                    profit_factor=0.6, total_trades=2), lenient)
        assert a.tier is PerformanceTier.EXCELLENT
        assert a.thresholds is lenient

    def test_real_run(self, wave_bars, seeded_config) -> None:
        spec = StrategySpec("trend", StrategyType.TREND_FOLLOWING)
        result = run_backtest(spec, wave_bars, seeded_config)
        a = assess_strategy(result)
        assert a.strategy_id == "trend"
        assert a.metrics is result.metrics
        assert isinstance(a.tier, PerformanceTier)


class TestCompareResults:
    def test_improved_when_sharpe_and_win_rate_rise(self) -> None:
        improved, changes = compare_results(
            _result(sharpe_ratio=2.0, win_rate=60.0), _result(sharpe_ratio=1.0, win_rate=50.0)
        )
        assert improved
        assert changes["sharpe_ratio"]["change"] == pytest.approx(100.0)
        assert changes["win_rate"]["change"] == pytest.approx(20.0)
        assert set(changes) == {"sharpe_ratio", "win_rate", "total_return", "max_drawdown", "profit_factor"}

    def test_not_improved_when_win_rate_falls(self) -> None:
        improved, _ = compare_results(
            _result(sharpe_ratio=2.0, win_rate=40.0), _result(sharpe_ratio=1.0, win_rate=50.0)
        )
        assert not improved

    def test_zero_baseline(self) -> None:
        _, changes = compare_results(_result(total_return=5.0), _result(total_return=0.0))
        assert changes["total_return"]["change"] == 100.0
        _, changes = compare_results(_result(total_return=-5.0), _result(total_return=0.0))
        assert changes["total_return"]["change"] == 0.0

    def test_negative_baseline_uses_magnitude(self) -> None:
        _, changes = compare_results(_result(sharpe_ratio=-0.5), _result(sharpe_ratio=-1.0))
        assert changes["sharpe_ratio"]["change"] == pytest.approx(50.0)
