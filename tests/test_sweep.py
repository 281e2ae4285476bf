"""Tests for the parameter sweep."""

import threading

import pytest

from backtest.runner import BacktestEngine, RunStatus
from backtest.sweep import SweepResult, best_by, expand_grid, run_sweep
from sim_core.contracts import InvalidInputError, StrategySpec, StrategyType

TREND = StrategySpec("trend", StrategyType.TREND_FOLLOWING, parameters={"position_pct": 0.2})


class TestExpandGrid:
    def test_cartesian_product_in_order(self) -> None:
        grid = {"fast_period": [5, 10], "slow_period": [20, 30]}
        assert expand_grid(grid) == [
            {"fast_period": 5, "slow_period": 20},
            {"fast_period": 5, "slow_period": 30},
            {"fast_period": 10, "slow_period": 20},
            {"fast_period": 10, "slow_period": 30},
        ]

    def test_empty_grid_is_single_default_run(self) -> None:
        assert expand_grid({}) == [{}]

    def test_empty_values_rejected(self) -> None:
        with pytest.raises(InvalidInputError):
            expand_grid({"fast_period": []})


class TestRunSweep:
    def test_results_in_grid_order_and_match_single_runs(self, wave_bars, seeded_config) -> None:
        grid = {"fast_period": [5, 8], "slow_period": [20, 40]}
        results = run_sweep(TREND, wave_bars, grid, seeded_config, max_workers=4)

        assert [r.parameters for r in results] == expand_grid(grid)
        for r in results:
            assert r.ok
            spec = StrategySpec(TREND.id, TREND.type, parameters={**TREND.parameters, **r.parameters})
            single = BacktestEngine(seeded_config).run(spec, wave_bars)
            assert r.result.trades == single.trades
            assert r.result.final_capital == single.final_capital

    def test_invalid_point_reported_not_raised(self, wave_bars, seeded_config) -> None:
        results = run_sweep(TREND, wave_bars, {"fast_period": [5, 50], "slow_period": [20]}, seeded_config)
        ok, bad = results
        assert ok.ok
        assert not bad.ok
        assert "fast_period" in bad.error

    def test_abort_event_marks_runs_partial(self, wave_bars, seeded_config) -> None:
        stop = threading.Event()
        stop.set()
        results = run_sweep(TREND, wave_bars, {"fast_period": [5]}, seeded_config, abort_event=stop)
        assert results[0].result.status is RunStatus.ABORTED_PARTIAL


class TestBestBy:
    def test_picks_highest_metric(self, wave_bars, seeded_config) -> None:
        results = run_sweep(TREND, wave_bars, {"fast_period": [3, 5, 8], "slow_period": [20]}, seeded_config)
        best = best_by(results, "total_return")
        assert best is not None
        assert best.result.total_return == max(r.result.total_return for r in results)

    def test_skips_failed_runs(self) -> None:
        assert best_by([SweepResult(parameters={}, error="boom")]) is None
