"""Tests for performance metrics, including degenerate inputs."""

import math

import pytest

from sim_core.metrics import (
    PROFIT_FACTOR_CAP,
    annualized_return_pct,
    compute_metrics,
    max_drawdown_pct,
    profit_factor,
    sharpe_ratio,
    sortino_ratio,
    value_at_risk_95,
    win_rate_pct,
)


class TestDegenerate:
    def test_no_exits(self) -> None:
        m = compute_metrics(10_000, 10_000, [], 30)
        assert m.win_rate == 0
        assert m.sharpe_ratio == 0
        assert m.max_drawdown == 0
        assert m.profit_factor == 0
        assert m.total_trades == 0
        assert m.expectancy == 0
        assert all(math.isfinite(v) for v in vars(m).values())

    def test_single_losing_trade(self) -> None:
        m = compute_metrics(10_000, 9_900, [-100.0], 30)
        assert m.profit_factor == 0
        assert m.win_rate == 0
        assert m.sharpe_ratio == 0  # fewer than two returns
        assert m.max_drawdown == pytest.approx(1.0)

    def test_wins_without_losses_capped(self) -> None:
        assert profit_factor([10.0, 5.0]) == PROFIT_FACTOR_CAP

    def test_zero_variance_sharpe(self) -> None:
        assert sharpe_ratio([0.01, 0.01, 0.01]) == 0

    def test_sortino_without_losses(self) -> None:
        assert sortino_ratio([0.01, 0.02]) == 0

    def test_var_without_returns(self) -> None:
        assert value_at_risk_95([]) == 0


class TestValues:
    def test_total_and_annualized(self) -> None:
        m = compute_metrics(10_000, 11_000, [1_000.0], 365)
        assert m.total_return == pytest.approx(10.0)
        assert m.annualized_return == pytest.approx(10.0)

    def test_short_span_not_annualized(self) -> None:
        assert annualized_return_pct(2.0, 0.5) == 2.0
        assert annualized_return_pct(2.0, 73) == pytest.approx(10.0)

    def test_win_rate(self) -> None:
        assert win_rate_pct([1.0, -1.0, 2.0, 0.0]) == 50.0

    def test_drawdown_replays_in_order(self) -> None:
        # 10000 -> 11000 (peak) -> 9900 -> 10400
        assert max_drawdown_pct(10_000, [1_000, -1_100, 500]) == pytest.approx(10.0)

    def test_profit_factor(self) -> None:
        assert profit_factor([300.0, -100.0, -50.0]) == pytest.approx(2.0)

    def test_sharpe_uses_population_stdev(self) -> None:
        returns = [0.01, -0.01, 0.02, 0.0]
        mean = sum(returns) / 4
        std = math.sqrt(sum((r - mean) ** 2 for r in returns) / 4)
        assert sharpe_ratio(returns) == pytest.approx(mean / std * math.sqrt(252))

    def test_var_95_is_loss_percent(self) -> None:
        returns = [-0.05, -0.05] + [0.01] * 18
        assert value_at_risk_95(returns) == pytest.approx(5.0)

    def test_secondary_metrics(self) -> None:
        pnls = [200.0, -100.0, 300.0, -50.0]
        m = compute_metrics(10_000, 10_350, pnls, 10)
        assert m.average_win == pytest.approx(250.0)
        assert m.average_loss == pytest.approx(75.0)
        assert m.expectancy == pytest.approx(350.0 / 4)
        assert m.beta == 1.0
        assert m.alpha == pytest.approx(m.total_return - 5.0)
        assert m.calmar_ratio == pytest.approx(m.total_return / m.max_drawdown)
        assert m.total_trades == 4
