"""
Performance metrics over realized (exit) trade PnL.

Degenerate inputs (no exits, zero variance, no losses) return exact values
(0 or PROFIT_FACTOR_CAP), never NaN or infinity, so tests can assert equality.
"""

from __future__ import annotations

import math
import statistics
from dataclasses import dataclass
from typing import Sequence

TRADING_DAYS = 252
PROFIT_FACTOR_CAP = 999.0
ASSUMED_MARKET_RETURN_PCT = 5.0


@dataclass(frozen=True)
class PerformanceMetrics:
    total_return: float
    annualized_return: float
    win_rate: float
    max_drawdown: float
    sharpe_ratio: float
    profit_factor: float
    calmar_ratio: float
    sortino_ratio: float
    var_95: float
    alpha: float
    beta: float
    average_win: float
    average_loss: float
    expectancy: float
    consistency_score: float
    total_trades: int


def total_return_pct(initial_capital: float, final_capital: float) -> float:
    if initial_capital <= 0:
        return 0.0
    return (final_capital - initial_capital) / initial_capital * 100


def annualized_return_pct(total_return: float, period_days: float) -> float:
    """Linear annualization over the replayed span; spans under a day are not scaled."""
    if period_days < 1:
        return total_return
    return total_return * 365 / period_days


def win_rate_pct(pnls: Sequence[float]) -> float:
    if not pnls:
        return 0.0
    return sum(1 for p in pnls if p > 0) / len(pnls) * 100


def max_drawdown_pct(initial_capital: float, pnls: Sequence[float]) -> float:
    """Largest peak-to-running-capital drop, replaying exit PnL in order."""
    peak = initial_capital
    running = initial_capital
    worst = 0.0
    for pnl in pnls:
        running += pnl
        peak = max(peak, running)
        if peak > 0:
            worst = max(worst, (peak - running) / peak * 100)
    return worst


def sharpe_ratio(returns: Sequence[float]) -> float:
    """mean / population stdev, annualized by sqrt(252). 0 with < 2 returns or zero stdev."""
    if len(returns) < 2:
        return 0.0
    std = statistics.pstdev(returns)
    if std == 0:
        return 0.0
    return statistics.fmean(returns) / std * math.sqrt(TRADING_DAYS)


def sortino_ratio(returns: Sequence[float]) -> float:
    """mean / downside deviation (losses only), annualized. 0 when degenerate."""
    if len(returns) < 2:
        return 0.0
    downside = math.sqrt(sum(min(r, 0.0) ** 2 for r in returns) / len(returns))
    if downside == 0:
        return 0.0
    return statistics.fmean(returns) / downside * math.sqrt(TRADING_DAYS)


def profit_factor(pnls: Sequence[float]) -> float:
    wins = sum(p for p in pnls if p > 0)
    losses = abs(sum(p for p in pnls if p < 0))
    if losses > 0:
        return wins / losses
    return PROFIT_FACTOR_CAP if wins > 0 else 0.0


def value_at_risk_95(returns: Sequence[float]) -> float:
    """Historical 5th-percentile trade return, reported as a positive loss %."""
    if not returns:
        return 0.0
    ordered = sorted(returns)
    idx = int(math.floor(0.05 * len(ordered)))
    return max(0.0, -ordered[idx]) * 100


def compute_metrics(
    initial_capital: float,
    final_capital: float,
    exit_pnls: Sequence[float],
    period_days: float,
) -> PerformanceMetrics:
    """All result metrics from the ordered exit-trade PnL list."""
    pnls = list(exit_pnls)
    returns = [p / initial_capital for p in pnls] if initial_capital > 0 else []
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]

    total = total_return_pct(initial_capital, final_capital)
    drawdown = max_drawdown_pct(initial_capital, pnls)
    win_rate = win_rate_pct(pnls)
    trade_count = len(pnls)

    sample_score = min(trade_count / 30, 1.0) * 50
    consistency = min(win_rate / 50, 1.0) * 50 + sample_score

    return PerformanceMetrics(
        total_return=total,
        annualized_return=annualized_return_pct(total, period_days),
        win_rate=win_rate,
        max_drawdown=drawdown,
        sharpe_ratio=sharpe_ratio(returns),
        profit_factor=profit_factor(pnls),
        calmar_ratio=total / drawdown if drawdown > 0 else 0.0,
        sortino_ratio=sortino_ratio(returns),
        var_95=value_at_risk_95(returns),
        alpha=total - ASSUMED_MARKET_RETURN_PCT,
        beta=1.0,
        average_win=sum(wins) / len(wins) if wins else 0.0,
        average_loss=abs(sum(losses)) / len(losses) if losses else 0.0,
        expectancy=(final_capital - initial_capital) / trade_count if trade_count else 0.0,
        consistency_score=consistency,
        total_trades=trade_count,
    )
