"""
Strategy assessment: grade a backtest result against performance thresholds.

Score weights: Sharpe 2, win rate 2, drawdown 1, profit factor 1, sample size 1.
Tier by score: >=6 EXCELLENT, >=5 GOOD, >=4 ACCEPTABLE, >=2 POOR, else REJECTED.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from sim_core.metrics import PerformanceMetrics

if TYPE_CHECKING:
    from backtest.runner import BacktestResult

logger = logging.getLogger("simlab.assessment")


class PerformanceTier(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    ACCEPTABLE = "ACCEPTABLE"
    POOR = "POOR"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class AssessmentThresholds:
    min_sharpe: float = 1.5
    min_win_rate: float = 55.0
    max_drawdown: float = 20.0
    min_profit_factor: float = 1.3
    min_total_trades: int = 10


@dataclass(frozen=True)
class StrategyAssessment:
    strategy_id: str
    tier: PerformanceTier
    is_viable: bool
    should_activate: bool
    metrics: PerformanceMetrics
    thresholds: AssessmentThresholds
    reasons: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


def _tier(score: int) -> PerformanceTier:
    if score >= 6:
        return PerformanceTier.EXCELLENT
    if score >= 5:
        return PerformanceTier.GOOD
    if score >= 4:
        return PerformanceTier.ACCEPTABLE
    if score >= 2:
        return PerformanceTier.POOR
    return PerformanceTier.REJECTED


def assess_strategy(
    result: BacktestResult,
    thresholds: AssessmentThresholds | None = None,
) -> StrategyAssessment:
    """Grade *result*; viable needs Sharpe, win rate and drawdown to pass."""
    t = thresholds or AssessmentThresholds()
    m = result.metrics
    reasons: list[str] = []
    recs: list[str] = []

    sharpe_ok = m.sharpe_ratio >= t.min_sharpe
    win_ok = m.win_rate >= t.min_win_rate
    dd_ok = m.max_drawdown <= t.max_drawdown
    pf_ok = m.profit_factor >= t.min_profit_factor
    sample_ok = m.total_trades >= t.min_total_trades

    if sharpe_ok:
        reasons.append(f"Sharpe ratio {m.sharpe_ratio:.2f} meets threshold ({t.min_sharpe})")
    else:
        reasons.append(f"Sharpe ratio {m.sharpe_ratio:.2f} below threshold ({t.min_sharpe})")
        recs.append("Improve risk-adjusted returns: reduce volatility or raise profit per trade")

    if win_ok:
        reasons.append(f"Win rate {m.win_rate:.1f}% meets threshold ({t.min_win_rate}%)")
    else:
        reasons.append(f"Win rate {m.win_rate:.1f}% below threshold ({t.min_win_rate}%)")
        recs.append("Improve entry signal quality or tighten stop-loss criteria")

    if dd_ok:
        reasons.append(f"Max drawdown {m.max_drawdown:.1f}% within limit ({t.max_drawdown}%)")
    else:
        reasons.append(f"Max drawdown {m.max_drawdown:.1f}% exceeds limit ({t.max_drawdown}%)")
        recs.append("Tighten risk controls or reduce position sizing")

    if pf_ok:
        reasons.append(f"Profit factor {m.profit_factor:.2f} meets threshold ({t.min_profit_factor})")
    else:
        reasons.append(f"Profit factor {m.profit_factor:.2f} below threshold ({t.min_profit_factor})")
        recs.append("Increase average win size or cut average loss size")

    if sample_ok:
        reasons.append(f"Sample size {m.total_trades} trades sufficient ({t.min_total_trades}+)")
    else:
        reasons.append(f"Sample size {m.total_trades} trades insufficient ({t.min_total_trades}+)")
        recs.append("Backtest over more history or a finer timeframe")

    score = 2 * sharpe_ok + 2 * win_ok + dd_ok + pf_ok + sample_ok
    is_viable = sharpe_ok and win_ok and dd_ok
    assessment = StrategyAssessment(
        strategy_id=result.strategy_id,
        tier=_tier(score),
        is_viable=is_viable,
        should_activate=is_viable and sample_ok,
        metrics=m,
        thresholds=t,
        reasons=reasons,
        recommendations=recs,
    )
    logger.info(
        "Strategy %s assessed %s (viable=%s, activate=%s)",
        result.strategy_id, assessment.tier.value, assessment.is_viable, assessment.should_activate,
    )
    return assessment


_COMPARED = ("sharpe_ratio", "win_rate", "total_return", "max_drawdown", "profit_factor")


def compare_results(current: BacktestResult, previous: BacktestResult) -> tuple[bool, dict[str, dict[str, float]]]:
    """Percent change per headline metric; improved when Sharpe and win rate both rose."""
    cur = asdict(current.metrics)
    prev = asdict(previous.metrics)
    changes: dict[str, dict[str, float]] = {}
    for key in _COMPARED:
        c, p = cur[key], prev[key]
        if p != 0:
            change = (c - p) / abs(p) * 100
        else:
            change = 100.0 if c > 0 else 0.0
        changes[key] = {"current": c, "previous": p, "change": change}
    improved = changes["sharpe_ratio"]["change"] > 0 and changes["win_rate"]["change"] > 0
    return improved, changes
