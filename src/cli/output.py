"""
Human-readable backtest output for the terminal.

Every CLI command uses these formatters; the structured event log carries the
same data as JSON.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from sim_core.clock import format_nanos

if TYPE_CHECKING:
    from backtest.runner import BacktestResult
    from backtest.sweep import SweepResult
    from execution.fill_model import FillProfile
    from sim_core.assessment import StrategyAssessment


def _fmt_factor(value: float) -> str:
    return f"{value:.2f}"


def format_backtest_summary(result: BacktestResult, *, show_trades: bool = True) -> str:
    """Format backtest result summary."""
    m = result.metrics
    wins = sum(1 for t in result.exit_trades if t.pnl > 0)
    losses = sum(1 for t in result.exit_trades if t.pnl < 0)
    lines = [
        f"=== Backtest: {result.strategy_id} [{result.status.value}] ===",
        f"Period       : {result.start_time.isoformat()} -> {result.end_time.isoformat()} ({result.bars_processed} bars)",
        f"Seed         : {result.random_seed}",
        f"Initial cap. : ${result.initial_capital:,.2f}",
        f"Final cap.   : ${result.final_capital:,.2f}",
        f"Return       : {m.total_return:+.2f}%  (annualized {m.annualized_return:+.2f}%)",
        f"Sharpe       : {m.sharpe_ratio:.2f}  |  Sortino {m.sortino_ratio:.2f}  |  Calmar {m.calmar_ratio:.2f}",
        f"Max drawdown : {m.max_drawdown:.2f}%  |  VaR95 {m.var_95:.2f}%",
        f"Win rate     : {m.win_rate:.1f}%  |  Profit factor {_fmt_factor(m.profit_factor)}",
        f"Trades       : {m.total_trades} exits (W:{wins} / L:{losses}), {len(result.fills)} fills",
        f"Commission   : ${result.total_commission:,.2f}",
    ]
    if result.open_positions:
        lines.append("Open (excluded from metrics):")
        for pos in result.open_positions:
            lines.append(f"  {pos.symbol} {pos.side.value} {pos.quantity:g} @ avg {pos.avg_price:.2f}")
    if show_trades and result.trades:
        lines.append("")
        for i, t in enumerate(result.trades, 1):
            pnl = f" | PnL ${t.pnl:+.2f}" if t.entry_exit.value == "EXIT" else ""
            lines.append(
                f"  #{i:<3} {t.entry_exit.value:<5} {t.side.value:<4} {t.quantity:g} {t.symbol} "
                f"@ {t.price:.2f} ({t.reason.value}) {format_nanos(t.timestamp)}{pnl}"
            )
    lines.append("===")
    return "\n".join(lines)


def format_assessment(assessment: StrategyAssessment) -> str:
    """Format tier, viability and the reasons behind them."""
    yes_no = {True: "YES", False: "NO"}
    lines = [
        f"=== Assessment: {assessment.strategy_id} ===",
        f"Tier         : {assessment.tier.value}",
        f"Viable       : {yes_no[assessment.is_viable]}  |  Activate: {yes_no[assessment.should_activate]}",
    ]
    for reason in assessment.reasons:
        lines.append(f"  - {reason}")
    if assessment.recommendations:
        lines.append("Recommendations:")
        for rec in assessment.recommendations:
            lines.append(f"  * {rec}")
    lines.append("===")
    return "\n".join(lines)


def format_sweep_table(results: Sequence[SweepResult]) -> str:
    """One row per parameter set, in grid order."""
    lines = [f"{'params':<40} {'return%':>9} {'sharpe':>8} {'win%':>7} {'dd%':>7} {'trades':>7}"]
    for r in results:
        label = ", ".join(f"{k}={v}" for k, v in r.parameters.items()) or "(defaults)"
        if r.result is None:
            lines.append(f"{label:<40} ERROR: {r.error}")
            continue
        m = r.result.metrics
        flag = "" if r.result.is_complete else " (partial)"
        lines.append(
            f"{label:<40} {m.total_return:>+9.2f} {m.sharpe_ratio:>8.2f} {m.win_rate:>7.1f} "
            f"{m.max_drawdown:>7.2f} {m.total_trades:>7}{flag}"
        )
    return "\n".join(lines)


def format_profiles(profiles: dict[str, FillProfile]) -> str:
    """List fill profiles with their key knobs."""
    lines = ["=== Fill profiles ==="]
    for name in sorted(profiles):
        p = profiles[name]
        lines.append(
            f"{name:<14} slippage {p.fill.avg_slippage_bps:g}bps  "
            f"slip-prob {p.fill.slippage_probability:g}  limit-fill {p.fill.limit_fill_probability:g}  "
            f"latency {p.latency.base_latency_ms:g}+/-{p.latency.latency_variance_ms:g}ms"
        )
    lines.append("===")
    return "\n".join(lines)
