"""
Backtest engine: replay bars, generate strategy orders, simulate fills, track positions, metrics.
"""

from backtest.runner import (
    AbortPolicy,
    BacktestEngine,
    BacktestResult,
    BacktestRunError,
    BacktestTrade,
    EntryExit,
    RunPhase,
    RunStatus,
    TradeReason,
    run_backtest,
)
from backtest.strategies import (
    BuyAndHoldSource,
    CallbackSignalSource,
    MeanReversionSource,
    RunState,
    StrategySignalSource,
    TrendFollowingSource,
    build_signal_source,
)
from backtest.sweep import SweepResult, best_by, expand_grid, run_sweep

__all__ = [
    "AbortPolicy",
    "BacktestEngine",
    "BacktestResult",
    "BacktestRunError",
    "BacktestTrade",
    "BuyAndHoldSource",
    "CallbackSignalSource",
    "EntryExit",
    "MeanReversionSource",
    "RunPhase",
    "RunState",
    "RunStatus",
    "StrategySignalSource",
    "SweepResult",
    "TradeReason",
    "TrendFollowingSource",
    "best_by",
    "build_signal_source",
    "expand_grid",
    "run_backtest",
    "run_sweep",
]
