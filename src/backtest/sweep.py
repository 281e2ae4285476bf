"""
Parameter sweep: one backtest per point of a parameter grid, run on a thread pool.

Every run gets its own BacktestEngine (clock, fill model, books, ledger);
the bar list is shared read-only. Results come back in grid order.
"""

from __future__ import annotations

import itertools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Mapping, Sequence

from config.loader import BacktestConfig
from sim_core.contracts import Bar, InvalidInputError, StrategySpec

from backtest.runner import AbortPolicy, BacktestEngine, BacktestResult

logger = logging.getLogger("simlab.sweep")


@dataclass(frozen=True)
class SweepResult:
    parameters: dict[str, Any]
    result: BacktestResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None


def expand_grid(grid: Mapping[str, Sequence[Any]]) -> list[dict[str, Any]]:
    """Cartesian product of *grid*, keys in insertion order, values in given order."""
    if not grid:
        return [{}]
    keys = list(grid)
    for key in keys:
        if not grid[key]:
            raise InvalidInputError(f"Sweep parameter {key!r} has no values")
    return [dict(zip(keys, combo)) for combo in itertools.product(*(grid[k] for k in keys))]


def _run_one(
    strategy: StrategySpec,
    bars: Sequence[Bar],
    params: dict[str, Any],
    config: BacktestConfig | None,
    abort_event: threading.Event | None,
) -> SweepResult:
    spec = replace(strategy, parameters={**strategy.parameters, **params})
    try:
        result = BacktestEngine(config).run(
            spec, bars, should_abort=abort_event, on_abort=AbortPolicy.EXCLUDE,
        )
    except (ValueError, RuntimeError) as exc:
        logger.warning("Sweep run %s failed: %s", params, exc)
        return SweepResult(parameters=params, error=str(exc))
    return SweepResult(parameters=params, result=result)


def run_sweep(
    strategy: StrategySpec,
    bars: Sequence[Bar],
    grid: Mapping[str, Sequence[Any]],
    config: BacktestConfig | None = None,
    *,
    max_workers: int | None = None,
    abort_event: threading.Event | None = None,
) -> list[SweepResult]:
    """Backtest *strategy* once per grid point. A failing run is reported, not raised."""
    points = expand_grid(grid)
    logger.info("Sweeping %s over %d parameter sets", strategy.id, len(points))
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [pool.submit(_run_one, strategy, bars, p, config, abort_event) for p in points]
        return [f.result() for f in futures]


def best_by(results: Sequence[SweepResult], metric: str = "sharpe_ratio") -> SweepResult | None:
    """Completed run with the highest *metric*; ties keep the earliest grid point."""
    best: SweepResult | None = None
    for r in results:
        if r.result is None or not r.result.is_complete:
            continue
        value = getattr(r.result.metrics, metric)
        if best is None or value > getattr(best.result.metrics, metric):
            best = r
    return best
