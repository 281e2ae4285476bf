"""
Event-driven backtest: replay bars through a simulation clock, match the
strategy's orders against a synthetic book, keep the position/capital ledger.

Per bar: ADVANCE_CLOCK -> REBUILD_BOOK -> GENERATE_SIGNALS -> EXECUTE_FILLS
-> CHECK_EXITS. After the last bar every open position is force-closed at
its symbol's last close so all exposure shows up in the metrics.

Each run owns its clock, fill model (random source), books and ledger.
Nothing is shared between runs except the read-only bar list.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Sequence

from config.loader import BacktestConfig
from execution.fill_model import FillModel
from execution.models import (
    OrderBook,
    Position,
    PositionSide,
    Side,
    SimulatedFill,
    SimulatedOrder,
)
from execution.order_book import OrderBookBuilder
from execution.position_calculator import QTY_EPSILON, PositionCalculator, PositionUpdate
from sim_core.clock import TestClock, datetime_to_nanos
from sim_core.contracts import Bar, InvalidInputError, StrategySpec, validate_bar
from sim_core.metrics import PerformanceMetrics, compute_metrics

from backtest.strategies import StrategySignalSource, build_signal_source, make_run_state

logger = logging.getLogger("simlab.backtest")
_SEED_MASK = 0xFFFFFFFF


class RunPhase(str, Enum):
    INIT = "INIT"
    RUNNING = "RUNNING"
    ADVANCE_CLOCK = "ADVANCE_CLOCK"
    REBUILD_BOOK = "REBUILD_BOOK"
    GENERATE_SIGNALS = "GENERATE_SIGNALS"
    EXECUTE_FILLS = "EXECUTE_FILLS"
    CHECK_EXITS = "CHECK_EXITS"
    CLOSE_ALL = "CLOSE_ALL"
    COMPUTE_METRICS = "COMPUTE_METRICS"
    DONE = "DONE"


class RunStatus(str, Enum):
    COMPLETED = "COMPLETED"
    ABORTED_FORCE_CLOSED = "ABORTED_FORCE_CLOSED"
    ABORTED_PARTIAL = "ABORTED_PARTIAL"


class AbortPolicy(str, Enum):
    """What to do with open positions when a run is cancelled."""

    FORCE_CLOSE = "FORCE_CLOSE"
    EXCLUDE = "EXCLUDE"


class TradeReason(str, Enum):
    SIGNAL = "SIGNAL"
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"
    END_OF_BACKTEST = "END_OF_BACKTEST"


class EntryExit(str, Enum):
    ENTRY = "ENTRY"
    EXIT = "EXIT"


class BacktestRunError(RuntimeError):
    """The run was aborted by a failure inside the strategy's order generation."""

    def __init__(self, message: str, *, strategy_id: str, bar_index: int) -> None:
        super().__init__(message)
        self.strategy_id = strategy_id
        self.bar_index = bar_index


@dataclass(frozen=True)
class BacktestTrade:
    """One ledger entry: a strategy fill or a forced/threshold close."""

    id: str
    symbol: str
    side: Side
    quantity: float
    price: float
    fee: float
    pnl: float
    timestamp: int
    entry_exit: EntryExit
    reason: TradeReason
    fill_id: str | None = None


@dataclass
class BacktestResult:
    """Result of a backtest run."""

    strategy_id: str
    status: RunStatus
    start_time: datetime
    end_time: datetime
    bars_processed: int
    initial_capital: float
    final_capital: float
    metrics: PerformanceMetrics
    random_seed: int
    trades: list[BacktestTrade] = field(default_factory=list)
    fills: list[SimulatedFill] = field(default_factory=list)
    open_positions: list[Position] = field(default_factory=list)
    total_commission: float = 0.0

    @property
    def is_complete(self) -> bool:
        return self.status is not RunStatus.ABORTED_PARTIAL

    @property
    def exit_trades(self) -> list[BacktestTrade]:
        return [t for t in self.trades if t.entry_exit is EntryExit.EXIT]

    @property
    def total_return(self) -> float:
        return self.metrics.total_return

    @property
    def annualized_return(self) -> float:
        return self.metrics.annualized_return

    @property
    def win_rate(self) -> float:
        return self.metrics.win_rate

    @property
    def max_drawdown(self) -> float:
        return self.metrics.max_drawdown

    @property
    def sharpe_ratio(self) -> float:
        return self.metrics.sharpe_ratio

    @property
    def profit_factor(self) -> float:
        return self.metrics.profit_factor

    @property
    def total_trades(self) -> int:
        return self.metrics.total_trades


EventCallback = Callable[[str, dict], None]
AbortCheck = Callable[[], bool]


class BacktestEngine:
    """Orchestrates one deterministic replay per run() call."""

    def __init__(self, config: BacktestConfig | None = None) -> None:
        self.config = config or BacktestConfig()
        self.phase = RunPhase.INIT
        self._clock: TestClock | None = None
        self._fill_model: FillModel | None = None
        self._books: dict[str, OrderBook] = {}
        self._positions: dict[str, Position] = {}
        self._history: dict[str, list[float]] = defaultdict(list)
        self._last_close: dict[str, float] = {}
        self._trades: list[BacktestTrade] = []
        self._fills: list[SimulatedFill] = []
        self._capital = self.config.initial_capital
        self._commission = 0.0
        self._strategy_id = ""
        self._emit: EventCallback | None = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def clock(self) -> TestClock | None:
        return self._clock

    @property
    def capital(self) -> float:
        return self._capital

    @property
    def positions(self) -> dict[str, Position]:
        return dict(self._positions)

    @property
    def books(self) -> dict[str, OrderBook]:
        return dict(self._books)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(
        self,
        strategy: StrategySpec,
        bars: Sequence[Bar],
        *,
        signal_source: StrategySignalSource | None = None,
        should_abort: AbortCheck | Any | None = None,
        on_abort: AbortPolicy = AbortPolicy.FORCE_CLOSE,
        event_callback: EventCallback | None = None,
    ) -> BacktestResult:
        """Replay *bars* for *strategy*.

        Parameters
        ----------
        strategy:
            Strategy id, type tag, parameters and risk thresholds.
        bars:
            Time-ordered bars (one or many symbols). Never mutated.
        signal_source:
            Overrides the source built from ``strategy.type``.
        should_abort:
            Callable (or object with ``is_set()``) polled once per bar boundary.
        on_abort:
            FORCE_CLOSE closes open positions as if the run completed;
            EXCLUDE leaves them open and labels the result partial.
        event_callback:
            Optional ``(event_type, payload)`` hook for journaling.
        """
        if not bars:
            raise InvalidInputError("Bar series is empty; nothing to backtest")

        seed = self.config.random_seed
        if seed is None:
            seed = time.time_ns() & _SEED_MASK
        self._start(strategy, bars, seed, event_callback)
        source = signal_source if signal_source is not None else build_signal_source(strategy)
        abort_check = self._abort_check(should_abort)

        self.phase = RunPhase.RUNNING
        self._publish("run_start", {
            "strategy_id": strategy.id,
            "bars": len(bars),
            "seed": seed,
            "fill_model": self.config.fill_model_name,
        })
        logger.info(
            "Running backtest %s on %d bars (fill model %s, seed %d)",
            strategy.id, len(bars), self.config.fill_model_name, seed,
        )

        status = RunStatus.COMPLETED
        processed = 0
        for i, bar in enumerate(bars):
            if abort_check is not None and abort_check():
                status = (
                    RunStatus.ABORTED_PARTIAL if on_abort is AbortPolicy.EXCLUDE
                    else RunStatus.ABORTED_FORCE_CLOSED
                )
                logger.warning("Backtest %s aborted at bar %d (%s)", strategy.id, i, on_abort.value)
                self._publish("run_aborted", {"strategy_id": strategy.id, "bar_index": i, "policy": on_abort.value})
                break
            self._process_bar(i, bar, strategy, source)
            processed += 1

        if status is not RunStatus.ABORTED_PARTIAL:
            self.phase = RunPhase.CLOSE_ALL
            self._close_all(TradeReason.END_OF_BACKTEST)

        self.phase = RunPhase.COMPUTE_METRICS
        result = self._build_result(strategy, bars, processed, status, seed)
        self.phase = RunPhase.DONE
        logger.info(
            "Backtest %s done: %s, return %.2f%%, %d exit trades",
            strategy.id, status.value, result.total_return, result.total_trades,
        )
        self._publish("run_complete", {"result": result})
        return result

    def _start(
        self,
        strategy: StrategySpec,
        bars: Sequence[Bar],
        seed: int,
        event_callback: EventCallback | None,
    ) -> None:
        cfg = self.config
        self._strategy_id = strategy.id
        self._emit = event_callback
        self._clock = TestClock(datetime_to_nanos(bars[0].timestamp))
        self._fill_model = FillModel.from_profile(
            cfg.fill_model,
            commission_rate=cfg.commission_rate,
            maker_discount=cfg.maker_discount,
            slippage_bps=cfg.slippage_bps,
            latency_ms=cfg.latency_ms,
            seed=seed,
        )
        self._books = {}
        self._positions = {}
        self._history = defaultdict(list)
        self._last_close = {}
        self._trades = []
        self._fills = []
        self._capital = cfg.initial_capital
        self._commission = 0.0

    @staticmethod
    def _abort_check(should_abort: AbortCheck | Any | None) -> AbortCheck | None:
        if should_abort is None:
            return None
        if hasattr(should_abort, "is_set"):
            return should_abort.is_set
        return should_abort

    def _started(self) -> tuple[TestClock, FillModel]:
        if self._clock is None or self._fill_model is None:
            raise RuntimeError("BacktestEngine has no active run; call run()")
        return self._clock, self._fill_model

    def _publish(self, event_type: str, payload: dict) -> None:
        if self._emit is not None:
            self._emit(event_type, payload)

    # ------------------------------------------------------------------
    # Per-bar state machine
    # ------------------------------------------------------------------

    def _process_bar(
        self,
        index: int,
        bar: Bar,
        strategy: StrategySpec,
        source: StrategySignalSource,
    ) -> None:
        clock, _ = self._started()
        validate_bar(bar)

        self.phase = RunPhase.ADVANCE_CLOCK
        clock.advance_time(datetime_to_nanos(bar.timestamp))

        self.phase = RunPhase.REBUILD_BOOK
        self._rebuild_book(bar)
        self._history[bar.symbol].append(bar.close)
        self._last_close[bar.symbol] = bar.close

        self.phase = RunPhase.GENERATE_SIGNALS
        state = make_run_state(
            strategy.id, index, clock.timestamp(), self._capital, self._positions, self._history,
        )
        try:
            orders = source.generate(bar, state)
        except Exception as exc:
            logger.error("Strategy %s failed at bar %d: %s", strategy.id, index, exc)
            raise BacktestRunError(
                f"Strategy {strategy.id!r} failed at bar {index} ({bar.timestamp.isoformat()}): {exc}",
                strategy_id=strategy.id,
                bar_index=index,
            ) from exc

        self.phase = RunPhase.EXECUTE_FILLS
        for order in orders:
            self._execute(order)

        self.phase = RunPhase.CHECK_EXITS
        self._check_exits(strategy, bar)

    def _rebuild_book(self, bar: Bar) -> None:
        """First bar of a symbol builds a ladder; later bars re-center it on the new mid."""
        book = self._books.get(bar.symbol)
        if book is None:
            self._books[bar.symbol] = OrderBookBuilder.from_bar(bar, depth=self.config.book_depth)
            return
        delta = OrderBookBuilder.bar_mid(bar) - book.mid_price
        self._books[bar.symbol] = OrderBookBuilder.update_book(book, delta, datetime_to_nanos(bar.timestamp))

    def _execute(self, order: SimulatedOrder) -> None:
        _, fill_model = self._started()
        book = self._books.get(order.symbol)
        if book is None:
            logger.debug("No order book for %s; dropping order %s", order.symbol, order.id)
            return

        if order.reduce_only:
            order = self._clip_reduce_only(order)
            if order is None:
                return

        for fill in fill_model.simulate_fill(order, book):
            self._apply_fill(fill)

    def _clip_reduce_only(self, order: SimulatedOrder) -> SimulatedOrder | None:
        pos = self._positions.get(order.symbol)
        held = pos.signed_quantity if pos is not None else 0.0
        if held == 0 or (held > 0) == (order.side is Side.BUY):
            logger.debug("Reduce-only order %s would not reduce %s; dropped", order.id, order.symbol)
            return None
        if order.quantity > abs(held):
            return replace(order, quantity=abs(held))
        return order

    def _apply_fill(self, fill: SimulatedFill) -> None:
        pos = self._positions.get(fill.symbol)
        held = pos.signed_quantity if pos is not None else 0.0
        avg = pos.avg_price if pos is not None else 0.0

        update = PositionCalculator.apply_fills(held, avg, [fill])
        self._set_position(fill.symbol, update)
        self._capital += update.realized_pnl
        self._commission += fill.commission

        realizes = held != 0 and (held > 0) != (fill.side is Side.BUY)
        trade = BacktestTrade(
            id=fill.id,
            symbol=fill.symbol,
            side=fill.side,
            quantity=fill.quantity,
            price=fill.price,
            fee=fill.commission,
            pnl=update.realized_pnl,
            timestamp=fill.timestamp,
            entry_exit=EntryExit.EXIT if realizes else EntryExit.ENTRY,
            reason=TradeReason.SIGNAL,
            fill_id=fill.id,
        )
        self._fills.append(fill)
        self._trades.append(trade)
        self._publish("fill", {"fill": fill, "trade": trade})

    def _set_position(self, symbol: str, update: PositionUpdate) -> None:
        if abs(update.qty) <= QTY_EPSILON:
            self._positions.pop(symbol, None)
            return
        self._positions[symbol] = Position(
            symbol=symbol,
            side=PositionSide.LONG if update.qty > 0 else PositionSide.SHORT,
            quantity=abs(update.qty),
            avg_price=update.avg_price,
        )

    # ------------------------------------------------------------------
    # Exits
    # ------------------------------------------------------------------

    def _check_exits(self, strategy: StrategySpec, bar: Bar) -> None:
        risk = strategy.risk_parameters
        pos = self._positions.get(bar.symbol)
        if risk is None or pos is None:
            return
        pnl_pct = pos.unrealized_pnl_pct(bar.close)
        if risk.stop_loss_pct is not None and pnl_pct <= -risk.stop_loss_pct:
            self._close_position(bar.symbol, bar.close, TradeReason.STOP_LOSS)
        elif risk.take_profit_pct is not None and pnl_pct >= risk.take_profit_pct:
            self._close_position(bar.symbol, bar.close, TradeReason.TAKE_PROFIT)

    def _close_position(self, symbol: str, price: float, reason: TradeReason) -> None:
        clock, fill_model = self._started()
        pos = self._positions.pop(symbol, None)
        if pos is None:
            return
        pnl = pos.unrealized_pnl(price)
        fee = price * pos.quantity * fill_model.config.commission_rate
        self._capital += pnl
        self._commission += fee

        trade = BacktestTrade(
            id=f"{self._strategy_id}-{reason.value}-{len(self._trades) + 1}",
            symbol=symbol,
            side=Side.SELL if pos.side is PositionSide.LONG else Side.BUY,
            quantity=pos.quantity,
            price=price,
            fee=fee,
            pnl=pnl,
            timestamp=clock.timestamp(),
            entry_exit=EntryExit.EXIT,
            reason=reason,
        )
        self._trades.append(trade)
        logger.debug("Closed %s position: %s, PnL %.2f", symbol, reason.value, pnl)
        self._publish("exit", {"trade": trade, "reason": reason.value})

    def _close_all(self, reason: TradeReason) -> None:
        for symbol in list(self._positions):
            self._close_position(symbol, self._last_close[symbol], reason)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _build_result(
        self,
        strategy: StrategySpec,
        bars: Sequence[Bar],
        processed: int,
        status: RunStatus,
        seed: int,
    ) -> BacktestResult:
        start = bars[0].timestamp
        end = bars[processed - 1].timestamp if processed else start
        period_days = (end - start).total_seconds() / 86_400
        exit_pnls = [t.pnl for t in self._trades if t.entry_exit is EntryExit.EXIT]
        metrics = compute_metrics(self.config.initial_capital, self._capital, exit_pnls, period_days)
        return BacktestResult(
            strategy_id=strategy.id,
            status=status,
            start_time=start,
            end_time=end,
            bars_processed=processed,
            initial_capital=self.config.initial_capital,
            final_capital=self._capital,
            metrics=metrics,
            random_seed=seed,
            trades=list(self._trades),
            fills=list(self._fills),
            open_positions=list(self._positions.values()),
            total_commission=self._commission,
        )


def run_backtest(
    strategy: StrategySpec,
    bars: Sequence[Bar],
    config: BacktestConfig | None = None,
    **kwargs: Any,
) -> BacktestResult:
    """Convenience wrapper: fresh engine, one run."""
    return BacktestEngine(config).run(strategy, bars, **kwargs)
