"""
Strategy signal sources: the engine's view of a strategy.

A StrategySpec is data (type tag + parameters + risk thresholds). The engine
turns it into a StrategySignalSource through build_signal_source(), one fresh
instance per run so indicator state is never shared between runs.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping, Protocol, Sequence

from execution.models import OrderType, Position, Side, SimulatedOrder, TimeInForce
from sim_core.contracts import Bar, InvalidInputError, StrategySpec, StrategyType


@dataclass
class RunState:
    """Snapshot handed to the strategy for one bar. Read-only apart from order id stamping."""

    strategy_id: str
    bar_index: int
    timestamp: int
    capital: float
    positions: Mapping[str, Position]
    _history: Mapping[str, Sequence[float]] = field(repr=False, default_factory=dict)
    _order_seq: int = field(default=0, repr=False)

    def closes(self, symbol: str, n: int | None = None) -> tuple[float, ...]:
        """Close prices seen so far for *symbol* (current bar included), optionally the last *n*."""
        history = self._history.get(symbol, ())
        if n is not None:
            return tuple(history[-n:]) if n > 0 else ()
        return tuple(history)

    def position_qty(self, symbol: str) -> float:
        """Signed position size: long > 0, short < 0, flat 0."""
        pos = self.positions.get(symbol)
        return pos.signed_quantity if pos is not None else 0.0

    def new_order(
        self,
        symbol: str,
        side: Side,
        quantity: float,
        order_type: OrderType = OrderType.MARKET,
        *,
        price: float | None = None,
        stop_price: float | None = None,
        time_in_force: TimeInForce = TimeInForce.GTC,
        reduce_only: bool = False,
    ) -> SimulatedOrder:
        """Build an order stamped with a deterministic id and the current clock time."""
        self._order_seq += 1
        return SimulatedOrder(
            id=f"{self.strategy_id}-{self.bar_index}-{self._order_seq}",
            symbol=symbol,
            side=side,
            type=order_type,
            quantity=quantity,
            timestamp=self.timestamp,
            price=price,
            stop_price=stop_price,
            time_in_force=time_in_force,
            reduce_only=reduce_only,
        )


def make_run_state(
    strategy_id: str,
    bar_index: int,
    timestamp: int,
    capital: float,
    positions: Mapping[str, Position],
    history: Mapping[str, Sequence[float]],
) -> RunState:
    return RunState(
        strategy_id=strategy_id,
        bar_index=bar_index,
        timestamp=timestamp,
        capital=capital,
        positions=MappingProxyType(dict(positions)),
        _history=MappingProxyType(history),
    )


class StrategySignalSource(Protocol):
    def generate(self, bar: Bar, state: RunState) -> list[SimulatedOrder]:
        ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _int_param(params: Mapping[str, Any], key: str, default: int) -> int:
    value = params.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value or value <= 0:
        raise InvalidInputError(f"Strategy parameter {key!r} must be a positive integer, got {value!r}")
    return int(value)


def _float_param(params: Mapping[str, Any], key: str, default: float) -> float:
    value = params.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInputError(f"Strategy parameter {key!r} must be a number, got {value!r}")
    return float(value)


def _positive_param(params: Mapping[str, Any], key: str, default: float) -> float:
    value = _float_param(params, key, default)
    if not math.isfinite(value) or value <= 0:
        raise InvalidInputError(f"Strategy parameter {key!r} must be > 0, got {value!r}")
    return value


def _order_size(state: RunState, bar: Bar, position_pct: float) -> float:
    """Notional share of capital in units; 0 once capital is exhausted."""
    if state.capital <= 0:
        return 0.0
    return state.capital * position_pct / bar.close


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def relative_strength_index(closes: Sequence[float]) -> float:
    """Simple-average RSI over the given closes (len(closes) - 1 changes)."""
    gains = 0.0
    losses = 0.0
    for prev, cur in zip(closes, closes[1:]):
        change = cur - prev
        if change > 0:
            gains += change
        else:
            losses -= change
    if losses == 0:
        return 50.0 if gains == 0 else 100.0
    rs = gains / losses
    return 100.0 - 100.0 / (1.0 + rs)


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------


class TrendFollowingSource:
    """Fast/slow SMA crossover. Crossing up goes long, crossing down exits (and shorts if allowed)."""

    def __init__(self, spec: StrategySpec) -> None:
        params = spec.parameters
        self.fast_period = _int_param(params, "fast_period", 10)
        self.slow_period = _int_param(params, "slow_period", 30)
        if self.fast_period >= self.slow_period:
            raise InvalidInputError(
                f"fast_period ({self.fast_period}) must be below slow_period ({self.slow_period})"
            )
        self.position_pct = _positive_param(params, "position_pct", 0.1)
        self.allow_short = bool(params.get("allow_short", True))
        self._prev_diff: dict[str, float] = {}

    def generate(self, bar: Bar, state: RunState) -> list[SimulatedOrder]:
        closes = state.closes(bar.symbol, self.slow_period)
        if len(closes) < self.slow_period:
            return []
        diff = _mean(closes[-self.fast_period:]) - _mean(closes)
        prev = self._prev_diff.get(bar.symbol)
        self._prev_diff[bar.symbol] = diff
        if prev is None:
            return []

        pos = state.position_qty(bar.symbol)
        size = _order_size(state, bar, self.position_pct)
        if prev <= 0 < diff and pos <= 0:
            qty = abs(pos) + size
            return [state.new_order(bar.symbol, Side.BUY, qty)] if qty > 0 else []
        if prev >= 0 > diff:
            qty = max(pos, 0.0) + (size if self.allow_short and pos >= 0 else 0.0)
            if qty > 0:
                return [state.new_order(bar.symbol, Side.SELL, qty)]
        return []


class MeanReversionSource:
    """RSI bands: oversold buys, overbought sells out of longs (and shorts if allowed)."""

    def __init__(self, spec: StrategySpec) -> None:
        params = spec.parameters
        self.rsi_period = _int_param(params, "rsi_period", 14)
        self.oversold = _float_param(params, "oversold", 30.0)
        self.overbought = _float_param(params, "overbought", 70.0)
        if not 0 <= self.oversold < self.overbought <= 100:
            raise InvalidInputError(
                f"RSI bands must satisfy 0 <= oversold < overbought <= 100, got {self.oversold}/{self.overbought}"
            )
        self.position_pct = _positive_param(params, "position_pct", 0.1)
        self.allow_short = bool(params.get("allow_short", False))

    def generate(self, bar: Bar, state: RunState) -> list[SimulatedOrder]:
        closes = state.closes(bar.symbol, self.rsi_period + 1)
        if len(closes) < self.rsi_period + 1:
            return []
        rsi = relative_strength_index(closes)
        pos = state.position_qty(bar.symbol)
        size = _order_size(state, bar, self.position_pct)

        if rsi < self.oversold and pos <= 0:
            qty = abs(pos) + size
            return [state.new_order(bar.symbol, Side.BUY, qty)] if qty > 0 else []
        if rsi > self.overbought and pos >= 0:
            qty = pos + (size if self.allow_short else 0.0)
            if qty > 0:
                return [state.new_order(bar.symbol, Side.SELL, qty)]
        return []


class BuyAndHoldSource:
    """Buys once per symbol at entry_bar (or the first bar after it) and never exits."""

    def __init__(self, spec: StrategySpec) -> None:
        params = spec.parameters
        self.entry_bar = int(params.get("entry_bar", 0))
        if self.entry_bar < 0:
            raise InvalidInputError(f"entry_bar must be >= 0, got {self.entry_bar}")
        self.quantity = _positive_param(params, "quantity", 1.0) if "quantity" in params else None
        self.position_pct = _positive_param(params, "position_pct", 0.1)
        self._entered: set[str] = set()

    def generate(self, bar: Bar, state: RunState) -> list[SimulatedOrder]:
        if state.bar_index < self.entry_bar or bar.symbol in self._entered:
            return []
        qty = self.quantity if self.quantity is not None else _order_size(state, bar, self.position_pct)
        if qty <= 0:
            return []
        self._entered.add(bar.symbol)
        return [state.new_order(bar.symbol, Side.BUY, qty)]


class CallbackSignalSource:
    """Adapts a plain ``fn(bar, state) -> orders`` callable."""

    def __init__(self, fn: Callable[[Bar, RunState], Sequence[SimulatedOrder]]) -> None:
        self._fn = fn

    def generate(self, bar: Bar, state: RunState) -> list[SimulatedOrder]:
        return list(self._fn(bar, state))


_REGISTRY: dict[StrategyType, Callable[[StrategySpec], StrategySignalSource]] = {
    StrategyType.TREND_FOLLOWING: TrendFollowingSource,
    StrategyType.MEAN_REVERSION: MeanReversionSource,
    StrategyType.BUY_AND_HOLD: BuyAndHoldSource,
}


def build_signal_source(spec: StrategySpec) -> StrategySignalSource:
    """Fresh signal source for *spec*, selected by its type tag."""
    try:
        factory = _REGISTRY[StrategyType(spec.type)]
    except (KeyError, ValueError):
        raise InvalidInputError(f"No signal source registered for strategy type {spec.type!r}") from None
    return factory(spec)
