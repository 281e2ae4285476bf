"""
Data contracts for sim-core: Bar, strategy boundary types, input validation.

sim-core consumes historical Bars and a StrategySpec; the execution layer
produces SimulatedOrder/SimulatedFill. No I/O; these are plain dataclasses.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class InvalidInputError(ValueError):
    """Raised when bars, orders or numeric inputs are corrupt (non-finite, non-positive)."""


class StrategyType(str, Enum):
    """Tag used to select a signal-generation policy."""

    TREND_FOLLOWING = "TREND_FOLLOWING"
    MEAN_REVERSION = "MEAN_REVERSION"
    BUY_AND_HOLD = "BUY_AND_HOLD"


@dataclass(frozen=True)
class Bar:
    """OHLCV bar; timestamps in UTC. Optional top-of-book fields when the source has them."""

    open: float
    high: float
    low: float
    close: float
    volume: float
    timestamp: datetime
    symbol: str
    vwap: float | None = None
    bid: float | None = None
    ask: float | None = None
    bid_size: float | None = None
    ask_size: float | None = None


@dataclass(frozen=True)
class RiskParameters:
    """Exit thresholds in percent of entry notional. None disables the check."""

    stop_loss_pct: float | None = None
    take_profit_pct: float | None = None

    def __post_init__(self) -> None:
        for name in ("stop_loss_pct", "take_profit_pct"):
            value = getattr(self, name)
            if value is not None:
                require_positive(value, name)


@dataclass(frozen=True)
class StrategySpec:
    """Strategy as handed over by the strategy-generation collaborator."""

    id: str
    type: StrategyType
    name: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)
    risk_parameters: RiskParameters | None = None


def require_finite(value: float, name: str) -> float:
    if value is None or not math.isfinite(value):
        raise InvalidInputError(f"{name} must be a finite number, got {value!r}")
    return value


def require_positive(value: float, name: str) -> float:
    require_finite(value, name)
    if value <= 0:
        raise InvalidInputError(f"{name} must be > 0, got {value!r}")
    return value


def validate_bar(bar: Bar) -> Bar:
    """Fail fast on corrupt upstream data before it reaches the P&L math.

    Checks finite positive OHLC, non-negative volume, high >= low, and any
    optional vwap/bid/ask/size fields that are present.
    """
    where = f"bar {bar.symbol}@{bar.timestamp.isoformat()}"
    for name in ("open", "high", "low", "close"):
        require_positive(getattr(bar, name), f"{where}: {name}")
    require_finite(bar.volume, f"{where}: volume")
    if bar.volume < 0:
        raise InvalidInputError(f"{where}: volume must be >= 0, got {bar.volume!r}")
    if bar.high < bar.low:
        raise InvalidInputError(f"{where}: high {bar.high} is below low {bar.low}")
    for name in ("vwap", "bid", "ask", "bid_size", "ask_size"):
        value = getattr(bar, name)
        if value is not None:
            require_positive(value, f"{where}: {name}")
    if bar.bid is not None and bar.ask is not None and bar.ask < bar.bid:
        raise InvalidInputError(f"{where}: ask {bar.ask} is below bid {bar.bid}")
    return bar
