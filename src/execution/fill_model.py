"""
Fill model: matches a SimulatedOrder against a synthetic OrderBook.

Market orders walk the opposite side of the book and may pick up adverse
slippage; limit orders fill at the touch when they cross, otherwise with a
flat probability at their own price. Every fill carries commission
(taker or maker rate) and a latency-shifted timestamp.

All randomness comes from one SeededRandom, so a fixed seed and call order
reproduce the exact same fills.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace

from sim_core.contracts import InvalidInputError
from sim_core.random_source import SeededRandom

from execution.models import (
    BookLevel,
    LiquiditySide,
    OrderBook,
    OrderType,
    Side,
    SimulatedFill,
    SimulatedOrder,
    TimeInForce,
)

logger = logging.getLogger("simlab.fills")

NANOS_PER_MS = 1_000_000


def _check_probability(value: float, name: str) -> None:
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value!r}")


def _check_non_negative(value: float, name: str) -> None:
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"{name} must be a finite number >= 0, got {value!r}")


@dataclass(frozen=True)
class FillModelConfig:
    limit_fill_probability: float = 0.5
    slippage_probability: float = 0.3
    avg_slippage_bps: float = 5.0
    commission_rate: float = 0.0005
    maker_discount: float = 0.0002

    def __post_init__(self) -> None:
        _check_probability(self.limit_fill_probability, "limit_fill_probability")
        _check_probability(self.slippage_probability, "slippage_probability")
        _check_non_negative(self.avg_slippage_bps, "avg_slippage_bps")
        _check_non_negative(self.commission_rate, "commission_rate")
        _check_non_negative(self.maker_discount, "maker_discount")

    @property
    def maker_rate(self) -> float:
        return max(0.0, self.commission_rate - self.maker_discount)


@dataclass(frozen=True)
class LatencyModelConfig:
    base_latency_ms: float = 10.0
    latency_variance_ms: float = 5.0
    size_latency_factor: float = 0.001

    def __post_init__(self) -> None:
        _check_non_negative(self.base_latency_ms, "base_latency_ms")
        _check_non_negative(self.latency_variance_ms, "latency_variance_ms")
        _check_non_negative(self.size_latency_factor, "size_latency_factor")


@dataclass(frozen=True)
class FillProfile:
    """Named bundle of fill + latency parameters. Custom profiles are allowed."""

    name: str
    fill: FillModelConfig = field(default_factory=FillModelConfig)
    latency: LatencyModelConfig = field(default_factory=LatencyModelConfig)


FILL_MODEL_PRESETS: dict[str, FillProfile] = {
    # Less slippage, higher fill probability.
    "CONSERVATIVE": FillProfile(
        "CONSERVATIVE",
        FillModelConfig(limit_fill_probability=0.7, slippage_probability=0.2, avg_slippage_bps=2.0),
        LatencyModelConfig(base_latency_ms=5.0, latency_variance_ms=2.0),
    ),
    "STANDARD": FillProfile(
        "STANDARD",
        FillModelConfig(limit_fill_probability=0.5, slippage_probability=0.3, avg_slippage_bps=5.0),
        LatencyModelConfig(base_latency_ms=10.0, latency_variance_ms=5.0),
    ),
    # More slippage, lower fill probability.
    "AGGRESSIVE": FillProfile(
        "AGGRESSIVE",
        FillModelConfig(limit_fill_probability=0.3, slippage_probability=0.5, avg_slippage_bps=10.0),
        LatencyModelConfig(base_latency_ms=20.0, latency_variance_ms=10.0),
    ),
}


def walk_book(levels: tuple[BookLevel, ...], quantity: float) -> list[tuple[float, float]]:
    """Consume *levels* in the given order up to *quantity*; return (price, qty) per touched level.

    If the book runs out, the remainder is simply not filled.
    """
    executions: list[tuple[float, float]] = []
    remaining = quantity
    for level in levels:
        if remaining <= 0:
            break
        take = min(remaining, level.size)
        if take <= 0:
            continue
        executions.append((level.price, take))
        remaining -= take
    return executions


class FillModel:
    """Order matching with slippage, commission and latency. One instance per run."""

    def __init__(
        self,
        fill_config: FillModelConfig | None = None,
        latency_config: LatencyModelConfig | None = None,
        *,
        seed: int | None = None,
    ) -> None:
        self.config = fill_config or FillModelConfig()
        self.latency_config = latency_config or LatencyModelConfig()
        self._rng = SeededRandom(seed)
        self._fill_seq = 0

    @classmethod
    def from_profile(
        cls,
        profile: FillProfile | str,
        *,
        commission_rate: float | None = None,
        maker_discount: float | None = None,
        slippage_bps: float | None = None,
        latency_ms: float | None = None,
        seed: int | None = None,
    ) -> "FillModel":
        """Private model from a preset name or custom profile, with optional overrides."""
        if isinstance(profile, str):
            try:
                profile = FILL_MODEL_PRESETS[profile.upper()]
            except KeyError:
                raise ValueError(
                    f"Unknown fill model {profile!r}; expected one of {sorted(FILL_MODEL_PRESETS)}"
                ) from None
        fill_overrides: dict[str, float] = {}
        if commission_rate is not None:
            fill_overrides["commission_rate"] = commission_rate
        if maker_discount is not None:
            fill_overrides["maker_discount"] = maker_discount
        if slippage_bps is not None:
            fill_overrides["avg_slippage_bps"] = slippage_bps
        latency = profile.latency
        if latency_ms is not None:
            latency = replace(latency, base_latency_ms=latency_ms)
        return cls(replace(profile.fill, **fill_overrides), latency, seed=seed)

    @property
    def seed(self) -> int:
        return self._rng.seed

    def set_seed(self, seed: int) -> None:
        """Reset randomness and the fill-id sequence for a reproducible rerun."""
        self._rng.set_seed(seed)
        self._fill_seq = 0

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def simulate_fill(self, order: SimulatedOrder, book: OrderBook) -> list[SimulatedFill]:
        """Zero or more fills for *order* against *book*."""
        if order.type.is_stop and not self.check_stop_trigger(order, book):
            return []
        if order.type.is_limit:
            return self._simulate_limit(order, book)
        return self._simulate_market(order, book)

    def check_stop_trigger(self, order: SimulatedOrder, book: OrderBook) -> bool:
        if order.stop_price is None:
            return False
        if order.side is Side.BUY:
            best_ask = book.best_ask
            return best_ask is not None and best_ask >= order.stop_price
        best_bid = book.best_bid
        return best_bid is not None and best_bid <= order.stop_price

    def _simulate_market(self, order: SimulatedOrder, book: OrderBook) -> list[SimulatedFill]:
        levels = book.asks if order.side is Side.BUY else book.bids
        if order.time_in_force is TimeInForce.FOK and book.depth(order.side) < order.quantity:
            logger.debug("FOK order %s rejected: depth %.4f < %.4f", order.id, book.depth(order.side), order.quantity)
            return []

        executions = walk_book(levels, order.quantity)
        if not executions:
            return []

        consumed = math.fsum(qty for _, qty in executions)
        # A fully consumed order reports exactly its own size.
        filled_qty = order.quantity if consumed >= order.quantity else consumed
        avg_price = math.fsum(price * qty for price, qty in executions) / consumed

        slippage = self._slippage(avg_price, order.side)
        price = avg_price + slippage
        commission = self._commission(price, filled_qty, LiquiditySide.TAKER)
        return [self._make_fill(order, filled_qty, price, commission, LiquiditySide.TAKER, slippage)]

    def _simulate_limit(self, order: SimulatedOrder, book: OrderBook) -> list[SimulatedFill]:
        limit = order.price
        if limit is None:
            raise InvalidInputError(f"order {order.id}: {order.type.value} has no limit price")
        if order.side is Side.BUY:
            touch = book.best_ask
            crosses = touch is not None and limit >= touch
        else:
            touch = book.best_bid
            crosses = touch is not None and limit <= touch

        if crosses and order.time_in_force is TimeInForce.ALO:
            logger.debug("Post-only order %s would cross at %.6f; not filled", order.id, touch)
            return []

        if crosses:
            fill_price = touch
        elif self._rng.next_float() < self.config.limit_fill_probability:
            fill_price = limit
        else:
            return []

        commission = self._commission(fill_price, order.quantity, LiquiditySide.MAKER)
        return [self._make_fill(order, order.quantity, fill_price, commission, LiquiditySide.MAKER, 0.0)]

    # ------------------------------------------------------------------
    # Costs
    # ------------------------------------------------------------------

    def _slippage(self, price: float, side: Side) -> float:
        """Adverse offset in price units: up for buys, down for sells, or zero."""
        if self._rng.next_float() > self.config.slippage_probability:
            return 0.0
        slippage_bps = self.config.avg_slippage_bps * (0.5 + abs(self._rng.next_gaussian()))
        return price * (slippage_bps / 10_000) * side.sign

    def _commission(self, price: float, quantity: float, liquidity: LiquiditySide) -> float:
        rate = self.config.maker_rate if liquidity is LiquiditySide.MAKER else self.config.commission_rate
        return price * quantity * max(0.0, rate)

    def _latency_ms(self, quantity: float) -> float:
        lat = self.latency_config
        jitter = self._rng.uniform(-lat.latency_variance_ms, lat.latency_variance_ms)
        return max(0.0, lat.base_latency_ms + quantity * lat.size_latency_factor + jitter)

    def _make_fill(
        self,
        order: SimulatedOrder,
        quantity: float,
        price: float,
        commission: float,
        liquidity: LiquiditySide,
        slippage: float,
    ) -> SimulatedFill:
        self._fill_seq += 1
        latency_ns = int(round(self._latency_ms(quantity) * NANOS_PER_MS))
        fill = SimulatedFill(
            id=f"{order.id}-F{self._fill_seq}",
            order_id=order.id,
            symbol=order.symbol,
            side=order.side,
            quantity=quantity,
            price=price,
            commission=commission,
            timestamp=order.timestamp + latency_ns,
            liquidity_side=liquidity,
            slippage=slippage,
        )
        logger.debug(
            "Fill %s %s %.6f %s @ %.6f (%s, slip %.6f, fee %.6f)",
            fill.id, fill.side.value, fill.quantity, fill.symbol, fill.price,
            fill.liquidity_side.value, fill.slippage, fill.commission,
        )
        return fill
