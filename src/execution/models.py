"""SimulatedOrder, SimulatedFill, OrderBook, Position for the execution simulator."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from sim_core.contracts import InvalidInputError, require_positive


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def sign(self) -> int:
        return 1 if self is Side.BUY else -1

    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY


class OrderType(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    STOP_MARKET = "STOP_MARKET"
    STOP_LIMIT = "STOP_LIMIT"

    @property
    def is_stop(self) -> bool:
        return self in (OrderType.STOP_MARKET, OrderType.STOP_LIMIT)

    @property
    def is_limit(self) -> bool:
        return self in (OrderType.LIMIT, OrderType.STOP_LIMIT)


class TimeInForce(str, Enum):
    GTC = "GTC"
    IOC = "IOC"
    FOK = "FOK"
    ALO = "ALO"  # add-liquidity-only (post-only)


class LiquiditySide(str, Enum):
    MAKER = "MAKER"
    TAKER = "TAKER"


class PositionSide(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


@dataclass(frozen=True)
class SimulatedOrder:
    """Immutable once created. Timestamp is submission time in ns."""

    id: str
    symbol: str
    side: Side
    type: OrderType
    quantity: float
    timestamp: int
    price: float | None = None
    stop_price: float | None = None
    time_in_force: TimeInForce = TimeInForce.GTC
    reduce_only: bool = False

    def __post_init__(self) -> None:
        require_positive(self.quantity, f"order {self.id}: quantity")
        if self.type.is_limit:
            if self.price is None:
                raise InvalidInputError(f"order {self.id}: {self.type.value} requires a limit price")
            require_positive(self.price, f"order {self.id}: price")
        elif self.price is not None:
            require_positive(self.price, f"order {self.id}: price")
        if self.type.is_stop:
            if self.stop_price is None:
                raise InvalidInputError(f"order {self.id}: {self.type.value} requires a stop price")
            require_positive(self.stop_price, f"order {self.id}: stop_price")


@dataclass(frozen=True)
class SimulatedFill:
    """Append-only execution fact. Slippage is signed, in price units."""

    id: str
    order_id: str
    symbol: str
    side: Side
    quantity: float
    price: float
    commission: float
    timestamp: int
    liquidity_side: LiquiditySide
    slippage: float = 0.0

    @property
    def signed_quantity(self) -> float:
        return self.quantity * self.side.sign

    @property
    def notional(self) -> float:
        return self.quantity * self.price


@dataclass(frozen=True)
class BookLevel:
    price: float
    size: float


@dataclass(frozen=True)
class OrderBook:
    """Synthetic depth ladder. Bids descending, asks ascending. Never mutated."""

    symbol: str
    bids: tuple[BookLevel, ...]
    asks: tuple[BookLevel, ...]
    timestamp: int
    spread: float
    mid_price: float

    @property
    def best_bid(self) -> float | None:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> float | None:
        return self.asks[0].price if self.asks else None

    def depth(self, side: Side) -> float:
        """Total size available to an order on *side* (asks for buys, bids for sells)."""
        levels = self.asks if side is Side.BUY else self.bids
        return sum(level.size for level in levels)


@dataclass(frozen=True)
class Position:
    symbol: str
    side: PositionSide
    quantity: float
    avg_price: float

    @property
    def signed_quantity(self) -> float:
        return self.quantity if self.side is PositionSide.LONG else -self.quantity

    def unrealized_pnl(self, price: float) -> float:
        if self.side is PositionSide.LONG:
            return (price - self.avg_price) * self.quantity
        return (self.avg_price - price) * self.quantity

    def unrealized_pnl_pct(self, price: float) -> float:
        notional = self.avg_price * self.quantity
        if notional <= 0:
            return 0.0
        return self.unrealized_pnl(price) / notional * 100
