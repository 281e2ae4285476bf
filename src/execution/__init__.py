"""
Execution simulation: synthetic order book, fill model, position calculator.
Pure and deterministic given a seed. No venue, no I/O.
"""

from execution.fill_model import (
    FILL_MODEL_PRESETS,
    FillModel,
    FillModelConfig,
    FillProfile,
    LatencyModelConfig,
)
from execution.models import (
    BookLevel,
    LiquiditySide,
    OrderBook,
    OrderType,
    Position,
    PositionSide,
    Side,
    SimulatedFill,
    SimulatedOrder,
    TimeInForce,
)
from execution.order_book import OrderBookBuilder
from execution.position_calculator import PositionCalculator, PositionUpdate

__all__ = [
    "BookLevel",
    "FILL_MODEL_PRESETS",
    "FillModel",
    "FillModelConfig",
    "FillProfile",
    "LatencyModelConfig",
    "LiquiditySide",
    "OrderBook",
    "OrderBookBuilder",
    "OrderType",
    "Position",
    "PositionCalculator",
    "PositionSide",
    "PositionUpdate",
    "Side",
    "SimulatedFill",
    "SimulatedOrder",
    "TimeInForce",
]
