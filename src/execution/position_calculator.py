"""
Position calculator: pure state transition from (signed qty, avg price) + fills.

Signed quantity: long > 0, short < 0. Processing one fill at a time gives the
same result as processing a batch, so callers may fold fills in any grouping.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from execution.models import PositionSide, SimulatedFill

# Residual quantities at or below this are treated as flat.
QTY_EPSILON = 1e-9


@dataclass(frozen=True)
class PositionUpdate:
    qty: float
    avg_price: float
    realized_pnl: float

    @property
    def side(self) -> PositionSide | None:
        if self.qty > 0:
            return PositionSide.LONG
        if self.qty < 0:
            return PositionSide.SHORT
        return None

    @property
    def abs_qty(self) -> float:
        return abs(self.qty)

    @property
    def is_flat(self) -> bool:
        return abs(self.qty) <= QTY_EPSILON


class PositionCalculator:
    @staticmethod
    def apply_fills(
        current_qty: float,
        current_avg_price: float,
        fills: Iterable[SimulatedFill],
    ) -> PositionUpdate:
        """Fold *fills* into the position.

        - Extension (same sign): weighted average of old exposure and fill.
        - Reduction (no zero crossing): realize PnL on the reduced quantity; avg unchanged.
        - Flip: realize PnL on the whole old exposure at the fill price, then open the
          remainder in the new direction at the fill price.
        - Close: quantity and average price both reset to 0, including float residue
          within QTY_EPSILON.
        """
        qty = current_qty
        avg = current_avg_price if current_qty != 0 else 0.0
        realized = 0.0

        for fill in fills:
            delta = fill.signed_quantity
            new_qty = qty + delta

            if qty == 0 or (qty > 0) == (delta > 0):
                # Opening or extending.
                avg = (avg * abs(qty) + fill.price * abs(delta)) / abs(new_qty)
            elif abs(delta) <= abs(qty):
                # Reducing or closing.
                direction = 1 if qty > 0 else -1
                realized += (fill.price - avg) * abs(delta) * direction
            else:
                # Flip: close the whole exposure, reopen the remainder.
                direction = 1 if qty > 0 else -1
                realized += (fill.price - avg) * abs(qty) * direction
                avg = fill.price

            if abs(new_qty) <= QTY_EPSILON:
                new_qty, avg = 0.0, 0.0
            qty = new_qty

        return PositionUpdate(qty=qty, avg_price=avg, realized_pnl=realized)

    @staticmethod
    def detect_zero_crossing(current_qty: float, fill: SimulatedFill) -> bool:
        """True when *fill* would flip the sign of the position."""
        new_qty = current_qty + fill.signed_quantity
        return (current_qty > 0 and new_qty < 0) or (current_qty < 0 and new_qty > 0)
