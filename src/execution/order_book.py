"""
Synthetic order book builder.

No venue depth feed exists in a bar replay, so a ladder is derived from a
single bar: mid from bid/ask (or close), spread from bid/ask (or 1 bp of
mid), and sizes decaying exponentially away from the touch.
"""

from __future__ import annotations

import math

from sim_core.clock import datetime_to_nanos
from sim_core.contracts import Bar

from execution.models import BookLevel, OrderBook

DEFAULT_DEPTH = 10
DEFAULT_BASE_SIZE = 10_000.0
SIZE_DECAY = 0.3
FALLBACK_SPREAD_FRACTION = 0.0001  # 1 bp of mid


class OrderBookBuilder:
    @staticmethod
    def bar_mid(bar: Bar) -> float:
        bid = bar.bid if bar.bid is not None else bar.close
        ask = bar.ask if bar.ask is not None else bar.close
        return (bid + ask) / 2

    @staticmethod
    def from_bar(bar: Bar, depth: int = DEFAULT_DEPTH, base_size: float = DEFAULT_BASE_SIZE) -> OrderBook:
        """Build a fresh ladder with *depth* levels per side."""
        if depth <= 0:
            raise ValueError(f"Book depth must be > 0, got {depth}")
        mid = OrderBookBuilder.bar_mid(bar)
        if bar.bid is not None and bar.ask is not None:
            spread = bar.ask - bar.bid
        else:
            spread = mid * FALLBACK_SPREAD_FRACTION

        bids: list[BookLevel] = []
        asks: list[BookLevel] = []
        for i in range(depth):
            offset = spread / 2 + i * spread * 0.5
            size = base_size * math.exp(-SIZE_DECAY * i)
            bid_price = mid - offset
            if bid_price > 0:
                bids.append(BookLevel(bid_price, size))
            asks.append(BookLevel(mid + offset, size))

        return OrderBook(
            symbol=bar.symbol,
            bids=tuple(bids),
            asks=tuple(asks),
            timestamp=datetime_to_nanos(bar.timestamp),
            spread=spread,
            mid_price=mid,
        )

    @staticmethod
    def update_book(book: OrderBook, price_delta: float, timestamp: int | None = None) -> OrderBook:
        """Re-center an existing ladder by *price_delta*, keeping its depth shape."""
        bids = tuple(
            BookLevel(level.price + price_delta, level.size)
            for level in book.bids
            if level.price + price_delta > 0
        )
        asks = tuple(BookLevel(level.price + price_delta, level.size) for level in book.asks)
        return OrderBook(
            symbol=book.symbol,
            bids=bids,
            asks=asks,
            timestamp=book.timestamp if timestamp is None else timestamp,
            spread=book.spread,
            mid_price=book.mid_price + price_delta,
        )
