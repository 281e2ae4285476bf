"""
Structured JSON event logger for backtest runs.

Emits one JSON object per line to stderr. Events are designed to be
parsed by log aggregators (Grafana Loki, CloudWatch, ELK).

Pass ``events.handle`` as the engine's ``event_callback`` to journal a run.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from sim_core.clock import format_nanos

logger = logging.getLogger("simlab.events")


class StructuredEventLogger:
    """Emit structured JSON events to stderr (or any text stream)."""

    def __init__(
        self,
        strategy_id: str,
        *,
        enabled: bool = True,
        stream: Any = None,
    ) -> None:
        self._strategy_id = strategy_id
        self._enabled = enabled
        self._stream = stream or sys.stderr

    def _emit(self, event_type: str, **fields: Any) -> dict:
        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": event_type,
            "strategy": self._strategy_id,
            **fields,
        }
        if self._enabled:
            self._stream.write(json.dumps(record) + "\n")
            self._stream.flush()
        return record

    def run_start(self, bars: int, seed: int, fill_model: str) -> dict:
        return self._emit("run_start", bars=bars, seed=seed, fill_model=fill_model)

    def fill(
        self,
        fill_id: str,
        symbol: str,
        side: str,
        qty: float,
        price: float,
        commission: float,
        sim_time: str,
    ) -> dict:
        return self._emit(
            "fill",
            fill_id=fill_id,
            symbol=symbol,
            side=side,
            qty=qty,
            price=price,
            commission=commission,
            sim_time=sim_time,
        )

    def exit(self, symbol: str, reason: str, qty: float, price: float, pnl: float) -> dict:
        return self._emit(
            "exit",
            symbol=symbol,
            reason=reason,
            qty=qty,
            price=price,
            pnl=round(pnl, 6),
        )

    def run_complete(self, status: str, total_return: float, total_trades: int, final_capital: float) -> dict:
        return self._emit(
            "run_complete",
            status=status,
            total_return=round(total_return, 4),
            total_trades=total_trades,
            final_capital=round(final_capital, 2),
        )

    def run_aborted(self, bar_index: int, policy: str) -> dict:
        return self._emit("run_aborted", bar_index=bar_index, policy=policy)

    def error(self, message: str, detail: str = "") -> dict:
        return self._emit("error", message=message, detail=detail)

    def handle(self, event_type: str, payload: dict) -> None:
        """Engine event_callback adapter: map an engine event onto the methods above."""
        if event_type == "run_start":
            self.run_start(payload["bars"], payload["seed"], payload["fill_model"])
        elif event_type == "fill":
            f = payload["fill"]
            self.fill(
                f.id, f.symbol, f.side.value, f.quantity, f.price, f.commission, format_nanos(f.timestamp),
            )
        elif event_type == "exit":
            t = payload["trade"]
            self.exit(t.symbol, payload["reason"], t.quantity, t.price, t.pnl)
        elif event_type == "run_aborted":
            self.run_aborted(payload["bar_index"], payload["policy"])
        elif event_type == "run_complete":
            r = payload["result"]
            self.run_complete(r.status.value, r.total_return, r.total_trades, r.final_capital)
        else:
            logger.debug("Unhandled engine event %s", event_type)
