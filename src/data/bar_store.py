"""
Local bar archive backed by SQLite.

Bars are keyed by (symbol, timeframe, ts_ns) where ts_ns is integer UTC
nanoseconds, the same unit the backtest clock runs on, so windows and
ordering are exact integer comparisons. Writing an existing key replaces it.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Sequence

from sim_core.clock import datetime_to_nanos, nanos_to_datetime
from sim_core.contracts import Bar

_SCHEMA = """
CREATE TABLE IF NOT EXISTS bars (
    symbol    TEXT    NOT NULL,
    timeframe TEXT    NOT NULL,
    ts_ns     INTEGER NOT NULL,
    open      REAL    NOT NULL,
    high      REAL    NOT NULL,
    low       REAL    NOT NULL,
    close     REAL    NOT NULL,
    volume    REAL    NOT NULL,
    vwap      REAL,
    bid       REAL,
    ask       REAL,
    bid_size  REAL,
    ask_size  REAL,
    PRIMARY KEY (symbol, timeframe, ts_ns)
)
"""

# Payload columns in Bar field order; the key columns come first on insert.
_FIELDS = ("open", "high", "low", "close", "volume", "vwap", "bid", "ask", "bid_size", "ask_size")

_UPSERT = (
    f"INSERT OR REPLACE INTO bars (symbol, timeframe, ts_ns, {', '.join(_FIELDS)}) "
    f"VALUES ({', '.join('?' * (len(_FIELDS) + 3))})"
)


def _row_to_bar(symbol: str, row: Sequence[Any]) -> Bar:
    ts_ns, *values = row
    return Bar(symbol=symbol, timestamp=nanos_to_datetime(ts_ns), **dict(zip(_FIELDS, values)))


class BarStore:
    """One SQLite file of bars for any number of symbol/timeframe pairs."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._conn() as c:
            c.execute(_SCHEMA)

    @property
    def path(self) -> Path:
        return self._path

    def _conn(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._path))

    def write_bars(self, symbol: str, timeframe: str, bars: Sequence[Bar]) -> int:
        """Upsert *bars* under symbol/timeframe; returns how many rows were sent."""
        rows = [
            (symbol, timeframe, datetime_to_nanos(b.timestamp), *(getattr(b, f) for f in _FIELDS))
            for b in bars
        ]
        with self._conn() as c:
            c.executemany(_UPSERT, rows)
        return len(rows)

    def _select(
        self,
        symbol: str,
        timeframe: str,
        since: datetime | None,
        until: datetime | None,
        newest_first: bool,
        limit: int | None,
    ) -> list[Bar]:
        clauses = ["symbol = ?", "timeframe = ?"]
        params: list[Any] = [symbol, timeframe]
        for op, bound in ((">=", since), ("<=", until)):
            if bound is not None:
                clauses.append(f"ts_ns {op} ?")
                params.append(datetime_to_nanos(bound))
        sql = (
            f"SELECT ts_ns, {', '.join(_FIELDS)} FROM bars WHERE {' AND '.join(clauses)} "
            f"ORDER BY ts_ns {'DESC' if newest_first else 'ASC'}"
        )
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._conn() as c:
            rows: Iterable[Sequence[Any]] = c.execute(sql, params).fetchall()
        if newest_first:
            rows = reversed(list(rows))
        return [_row_to_bar(symbol, r) for r in rows]

    def get_bars(
        self,
        symbol: str,
        timeframe: str,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[Bar]:
        """Bars inside [since, until], oldest first. Naive bounds are read as UTC."""
        return self._select(symbol, timeframe, since, until, newest_first=False, limit=limit)

    def get_last_bars(
        self,
        symbol: str,
        timeframe: str,
        n: int,
        *,
        until: datetime | None = None,
    ) -> list[Bar]:
        """The *n* most recent bars at or before *until*, still oldest first."""
        return self._select(symbol, timeframe, None, until, newest_first=True, limit=n)

    def count_bars(self, symbol: str, timeframe: str) -> int:
        with self._conn() as c:
            (count,) = c.execute(
                "SELECT COUNT(*) FROM bars WHERE symbol = ? AND timeframe = ?", (symbol, timeframe)
            ).fetchone()
        return count

    def span(self, symbol: str, timeframe: str) -> tuple[datetime, datetime] | None:
        """First and last stored timestamps, or None when nothing is stored."""
        with self._conn() as c:
            lo, hi = c.execute(
                "SELECT MIN(ts_ns), MAX(ts_ns) FROM bars WHERE symbol = ? AND timeframe = ?",
                (symbol, timeframe),
            ).fetchone()
        if lo is None:
            return None
        return nanos_to_datetime(lo), nanos_to_datetime(hi)
