"""
Read OHLCV bars from CSV.

Required columns: timestamp, open, high, low, close, volume.
Optional: symbol, vwap, bid, ask, bid_size, ask_size.
Timestamps: ISO 8601 (naive = UTC) or epoch seconds / milliseconds.
"""

from __future__ import annotations

import csv
from datetime import datetime, timezone
from pathlib import Path

from sim_core.contracts import Bar, InvalidInputError, validate_bar

REQUIRED_COLUMNS = ("timestamp", "open", "high", "low", "close", "volume")
OPTIONAL_COLUMNS = ("vwap", "bid", "ask", "bid_size", "ask_size")

# Epoch values above this are milliseconds (year 2286 in seconds).
_EPOCH_MS_THRESHOLD = 10_000_000_000


def parse_timestamp(raw: str) -> datetime:
    value = raw.strip()
    try:
        epoch = float(value)
    except ValueError:
        pass
    else:
        if epoch > _EPOCH_MS_THRESHOLD:
            epoch /= 1000
        return datetime.fromtimestamp(epoch, tz=timezone.utc)
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise InvalidInputError(f"Unparseable timestamp {raw!r}") from exc
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _number(row: dict[str, str], key: str, line: int) -> float:
    try:
        return float(row[key])
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"line {line}: column {key!r} is not a number: {row.get(key)!r}") from exc


def read_bars_csv(path: str | Path, symbol: str | None = None) -> list[Bar]:
    """Parse and validate every row. *symbol* fills in (or overrides) the symbol column."""
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    bars: list[Bar] = []
    with csv_path.open(newline="", encoding="utf-8") as fh:
        reader = csv.DictReader(fh)
        header = [h.strip().lower() for h in reader.fieldnames or []]
        missing = [c for c in REQUIRED_COLUMNS if c not in header]
        if missing:
            raise InvalidInputError(f"{csv_path.name}: missing column(s) {missing}")
        if symbol is None and "symbol" not in header:
            raise InvalidInputError(f"{csv_path.name}: no symbol column; pass symbol explicitly")
        reader.fieldnames = header

        for line, row in enumerate(reader, start=2):
            optional = {
                key: _number(row, key, line)
                for key in OPTIONAL_COLUMNS
                if (row.get(key) or "").strip()
            }
            bar = Bar(
                open=_number(row, "open", line),
                high=_number(row, "high", line),
                low=_number(row, "low", line),
                close=_number(row, "close", line),
                volume=_number(row, "volume", line),
                timestamp=parse_timestamp(row["timestamp"]),
                symbol=symbol or row["symbol"].strip(),
                **optional,
            )
            bars.append(validate_bar(bar))
    return bars
