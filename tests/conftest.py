"""Pytest fixtures: bar sequences and engine configs for deterministic tests."""

import math
from datetime import datetime, timedelta, timezone

import pytest

from config.loader import BacktestConfig
from sim_core.contracts import Bar

BASE_TS = datetime(2024, 1, 2, 0, 0, tzinfo=timezone.utc)


def make_bar(
    i: int,
    close: float,
    *,
    symbol: str = "BTC",
    step: timedelta = timedelta(hours=1),
    spread: float = 1.0,
    volume: float = 1_000.0,
    **extra,
) -> Bar:
    """Bar *i* steps after BASE_TS, high/low one spread around the close."""
    return Bar(
        open=close,
        high=close + spread,
        low=close - spread,
        close=close,
        volume=volume,
        timestamp=BASE_TS + step * i,
        symbol=symbol,
        **extra,
    )


def bars_from_closes(closes, *, symbol: str = "BTC", step: timedelta = timedelta(hours=1)) -> list[Bar]:
    return [make_bar(i, c, symbol=symbol, step=step) for i, c in enumerate(closes)]


@pytest.fixture
def symbol() -> str:
    return "BTC"


@pytest.fixture
def flat_bars(symbol: str) -> list[Bar]:
    """100 hourly bars at a constant 100.0."""
    return bars_from_closes([100.0] * 100, symbol=symbol)


@pytest.fixture
def rising_bars(symbol: str) -> list[Bar]:
    """100 hourly bars rising 1.0 per bar from 100."""
    return bars_from_closes([100.0 + i for i in range(100)], symbol=symbol)


@pytest.fixture
def wave_bars(symbol: str) -> list[Bar]:
    """300 hourly bars on a slow sine wave; crosses moving averages repeatedly."""
    return bars_from_closes([100.0 + 10.0 * math.sin(i / 15.0) for i in range(300)], symbol=symbol)


@pytest.fixture
def seeded_config() -> BacktestConfig:
    return BacktestConfig(initial_capital=10_000.0, fill_model="STANDARD", random_seed=42)
