"""
Config loader: YAML file -> frozen dataclass tree.

Run-to-run knobs resolved from environment variables (SIMLAB_RANDOM_SEED,
SIMLAB_FILL_PROFILES). The config file holds everything else.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from execution.fill_model import FILL_MODEL_PRESETS, FillProfile


class ConfigError(ValueError):
    """Raised when a configuration value is missing, malformed or out of range."""


def _require_finite(value: float, name: str) -> None:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
        raise ConfigError(f"{name} must be a finite number, got {value!r}")


@dataclass(frozen=True)
class DataConfig:
    bar_store_path: str = "data/bars.db"


@dataclass(frozen=True)
class BacktestConfig:
    """Engine settings.

    commission_rate, maker_discount, slippage_bps and latency_ms override the
    fill profile when set; left as None the profile's own values apply.
    """

    initial_capital: float = 10_000.0
    fill_model: str | FillProfile = "STANDARD"
    commission_rate: float | None = None
    maker_discount: float | None = None
    slippage_bps: float | None = None
    latency_ms: float | None = None
    random_seed: int | None = None
    book_depth: int = 20

    def __post_init__(self) -> None:
        _require_finite(self.initial_capital, "initial_capital")
        if self.initial_capital <= 0:
            raise ConfigError(f"initial_capital must be > 0, got {self.initial_capital!r}")
        for name in ("commission_rate", "maker_discount", "slippage_bps", "latency_ms"):
            value = getattr(self, name)
            if value is None:
                continue
            _require_finite(value, name)
            if value < 0:
                raise ConfigError(f"{name} must be >= 0, got {value!r}")
        if isinstance(self.fill_model, str) and self.fill_model.upper() not in FILL_MODEL_PRESETS:
            raise ConfigError(
                f"Unknown fill_model {self.fill_model!r}; expected one of {sorted(FILL_MODEL_PRESETS)} "
                "or a custom FillProfile"
            )
        if isinstance(self.book_depth, bool) or not isinstance(self.book_depth, int) or self.book_depth <= 0:
            raise ConfigError(f"book_depth must be a positive integer, got {self.book_depth!r}")
        if self.random_seed is not None and (isinstance(self.random_seed, bool) or not isinstance(self.random_seed, int)):
            raise ConfigError(f"random_seed must be an integer, got {self.random_seed!r}")

    @property
    def fill_model_name(self) -> str:
        return self.fill_model.name if isinstance(self.fill_model, FillProfile) else self.fill_model.upper()


@dataclass(frozen=True)
class StrategyConfig:
    id: str = "default"
    type: str = "TREND_FOLLOWING"
    parameters: dict[str, Any] = field(default_factory=dict)
    stop_loss_pct: float | None = None
    take_profit_pct: float | None = None


@dataclass(frozen=True)
class LoggingConfig:
    structured_logs: bool = True
    level: str = "INFO"


@dataclass(frozen=True)
class AppConfig:
    symbol: str
    timeframe: str
    data: DataConfig
    backtest: BacktestConfig
    strategy: StrategyConfig
    logging: LoggingConfig = LoggingConfig()
    fill_profiles_path: str = ""


def _optional_float(raw: dict, key: str) -> float | None:
    value = raw.get(key)
    return None if value is None else float(value)


def load_config(path: str | Path = "config.yaml") -> AppConfig:
    """
    Load configuration from a YAML file.

    Environment overrides:
      - SIMLAB_RANDOM_SEED: integer seed for the fill model
      - SIMLAB_FILL_PROFILES: path to a custom fill-profile JSON file

    A ``backtest.fill_model`` naming a custom profile (or any profile when a
    custom profile file is configured) is resolved here against the loaded
    fill profiles; an unknown name raises FillProfileError.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError(f"Config file must be a YAML mapping, got {type(raw).__name__}")

    data_raw = raw.get("data") or {}
    data_cfg = DataConfig(bar_store_path=data_raw.get("bar_store_path", "data/bars.db"))

    bt_raw = raw.get("backtest") or {}
    seed_env = os.environ.get("SIMLAB_RANDOM_SEED")
    seed = bt_raw.get("random_seed")
    if seed_env:
        try:
            seed = int(seed_env)
        except ValueError as exc:
            raise ConfigError(f"SIMLAB_RANDOM_SEED must be an integer, got {seed_env!r}") from exc
    profiles_path = os.environ.get("SIMLAB_FILL_PROFILES", str(raw.get("fill_profiles_path") or ""))
    fill_model = str(bt_raw.get("fill_model", "STANDARD"))
    bt_cfg = _backtest_config(
        fill_model,
        profiles_path,
        initial_capital=float(bt_raw.get("initial_capital", 10_000)),
        commission_rate=_optional_float(bt_raw, "commission_rate"),
        maker_discount=_optional_float(bt_raw, "maker_discount"),
        slippage_bps=_optional_float(bt_raw, "slippage_bps"),
        latency_ms=_optional_float(bt_raw, "latency_ms"),
        random_seed=seed,
        book_depth=int(bt_raw.get("book_depth", 20)),
    )

    s_raw = raw.get("strategy") or {}
    params = s_raw.get("parameters") or {}
    if not isinstance(params, dict):
        raise ConfigError(f"strategy.parameters must be a mapping, got {type(params).__name__}")
    s_cfg = StrategyConfig(
        id=str(s_raw.get("id", "default")),
        type=str(s_raw.get("type", "TREND_FOLLOWING")).upper(),
        parameters=params,
        stop_loss_pct=_optional_float(s_raw, "stop_loss_pct"),
        take_profit_pct=_optional_float(s_raw, "take_profit_pct"),
    )

    l_raw = raw.get("logging") or {}
    l_cfg = LoggingConfig(
        structured_logs=bool(l_raw.get("structured_logs", True)),
        level=str(l_raw.get("level", "INFO")).upper(),
    )

    return AppConfig(
        symbol=raw.get("symbol", "BTC"),
        timeframe=raw.get("timeframe", "1h"),
        data=data_cfg,
        backtest=bt_cfg,
        strategy=s_cfg,
        logging=l_cfg,
        fill_profiles_path=profiles_path,
    )


def _backtest_config(fill_model: str, profiles_path: str, **kwargs: Any) -> BacktestConfig:
    """Build a BacktestConfig with its fill profile resolved.

    Preset names stay strings unless a custom profile file may redefine them;
    anything else is looked up in the loaded profiles so a typo fails here.
    """
    name = fill_model.upper()
    if name in FILL_MODEL_PRESETS and not profiles_path:
        return BacktestConfig(fill_model=name, **kwargs)
    from config.fill_profiles import load_fill_profiles, resolve_fill_model

    placeholder = BacktestConfig(fill_model=FillProfile(name=name), **kwargs)
    return resolve_fill_model(placeholder, load_fill_profiles(profiles_path or None))
