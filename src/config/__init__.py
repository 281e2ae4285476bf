"""
Configuration loaders.

App config:     reads config.yaml, resolves env var overrides.
Fill profiles:  reads fill_profiles.default.json (or overrides), validates against JSON Schema.
"""

from config.loader import (
    AppConfig,
    BacktestConfig,
    ConfigError,
    DataConfig,
    LoggingConfig,
    StrategyConfig,
    load_config,
)
from config.fill_profiles import (
    FillProfileError,
    load_fill_profiles,
    resolve_fill_model,
)

__all__ = [
    # App config (YAML)
    "AppConfig",
    "BacktestConfig",
    "ConfigError",
    "DataConfig",
    "LoggingConfig",
    "StrategyConfig",
    "load_config",
    # Fill profiles (JSON + schema)
    "FillProfileError",
    "load_fill_profiles",
    "resolve_fill_model",
]
