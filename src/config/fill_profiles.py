"""
Fill-profile loader: JSON file -> FillProfile dict, validated against JSON Schema.

Default values:  docs/config/fill_profiles.default.json
Schema:          docs/config/fill_profiles.schema.json

A custom file only needs the keys it changes; it is deep-merged on top of the
defaults before schema validation, so new profiles and tweaks to the built-in
CONSERVATIVE/STANDARD/AGGRESSIVE presets are both possible.

Usage:
    from config.fill_profiles import load_fill_profiles
    profiles = load_fill_profiles()                    # defaults
    profiles = load_fill_profiles("my_profiles.json")  # defaults + overrides
    profiles["STANDARD"].fill.avg_slippage_bps  # -> 5.0
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any

import jsonschema

from config.loader import BacktestConfig
from execution.fill_model import FillModelConfig, FillProfile, LatencyModelConfig

logger = logging.getLogger("simlab.config")


def _find_project_root() -> Path:
    """Walk up from this file looking for pyproject.toml; fall back to CWD when installed."""
    candidate = Path(__file__).resolve().parent
    for _ in range(10):
        if (candidate / "pyproject.toml").exists():
            return candidate
        parent = candidate.parent
        if parent == candidate:
            break
        candidate = parent
    return Path.cwd()


_PROJECT_ROOT = _find_project_root()

DEFAULT_PROFILES_PATH = _PROJECT_ROOT / "docs" / "config" / "fill_profiles.default.json"
DEFAULT_SCHEMA_PATH = _PROJECT_ROOT / "docs" / "config" / "fill_profiles.schema.json"


class FillProfileError(Exception):
    """Raised when fill-profile loading, validation or lookup fails."""


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, val in overrides.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(val, dict):
            merged[key] = _deep_merge(merged[key], val)
        else:
            merged[key] = val
    return merged


def _read_json(path: Path, label: str) -> dict[str, Any]:
    if not path.exists():
        raise FillProfileError(f"{label} not found: {path}")
    try:
        with open(path) as f:
            return json.load(f)
    except json.JSONDecodeError as exc:
        raise FillProfileError(f"{label} is not valid JSON: {exc}") from exc


def _build_profile(name: str, raw: dict[str, Any]) -> FillProfile:
    try:
        return FillProfile(
            name=name,
            fill=FillModelConfig(**raw.get("fill", {})),
            latency=LatencyModelConfig(**raw.get("latency", {})),
        )
    except ValueError as exc:
        raise FillProfileError(f"Fill profile {name!r} is invalid: {exc}") from exc


def load_fill_profiles(
    path: str | Path | None = None,
    schema_path: str | Path | None = None,
) -> dict[str, FillProfile]:
    """Load and validate fill profiles, keyed by upper-case name.

    Raises
    ------
    FillProfileError
        If a file is missing, unparseable, or fails schema validation.
    """
    sch_path = Path(schema_path) if schema_path else DEFAULT_SCHEMA_PATH
    data = _read_json(DEFAULT_PROFILES_PATH, "Default fill profiles")

    if path:
        overrides = _read_json(Path(path), "Fill profile file")
        data = _deep_merge(data, overrides)
        logger.info("Loaded custom fill profiles: %s", Path(path).name)

    schema = _read_json(sch_path, "Fill profile schema")
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as exc:
        raise FillProfileError(f"Fill profile validation failed: {exc.message}") from exc

    return {name.upper(): _build_profile(name.upper(), raw) for name, raw in data["profiles"].items()}


def resolve_fill_model(config: BacktestConfig, profiles: dict[str, FillProfile]) -> BacktestConfig:
    """Swap the configured profile name for the loaded FillProfile of that name (case-insensitive)."""
    name = config.fill_model_name.upper()
    if name not in profiles:
        raise FillProfileError(f"Unknown fill profile {name!r}; available: {sorted(profiles)}")
    return replace(config, fill_model=profiles[name])
