"""
Portfolio config loader: JSON file -> frozen dataclass tree, validated against JSON Schema.

Default values:      docs/config/portfolio.default.json
Schema:              docs/config/portfolio_config.schema.json

Per-mode overrides: place a partial JSON file named ``portfolio.{mode}.json``
next to the base config (e.g. ``docs/config/portfolio.live.json``). Only the
keys you want to override need to be present; they are deep-merged on top
of the base config before schema validation.

Numbers are parsed as Decimal so money values never pass through float.

Usage:
    from config.portfolio_config import load_portfolio_config
    cfg = load_portfolio_config()                  # loads default
    cfg = load_portfolio_config(mode="live")       # merges portfolio.live.json if present
    cfg.risk.max_positions  # -> 20
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

import jsonschema

from portfolio_core.contracts import ConfigurationError, MergePolicy
from portfolio_core.position_filter import FilterLimits
from portfolio_core.rebalance_plan import DE_MINIMIS

logger = logging.getLogger("portfolio.config")


def _find_project_root() -> Path:
    """Walk up from this file looking for pyproject.toml.

    Falls back to CWD when installed as a package and pyproject.toml is
    not on the path.
    """
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

DEFAULT_CONFIG_PATH = _PROJECT_ROOT / "docs" / "config" / "portfolio.default.json"
DEFAULT_SCHEMA_PATH = _PROJECT_ROOT / "docs" / "config" / "portfolio_config.schema.json"


# ---------------------------------------------------------------------------
# Frozen dataclass tree: mirrors portfolio.default.json
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StrategyConfig:
    name: str
    weight: Decimal
    enabled: bool = True
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RiskLimitsConfig:
    min_position_value: Decimal
    max_position_pct: Decimal
    max_positions: int

    def to_limits(self) -> FilterLimits:
        return FilterLimits(
            min_position_value=self.min_position_value,
            max_position_pct=self.max_position_pct,
            max_positions=self.max_positions,
        )


@dataclass(frozen=True)
class RebalanceConfig:
    de_minimis: Decimal = DE_MINIMIS
    cancel_open_orders: bool = True


@dataclass(frozen=True)
class PortfolioConfig:
    version: str
    merge_policy: MergePolicy
    risk: RiskLimitsConfig
    rebalance: RebalanceConfig
    strategies: dict[str, StrategyConfig]

    @property
    def enabled_strategies(self) -> list[StrategyConfig]:
        return [s for s in self.strategies.values() if s.enabled and s.weight > 0]


# ---------------------------------------------------------------------------
# Deep merge
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *overrides* into a copy of *base*.

    - Dict values are merged recursively (override keys win).
    - Non-dict values in overrides replace the base value.
    - Keys in base that are absent from overrides are preserved.
    """
    merged = dict(base)
    for key, val in overrides.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(val, dict):
            merged[key] = _deep_merge(merged[key], val)
        else:
            merged[key] = val
    return merged


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------


class PortfolioConfigError(ConfigurationError):
    """Raised when portfolio config loading or validation fails."""


def _read_json(path: Path, label: str) -> Any:
    try:
        with open(path) as f:
            return json.load(f, parse_float=Decimal)
    except json.JSONDecodeError as exc:
        raise PortfolioConfigError(f"{label} {path.name} is not valid JSON: {exc}") from exc


def _validate_schema(data: dict[str, Any], schema_path: Path) -> None:
    """Validate *data* against the JSON Schema at *schema_path*."""
    if not schema_path.exists():
        raise PortfolioConfigError(f"Schema file not found: {schema_path}")
    with open(schema_path) as f:
        schema = json.load(f)
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as exc:
        where = "/".join(str(p) for p in exc.absolute_path)
        prefix = f"{where}: " if where else ""
        raise PortfolioConfigError(f"Portfolio config validation failed: {prefix}{exc.message}") from exc


def _build_config(data: dict[str, Any]) -> PortfolioConfig:
    """Convert a raw dict (already validated) into the frozen dataclass tree."""
    risk_raw = data["risk"]
    reb_raw = data.get("rebalance", {})
    strategies = {
        name: StrategyConfig(
            name=name,
            weight=Decimal(raw["weight"]),
            enabled=raw.get("enabled", True),
            params=dict(raw.get("params", {})),
        )
        for name, raw in data["strategies"].items()
    }
    return PortfolioConfig(
        version=data["version"],
        merge_policy=MergePolicy(data["merge_policy"]),
        risk=RiskLimitsConfig(
            min_position_value=Decimal(risk_raw["min_position_value"]),
            max_position_pct=Decimal(risk_raw["max_position_pct"]),
            max_positions=risk_raw["max_positions"],
        ),
        rebalance=RebalanceConfig(
            de_minimis=Decimal(reb_raw.get("de_minimis", DE_MINIMIS)),
            cancel_open_orders=reb_raw.get("cancel_open_orders", True),
        ),
        strategies=strategies,
    )


def load_portfolio_config(
    config_path: str | Path | None = None,
    schema_path: str | Path | None = None,
    mode: str | None = None,
) -> PortfolioConfig:
    """Load and validate portfolio configuration.

    Parameters
    ----------
    config_path:
        Path to a portfolio JSON config file.  Defaults to
        ``docs/config/portfolio.default.json``.
    schema_path:
        Path to the JSON Schema file.  Defaults to
        ``docs/config/portfolio_config.schema.json``.
    mode:
        Optional trading mode ("paper" or "live").  When provided, the loader
        looks for ``portfolio.{mode}.json`` in the same directory as the base
        config and deep-merges it before validation.  A missing override file
        is not an error.

    Raises
    ------
    PortfolioConfigError
        If the file is missing, unparseable, or fails schema validation.
    """
    cfg_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    sch_path = Path(schema_path) if schema_path else DEFAULT_SCHEMA_PATH

    if not cfg_path.exists():
        raise PortfolioConfigError(f"Portfolio config file not found: {cfg_path}")

    data = _read_json(cfg_path, "Portfolio config")
    if not isinstance(data, dict):
        raise PortfolioConfigError(f"Portfolio config must be a JSON object, got {type(data).__name__}")

    if mode:
        override_path = cfg_path.parent / f"portfolio.{mode.lower()}.json"
        if override_path.exists():
            overrides = _read_json(override_path, "Per-mode config")
            data = _deep_merge(data, overrides)
            logger.info("Loaded per-mode config: %s", override_path.name)
        else:
            logger.debug("No per-mode config found at %s, using base config", override_path)

    _validate_schema(data, sch_path)

    return _build_config(data)
