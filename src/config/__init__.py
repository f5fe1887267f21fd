"""
Configuration loaders.

App config:        reads config.yaml, resolves env vars for secrets.
Portfolio config:  reads portfolio.default.json (or override), validates against JSON Schema.
"""

from config.loader import (
    AlertingConfig,
    AppConfig,
    BrokerConfig,
    JournalConfig,
    SafetyConfig,
    StorageConfig,
    load_config,
)
from config.portfolio_config import (
    PortfolioConfig,
    PortfolioConfigError,
    RebalanceConfig,
    RiskLimitsConfig,
    StrategyConfig,
    load_portfolio_config,
)

__all__ = [
    # App config (YAML)
    "AlertingConfig",
    "AppConfig",
    "BrokerConfig",
    "JournalConfig",
    "SafetyConfig",
    "StorageConfig",
    "load_config",
    # Portfolio config (JSON + schema)
    "PortfolioConfig",
    "PortfolioConfigError",
    "RebalanceConfig",
    "RiskLimitsConfig",
    "StrategyConfig",
    "load_portfolio_config",
]
