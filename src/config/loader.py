"""
Config loader: YAML file -> frozen dataclass tree.

API secrets resolved from environment variables (APCA_API_KEY_ID, APCA_API_SECRET_KEY).
Config file holds only non-secret values.
"""

import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

import yaml

TRADING_MODES = ("paper", "live")
BROKER_KINDS = ("alpaca", "simulated")


@dataclass(frozen=True)
class BrokerConfig:
    kind: str = "simulated"
    api_key: str = ""
    api_secret: str = ""
    min_call_interval_s: float = 0.25
    timeout_s: float = 10.0
    max_retries: int = 3
    retry_backoff_s: float = 1.0
    sim_state_path: str = "data/sim_broker.db"
    sim_initial_cash: Decimal = Decimal("100000")


@dataclass(frozen=True)
class StorageConfig:
    blocked_assets_path: str = "data/blocked_assets.db"
    order_log_path: str = "data/orders.db"
    block_ttl_days: int = 7
    lock_path: str = "data/run.lock"


@dataclass(frozen=True)
class JournalConfig:
    path: str = "data/journal.jsonl"
    echo_stdout: bool = False


@dataclass(frozen=True)
class AlertingConfig:
    structured_logs: bool = True
    webhook_url: str = ""


@dataclass(frozen=True)
class SafetyConfig:
    kill_switch: bool = False


@dataclass(frozen=True)
class AppConfig:
    mode: str
    broker: BrokerConfig
    storage: StorageConfig
    journal: JournalConfig
    alerting: AlertingConfig = AlertingConfig()
    safety: SafetyConfig = SafetyConfig()
    portfolio_config: str = ""

    @property
    def is_live(self) -> bool:
        return self.mode == "live"


def load_config(path: str | Path = "config.yaml") -> AppConfig:
    """
    Load configuration from a YAML file.

    API keys are resolved from environment variables:
      - APCA_API_KEY_ID
      - APCA_API_SECRET_KEY
    These follow Alpaca's standard env var names.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError(f"Config file must be a YAML mapping, got {type(raw).__name__}")

    mode = str(raw.get("mode", "paper")).lower()
    if mode not in TRADING_MODES:
        raise ValueError(f"mode must be one of {TRADING_MODES}, got {mode!r}")

    b_raw = raw.get("broker", {})
    kind = str(b_raw.get("kind", "simulated")).lower()
    if kind not in BROKER_KINDS:
        raise ValueError(f"broker.kind must be one of {BROKER_KINDS}, got {kind!r}")
    b_cfg = BrokerConfig(
        kind=kind,
        api_key=os.environ.get("APCA_API_KEY_ID", ""),
        api_secret=os.environ.get("APCA_API_SECRET_KEY", ""),
        min_call_interval_s=float(b_raw.get("min_call_interval_s", 0.25)),
        timeout_s=float(b_raw.get("timeout_s", 10.0)),
        max_retries=int(b_raw.get("max_retries", 3)),
        retry_backoff_s=float(b_raw.get("retry_backoff_s", 1.0)),
        sim_state_path=b_raw.get("sim_state_path", "data/sim_broker.db"),
        sim_initial_cash=Decimal(str(b_raw.get("sim_initial_cash", 100_000))),
    )

    s_raw = raw.get("storage", {})
    s_cfg = StorageConfig(
        blocked_assets_path=s_raw.get("blocked_assets_path", "data/blocked_assets.db"),
        order_log_path=s_raw.get("order_log_path", "data/orders.db"),
        block_ttl_days=int(s_raw.get("block_ttl_days", 7)),
        lock_path=s_raw.get("lock_path", "data/run.lock"),
    )

    j_raw = raw.get("journal", {})
    j_cfg = JournalConfig(
        path=j_raw.get("path", "data/journal.jsonl"),
        echo_stdout=bool(j_raw.get("echo_stdout", False)),
    )

    a_raw = raw.get("alerting", {})
    a_cfg = AlertingConfig(
        structured_logs=bool(a_raw.get("structured_logs", True)),
        webhook_url=str(a_raw.get("webhook_url", "")),
    )

    sf_raw = raw.get("safety", {})
    sf_cfg = SafetyConfig(kill_switch=bool(sf_raw.get("kill_switch", False)))

    return AppConfig(
        mode=mode,
        broker=b_cfg,
        storage=s_cfg,
        journal=j_cfg,
        alerting=a_cfg,
        safety=sf_cfg,
        portfolio_config=str(raw.get("portfolio_config", "") or ""),
    )
