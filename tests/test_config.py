"""Tests for config loader: YAML parsing, env var resolution, error cases."""

from decimal import Decimal
from pathlib import Path

import pytest

from config import load_config


def _write_yaml(path: Path, content: str) -> Path:
    path.write_text(content)
    return path


def test_load_config_basic(tmp_path: Path) -> None:
    path = _write_yaml(
        tmp_path / "config.yaml",
        """
mode: paper
broker:
  kind: alpaca
  min_call_interval_s: 0.5
  timeout_s: 5
  max_retries: 2
storage:
  blocked_assets_path: b.db
  order_log_path: o.db
  block_ttl_days: 3
journal:
  path: j.jsonl
safety:
  kill_switch: true
portfolio_config: custom/portfolio.json
""",
    )
    cfg = load_config(path)
    assert cfg.mode == "paper"
    assert not cfg.is_live
    assert cfg.broker.kind == "alpaca"
    assert cfg.broker.min_call_interval_s == 0.5
    assert cfg.broker.timeout_s == 5.0
    assert cfg.broker.max_retries == 2
    assert cfg.storage.blocked_assets_path == "b.db"
    assert cfg.storage.order_log_path == "o.db"
    assert cfg.storage.block_ttl_days == 3
    assert cfg.journal.path == "j.jsonl"
    assert cfg.safety.kill_switch is True
    assert cfg.portfolio_config == "custom/portfolio.json"


def test_load_config_defaults(tmp_path: Path) -> None:
    cfg = load_config(_write_yaml(tmp_path / "c.yaml", "mode: live\n"))
    assert cfg.is_live
    assert cfg.broker.kind == "simulated"
    assert cfg.broker.sim_initial_cash == Decimal("100000")
    assert cfg.storage.block_ttl_days == 7
    assert cfg.alerting.structured_logs is True
    assert cfg.safety.kill_switch is False
    assert cfg.portfolio_config == ""


def test_load_config_env_vars(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APCA_API_KEY_ID", "test_key_123")
    monkeypatch.setenv("APCA_API_SECRET_KEY", "test_secret_456")
    cfg = load_config(_write_yaml(tmp_path / "c.yaml", "broker:\n  kind: alpaca\n"))
    assert cfg.broker.api_key == "test_key_123"
    assert cfg.broker.api_secret == "test_secret_456"


def test_load_config_missing_file() -> None:
    with pytest.raises(FileNotFoundError):
        load_config("/nonexistent/config.yaml")


def test_load_config_not_mapping(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="YAML mapping"):
        load_config(_write_yaml(tmp_path / "c.yaml", "- a\n- b\n"))


def test_load_config_bad_mode(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="mode"):
        load_config(_write_yaml(tmp_path / "c.yaml", "mode: yolo\n"))


def test_load_config_bad_broker_kind(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="broker.kind"):
        load_config(_write_yaml(tmp_path / "c.yaml", "broker:\n  kind: ibkr\n"))
