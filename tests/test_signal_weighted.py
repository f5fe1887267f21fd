"""Tests for strategies.signal_weighted and strategies.registry."""

import json
from decimal import Decimal
from pathlib import Path

import pytest

from config.portfolio_config import StrategyConfig
from portfolio_core.contracts import ConfigurationError, MissingEquityError, StrategyDataError, TradingSignal
from strategies.registry import (
    ProducerDefaults,
    available_sources,
    build_allocations,
    build_producer,
    register_source,
)
from strategies.signal_weighted import SignalWeightedProducer, load_signals


def _signals(*pairs: tuple[str, float]) -> list[TradingSignal]:
    return [TradingSignal(symbol=s, strategy_name="test", score=score) for s, score in pairs]


class TestLoadSignals:
    def test_list_form(self, tmp_path: Path) -> None:
        path = tmp_path / "s.json"
        path.write_text(json.dumps([{"symbol": "aapl", "score": 0.8, "metadata": {"filings": 2}}]))
        sigs = load_signals(path, "congress")
        assert sigs[0].symbol == "AAPL"
        assert sigs[0].strategy_name == "congress"
        assert sigs[0].metadata == {"filings": 2}

    def test_object_form_with_timestamp(self, tmp_path: Path) -> None:
        path = tmp_path / "s.json"
        path.write_text(json.dumps({"signals": [{"symbol": "MSFT", "score": -0.2, "timestamp": "2026-03-02T14:30:00+00:00"}]}))
        sig = load_signals(path, "x")[0]
        assert sig.score == -0.2
        assert sig.timestamp.year == 2026

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(StrategyDataError, match="not found"):
            load_signals(tmp_path / "nope.json", "x")

    def test_bad_json(self, tmp_path: Path) -> None:
        path = tmp_path / "s.json"
        path.write_text("{not json")
        with pytest.raises(StrategyDataError, match="not valid JSON"):
            load_signals(path, "x")

    def test_bad_entry(self, tmp_path: Path) -> None:
        path = tmp_path / "s.json"
        path.write_text(json.dumps([{"symbol": "A", "score": 3}]))
        with pytest.raises(StrategyDataError, match=r"\[0\]"):
            load_signals(path, "x")


class TestSignalWeightedProducer:
    def test_equal_weighting(self) -> None:
        producer = SignalWeightedProducer("s", lambda: _signals(("A", 0.9), ("B", 0.1), ("C", -0.5)))
        out = producer.generate(Decimal("30000"))
        by_symbol = {p.symbol: p.target_value for p in out.positions}
        assert by_symbol == {"A": Decimal("10000"), "B": Decimal("10000"), "C": Decimal("-10000")}
        assert all(p.contributing_sources == ("s",) for p in out.positions)

    def test_score_weighting(self) -> None:
        producer = SignalWeightedProducer("s", lambda: _signals(("A", 0.75), ("B", 0.25)), weighting="score")
        out = producer.generate(Decimal("10000"))
        by_symbol = {p.symbol: p.target_value for p in out.positions}
        assert by_symbol == {"A": Decimal("7500"), "B": Decimal("2500")}

    def test_values_rounded_down_to_cents(self) -> None:
        producer = SignalWeightedProducer("s", lambda: _signals(("A", 0.5), ("B", 0.5), ("C", 0.5)))
        out = producer.generate(Decimal("100"))
        assert [p.target_value for p in out.positions] == [Decimal("33.33")] * 3
        assert sum(p.target_value for p in out.positions) <= Decimal("100")

    def test_strongest_signal_per_symbol(self) -> None:
        producer = SignalWeightedProducer("s", lambda: _signals(("A", 0.2), ("A", -0.9), ("A", 0.5)))
        out = producer.generate(Decimal("1000"))
        assert out.positions[0].target_value == Decimal("-1000")
        assert out.positions[0].details["signal_count"] == 3
        assert out.stats["signals_received"] == 3
        assert out.stats["symbols_signalled"] == 1

    def test_zero_scores_ignored(self) -> None:
        producer = SignalWeightedProducer("s", lambda: _signals(("A", 0.0), ("B", 0.4)))
        out = producer.generate(Decimal("1000"))
        assert [p.symbol for p in out.positions] == ["B"]

    def test_max_positions_keeps_strongest(self) -> None:
        producer = SignalWeightedProducer(
            "s", lambda: _signals(("A", 0.1), ("B", -0.9), ("C", 0.5), ("D", 0.5)), max_positions=2
        )
        out = producer.generate(Decimal("1000"))
        assert [p.symbol for p in out.positions] == ["B", "C"]

    def test_min_value_concentrates(self) -> None:
        producer = SignalWeightedProducer(
            "s", lambda: _signals(*[(f"S{i:02d}", 0.5) for i in range(50)]), min_position_value=1000
        )
        out = producer.generate(Decimal("5500"))
        assert len(out.positions) == 5
        assert all(p.target_value == Decimal("1100") for p in out.positions)

    def test_no_signals(self) -> None:
        out = SignalWeightedProducer("s", lambda: []).generate(Decimal("1000"))
        assert out.positions == []
        assert out.stats["allocated"] == "0"

    def test_missing_budget_fatal(self) -> None:
        with pytest.raises(MissingEquityError):
            SignalWeightedProducer("s", lambda: []).generate(None)

    def test_invalid_options(self) -> None:
        with pytest.raises(ValueError):
            SignalWeightedProducer("s", lambda: [], weighting="rank")
        with pytest.raises(ValueError):
            SignalWeightedProducer("s", lambda: [], max_positions=0)


class TestRegistry:
    def test_signal_file_relative_to_base_dir(self, tmp_path: Path) -> None:
        (tmp_path / "sig.json").write_text(json.dumps([{"symbol": "A", "score": 1}]))
        producer = build_producer("x", {"path": "sig.json"}, ProducerDefaults(base_dir=tmp_path))
        assert producer.generate(Decimal("100")).positions[0].symbol == "A"

    def test_missing_path(self) -> None:
        with pytest.raises(ConfigurationError, match="params.path"):
            build_producer("x", {"source": "signal_file"}, ProducerDefaults())

    def test_unknown_source(self) -> None:
        with pytest.raises(ConfigurationError, match="unknown source"):
            build_producer("x", {"source": "telepathy"}, ProducerDefaults())

    def test_bad_weighting_is_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError):
            build_producer("x", {"path": "a.json", "weighting": "rank"}, ProducerDefaults())

    def test_register_custom_source(self) -> None:
        sentinel = object()
        register_source("test_static", lambda name, params, defaults: sentinel)
        assert "test_static" in available_sources()
        assert build_producer("x", {"source": "test_static"}, ProducerDefaults()) is sentinel

    def test_build_allocations_keeps_config_order(self, tmp_path: Path) -> None:
        strategies = {
            "b": StrategyConfig(name="b", weight=Decimal("0.7"), params={"path": "b.json"}),
            "a": StrategyConfig(name="a", weight=Decimal("0.3"), enabled=False, params={"path": "a.json"}),
        }
        allocations = build_allocations(strategies, ProducerDefaults(base_dir=tmp_path))
        assert [(a.name, a.weight, a.enabled) for a in allocations] == [
            ("b", Decimal("0.7"), True),
            ("a", Decimal("0.3"), False),
        ]
