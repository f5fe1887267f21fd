"""Pytest fixtures: temp-backed stores, a simulated broker, and static producers."""

from decimal import Decimal
from pathlib import Path
from typing import Callable

import pytest

from data.blocked_assets import BlockedAssetRegistry
from data.order_log import OrderLog
from execution.sim_broker import SimulatedBroker
from portfolio_core.allocator import StrategyAllocation
from portfolio_core.contracts import StrategyOutput, TargetPosition


class StaticProducer:
    """Producer returning fixed dollar values scaled to the budget it receives.

    ``fractions`` maps symbol -> fraction of the budget (signed).
    """

    def __init__(self, fractions: dict[str, str], fail: Exception | None = None) -> None:
        self.fractions = fractions
        self.fail = fail
        self.calls: list[Decimal] = []

    def generate(self, total_equity: Decimal) -> StrategyOutput:
        self.calls.append(total_equity)
        if self.fail is not None:
            raise self.fail
        positions = [
            TargetPosition(symbol=s, target_value=total_equity * Decimal(f))
            for s, f in self.fractions.items()
        ]
        return StrategyOutput(positions=positions, stats={"signals": len(positions)})


@pytest.fixture
def registry(tmp_path: Path) -> BlockedAssetRegistry:
    return BlockedAssetRegistry(tmp_path / "blocked.db")


@pytest.fixture
def order_log(tmp_path: Path) -> OrderLog:
    return OrderLog(tmp_path / "orders.db")


@pytest.fixture
def sim_broker(tmp_path: Path) -> SimulatedBroker:
    return SimulatedBroker(tmp_path / "sim.db", initial_cash=100_000)


@pytest.fixture
def make_allocation() -> Callable[..., StrategyAllocation]:
    def _make(name: str, weight: str, fractions: dict[str, str], **kwargs) -> StrategyAllocation:
        return StrategyAllocation(name=name, weight=Decimal(weight), producer=StaticProducer(fractions, **kwargs))

    return _make
