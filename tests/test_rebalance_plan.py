"""Tests for portfolio_core.rebalance_plan: the holdings/target diff."""

from decimal import Decimal

import pytest

from portfolio_core.contracts import OrderAction, OrderSide, PositionSnapshot, TargetPosition
from portfolio_core.rebalance_plan import plan_rebalance


def _held(symbol: str, value: str, qty: str = "10") -> PositionSnapshot:
    v = Decimal(value)
    return PositionSnapshot(symbol=symbol, qty=Decimal(qty), market_value=v, side="long" if v >= 0 else "short")


def _tp(symbol: str, value: str) -> TargetPosition:
    return TargetPosition(symbol=symbol, target_value=Decimal(value))


def test_held_not_targeted_is_closed() -> None:
    plan = plan_rebalance([_held("OLD", "5000")], [])
    assert len(plan.sells) == 1
    intent = plan.sells[0]
    assert intent.action is OrderAction.CLOSE
    assert intent.side is OrderSide.SELL
    assert intent.notional is None
    assert plan.buys == []


def test_targeted_not_held_is_opened() -> None:
    plan = plan_rebalance([], [_tp("NEW", "2500")])
    assert plan.sells == []
    intent = plan.buys[0]
    assert intent.action is OrderAction.OPEN
    assert intent.side is OrderSide.BUY
    assert intent.notional == Decimal("2500")


def test_new_short_is_a_sell() -> None:
    plan = plan_rebalance([], [_tp("XOM", "-3000")])
    intent = plan.sells[0]
    assert intent.action is OrderAction.OPEN
    assert intent.side is OrderSide.SELL
    assert intent.notional == Decimal("3000")


def test_adjust_up_and_down() -> None:
    plan = plan_rebalance(
        [_held("UP", "1000"), _held("DOWN", "5000")],
        [_tp("UP", "1500"), _tp("DOWN", "4000")],
    )
    assert [(o.symbol, o.side, o.notional) for o in plan.sells] == [("DOWN", OrderSide.SELL, Decimal("1000"))]
    assert [(o.symbol, o.side, o.notional) for o in plan.buys] == [("UP", OrderSide.BUY, Decimal("500"))]
    assert all(o.action is OrderAction.ADJUST for o in plan.orders)


def test_zero_target_closes_like_absence() -> None:
    plan = plan_rebalance([_held("A", "5000")], [_tp("A", "0")])
    assert plan.sells[0].action is OrderAction.CLOSE


def test_zero_target_not_held_is_noop() -> None:
    plan = plan_rebalance([], [_tp("A", "0")])
    assert plan.is_empty
    assert plan.below_threshold == []


def test_short_close_runs_in_sell_phase() -> None:
    plan = plan_rebalance([_held("SHRT", "-2000")], [_tp("NEW", "1000")])
    assert [o.symbol for o in plan.orders] == ["SHRT", "NEW"]
    close = plan.sells[0]
    assert close.action is OrderAction.CLOSE
    assert close.side is OrderSide.BUY


def test_sells_precede_buys() -> None:
    plan = plan_rebalance(
        [_held("AAA", "1000"), _held("ZZZ", "9000")],
        [_tp("AAA", "5000"), _tp("BBB", "2000")],
    )
    sides = [o.side for o in plan.orders]
    assert sides == [OrderSide.SELL, OrderSide.BUY, OrderSide.BUY]
    assert plan.orders[0].symbol == "ZZZ"


class TestDeMinimis:
    def test_below_one_dollar_skipped(self) -> None:
        plan = plan_rebalance([_held("A", "1000")], [_tp("A", "1000.99")])
        assert plan.is_empty
        assert plan.below_threshold[0].delta == Decimal("0.99")

    def test_exactly_one_dollar_traded(self) -> None:
        plan = plan_rebalance([_held("A", "1000")], [_tp("A", "999")])
        assert plan.sells[0].notional == Decimal("1")

    def test_zero_delta_not_reported(self) -> None:
        plan = plan_rebalance([_held("A", "1000")], [_tp("A", "1000")])
        assert plan.is_empty
        assert plan.below_threshold == []

    def test_custom_threshold(self) -> None:
        plan = plan_rebalance([_held("A", "1000")], [_tp("A", "1040")], de_minimis=Decimal("50"))
        assert plan.is_empty

    def test_tiny_holding_still_closed(self) -> None:
        plan = plan_rebalance([_held("DUST", "0.40")], [])
        assert plan.sells[0].action is OrderAction.CLOSE


def test_duplicate_targets_rejected() -> None:
    with pytest.raises(ValueError, match="Duplicate"):
        plan_rebalance([], [_tp("A", "1"), _tp("A", "2")])


def test_matching_portfolio_plans_nothing() -> None:
    targets = [_tp("A", "1000"), _tp("B", "-500")]
    held = [_held("A", "1000"), _held("B", "-500")]
    assert plan_rebalance(held, targets).is_empty
