"""
Rebalance planner: diff live holdings against a target portfolio.

For the union of held and targeted symbols:
  - held, not targeted (or target 0)  -> full close
  - targeted, not held                -> open for |target_value|
  - both                              -> adjust by delta = target - market_value

Deltas strictly below the de-minimis threshold are skipped; a delta exactly
at the threshold is traded. Sells (closes and sell adjustments) come before
buys so their proceeds fund the buys.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Sequence

from portfolio_core.contracts import (
    ZERO,
    OrderAction,
    OrderIntent,
    OrderSide,
    PositionSnapshot,
    TargetPosition,
)

DE_MINIMIS = Decimal("1")


@dataclass(frozen=True)
class SkippedDelta:
    symbol: str
    current_value: Decimal
    target_value: Decimal

    @property
    def delta(self) -> Decimal:
        return self.target_value - self.current_value


@dataclass
class RebalancePlan:
    """Orders split by phase. Full closes always run in the sell phase,
    including closes of short positions, which are buys at the broker.
    """

    sells: list[OrderIntent] = field(default_factory=list)
    buys: list[OrderIntent] = field(default_factory=list)
    below_threshold: list[SkippedDelta] = field(default_factory=list)

    @property
    def orders(self) -> list[OrderIntent]:
        """All planned orders in execution order: every sell, then every buy."""
        return [*self.sells, *self.buys]

    @property
    def is_empty(self) -> bool:
        return not self.sells and not self.buys


def plan_rebalance(
    current: Sequence[PositionSnapshot],
    targets: Sequence[TargetPosition],
    *,
    de_minimis: Decimal = DE_MINIMIS,
) -> RebalancePlan:
    """Compute the minimal order set moving *current* holdings to *targets*.

    An empty *targets* means all cash: every holding is closed.
    """
    held: dict[str, PositionSnapshot] = {}
    for pos in current:
        held[pos.symbol] = pos

    wanted: dict[str, TargetPosition] = {}
    for tgt in targets:
        if tgt.symbol in wanted:
            raise ValueError(f"Duplicate target symbol: {tgt.symbol}")
        wanted[tgt.symbol] = tgt

    plan = RebalancePlan()
    for symbol in sorted(set(held) | set(wanted)):
        pos = held.get(symbol)
        tgt = wanted.get(symbol)
        current_value = pos.market_value if pos is not None else ZERO
        target_value = tgt.target_value if tgt is not None else ZERO

        if pos is not None and target_value == ZERO:
            side = OrderSide.BUY if current_value < ZERO else OrderSide.SELL
            intent = OrderIntent(symbol, side, OrderAction.CLOSE, current_value, ZERO)
        else:
            delta = target_value - current_value
            if delta == ZERO:
                continue
            if abs(delta) < de_minimis:
                plan.below_threshold.append(SkippedDelta(symbol, current_value, target_value))
                continue
            intent = OrderIntent(
                symbol=symbol,
                side=OrderSide.BUY if delta > ZERO else OrderSide.SELL,
                action=OrderAction.ADJUST if pos is not None else OrderAction.OPEN,
                current_value=current_value,
                target_value=target_value,
                notional=abs(delta),
            )

        if intent.is_sell or intent.action is OrderAction.CLOSE:
            plan.sells.append(intent)
        else:
            plan.buys.append(intent)
    return plan
