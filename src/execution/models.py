"""OrderOutcome and RebalanceResult: what one rebalance did, order by order."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from portfolio_core.contracts import OrderIntent, PositionSnapshot


class OutcomeStatus(str, Enum):
    SUBMITTED = "submitted"
    SKIPPED = "skipped"
    PLANNED = "planned"  # dry run: computed, never sent


@dataclass(frozen=True)
class OrderOutcome:
    intent: OrderIntent
    status: OutcomeStatus
    reason: str | None = None
    broker_order_id: str | None = None
    broker_status: str | None = None
    submitted_at: datetime | None = None

    @property
    def symbol(self) -> str:
        return self.intent.symbol

    @property
    def side(self) -> str:
        return self.intent.side.value

    @property
    def submitted(self) -> bool:
        return self.status == OutcomeStatus.SUBMITTED

    @property
    def skipped(self) -> bool:
        return self.status == OutcomeStatus.SKIPPED

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "side": self.side,
            "action": self.intent.action.value,
            "notional": str(self.intent.notional) if self.intent.notional is not None else None,
            "current_value": str(self.intent.current_value),
            "target_value": str(self.intent.target_value),
            "status": self.status.value,
            "reason": self.reason,
            "broker_order_id": self.broker_order_id,
            "broker_status": self.broker_status,
        }


@dataclass
class RebalanceResult:
    orders_placed: list[OrderOutcome] = field(default_factory=list)
    positions_before: list[PositionSnapshot] = field(default_factory=list)
    dry_run: bool = False
    cancelled_open_orders: int = 0
    below_threshold: int = 0

    @property
    def submitted(self) -> list[OrderOutcome]:
        return [o for o in self.orders_placed if o.submitted]

    @property
    def skipped(self) -> list[OrderOutcome]:
        return [o for o in self.orders_placed if o.skipped]

    @property
    def sells(self) -> list[OrderOutcome]:
        return [o for o in self.orders_placed if o.side == "sell"]

    @property
    def buys(self) -> list[OrderOutcome]:
        return [o for o in self.orders_placed if o.side == "buy"]

    @property
    def current_value(self) -> Decimal:
        return sum((p.market_value for p in self.positions_before), Decimal("0"))

    def summary(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "orders": len(self.orders_placed),
            "submitted": len(self.submitted),
            "skipped": len(self.skipped),
            "below_threshold": self.below_threshold,
            "positions_before": len(self.positions_before),
        }
