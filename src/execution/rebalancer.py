"""
Rebalancer: move a live account from its current holdings to a target portfolio.

1. validate targets (before any broker call)
2. cancel open orders (best effort)
3. fetch positions fresh from the broker
4. plan: closes and sells first, then buys
5. execute one order at a time with per-order fault isolation
6. append an OrderRecord after every acknowledgement (best effort)

A failed order never aborts the batch. An inactive or untradeable asset is
blocked in the registry so the next run's filter drops it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Sequence

from data.blocked_assets import ASSET_NOT_ACTIVE, BlockedAssetRegistry
from data.order_log import OrderLog, OrderRecord
from portfolio_core.contracts import OrderAction, OrderIntent, TargetPosition
from portfolio_core.rebalance_plan import DE_MINIMIS, plan_rebalance

from execution.broker import Broker, BrokerOrder, rejection_reason
from execution.models import OrderOutcome, OutcomeStatus, RebalanceResult

logger = logging.getLogger("portfolio.rebalancer")

EventCallback = Callable[[str, dict[str, Any]], None]


class RebalanceError(Exception):
    """The rebalance could not start (bad targets or no position snapshot)."""


class Rebalancer:
    """
    Diff engine plus sequential order executor.

    Parameters
    ----------
    broker:
        Broker adapter; positions are re-read on every rebalance() call.
    registry:
        Blocked asset registry written when the broker rejects an inactive asset.
    order_log:
        Optional audit log; failures to write it are logged, never raised.
    de_minimis:
        Deltas strictly smaller than this many dollars are not traded.
    on_event:
        Optional callback ``(event_type, payload)`` for journals and alerts.
    """

    def __init__(
        self,
        broker: Broker,
        registry: BlockedAssetRegistry,
        order_log: OrderLog | None = None,
        *,
        de_minimis: Decimal = DE_MINIMIS,
        cancel_open_orders: bool = True,
        run_id: str | None = None,
        on_event: EventCallback | None = None,
    ) -> None:
        self._broker = broker
        self._registry = registry
        self._order_log = order_log
        self._de_minimis = de_minimis
        self._cancel_open_orders = cancel_open_orders
        self._run_id = run_id
        self._on_event = on_event

    def _emit(self, event_type: str, **payload: Any) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event_type, payload)
        except Exception as exc:
            logger.warning("Event callback failed for %s: %s", event_type, exc)

    @staticmethod
    def _validate(targets: Sequence[TargetPosition]) -> list[TargetPosition]:
        seen: set[str] = set()
        for t in targets:
            if not isinstance(t, TargetPosition):
                raise RebalanceError(f"Target is not a TargetPosition: {t!r}")
            if t.symbol in seen:
                raise RebalanceError(f"Duplicate target symbol: {t.symbol}")
            seen.add(t.symbol)
        return list(targets)

    def rebalance(self, target_positions: Sequence[TargetPosition], *, dry_run: bool = False) -> RebalanceResult:
        """Trade toward *target_positions*. An empty target liquidates everything.

        With ``dry_run`` the plan is computed from live positions but no
        order is sent and nothing is recorded.
        """
        targets = self._validate(target_positions)
        result = RebalanceResult(dry_run=dry_run)

        if self._cancel_open_orders and not dry_run:
            try:
                result.cancelled_open_orders = self._broker.cancel_all_orders()
                if result.cancelled_open_orders:
                    logger.info("Cancelled %d open order(s)", result.cancelled_open_orders)
            except Exception as exc:
                logger.warning("Could not cancel open orders: %s", exc)

        try:
            result.positions_before = list(self._broker.current_positions())
        except Exception as exc:
            raise RebalanceError(f"Failed to fetch current positions: {exc}") from exc

        plan = plan_rebalance(result.positions_before, targets, de_minimis=self._de_minimis)
        result.below_threshold = len(plan.below_threshold)
        logger.info(
            "Rebalance plan: %d holding(s), %d target(s) -> %d sell(s), %d buy(s), %d below $%s",
            len(result.positions_before), len(targets), len(plan.sells), len(plan.buys),
            len(plan.below_threshold), self._de_minimis,
        )
        if not targets and result.positions_before:
            logger.warning("Empty target portfolio: liquidating %d position(s)", len(result.positions_before))

        for intent in plan.orders:
            if dry_run:
                result.orders_placed.append(OrderOutcome(intent, OutcomeStatus.PLANNED))
                continue
            result.orders_placed.append(self._execute(intent))

        logger.info(
            "Rebalance %s: %d submitted, %d skipped",
            "planned" if dry_run else "done", len(result.submitted), len(result.skipped),
        )
        return result

    def _execute(self, intent: OrderIntent) -> OrderOutcome:
        try:
            if intent.action is OrderAction.CLOSE:
                ack = self._broker.close_position(intent.symbol)
            else:
                ack = self._broker.place_order(intent.symbol, intent.side, notional=intent.notional)
        except Exception as exc:
            reason = rejection_reason(exc)
            logger.warning("%s %s %s skipped: %s", intent.action.value, intent.side.value, intent.symbol, exc)
            if reason == ASSET_NOT_ACTIVE:
                self._block(intent.symbol)
            self._emit("order_skipped", symbol=intent.symbol, side=intent.side.value, reason=reason)
            return OrderOutcome(intent, OutcomeStatus.SKIPPED, reason=reason)

        submitted_at = ack.submitted_at or datetime.now(timezone.utc)
        outcome = OrderOutcome(
            intent,
            OutcomeStatus.SUBMITTED,
            broker_order_id=ack.order_id,
            broker_status=ack.status,
            submitted_at=submitted_at,
        )
        logger.info(
            "%s %s %s%s -> %s (%s)",
            intent.action.value, intent.side.value, intent.symbol,
            f" ${intent.notional:.2f}" if intent.notional is not None else "",
            ack.order_id, ack.status,
        )
        self._record(intent, ack, submitted_at)
        self._emit(
            "order_submitted",
            symbol=intent.symbol,
            side=intent.side.value,
            action=intent.action.value,
            notional=str(intent.notional) if intent.notional is not None else None,
            order_id=ack.order_id,
        )
        return outcome

    def _block(self, symbol: str) -> None:
        try:
            self._registry.block(symbol, ASSET_NOT_ACTIVE)
        except Exception as exc:
            logger.error("Failed to block %s: %s", symbol, exc)
            return
        self._emit("asset_blocked", symbol=symbol, reason=ASSET_NOT_ACTIVE)

    def _record(self, intent: OrderIntent, ack: BrokerOrder, submitted_at: datetime) -> None:
        if self._order_log is None:
            return
        record = OrderRecord(
            broker_order_id=ack.order_id,
            symbol=intent.symbol,
            side=ack.side or intent.side.value,
            status=ack.status,
            submitted_at=submitted_at,
            action=intent.action.value,
            qty=ack.qty,
            notional=intent.notional,
            filled_at=ack.filled_at,
            filled_price=ack.filled_price,
            run_id=self._run_id,
        )
        try:
            self._order_log.append(record)
        except Exception as exc:
            logger.error("Failed to record order %s for %s: %s", ack.order_id, intent.symbol, exc)
