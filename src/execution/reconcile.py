"""
Fill reconciliation: refresh open OrderRecords from the broker's order status.

Only status and fill fields are updated; rows are never removed. A broker
error on one order is logged and the sweep moves on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from data.order_log import OrderLog

from execution.broker import Broker

logger = logging.getLogger("portfolio.reconcile")


@dataclass
class ReconcileResult:
    checked: int = 0
    updated: int = 0
    errors: dict[str, str] = field(default_factory=dict)


def sync_fills(broker: Broker, order_log: OrderLog) -> ReconcileResult:
    """Poll the broker for every non-terminal order and store what it reports."""
    result = ReconcileResult()
    for record in order_log.unfilled():
        result.checked += 1
        try:
            order = broker.get_order(record.broker_order_id)
        except Exception as exc:
            logger.warning("Could not fetch order %s (%s): %s", record.broker_order_id, record.symbol, exc)
            result.errors[record.broker_order_id] = str(exc)
            continue
        if order.status == record.status and order.filled_at == record.filled_at:
            continue
        order_log.update_fill(
            record.broker_order_id,
            status=order.status,
            filled_at=order.filled_at,
            filled_price=order.filled_price,
            qty=order.filled_qty,
        )
        result.updated += 1
        logger.info("Order %s %s: %s -> %s", record.broker_order_id, record.symbol, record.status, order.status)
    return result
