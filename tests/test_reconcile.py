"""Tests for execution.reconcile: fill sync from broker order status."""

from datetime import datetime, timezone
from decimal import Decimal

from data.order_log import OrderLog, OrderRecord
from execution.broker import BrokerError, BrokerOrder
from execution.reconcile import sync_fills

T0 = datetime(2026, 3, 2, 14, 30, tzinfo=timezone.utc)


class OrderStatusBroker:
    def __init__(self, orders: dict[str, BrokerOrder | Exception]) -> None:
        self.orders = orders

    def get_order(self, order_id: str) -> BrokerOrder:
        found = self.orders[order_id]
        if isinstance(found, Exception):
            raise found
        return found


def _append(log: OrderLog, order_id: str, status: str = "accepted") -> None:
    log.append(OrderRecord(order_id, "AAPL", "buy", status, T0, action="open", notional=Decimal("500")))


def test_sync_fills_updates_changed_orders(order_log: OrderLog) -> None:
    _append(order_log, "filled-now")
    _append(order_log, "still-open")
    _append(order_log, "done", status="filled")
    filled_at = datetime(2026, 3, 2, 14, 31, tzinfo=timezone.utc)
    broker = OrderStatusBroker(
        {
            "filled-now": BrokerOrder(
                "filled-now", "AAPL", "buy", "filled",
                filled_at=filled_at, filled_price=Decimal("187.42"), filled_qty=Decimal("2.667"),
            ),
            "still-open": BrokerOrder("still-open", "AAPL", "buy", "accepted"),
        }
    )

    result = sync_fills(broker, order_log)

    assert result.checked == 2
    assert result.updated == 1
    rec = order_log.get("filled-now")
    assert rec.status == "filled"
    assert rec.filled_at == filled_at
    assert rec.filled_price == Decimal("187.42")
    assert rec.qty == Decimal("2.667")
    assert order_log.get("still-open").status == "accepted"


def test_sync_fills_continues_after_error(order_log: OrderLog) -> None:
    _append(order_log, "bad")
    _append(order_log, "good")
    broker = OrderStatusBroker(
        {
            "bad": BrokerError("order not found"),
            "good": BrokerOrder("good", "AAPL", "buy", "canceled"),
        }
    )
    result = sync_fills(broker, order_log)
    assert result.errors == {"bad": "order not found"}
    assert result.updated == 1
    assert order_log.get("good").status == "canceled"
    assert order_log.unfilled()[0].broker_order_id == "bad"
