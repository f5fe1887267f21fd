"""Tests for data.order_log: append-only orders, fill updates, run records."""

import sqlite3
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from data.order_log import OrderLog, OrderRecord

T0 = datetime(2026, 3, 2, 14, 30, tzinfo=timezone.utc)


def _rec(order_id: str, symbol: str = "AAPL", status: str = "accepted", minutes: int = 0, **kwargs) -> OrderRecord:
    return OrderRecord(
        broker_order_id=order_id,
        symbol=symbol,
        side="buy",
        status=status,
        submitted_at=T0 + timedelta(minutes=minutes),
        action="open",
        notional=Decimal("1234.56"),
        **kwargs,
    )


def test_append_and_get_round_trips_decimals(order_log: OrderLog) -> None:
    order_log.append(_rec("o1", run_id="r1"))
    got = order_log.get("o1")
    assert got is not None
    assert got.notional == Decimal("1234.56")
    assert got.submitted_at == T0
    assert got.run_id == "r1"
    assert got.is_open
    assert not got.is_filled


def test_duplicate_order_id_rejected(order_log: OrderLog) -> None:
    order_log.append(_rec("o1"))
    with pytest.raises(sqlite3.IntegrityError):
        order_log.append(_rec("o1"))


def test_update_fill_keeps_unreported_fields(order_log: OrderLog) -> None:
    order_log.append(_rec("o1", qty=Decimal("5")))
    assert order_log.update_fill("o1", status="partially_filled", filled_price=Decimal("101.5"))
    got = order_log.get("o1")
    assert got.status == "partially_filled"
    assert got.filled_price == Decimal("101.5")
    assert got.qty == Decimal("5")
    assert got.filled_at is None

    order_log.update_fill("o1", status="filled", filled_at=T0 + timedelta(minutes=1), qty=Decimal("12.16"))
    got = order_log.get("o1")
    assert got.is_filled
    assert not got.is_open
    assert got.qty == Decimal("12.16")
    assert got.filled_price == Decimal("101.5")


def test_update_fill_unknown_order(order_log: OrderLog) -> None:
    assert order_log.update_fill("missing", status="filled") is False


def test_list_orders_filters_and_order(order_log: OrderLog) -> None:
    order_log.append(_rec("a", "AAPL", minutes=0))
    order_log.append(_rec("b", "MSFT", minutes=5))
    order_log.append(_rec("c", "AAPL", minutes=10, run_id="r2"))

    assert [r.broker_order_id for r in order_log.list_orders()] == ["c", "b", "a"]
    assert [r.broker_order_id for r in order_log.list_orders(symbol="aapl")] == ["c", "a"]
    window = order_log.list_orders(since=T0 + timedelta(minutes=5), until=T0 + timedelta(minutes=10))
    assert [r.broker_order_id for r in window] == ["b"]
    assert [r.broker_order_id for r in order_log.list_orders(run_id="r2")] == ["c"]
    assert len(order_log.list_orders(limit=2)) == 2


def test_unfilled_excludes_terminal(order_log: OrderLog) -> None:
    order_log.append(_rec("a", status="accepted"))
    order_log.append(_rec("b", status="filled", minutes=1))
    order_log.append(_rec("c", status="canceled", minutes=2))
    assert [r.broker_order_id for r in order_log.unfilled()] == ["a"]


class TestRuns:
    def test_start_and_finish(self, order_log: OrderLog) -> None:
        started = order_log.start_run("r1", mode="paper", dry_run=False, started_at=T0)
        assert started.status == "running"
        order_log.finish_run("r1", "completed", summary={"submitted": 3})
        run = order_log.get_run("r1")
        assert run.status == "completed"
        assert run.summary == {"submitted": 3}
        assert run.finished_at is not None
        assert run.dry_run is False

    def test_failed_run_keeps_error(self, order_log: OrderLog) -> None:
        order_log.start_run("r1", mode="live", dry_run=True)
        order_log.finish_run("r1", "aborted", error="equity unavailable")
        run = order_log.get_run("r1")
        assert run.status == "aborted"
        assert run.error == "equity unavailable"
        assert run.summary is None

    def test_list_runs_newest_first(self, order_log: OrderLog) -> None:
        order_log.start_run("old", mode="paper", dry_run=False, started_at=T0)
        order_log.start_run("new", mode="paper", dry_run=False, started_at=T0 + timedelta(days=1))
        assert [r.run_id for r in order_log.list_runs()] == ["new", "old"]

    def test_get_missing_run(self, order_log: OrderLog) -> None:
        assert order_log.get_run("nope") is None
