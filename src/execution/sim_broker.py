"""
Simulated broker: single-writer cash/position state in SQLite, instant fills.

Implements the Broker protocol for rehearsals and tests. Orders fill
immediately at the symbol's mark price (``prices``, else ``default_price``).
Positions are tracked by qty and market value; cash funds buys and receives
sale proceeds. No margin: a buy larger than cash is rejected with
InsufficientBuyingPowerError. Symbols listed in ``untradable`` are rejected
the way Alpaca rejects inactive assets.
"""

from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Mapping

from portfolio_core.contracts import ZERO, OrderSide, PositionSnapshot, to_cents, to_decimal

from execution.broker import (
    AssetNotTradableError,
    BrokerError,
    BrokerOrder,
    InsufficientBuyingPowerError,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SimulatedBroker:
    """
    Local brokerage account. Restart-safe; state lives in ``state_path``.
    """

    def __init__(
        self,
        state_path: str | Path,
        *,
        initial_cash: Decimal | int | str = 100_000,
        prices: Mapping[str, Decimal] | None = None,
        default_price: Decimal | int | str = 100,
        untradable: Iterable[str] = (),
    ) -> None:
        self._path = Path(state_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._initial_cash = to_decimal(initial_cash, name="initial_cash")
        self._prices = {s.upper(): to_decimal(p, name="price") for s, p in (prices or {}).items()}
        self._default_price = to_decimal(default_price, name="default_price")
        self._untradable = {s.upper() for s in untradable}
        self._init_schema()

    def _conn(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._path), timeout=10.0)

    def _init_schema(self) -> None:
        with self._conn() as c:
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS orders (
                    id TEXT PRIMARY KEY,
                    symbol TEXT NOT NULL,
                    side TEXT NOT NULL,
                    status TEXT NOT NULL,
                    qty TEXT NOT NULL,
                    notional TEXT,
                    price TEXT NOT NULL,
                    ts_utc TEXT NOT NULL
                )
                """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS positions (
                    symbol TEXT PRIMARY KEY,
                    qty TEXT NOT NULL,
                    market_value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS cash (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    balance TEXT NOT NULL
                )
                """
            )
            c.execute("INSERT OR IGNORE INTO cash (id, balance) VALUES (1, ?)", (str(self._initial_cash),))

    # ------------------------------------------------------------------
    # Simulation controls
    # ------------------------------------------------------------------

    def price_of(self, symbol: str) -> Decimal:
        return self._prices.get(symbol.upper(), self._default_price)

    def set_price(self, symbol: str, price: Decimal | int | str) -> None:
        """Move the mark price and revalue any held position."""
        sym = symbol.upper()
        self._prices[sym] = to_decimal(price, name="price")
        with self._conn() as c:
            row = c.execute("SELECT qty FROM positions WHERE symbol = ?", (sym,)).fetchone()
            if row:
                value = Decimal(row[0]) * self._prices[sym]
                c.execute(
                    "UPDATE positions SET market_value = ?, updated_at = ? WHERE symbol = ?",
                    (str(value), _utc_now().isoformat(), sym),
                )

    def mark_untradable(self, symbol: str) -> None:
        self._untradable.add(symbol.upper())

    def cash(self) -> Decimal:
        with self._conn() as c:
            row = c.execute("SELECT balance FROM cash WHERE id = 1").fetchone()
        return Decimal(row[0]) if row else self._initial_cash

    # ------------------------------------------------------------------
    # Broker protocol
    # ------------------------------------------------------------------

    def account_equity(self) -> Decimal:
        return self.cash() + sum((p.market_value for p in self.current_positions()), ZERO)

    def current_positions(self) -> list[PositionSnapshot]:
        with self._conn() as c:
            rows = c.execute("SELECT symbol, qty, market_value FROM positions ORDER BY symbol").fetchall()
        return [
            PositionSnapshot(
                symbol=r[0],
                qty=Decimal(r[1]),
                market_value=Decimal(r[2]),
                side="long" if Decimal(r[2]) >= ZERO else "short",
            )
            for r in rows
        ]

    def _check_tradable(self, symbol: str) -> None:
        if symbol in self._untradable:
            raise AssetNotTradableError(f"asset {symbol} is not active", code=42210000)

    def _fill(self, symbol: str, side: OrderSide, value: Decimal, notional: Decimal | None) -> BrokerOrder:
        """Apply a fill of *value* dollars and record the order."""
        price = self.price_of(symbol)
        qty = value / price
        signed = value if side == OrderSide.BUY else -value
        order_id = str(uuid.uuid4())
        ts = _utc_now()
        with self._conn() as c:
            row = c.execute("SELECT qty, market_value FROM positions WHERE symbol = ?", (symbol,)).fetchone()
            held_qty = Decimal(row[0]) if row else ZERO
            held_value = Decimal(row[1]) if row else ZERO
            new_qty = held_qty + (qty if side == OrderSide.BUY else -qty)
            new_value = held_value + signed
            if new_value == ZERO:
                c.execute("DELETE FROM positions WHERE symbol = ?", (symbol,))
            else:
                c.execute(
                    "INSERT OR REPLACE INTO positions (symbol, qty, market_value, updated_at) VALUES (?, ?, ?, ?)",
                    (symbol, str(new_qty), str(new_value), ts.isoformat()),
                )
            balance = Decimal(c.execute("SELECT balance FROM cash WHERE id = 1").fetchone()[0])
            c.execute("UPDATE cash SET balance = ? WHERE id = 1", (str(balance - signed),))
            c.execute(
                "INSERT INTO orders (id, symbol, side, status, qty, notional, price, ts_utc) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (order_id, symbol, side.value, "filled", str(qty),
                 str(notional) if notional is not None else None, str(price), ts.isoformat()),
            )
        return BrokerOrder(
            order_id=order_id,
            symbol=symbol,
            side=side.value,
            status="filled",
            submitted_at=ts,
            qty=qty,
            notional=notional,
            filled_at=ts,
            filled_price=price,
            filled_qty=qty,
        )

    def place_order(
        self,
        symbol: str,
        side: OrderSide,
        *,
        notional: Decimal | None = None,
        qty: Decimal | None = None,
    ) -> BrokerOrder:
        if (notional is None) == (qty is None):
            raise ValueError("Exactly one of notional or qty is required")
        sym = symbol.upper()
        side = OrderSide(side)
        self._check_tradable(sym)
        if notional is not None:
            notional = to_cents(to_decimal(notional, name="notional"))
            value = notional
        else:
            value = to_decimal(qty, name="qty") * self.price_of(sym)
        if value <= ZERO:
            raise BrokerError("order size must be positive", code=40010000)
        if side == OrderSide.BUY and value > self.cash():
            raise InsufficientBuyingPowerError("insufficient buying power", code=40310000)
        return self._fill(sym, side, value, notional)

    def close_position(self, symbol: str) -> BrokerOrder:
        sym = symbol.upper()
        self._check_tradable(sym)
        held = {p.symbol: p for p in self.current_positions()}.get(sym)
        if held is None:
            raise BrokerError(f"position does not exist: {sym}", code=40410000)
        side = OrderSide.SELL if held.market_value > ZERO else OrderSide.BUY
        return self._fill(sym, side, abs(held.market_value), None)

    def cancel_all_orders(self) -> int:
        # Orders fill on submission; nothing is ever left open.
        return 0

    def get_order(self, order_id: str) -> BrokerOrder:
        with self._conn() as c:
            row = c.execute(
                "SELECT id, symbol, side, status, qty, notional, price, ts_utc FROM orders WHERE id = ?",
                (order_id,),
            ).fetchone()
        if row is None:
            raise BrokerError(f"order not found: {order_id}", code=40410000)
        ts = datetime.fromisoformat(row[7])
        return BrokerOrder(
            order_id=row[0],
            symbol=row[1],
            side=row[2],
            status=row[3],
            submitted_at=ts,
            qty=Decimal(row[4]),
            notional=Decimal(row[5]) if row[5] is not None else None,
            filled_at=ts,
            filled_price=Decimal(row[6]),
            filled_qty=Decimal(row[4]),
        )
