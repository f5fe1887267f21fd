"""
Order log: append-only audit of broker-acknowledged orders and run records (SQLite).

Every accepted order gets one row, written synchronously after the broker
acknowledgement. Rows are never deleted; only fill fields (status,
filled_at, filled_price, qty) are updated as the broker reports fills.

Money and quantities are stored as TEXT so Decimal values round-trip exactly.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

logger = logging.getLogger("portfolio.order_log")

TERMINAL_STATUSES = frozenset({"filled", "canceled", "cancelled", "expired", "rejected", "done_for_day"})


def _utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _iso(ts: datetime | None) -> str | None:
    if ts is None:
        return None
    return _utc(ts).isoformat(timespec="microseconds")


def _dec(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


def _text(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


@dataclass(frozen=True)
class OrderRecord:
    broker_order_id: str
    symbol: str
    side: str  # "buy" | "sell"
    status: str
    submitted_at: datetime
    action: str = "adjust"  # "close" | "adjust" | "open"
    qty: Decimal | None = None
    notional: Decimal | None = None
    filled_at: datetime | None = None
    filled_price: Decimal | None = None
    run_id: str | None = None

    @property
    def is_filled(self) -> bool:
        return self.filled_at is not None

    @property
    def is_open(self) -> bool:
        return self.status.lower() not in TERMINAL_STATUSES


@dataclass(frozen=True)
class RunRecord:
    run_id: str
    mode: str
    dry_run: bool
    status: str  # "running" | "completed" | "failed" | "aborted"
    started_at: datetime
    finished_at: datetime | None = None
    summary: dict[str, Any] | None = None
    error: str | None = None


_ORDER_COLUMNS = (
    "broker_order_id, symbol, side, status, submitted_at, action, qty, notional, "
    "filled_at, filled_price, run_id"
)


class OrderLog:
    """
    Append-only order audit plus one row per daily run. Single writer (one process).
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _conn(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._path), timeout=10.0)

    def _init_schema(self) -> None:
        with self._conn() as c:
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS orders (
                    broker_order_id TEXT PRIMARY KEY,
                    symbol TEXT NOT NULL,
                    side TEXT NOT NULL,
                    status TEXT NOT NULL,
                    submitted_at TEXT NOT NULL,
                    action TEXT NOT NULL,
                    qty TEXT,
                    notional TEXT,
                    filled_at TEXT,
                    filled_price TEXT,
                    run_id TEXT
                )
                """
            )
            c.execute("CREATE INDEX IF NOT EXISTS ix_orders_symbol ON orders (symbol, submitted_at)")
            c.execute("CREATE INDEX IF NOT EXISTS ix_orders_submitted ON orders (submitted_at)")
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS runs (
                    run_id TEXT PRIMARY KEY,
                    mode TEXT NOT NULL,
                    dry_run INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    finished_at TEXT,
                    summary TEXT,
                    error TEXT
                )
                """
            )

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    @staticmethod
    def _order(row: tuple) -> OrderRecord:
        return OrderRecord(
            broker_order_id=row[0],
            symbol=row[1],
            side=row[2],
            status=row[3],
            submitted_at=datetime.fromisoformat(row[4]),
            action=row[5],
            qty=_dec(row[6]),
            notional=_dec(row[7]),
            filled_at=datetime.fromisoformat(row[8]) if row[8] else None,
            filled_price=_dec(row[9]),
            run_id=row[10],
        )

    def append(self, record: OrderRecord) -> None:
        """Insert one order row. A duplicate broker_order_id raises sqlite3.IntegrityError."""
        with self._conn() as c:
            c.execute(
                f"INSERT INTO orders ({_ORDER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.broker_order_id,
                    record.symbol,
                    record.side,
                    record.status,
                    _iso(record.submitted_at),
                    record.action,
                    _text(record.qty),
                    _text(record.notional),
                    _iso(record.filled_at),
                    _text(record.filled_price),
                    record.run_id,
                ),
            )

    def update_fill(
        self,
        broker_order_id: str,
        *,
        status: str,
        filled_at: datetime | None = None,
        filled_price: Decimal | None = None,
        qty: Decimal | None = None,
    ) -> bool:
        """Record a fill report. Fields passed as None keep their stored value."""
        with self._conn() as c:
            cur = c.execute(
                """
                UPDATE orders SET
                    status = ?,
                    filled_at = COALESCE(?, filled_at),
                    filled_price = COALESCE(?, filled_price),
                    qty = COALESCE(?, qty)
                WHERE broker_order_id = ?
                """,
                (status, _iso(filled_at), _text(filled_price), _text(qty), broker_order_id),
            )
        return cur.rowcount > 0

    def get(self, broker_order_id: str) -> OrderRecord | None:
        with self._conn() as c:
            row = c.execute(
                f"SELECT {_ORDER_COLUMNS} FROM orders WHERE broker_order_id = ?",
                (broker_order_id,),
            ).fetchone()
        return self._order(row) if row else None

    def list_orders(
        self,
        *,
        symbol: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        run_id: str | None = None,
        limit: int | None = None,
    ) -> list[OrderRecord]:
        """Orders newest first, filtered by symbol and/or [since, until) on submitted_at."""
        clauses: list[str] = []
        params: list[Any] = []
        if symbol:
            clauses.append("symbol = ?")
            params.append(symbol.strip().upper())
        if since:
            clauses.append("submitted_at >= ?")
            params.append(_iso(since))
        if until:
            clauses.append("submitted_at < ?")
            params.append(_iso(until))
        if run_id:
            clauses.append("run_id = ?")
            params.append(run_id)
        sql = f"SELECT {_ORDER_COLUMNS} FROM orders"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY submitted_at DESC, rowid DESC"
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
        with self._conn() as c:
            rows = c.execute(sql, params).fetchall()
        return [self._order(r) for r in rows]

    def unfilled(self) -> list[OrderRecord]:
        """Orders still waiting on a terminal status from the broker."""
        return [r for r in self.list_orders() if r.is_open]

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def start_run(self, run_id: str, *, mode: str, dry_run: bool, started_at: datetime | None = None) -> RunRecord:
        started = started_at or datetime.now(timezone.utc)
        with self._conn() as c:
            c.execute(
                "INSERT INTO runs (run_id, mode, dry_run, status, started_at) VALUES (?, ?, ?, ?, ?)",
                (run_id, mode, int(dry_run), "running", _iso(started)),
            )
        return RunRecord(run_id=run_id, mode=mode, dry_run=dry_run, status="running", started_at=_utc(started))

    def finish_run(
        self,
        run_id: str,
        status: str,
        *,
        summary: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        with self._conn() as c:
            c.execute(
                "UPDATE runs SET status = ?, finished_at = ?, summary = ?, error = ? WHERE run_id = ?",
                (
                    status,
                    _iso(datetime.now(timezone.utc)),
                    json.dumps(summary, default=str) if summary is not None else None,
                    error,
                    run_id,
                ),
            )

    @staticmethod
    def _run(row: tuple) -> RunRecord:
        return RunRecord(
            run_id=row[0],
            mode=row[1],
            dry_run=bool(row[2]),
            status=row[3],
            started_at=datetime.fromisoformat(row[4]),
            finished_at=datetime.fromisoformat(row[5]) if row[5] else None,
            summary=json.loads(row[6]) if row[6] else None,
            error=row[7],
        )

    def get_run(self, run_id: str) -> RunRecord | None:
        with self._conn() as c:
            row = c.execute(
                "SELECT run_id, mode, dry_run, status, started_at, finished_at, summary, error "
                "FROM runs WHERE run_id = ?",
                (run_id,),
            ).fetchone()
        return self._run(row) if row else None

    def list_runs(self, limit: int = 10) -> list[RunRecord]:
        with self._conn() as c:
            rows = c.execute(
                "SELECT run_id, mode, dry_run, status, started_at, finished_at, summary, error "
                "FROM runs ORDER BY started_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._run(r) for r in rows]
