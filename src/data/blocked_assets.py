"""
Blocked asset registry: symbols the broker recently refused as untradeable (SQLite).

A block lives for a fixed TTL (7 days by default). Re-blocking an already
blocked symbol refreshes its reason and expiry; there is never more than one
row per symbol. Expired rows are inert until sweep_expired() deletes them.

Lifecycle: active (expires_at > now) -> expired -> purged.
"""

from __future__ import annotations

import logging
import math
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

logger = logging.getLogger("portfolio.blocked_assets")

DEFAULT_TTL = timedelta(days=7)
ASSET_NOT_ACTIVE = "asset_not_active"


def _utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: datetime) -> str:
    # Fixed width so stored timestamps compare correctly as text.
    return _utc(ts).isoformat(timespec="microseconds")


@dataclass(frozen=True)
class BlockedAsset:
    symbol: str
    reason: str
    blocked_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= _utc(now or _now())

    def days_until_expiration(self, now: datetime | None = None) -> int:
        remaining = (self.expires_at - _utc(now or _now())).total_seconds()
        if remaining <= 0:
            return 0
        return math.ceil(remaining / 86_400)


class BlockedAssetRegistry:
    """
    TTL-keyed store of untradeable symbols. Single writer (one process).

    ``clock`` is injectable so tests can move time without sleeping.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._ttl = ttl
        self._clock = clock
        self._init_schema()

    def _conn(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._path), timeout=10.0)

    def _init_schema(self) -> None:
        with self._conn() as c:
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS blocked_assets (
                    symbol TEXT PRIMARY KEY,
                    reason TEXT NOT NULL,
                    blocked_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
                """
            )
            c.execute("CREATE INDEX IF NOT EXISTS ix_blocked_expires ON blocked_assets (expires_at)")

    def _now(self) -> datetime:
        return _utc(self._clock())

    @staticmethod
    def _row(row: tuple) -> BlockedAsset:
        return BlockedAsset(
            symbol=row[0],
            reason=row[1],
            blocked_at=datetime.fromisoformat(row[2]),
            expires_at=datetime.fromisoformat(row[3]),
        )

    def block(self, symbol: str, reason: str = ASSET_NOT_ACTIVE, ttl: timedelta | None = None) -> BlockedAsset:
        """Block *symbol* until now + ttl. Re-blocking refreshes reason and expiry."""
        sym = symbol.strip().upper()
        if not sym:
            raise ValueError("symbol must be non-empty")
        now = self._now()
        expires = now + (ttl if ttl is not None else self._ttl)
        with self._conn() as c:
            c.execute(
                """
                INSERT INTO blocked_assets (symbol, reason, blocked_at, expires_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(symbol) DO UPDATE SET
                    reason = excluded.reason,
                    expires_at = excluded.expires_at
                """,
                (sym, reason, _iso(now), _iso(expires)),
            )
        logger.info("Blocked %s until %s (%s)", sym, expires.isoformat(), reason)
        return self.get(sym) or BlockedAsset(sym, reason, now, expires)

    def unblock(self, symbol: str) -> bool:
        with self._conn() as c:
            cur = c.execute("DELETE FROM blocked_assets WHERE symbol = ?", (symbol.strip().upper(),))
        return cur.rowcount > 0

    def get(self, symbol: str) -> BlockedAsset | None:
        """Return the row for *symbol* whether active or expired-but-unswept."""
        with self._conn() as c:
            row = c.execute(
                "SELECT symbol, reason, blocked_at, expires_at FROM blocked_assets WHERE symbol = ?",
                (symbol.strip().upper(),),
            ).fetchone()
        return self._row(row) if row else None

    def is_blocked(self, symbol: str) -> bool:
        asset = self.get(symbol)
        return asset is not None and not asset.is_expired(self._now())

    def list_active(self) -> list[BlockedAsset]:
        with self._conn() as c:
            rows = c.execute(
                """
                SELECT symbol, reason, blocked_at, expires_at FROM blocked_assets
                WHERE expires_at > ? ORDER BY symbol
                """,
                (_iso(self._now()),),
            ).fetchall()
        return [self._row(r) for r in rows]

    def active_symbols(self) -> frozenset[str]:
        return frozenset(a.symbol for a in self.list_active())

    def sweep_expired(self) -> int:
        """Delete rows whose expiry has passed. Returns the number purged."""
        with self._conn() as c:
            cur = c.execute(
                "DELETE FROM blocked_assets WHERE expires_at <= ?",
                (_iso(self._now()),),
            )
        purged = cur.rowcount
        if purged:
            logger.info("Swept %d expired block(s)", purged)
        return purged
