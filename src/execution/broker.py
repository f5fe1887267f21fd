"""
Broker contract and broker error taxonomy.

Adapters (Alpaca, simulated) implement Broker and raise BrokerError
subclasses. Rejections the rebalancer must react to are typed:

- AssetNotTradableError        asset not active / not tradable / not fractionable
- InsufficientBuyingPowerError not enough buying power for the order
- TransientBrokerError         timeouts, resets, 429/5xx; safe to retry

Errors from adapters that raise plain exceptions are classified by message.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol, runtime_checkable

from data.blocked_assets import ASSET_NOT_ACTIVE
from portfolio_core.contracts import OrderSide, PositionSnapshot

INSUFFICIENT_BUYING_POWER = "insufficient_buying_power"

_NOT_TRADABLE_PATTERNS = (
    "not active",
    "not tradable",
    "not tradeable",
    "not fractionable",
    "asset is inactive",
)
_BUYING_POWER_PATTERNS = (
    "insufficient buying power",
    "insufficient funds",
    "insufficient balance",
)
_TRANSIENT_PATTERNS = (
    "timed out",
    "timeout",
    "connection reset",
    "connection aborted",
    "temporarily unavailable",
    "too many requests",
    "rate limit",
)


class BrokerError(Exception):
    """Broker call failed.

    ``code`` carries the broker's own error code or HTTP status when known.
    ``retryable`` marks transient failures.
    """

    def __init__(self, message: str, *, code: str | int | None = None, retryable: bool = False) -> None:
        super().__init__(message)
        self.code = code
        self.retryable = retryable


class AssetNotTradableError(BrokerError):
    pass


class InsufficientBuyingPowerError(BrokerError):
    pass


class TransientBrokerError(BrokerError):
    def __init__(self, message: str, *, code: str | int | None = None) -> None:
        super().__init__(message, code=code, retryable=True)


@dataclass(frozen=True)
class BrokerOrder:
    """Broker acknowledgement of an order, and later its fill state."""

    order_id: str
    symbol: str
    side: str
    status: str
    submitted_at: datetime | None = None
    qty: Decimal | None = None
    notional: Decimal | None = None
    filled_at: datetime | None = None
    filled_price: Decimal | None = None
    filled_qty: Decimal | None = None


@runtime_checkable
class Broker(Protocol):
    """What the rebalancer and daily run need from a brokerage account."""

    def account_equity(self) -> Decimal:
        ...

    def current_positions(self) -> list[PositionSnapshot]:
        ...

    def place_order(
        self,
        symbol: str,
        side: OrderSide,
        *,
        notional: Decimal | None = None,
        qty: Decimal | None = None,
    ) -> BrokerOrder:
        ...

    def close_position(self, symbol: str) -> BrokerOrder:
        ...

    def cancel_all_orders(self) -> int:
        ...

    def get_order(self, order_id: str) -> BrokerOrder:
        ...


def classify_message(message: str) -> type[BrokerError]:
    """Map a broker error message onto the most specific BrokerError subclass."""
    text = message.lower()
    if any(p in text for p in _NOT_TRADABLE_PATTERNS):
        return AssetNotTradableError
    if any(p in text for p in _BUYING_POWER_PATTERNS):
        return InsufficientBuyingPowerError
    if any(p in text for p in _TRANSIENT_PATTERNS):
        return TransientBrokerError
    return BrokerError


def rejection_reason(exc: BaseException) -> str:
    """Skip reason recorded for a failed order: a fixed tag or the error message."""
    if isinstance(exc, AssetNotTradableError):
        return ASSET_NOT_ACTIVE
    if isinstance(exc, InsufficientBuyingPowerError):
        return INSUFFICIENT_BUYING_POWER
    if not isinstance(exc, BrokerError):
        kind = classify_message(str(exc))
        if kind is AssetNotTradableError:
            return ASSET_NOT_ACTIVE
        if kind is InsufficientBuyingPowerError:
            return INSUFFICIENT_BUYING_POWER
    return str(exc) or type(exc).__name__
