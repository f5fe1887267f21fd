"""
Alpaca broker adapter: implements the Broker protocol with alpaca-py's TradingClient.

- Every call waits for the minimum inter-call interval and runs with a
  bounded HTTP timeout.
- Transient failures (timeouts, connection resets, HTTP 429/5xx) are retried
  with backoff; domain rejections are raised at once as typed BrokerErrors.
- Market orders are DAY orders sized by notional (rounded to cents) or qty.
- Each order carries a client_order_id reused across retries, so a retry
  after an ambiguous timeout finds the original order instead of placing a
  second one.

Paper vs live endpoint is chosen by ``paper``; live trading is gated upstream
by SafetyGuard.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Any, Callable, TypeVar

import requests

from portfolio_core.contracts import OrderSide, PositionSnapshot, to_cents

from execution.broker import (
    BrokerError,
    BrokerOrder,
    TransientBrokerError,
    classify_message,
)
from execution.throttle import CallThrottle, call_with_retry

logger = logging.getLogger("portfolio.broker")

T = TypeVar("T")

_TRANSIENT_STATUS = {408, 429, 500, 502, 503, 504}


class _TimeoutSession(requests.Session):
    """requests.Session that applies a default timeout to every request."""

    def __init__(self, timeout: float) -> None:
        super().__init__()
        self._timeout = timeout

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:  # type: ignore[override]
        kwargs.setdefault("timeout", self._timeout)
        return super().request(method, url, **kwargs)


def _dec(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _enum_value(value: Any) -> str:
    return str(getattr(value, "value", value))


def translate_error(exc: Exception) -> BrokerError:
    """Map an alpaca-py / requests exception onto the BrokerError taxonomy."""
    if isinstance(exc, BrokerError):
        return exc
    if isinstance(exc, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
        return TransientBrokerError(str(exc) or type(exc).__name__)

    message = str(exc) or type(exc).__name__
    try:
        code = getattr(exc, "code", None)
    except (ValueError, KeyError, TypeError):
        code = None
    try:
        status = getattr(exc, "status_code", None)
    except (ValueError, KeyError, TypeError):
        status = None

    kind = classify_message(message)
    if kind is BrokerError and status in _TRANSIENT_STATUS:
        kind = TransientBrokerError
    if kind is TransientBrokerError:
        return TransientBrokerError(message, code=code if code is not None else status)
    return kind(message, code=code if code is not None else status)


class AlpacaBroker:
    """
    Brokerage account on Alpaca (paper or live endpoint).

    API keys via constructor (typically from AppConfig, sourced from env vars).
    ``client`` may be injected (tests); otherwise a TradingClient is built.
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        *,
        paper: bool = True,
        min_call_interval: float = 0.25,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_delays: list[float] | None = None,
        client: Any = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        if client is None:
            if not api_key or not api_secret:
                raise ValueError(
                    "Alpaca API key and secret are required. "
                    "Set APCA_API_KEY_ID and APCA_API_SECRET_KEY environment variables."
                )
            from alpaca.trading.client import TradingClient

            client = TradingClient(api_key, api_secret, paper=paper)
            if hasattr(client, "_session"):
                # TradingClient exposes no timeout option; its requests session does.
                client._session = _TimeoutSession(timeout)
        self._client = client
        self._paper = paper
        self._max_retries = max_retries
        self._retry_kwargs: dict[str, Any] = {}
        if retry_delays is not None:
            self._retry_kwargs["delays"] = retry_delays
        if sleep is not None:
            self._retry_kwargs["sleep"] = sleep
            self._throttle = CallThrottle(min_call_interval, sleep=sleep)
        else:
            self._throttle = CallThrottle(min_call_interval)

    @property
    def paper(self) -> bool:
        return self._paper

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _request(self, fn: Callable[[], T]) -> T:
        self._throttle.wait()
        try:
            return fn()
        except Exception as exc:
            raise translate_error(exc) from exc

    def _call(self, description: str, fn: Callable[[], T]) -> T:
        return call_with_retry(
            lambda: self._request(fn),
            description=description,
            max_retries=self._max_retries,
            **self._retry_kwargs,
        )

    @staticmethod
    def _to_broker_order(order: Any) -> BrokerOrder:
        return BrokerOrder(
            order_id=str(order.id),
            symbol=str(order.symbol),
            side=_enum_value(order.side),
            status=_enum_value(order.status),
            submitted_at=getattr(order, "submitted_at", None),
            qty=_dec(getattr(order, "qty", None)),
            notional=_dec(getattr(order, "notional", None)),
            filled_at=getattr(order, "filled_at", None),
            filled_price=_dec(getattr(order, "filled_avg_price", None)),
            filled_qty=_dec(getattr(order, "filled_qty", None)),
        )

    # ------------------------------------------------------------------
    # Broker protocol
    # ------------------------------------------------------------------

    def account_equity(self) -> Decimal:
        account = self._call("get_account", self._client.get_account)
        equity = _dec(account.equity)
        if equity is None:
            raise BrokerError("Account equity unavailable")
        return equity

    def current_positions(self) -> list[PositionSnapshot]:
        positions = self._call("get_all_positions", self._client.get_all_positions)
        return [
            PositionSnapshot(
                symbol=str(p.symbol),
                qty=_dec(p.qty) or Decimal("0"),
                market_value=_dec(p.market_value) or Decimal("0"),
                side=_enum_value(p.side),
            )
            for p in positions
        ]

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
        from alpaca.trading.enums import OrderSide as AlpacaSide
        from alpaca.trading.enums import TimeInForce
        from alpaca.trading.requests import MarketOrderRequest

        client_order_id = f"pe-{uuid.uuid4().hex[:24]}"
        sizing: dict[str, Any]
        if notional is not None:
            # SDK field is float; the value is already whole cents.
            sizing = {"notional": float(to_cents(notional))}
        else:
            sizing = {"qty": float(qty)}
        request = MarketOrderRequest(
            symbol=symbol,
            side=AlpacaSide.BUY if OrderSide(side) == OrderSide.BUY else AlpacaSide.SELL,
            time_in_force=TimeInForce.DAY,
            client_order_id=client_order_id,
            **sizing,
        )

        attempts = 0

        def submit() -> Any:
            nonlocal attempts
            attempts += 1
            try:
                return self._request(lambda: self._client.submit_order(order_data=request))
            except BrokerError as exc:
                if attempts > 1 and "client_order_id" in str(exc).lower():
                    logger.info("Order %s already accepted on an earlier attempt", client_order_id)
                    return self._request(lambda: self._client.get_order_by_client_id(client_order_id))
                raise

        order = call_with_retry(
            submit,
            description=f"submit_order {symbol}",
            max_retries=self._max_retries,
            **self._retry_kwargs,
        )
        return self._to_broker_order(order)

    def close_position(self, symbol: str) -> BrokerOrder:
        order = self._call(f"close_position {symbol}", lambda: self._client.close_position(symbol))
        return self._to_broker_order(order)

    def cancel_all_orders(self) -> int:
        responses = self._call("cancel_orders", self._client.cancel_orders)
        return len(responses or [])

    def get_order(self, order_id: str) -> BrokerOrder:
        order = self._call(f"get_order {order_id}", lambda: self._client.get_order_by_id(order_id))
        return self._to_broker_order(order)
