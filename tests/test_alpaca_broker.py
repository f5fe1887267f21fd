"""Tests for execution.alpaca_broker. No network; TradingClient is a MagicMock."""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests

from execution.alpaca_broker import AlpacaBroker, translate_error
from execution.broker import (
    AssetNotTradableError,
    BrokerError,
    InsufficientBuyingPowerError,
    TransientBrokerError,
)
from portfolio_core.contracts import OrderSide


class FakeAPIError(Exception):
    """Shaped like alpaca-py's APIError: message plus code and status_code."""

    def __init__(self, message: str, code: int | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code


def _order(**overrides):
    fields = dict(
        id="11111111-2222-3333-4444-555555555555",
        symbol="AAPL",
        side=SimpleNamespace(value="buy"),
        status=SimpleNamespace(value="accepted"),
        submitted_at=None,
        qty=None,
        notional="1000.5",
        filled_at=None,
        filled_avg_price=None,
        filled_qty="0",
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def broker(client: MagicMock) -> AlpacaBroker:
    return AlpacaBroker("", "", client=client, min_call_interval=0, sleep=lambda s: None)


def test_requires_keys_without_client() -> None:
    with pytest.raises(ValueError, match="APCA_API_KEY_ID"):
        AlpacaBroker("", "")


def test_account_equity_is_decimal(broker: AlpacaBroker, client: MagicMock) -> None:
    client.get_account.return_value = SimpleNamespace(equity="100123.45")
    assert broker.account_equity() == Decimal("100123.45")


def test_account_equity_missing(broker: AlpacaBroker, client: MagicMock) -> None:
    client.get_account.return_value = SimpleNamespace(equity=None)
    with pytest.raises(BrokerError):
        broker.account_equity()


def test_current_positions(broker: AlpacaBroker, client: MagicMock) -> None:
    client.get_all_positions.return_value = [
        SimpleNamespace(symbol="AAPL", qty="10", market_value="1500.25", side=SimpleNamespace(value="long")),
        SimpleNamespace(symbol="XOM", qty="-5", market_value="-600", side=SimpleNamespace(value="short")),
    ]
    positions = broker.current_positions()
    assert [(p.symbol, p.market_value, p.side) for p in positions] == [
        ("AAPL", Decimal("1500.25"), "long"),
        ("XOM", Decimal("-600"), "short"),
    ]


def test_place_order_notional_day_order(broker: AlpacaBroker, client: MagicMock) -> None:
    client.submit_order.return_value = _order()
    ack = broker.place_order("AAPL", OrderSide.BUY, notional=Decimal("1000.499"))

    request = client.submit_order.call_args.kwargs["order_data"]
    assert request.symbol == "AAPL"
    assert request.notional == 1000.5
    assert request.qty is None
    assert str(getattr(request.time_in_force, "value", request.time_in_force)) == "day"
    assert request.client_order_id.startswith("pe-")
    assert ack.order_id == "11111111-2222-3333-4444-555555555555"
    assert ack.status == "accepted"
    assert ack.notional == Decimal("1000.5")


def test_place_order_needs_one_size(broker: AlpacaBroker) -> None:
    with pytest.raises(ValueError):
        broker.place_order("AAPL", OrderSide.BUY)


def test_place_order_retry_reuses_client_order_id(broker: AlpacaBroker, client: MagicMock) -> None:
    client.submit_order.side_effect = [
        requests.exceptions.ReadTimeout("read timed out"),
        FakeAPIError("client_order_id must be unique", code=40010001, status_code=422),
    ]
    client.get_order_by_client_id.return_value = _order(status=SimpleNamespace(value="filled"))

    ack = broker.place_order("AAPL", OrderSide.BUY, notional=Decimal("100"))

    assert client.submit_order.call_count == 2
    first = client.submit_order.call_args_list[0].kwargs["order_data"].client_order_id
    second = client.submit_order.call_args_list[1].kwargs["order_data"].client_order_id
    assert first == second
    client.get_order_by_client_id.assert_called_once_with(first)
    assert ack.status == "filled"


def test_inactive_asset_not_retried(broker: AlpacaBroker, client: MagicMock) -> None:
    client.submit_order.side_effect = FakeAPIError("asset REGN is not active", code=42210000, status_code=422)
    with pytest.raises(AssetNotTradableError) as info:
        broker.place_order("REGN", OrderSide.BUY, notional=Decimal("100"))
    assert info.value.code == 42210000
    assert client.submit_order.call_count == 1


def test_transient_errors_retried_until_exhausted(client: MagicMock) -> None:
    slept: list[float] = []
    broker = AlpacaBroker("", "", client=client, min_call_interval=0, max_retries=2, retry_delays=[1, 2], sleep=slept.append)
    client.get_all_positions.side_effect = FakeAPIError("service unavailable", status_code=503)
    with pytest.raises(BrokerError) as info:
        broker.current_positions()
    assert not info.value.retryable
    assert client.get_all_positions.call_count == 3
    assert slept == [1, 2]


def test_close_and_cancel(broker: AlpacaBroker, client: MagicMock) -> None:
    client.close_position.return_value = _order(side=SimpleNamespace(value="sell"), notional=None, qty="10")
    ack = broker.close_position("AAPL")
    client.close_position.assert_called_once_with("AAPL")
    assert ack.side == "sell"
    assert ack.qty == Decimal("10")

    client.cancel_orders.return_value = [object(), object()]
    assert broker.cancel_all_orders() == 2


def test_get_order_fill_fields(broker: AlpacaBroker, client: MagicMock) -> None:
    client.get_order_by_id.return_value = _order(
        status=SimpleNamespace(value="filled"), filled_avg_price="187.42", filled_qty="5.338"
    )
    order = broker.get_order("abc")
    client.get_order_by_id.assert_called_once_with("abc")
    assert order.filled_price == Decimal("187.42")
    assert order.filled_qty == Decimal("5.338")


class TestTranslateError:
    def test_requests_timeout_is_transient(self) -> None:
        assert isinstance(translate_error(requests.exceptions.ConnectTimeout("x")), TransientBrokerError)

    def test_rate_limit_status_is_transient(self) -> None:
        err = translate_error(FakeAPIError("slow down", status_code=429))
        assert isinstance(err, TransientBrokerError)
        assert err.code == 429

    def test_buying_power(self) -> None:
        err = translate_error(FakeAPIError("insufficient buying power", code=40310000, status_code=403))
        assert isinstance(err, InsufficientBuyingPowerError)
        assert err.code == 40310000

    def test_other_client_error_is_plain(self) -> None:
        err = translate_error(FakeAPIError("market is closed", status_code=403))
        assert type(err) is BrokerError

    def test_broker_error_passthrough(self) -> None:
        original = AssetNotTradableError("x")
        assert translate_error(original) is original
