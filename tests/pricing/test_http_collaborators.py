import httpx
import pytest

from earnings.errors import UserNotFound
from pricing.holdings import Holding, HttpHoldingsStore
from pricing.oracle import HttpPriceOracle


@pytest.fixture
def mock_httpx_client(mocker):
    return mocker.patch("httpx.Client")


def _response(status_code, payload=None, path="/"):
    return httpx.Response(
        status_code,
        json=payload,
        request=httpx.Request("GET", f"http://orders.local{path}"),
    )


def test_oracle_reads_last_price(mock_httpx_client):
    mock_httpx_client.return_value.get.return_value = _response(
        200, {"data": {"symbol": "INFY", "lastPrice": "1,512.35"}}
    )

    oracle = HttpPriceOracle("http://quotes.local", timeout=1.5)

    assert oracle.lookup(" infy ") == pytest.approx(1512.35)
    mock_httpx_client.assert_called_once_with(base_url="http://quotes.local", timeout=1.5)
    mock_httpx_client.return_value.get.assert_called_once_with("/api/quotes/INFY")


def test_oracle_accepts_list_payloads(mock_httpx_client):
    mock_httpx_client.return_value.get.return_value = _response(200, {"data": [{"ltp": 98.5}]})

    assert HttpPriceOracle("http://quotes.local").lookup("TCS") == 98.5


def test_oracle_missing_quote_is_absent(mock_httpx_client):
    mock_httpx_client.return_value.get.return_value = _response(404, {"message": "unknown"})

    assert HttpPriceOracle("http://quotes.local").lookup("NOPE") is None


def test_oracle_transport_errors_are_absent(mock_httpx_client):
    mock_httpx_client.return_value.get.side_effect = httpx.ConnectTimeout("timed out")

    assert HttpPriceOracle("http://quotes.local").lookup("INFY") is None


def test_oracle_server_errors_are_absent(mock_httpx_client):
    mock_httpx_client.return_value.get.return_value = _response(503, {"message": "busy"})

    assert HttpPriceOracle("http://quotes.local").lookup("INFY") is None


def test_holdings_store_parses_positions(mock_httpx_client):
    mock_httpx_client.return_value.get.return_value = _response(
        200,
        {
            "data": [
                {"symbol": "INFY", "quantity": 10, "averagePrice": 1500},
                {"symbol": "SOLD", "quantity": 0, "averagePrice": 10},
                {"quantity": 5},
            ]
        },
    )

    holdings = HttpHoldingsStore("http://orders.local").get_holdings("u1")

    assert holdings == [Holding("INFY", 10.0, 1500.0)]
    mock_httpx_client.return_value.get.assert_called_once_with("/api/users/u1/holdings")


def test_holdings_store_reads_wallet(mock_httpx_client):
    mock_httpx_client.return_value.get.return_value = _response(200, {"data": {"walletBalance": 87500.5}})

    assert HttpHoldingsStore("http://orders.local").get_cash_balance("u1") == 87500.5


def test_holdings_store_unknown_user(mock_httpx_client):
    mock_httpx_client.return_value.get.return_value = _response(404, {"message": "no such user"})

    with pytest.raises(UserNotFound):
        HttpHoldingsStore("http://orders.local").get_cash_balance("ghost")


def test_holdings_store_propagates_server_errors(mock_httpx_client):
    mock_httpx_client.return_value.get.return_value = _response(500, {"message": "boom"})

    with pytest.raises(httpx.HTTPStatusError):
        HttpHoldingsStore("http://orders.local").get_holdings("u1")
