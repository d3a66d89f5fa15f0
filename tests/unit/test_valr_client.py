"""Unit tests for the signed VALR client"""

import hashlib
import hmac
import json
import httpx
import pytest
from loan_monitor.domain.exceptions import ExchangeAPIError
from loan_monitor.infrastructure.clients.valr import ValrClient


def make_client(handler) -> ValrClient:
    return ValrClient(
        api_key="key-123",
        api_secret="secret-xyz",
        base_url="https://api.valr.test",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


def expected_signature(timestamp: str, verb: str, path: str, body: str = "", subaccount: str = "") -> str:
    message = f"{timestamp}{verb}{path}{body}{subaccount}"
    return hmac.new(b"secret-xyz", message.encode(), hashlib.sha512).hexdigest()


def test_sign_matches_hmac_sha512():
    client = ValrClient(api_key="k", api_secret="secret-xyz", base_url="https://api.valr.test")

    signature = client.sign("1700000000000", "get", "/v1/account/balances")

    assert signature == expected_signature("1700000000000", "GET", "/v1/account/balances")
    assert len(signature) == 128


async def test_signed_get_includes_query_and_subaccount():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        return httpx.Response(200, json=[{"currency": "ZAR", "available": "10", "total": "10"}])

    client = make_client(handler)
    balances = await client.get_balances(subaccount_id="sub-1", exclude_zero=True)

    request = seen["request"]
    headers = request.headers
    assert balances[0]["currency"] == "ZAR"
    assert request.url.path == "/v1/account/balances"
    assert request.url.params["excludeZeroBalances"] == "true"
    assert headers["X-VALR-API-KEY"] == "key-123"
    assert headers["X-VALR-SUB-ACCOUNT-ID"] == "sub-1"
    assert headers["X-VALR-SIGNATURE"] == expected_signature(
        headers["X-VALR-TIMESTAMP"], "GET", "/v1/account/balances?excludeZeroBalances=true", "", "sub-1"
    )


async def test_signed_post_signs_the_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        return httpx.Response(202, json={"id": "order-1"})

    client = make_client(handler)
    response = await client.place_market_order("USDTZAR", "BUY", "120", "repay-1")

    request = seen["request"]
    body = request.content.decode()
    assert response == {"id": "order-1"}
    assert json.loads(body) == {
        "pair": "USDTZAR",
        "side": "BUY",
        "quoteAmount": "120",
        "customerOrderId": "repay-1",
    }
    assert "X-VALR-SUB-ACCOUNT-ID" not in request.headers
    assert request.headers["X-VALR-SIGNATURE"] == expected_signature(
        request.headers["X-VALR-TIMESTAMP"], "POST", "/v1/orders/market", body
    )


async def test_public_market_summary_is_unsigned():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        return httpx.Response(200, json={"currencyPair": "BTCZAR", "lastTradedPrice": "1000000"})

    summary = await make_client(handler).get_market_summary("BTCZAR")

    assert summary["lastTradedPrice"] == "1000000"
    assert seen["request"].url.path == "/v1/public/BTCZAR/marketsummary"
    assert "X-VALR-SIGNATURE" not in seen["request"].headers


async def test_transfer_payload_by_destination():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, json={"id": 42})

    await make_client(handler).transfer("USDT", "6.5", from_id="funding", to_mobile_number="0821234567")

    assert seen["payload"] == {
        "fromId": "funding",
        "currencyCode": "USDT",
        "amount": "6.5",
        "allowBorrow": False,
        "toMobileNumber": "0821234567",
    }


async def test_empty_body_returns_empty_dict():
    client = make_client(lambda request: httpx.Response(202))

    assert await client.transfer("BTC", "0.1", from_id="a", to_id="b") == {}


async def test_http_error_becomes_exchange_error():
    client = make_client(lambda request: httpx.Response(400, json={"message": "Insufficient Balance"}))

    with pytest.raises(ExchangeAPIError, match="400"):
        await client.get_balances()


async def test_timeout_becomes_exchange_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ExchangeAPIError, match="timeout"):
        await make_client(handler).get_market_summary("BTCZAR")


async def test_network_error_becomes_exchange_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExchangeAPIError, match="unreachable"):
        await make_client(handler).get_balances()


async def test_invalid_json_becomes_exchange_error():
    client = make_client(lambda request: httpx.Response(200, content=b"<html>"))

    with pytest.raises(ExchangeAPIError, match="Invalid JSON"):
        await client.get_balances()


async def test_transaction_history_is_signed_for_subaccount():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        return httpx.Response(200, json=[{"id": "tx-1"}])

    client = make_client(handler)
    rows = await client.get_transaction_history(subaccount_id="loans", start_time="2024-06-01T12:00:00.000Z")

    request = seen["request"]
    assert rows == [{"id": "tx-1"}]
    assert request.url.path == "/v1/account/transactionhistory"
    assert request.url.params["startTime"] == "2024-06-01T12:00:00.000Z"
    assert request.url.params["limit"] == "200"
    assert request.headers["X-VALR-SUB-ACCOUNT-ID"] == "loans"
