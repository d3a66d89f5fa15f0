"""VALR exchange HTTP client with signed requests"""

import hashlib
import hmac
import json
import time
import httpx
from typing import Any, Dict, List
from urllib.parse import urlencode
from loan_monitor.domain.exceptions import ExchangeAPIError
from loan_monitor.config import settings


class ValrClient:
    """Client for the VALR REST API"""

    def __init__(
        self,
        api_key: str | None = None,
        api_secret: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.valr_api_key
        self.api_secret = api_secret if api_secret is not None else settings.valr_api_secret
        self.base_url = base_url or settings.valr_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    def sign(self, timestamp: str, method: str, path: str, body: str = "", subaccount_id: str = "") -> str:
        """HMAC-SHA512 of timestamp + VERB + path (with query) + body + sub-account id"""
        message = f"{timestamp}{method.upper()}{path}{body}{subaccount_id}"
        return hmac.new(self.api_secret.encode(), message.encode(), hashlib.sha512).hexdigest()

    async def _request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        payload: Dict[str, Any] | None = None,
        subaccount_id: str | None = None,
        signed: bool = True,
    ) -> Any:
        """
        Send a request and decode the JSON body.

        Raises:
            ExchangeAPIError: On timeout, network failure, HTTP errors, or invalid JSON
        """
        if params:
            path = f"{path}?{urlencode(params)}"
        body = json.dumps(payload, separators=(",", ":")) if payload is not None else ""

        headers = {"Content-Type": "application/json"}
        if signed:
            timestamp = str(int(time.time() * 1000))
            headers["X-VALR-API-KEY"] = self.api_key
            headers["X-VALR-TIMESTAMP"] = timestamp
            headers["X-VALR-SIGNATURE"] = self.sign(timestamp, method, path, body, subaccount_id or "")
            if subaccount_id:
                headers["X-VALR-SUB-ACCOUNT-ID"] = subaccount_id

        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.request(method, path, content=body or None, headers=headers)
                response.raise_for_status()
                if not response.content:
                    return {}
                return response.json()

            except httpx.TimeoutException as e:
                raise ExchangeAPIError(f"VALR API timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise ExchangeAPIError(f"VALR API error: {e.response.status_code} {e.response.text[:200]}") from e
            except httpx.RequestError as e:
                raise ExchangeAPIError(f"VALR API unreachable: {e}") from e
            except ValueError as e:
                raise ExchangeAPIError(f"Invalid JSON from VALR API: {e}") from e

    async def get_market_summary(self, pair: str) -> Dict[str, Any]:
        return await self._request("GET", f"/v1/public/{pair}/marketsummary", signed=False)

    async def get_balances(self, subaccount_id: str | None = None, exclude_zero: bool = False) -> List[Dict[str, Any]]:
        params = {"excludeZeroBalances": "true"} if exclude_zero else None
        return await self._request("GET", "/v1/account/balances", params=params, subaccount_id=subaccount_id)

    async def place_market_order(
        self,
        pair: str,
        side: str,
        quote_amount: str,
        customer_order_id: str,
        subaccount_id: str | None = None,
    ) -> Dict[str, Any]:
        payload = {
            "pair": pair,
            "side": side,
            "quoteAmount": quote_amount,
            "customerOrderId": customer_order_id,
        }
        return await self._request("POST", "/v1/orders/market", payload=payload, subaccount_id=subaccount_id)

    async def get_order_status(self, pair: str, order_id: str, subaccount_id: str | None = None) -> Dict[str, Any]:
        return await self._request("GET", f"/v1/orders/{pair}/orderid/{order_id}", subaccount_id=subaccount_id)

    async def transfer(
        self,
        currency: str,
        amount: str,
        from_id: str,
        to_id: str | None = None,
        to_email: str | None = None,
        to_mobile_number: str | None = None,
    ) -> Dict[str, Any]:
        """Move funds from one of our accounts to an account, email or phone number"""
        payload: Dict[str, Any] = {
            "fromId": from_id,
            "currencyCode": currency,
            "amount": amount,
            "allowBorrow": False,
        }
        if to_id is not None:
            payload["toId"] = to_id
        if to_email is not None:
            payload["toEmail"] = to_email
        if to_mobile_number is not None:
            payload["toMobileNumber"] = to_mobile_number
        return await self._request("POST", "/v1/account/subaccounts/transfer", payload=payload)

    async def get_transaction_history(
        self,
        subaccount_id: str | None = None,
        start_time: str | None = None,
        limit: int = 200,
    ) -> List[Dict[str, Any]]:
        """One page of account transactions, newest first"""
        params: Dict[str, Any] = {"skip": 0, "limit": limit}
        if start_time:
            params["startTime"] = start_time
        return await self._request("GET", "/v1/account/transactionhistory", params=params, subaccount_id=subaccount_id)
