"""Market access: fiat purchases, transfers and balances on the funding account"""

import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Dict, List
from loan_monitor.config import settings
from loan_monitor.domain.exceptions import ExchangeAPIError
from loan_monitor.domain.models import Balance, Recipient, RecipientKind, TradeResult, TransferResult
from loan_monitor.infrastructure.clients.valr import ValrClient
from loan_monitor.infrastructure.observability.metrics import exchange_latency_histogram
from loan_monitor.utils.date_utils import as_utc

logger = logging.getLogger(__name__)

TAKER_FEE_RATE = 0.0015

_RECIPIENT_FIELDS = {
    RecipientKind.ACCOUNT_ID: "to_id",
    RecipientKind.EMAIL: "to_email",
    RecipientKind.PHONE: "to_mobile_number",
}


def _format_amount(amount: float, places: int = 8) -> str:
    return f"{amount:.{places}f}".rstrip("0").rstrip(".") or "0"


class MarketAccess:
    """
    Buys crypto with the reference fiat currency and moves it between accounts.

    In dry-run mode no order or transfer reaches the exchange: purchases are
    estimated from the last traded price and transfers get placeholder ids.
    Price and balance reads always hit the exchange.
    """

    def __init__(
        self,
        client: ValrClient | None = None,
        dry_run: bool | None = None,
        fiat_currency: str | None = None,
        funding_account: str | None = None,
        settlement_wait_seconds: float | None = None,
    ):
        self.client = client or ValrClient()
        self.dry_run = settings.dry_run if dry_run is None else dry_run
        self.fiat_currency = fiat_currency or settings.fiat_currency
        self.funding_account = funding_account if funding_account is not None else settings.repayment_subaccount
        self.settlement_wait_seconds = (
            settings.order_settlement_seconds if settlement_wait_seconds is None else settlement_wait_seconds
        )

    def pair(self, currency: str) -> str:
        return f"{currency}{self.fiat_currency}"

    async def get_price(self, currency: str) -> float:
        """Last traded price of `currency` in fiat"""
        if currency == self.fiat_currency:
            return 1.0
        pair = self.pair(currency)
        with exchange_latency_histogram.labels(operation="market_summary").time():
            summary = await self.client.get_market_summary(pair)
        try:
            return float(summary["lastTradedPrice"])
        except (KeyError, TypeError, ValueError) as e:
            raise ExchangeAPIError(f"Failed to get price for {pair}: {e}") from e

    async def buy_with_fiat(self, currency: str, fiat_amount: float) -> TradeResult:
        """
        Buy `currency` with `fiat_amount` of fiat using a market order.

        Live orders are re-read after a short settlement wait so callers get
        the actual crypto received and fiat spent, not the estimate.
        Failures are returned, never raised.
        """
        pair = self.pair(currency)
        try:
            price = await self.get_price(currency)
            if price <= 0:
                raise ExchangeAPIError(f"No usable price for {pair}: {price}")
            estimated_crypto = fiat_amount / price

            if self.dry_run:
                logger.info(
                    f"[DRY RUN] Would buy {estimated_crypto:.8f} {currency} "
                    f"with {fiat_amount:.2f} {self.fiat_currency} at {price:.2f}"
                )
                return TradeResult(
                    success=True,
                    crypto_received=estimated_crypto,
                    fiat_spent=fiat_amount,
                    price=price,
                    order_id="dry-run-order-id",
                )

            customer_order_id = f"repay-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
            logger.info(f"Placing market order: buy {currency} with {fiat_amount:.2f} {self.fiat_currency}")
            with exchange_latency_histogram.labels(operation="place_order").time():
                order = await self.client.place_market_order(
                    pair=pair,
                    side="BUY",
                    quote_amount=_format_amount(fiat_amount, 2),
                    customer_order_id=customer_order_id,
                    subaccount_id=self.funding_account or None,
                )
            order_id = order["id"]

            await asyncio.sleep(self.settlement_wait_seconds)

            with exchange_latency_histogram.labels(operation="order_status").time():
                status = await self.client.get_order_status(pair, order_id, subaccount_id=self.funding_account or None)
            crypto_received = float(status.get("baseReceived") or 0)
            fiat_spent = float(status.get("quoteSpent") or 0)
            if crypto_received <= 0:
                raise ExchangeAPIError(f"Order {order_id} reported no fill")

            logger.info(
                f"Market order completed: received {crypto_received:.8f} {currency}, "
                f"spent {fiat_spent:.2f} {self.fiat_currency}"
            )
            return TradeResult(
                success=True,
                crypto_received=crypto_received,
                fiat_spent=fiat_spent,
                price=fiat_spent / crypto_received,
                order_id=order_id,
            )

        except (ExchangeAPIError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Error buying {currency} with {self.fiat_currency}: {e}")
            return TradeResult(success=False, error=str(e))

    async def transfer_to_recipient(
        self, currency: str, amount: float, from_account: str, recipient: Recipient
    ) -> TransferResult:
        """Send funds to another user's account id, email or phone number"""
        if self.dry_run:
            logger.info(f"[DRY RUN] Would transfer {amount:.8f} {currency} from {from_account} to {recipient.kind.value}")
            return TransferResult(success=True, transfer_id=f"dry-run-transfer-{recipient.kind.value}")

        return await self._transfer(currency, amount, from_account, **{_RECIPIENT_FIELDS[recipient.kind]: recipient.value})

    async def transfer_between_accounts(
        self, currency: str, amount: float, from_account: str, to_account: str
    ) -> TransferResult:
        """Move funds between two of our own accounts"""
        if self.dry_run:
            logger.info(f"[DRY RUN] Would transfer {amount:.8f} {currency} from {from_account} to {to_account}")
            return TransferResult(success=True, transfer_id=f"dry-run-transfer-{to_account}")

        return await self._transfer(currency, amount, from_account, to_id=to_account)

    async def _transfer(self, currency: str, amount: float, from_account: str, **destination: str) -> TransferResult:
        try:
            with exchange_latency_histogram.labels(operation="transfer").time():
                response = await self.client.transfer(
                    currency=currency,
                    amount=_format_amount(amount),
                    from_id=from_account,
                    **destination,
                )
            transfer_id = str(response.get("id") or response.get("transferId") or "unknown")
            logger.info(f"Transfer completed: {transfer_id} ({amount:.8f} {currency})")
            return TransferResult(success=True, transfer_id=transfer_id)

        except (ExchangeAPIError, AttributeError) as e:
            logger.error(f"Error transferring {currency}: {e}")
            return TransferResult(success=False, error=str(e))

    async def get_all_balances(self, account: str | None = None, exclude_zero: bool = True) -> List[Balance]:
        """
        Holdings of `account` (the funding account by default).

        Raises:
            ExchangeAPIError: If balances cannot be read
        """
        account = self.funding_account if account is None else account
        rows = await self.client.get_balances(subaccount_id=account or None, exclude_zero=exclude_zero)
        try:
            return [
                Balance(
                    currency=row["currency"],
                    available=float(row.get("available") or 0),
                    total=float(row["total"]),
                )
                for row in rows
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise ExchangeAPIError(f"Invalid balance data from exchange: {e}") from e

    async def get_balance(self, currency: str, account: str | None = None) -> float:
        """Spendable amount of `currency`; 0 when the account holds none"""
        for balance in await self.get_all_balances(account, exclude_zero=False):
            if balance.currency == currency:
                return balance.available
        return 0.0

    async def estimate_costs(self, currency: str, fiat_amount: float) -> Dict[str, Any]:
        """Expected crypto and taker fee for a market buy, before placing it"""
        price = await self.get_price(currency)
        return {
            "estimated_crypto": fiat_amount / price,
            "estimated_fee": fiat_amount * TAKER_FEE_RATE,
            "current_price": price,
        }

    async def get_transaction_history(self, account: str, since: datetime | None = None) -> List[Dict[str, Any]]:
        """
        Recent transactions of `account` in the exchange's raw shape, starting at `since`.

        Raises:
            ExchangeAPIError: If the history cannot be read
        """
        start_time = as_utc(since).isoformat(timespec="milliseconds").replace("+00:00", "Z") if since else None
        with exchange_latency_histogram.labels(operation="transaction_history").time():
            rows = await self.client.get_transaction_history(subaccount_id=account or None, start_time=start_time)
        if not isinstance(rows, list):
            raise ExchangeAPIError(f"Invalid transaction history from exchange: {type(rows).__name__}")
        return rows
