"""Revolving-debt metrics: positions from balance signs, interest totals and effective APR"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Protocol, Tuple
from loan_monitor.domain.exceptions import ExchangeAPIError
from loan_monitor.domain.models import Balance, CollateralPosition, LoanMetrics, LoanPosition
from loan_monitor.utils.date_utils import as_utc, month_start, utc_now

logger = logging.getLogger(__name__)

HOURS_PER_YEAR = 365.25 * 24


class TransactionHistory(Protocol):
    """Ledger queries needed for interest metrics (see TransactionRepository)"""

    def get_interest_transactions(self, since: datetime | None = None) -> List[Any]: ...

    def get_payment_transactions(self, ignore_transfer_ids: Iterable[str] = ()) -> List[Any]: ...


def split_positions(balances: Iterable[Balance]) -> Tuple[List[Balance], List[Balance]]:
    """Negative balances are loans, positive balances are collateral"""
    loans = [b for b in balances if b.total < 0]
    collateral = [b for b in balances if b.total > 0]
    return loans, collateral


def sum_debits_by_currency(transactions: Iterable[Any]) -> Tuple[Dict[str, float], Dict[str, int]]:
    """Absolute debit value and count per currency"""
    totals: Dict[str, float] = {}
    counts: Dict[str, int] = {}
    for tx in transactions:
        if not tx.debit_value or not tx.debit_currency:
            continue
        amount = abs(float(tx.debit_value))
        totals[tx.debit_currency] = totals.get(tx.debit_currency, 0.0) + amount
        counts[tx.debit_currency] = counts.get(tx.debit_currency, 0) + 1
    return totals, counts


def effective_apr_by_currency(transactions: Iterable[Any]) -> Dict[str, float]:
    """
    Annualised rate per currency from the hourly rates on interest charges.

    APR (percent) = mean hourly rate * hours per year * 100. Currencies whose
    loans are already repaid keep an APR as long as their charges are stored.
    """
    rates: Dict[str, List[float]] = {}
    for tx in transactions:
        if not tx.debit_value or not tx.debit_currency:
            continue
        hourly_rate = (tx.additional_info or {}).get("hourlyRate")
        if hourly_rate is None:
            continue
        rates.setdefault(tx.debit_currency, []).append(float(hourly_rate))

    return {
        currency: (sum(values) / len(values)) * HOURS_PER_YEAR * 100
        for currency, values in rates.items()
        if values
    }


class LoanMonitor:
    """
    Builds LoanMetrics snapshots for the loan (margin) account.

    Each refresh publishes a new immutable snapshot in `latest`. A failed
    refresh raises and leaves `latest` untouched.
    """

    def __init__(self, market, principal_account: str, ignore_transfer_ids: Iterable[str] = ()):
        self.market = market
        self.principal_account = principal_account
        self.ignore_transfer_ids = [t.strip() for t in ignore_transfer_ids if t and t.strip()]
        self.latest = LoanMetrics()

    async def _fiat_value(self, amount: float, currency: str, prices: Dict[str, float]) -> float | None:
        if currency not in prices:
            try:
                prices[currency] = await self.market.get_price(currency)
            except ExchangeAPIError as e:
                logger.error(f"Error converting {currency} to fiat: {e}")
                return None
        return amount * prices[currency]

    async def _to_fiat(self, amounts: Dict[str, float], prices: Dict[str, float]) -> Dict[str, float]:
        converted = {}
        for currency, amount in amounts.items():
            value = await self._fiat_value(amount, currency, prices)
            if value is not None:
                converted[currency] = value
        return converted

    async def refresh(self, transactions: TransactionHistory, now: datetime | None = None) -> LoanMetrics:
        """
        Read balances and stored interest charges into a new snapshot.

        Raises:
            ExchangeAPIError: If balances cannot be read
        """
        now = as_utc(now or utc_now())
        prices: Dict[str, float] = {}

        balances = await self.market.get_all_balances(self.principal_account, exclude_zero=True)
        loan_balances, collateral_balances = split_positions(balances)

        loans = []
        for balance in loan_balances:
            amount = abs(balance.total)
            loans.append(LoanPosition(balance.currency, amount, await self._fiat_value(amount, balance.currency, prices)))

        collateral = []
        for balance in collateral_balances:
            value = await self._fiat_value(balance.total, balance.currency, prices)
            collateral.append(CollateralPosition(balance.currency, balance.total, value))

        total_loans = sum(p.value_fiat or 0.0 for p in loans)
        total_collateral = sum(p.value_fiat or 0.0 for p in collateral)

        interest_txs = transactions.get_interest_transactions()
        interest, counts = sum_debits_by_currency(interest_txs)
        monthly_interest, _ = sum_debits_by_currency(transactions.get_interest_transactions(since=month_start(now)))

        payments: Dict[str, float] = {}
        for tx in transactions.get_payment_transactions(self.ignore_transfer_ids):
            if tx.credit_value and tx.credit_currency:
                payments[tx.credit_currency] = payments.get(tx.credit_currency, 0.0) + float(tx.credit_value)

        first_payment = next((tx for tx in interest_txs if tx.debit_value and tx.debit_currency), None)
        hours_since_first = (now - as_utc(first_payment.event_at)).total_seconds() / 3600 if first_payment else 0.0

        snapshot = LoanMetrics(
            refreshed_at=now,
            loans=tuple(loans),
            collateral=tuple(collateral),
            total_loan_value_fiat=total_loans,
            total_collateral_value_fiat=total_collateral,
            margin_ratio=total_loans / total_collateral if total_collateral > 0 else 0.0,
            interest_by_currency=interest,
            interest_fiat_by_currency=await self._to_fiat(interest, prices),
            interest_payment_counts=counts,
            monthly_interest_by_currency=monthly_interest,
            monthly_interest_fiat_by_currency=await self._to_fiat(monthly_interest, prices),
            effective_apr_by_currency=effective_apr_by_currency(interest_txs),
            payments_by_currency=payments,
            payments_fiat_by_currency=await self._to_fiat(payments, prices),
            hours_since_first_payment=hours_since_first,
        )

        logger.info(
            f"Detected {len(loans)} loan(s) and {len(collateral)} collateral position(s), "
            f"margin ratio {snapshot.margin_ratio:.4f}"
        )
        self.latest = snapshot
        return snapshot

