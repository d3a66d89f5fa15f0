"""Unit tests for loan metrics snapshots"""

import pytest
from datetime import datetime, timezone
from types import SimpleNamespace
from loan_monitor.domain.exceptions import ExchangeAPIError
from loan_monitor.domain.loan_metrics import (
    HOURS_PER_YEAR,
    LoanMonitor,
    effective_apr_by_currency,
    split_positions,
    sum_debits_by_currency,
)
from loan_monitor.domain.models import Balance, LoanMetrics, LoanPosition

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def tx(currency, value, event_at, hourly_rate=None, credit_currency=None, credit_value=None):
    return SimpleNamespace(
        debit_currency=currency,
        debit_value=value,
        credit_currency=credit_currency,
        credit_value=credit_value,
        event_at=event_at,
        additional_info={"hourlyRate": hourly_rate} if hourly_rate is not None else {},
    )


class StoredTransactions:
    def __init__(self, interest=None, payments=None):
        self.interest = interest or []
        self.payments = payments or []
        self.ignored = None

    def get_interest_transactions(self, since=None):
        return [t for t in self.interest if since is None or t.event_at >= since]

    def get_payment_transactions(self, ignore_transfer_ids=()):
        self.ignored = list(ignore_transfer_ids)
        return self.payments


def test_split_positions_by_sign():
    loans, collateral = split_positions(
        [Balance("BTC", -0.1, -0.1), Balance("USDT", 100, 100), Balance("ETH", 0, 0)]
    )

    assert [b.currency for b in loans] == ["BTC"]
    assert [b.currency for b in collateral] == ["USDT"]


def test_sum_debits_skips_rows_without_debit():
    totals, counts = sum_debits_by_currency(
        [tx("BTC", "-0.001", NOW), tx("BTC", "0.002", NOW), tx(None, None, NOW), tx("ETH", None, NOW)]
    )

    assert totals == {"BTC": pytest.approx(0.003)}
    assert counts == {"BTC": 2}


def test_effective_apr_is_mean_hourly_rate_annualised():
    aprs = effective_apr_by_currency(
        [
            tx("ETH", "0.1", NOW, hourly_rate="0.00001"),
            tx("ETH", "0.1", NOW, hourly_rate="0.00003"),
            tx("BTC", "0.1", NOW),
        ]
    )

    assert aprs == {"ETH": pytest.approx(0.00002 * HOURS_PER_YEAR * 100)}


def test_loans_by_rate_sorted_descending_with_default_zero():
    """Only open loans are ranked; a loan without stored charges ranks at 0"""
    metrics = LoanMetrics(
        loans=(LoanPosition("XRP", 50.0), LoanPosition("BTC", 0.1), LoanPosition("ETH", 1.0)),
        effective_apr_by_currency={"BTC": 8.0, "ETH": 17.5, "SOL": 30.0},
    )

    assert metrics.loans_by_rate() == [("ETH", 17.5), ("BTC", 8.0), ("XRP", 0.0)]


async def test_refresh_builds_snapshot(fake_market):
    fake_market.principal_balances = [Balance("BTC", -0.01, -0.01), Balance("USDT", 5000.0, 5000.0)]
    monitor = LoanMonitor(fake_market, "principal-account", ignore_transfer_ids=["dep-1", ""])
    stored = StoredTransactions(
        interest=[
            tx("BTC", "0.0001", datetime(2024, 5, 20, 12, 0, tzinfo=timezone.utc), hourly_rate="0.00001"),
            tx("BTC", "0.0002", datetime(2024, 6, 2, 12, 0, tzinfo=timezone.utc), hourly_rate="0.00001"),
        ],
        payments=[tx(None, None, NOW, credit_currency="BTC", credit_value="0.001")],
    )

    metrics = await monitor.refresh(stored, now=NOW)

    assert metrics.refreshed_at == NOW
    assert [(p.currency, p.amount, p.value_fiat) for p in metrics.loans] == [("BTC", 0.01, pytest.approx(10000))]
    assert metrics.total_collateral_value_fiat == pytest.approx(5000 * 18)
    assert metrics.margin_ratio == pytest.approx(10000 / 90000)
    assert metrics.interest_by_currency == {"BTC": pytest.approx(0.0003)}
    assert metrics.interest_fiat_by_currency == {"BTC": pytest.approx(300)}
    assert metrics.interest_payment_counts == {"BTC": 2}
    assert metrics.monthly_interest_by_currency == {"BTC": pytest.approx(0.0002)}
    assert metrics.payments_by_currency == {"BTC": pytest.approx(0.001)}
    assert metrics.effective_apr_by_currency["BTC"] == pytest.approx(0.00001 * HOURS_PER_YEAR * 100)
    assert metrics.hours_since_first_payment == pytest.approx(26 * 24)
    assert stored.ignored == ["dep-1"]
    assert monitor.latest is metrics


async def test_unpriceable_currency_is_left_unvalued(fake_market):
    fake_market.principal_balances = [Balance("DOGE", -100.0, -100.0), Balance("USDT", 10.0, 10.0)]
    monitor = LoanMonitor(fake_market, "principal-account")

    metrics = await monitor.refresh(StoredTransactions(), now=NOW)

    assert metrics.loans[0].currency == "DOGE"
    assert metrics.loans[0].value_fiat is None
    assert metrics.total_loan_value_fiat == 0


async def test_failed_refresh_keeps_previous_snapshot(fake_market, loan_monitor):
    first = await loan_monitor.refresh(StoredTransactions(), now=NOW)
    fake_market.balance_error = True

    with pytest.raises(ExchangeAPIError):
        await loan_monitor.refresh(StoredTransactions(), now=NOW)

    assert loan_monitor.latest is first


async def test_no_collateral_gives_zero_margin_ratio(fake_market, loan_monitor):
    fake_market.principal_balances = [Balance("BTC", -0.01, -0.01)]

    metrics = await loan_monitor.refresh(StoredTransactions(), now=NOW)

    assert metrics.margin_ratio == 0.0
    assert metrics.hours_since_first_payment == 0.0
