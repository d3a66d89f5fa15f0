"""Prometheus metrics for repayment cycles, loan positions and exchange calls"""

from prometheus_client import Counter, Histogram, Gauge

# Repayment metrics
repayment_cycle_counter = Counter(
    "loan_monitor_repayment_cycles_total",
    "Repayment cycles run",
    ["outcome"],  # success | partial_failure | skipped
)

repayment_action_counter = Counter(
    "loan_monitor_repayment_actions_total",
    "Repayment actions attempted",
    ["type", "status"],  # OBLIGATION | REVOLVING_DEBT, executed | failed
)

repayment_fiat_spent_counter = Counter(
    "loan_monitor_repayment_fiat_spent_total",
    "Fiat spent on repayments",
)

# Loan metrics
loan_amount_gauge = Gauge(
    "loan_monitor_loan_amount",
    "Outstanding revolving debt per currency",
    ["currency"],
)

loan_apr_gauge = Gauge(
    "loan_monitor_effective_apr_percent",
    "Effective APR per loan currency",
    ["currency"],
)

margin_ratio_gauge = Gauge(
    "loan_monitor_margin_ratio",
    "Loan value over collateral value",
)

loan_refresh_failures_counter = Counter(
    "loan_monitor_refresh_failures_total",
    "Failed loan metric refreshes",
)

# Exchange API metrics
exchange_latency_histogram = Histogram(
    "exchange_request_latency_seconds",
    "VALR API response time",
    ["operation"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_cycle(result) -> None:
    """Record cycle outcome and fiat spent"""
    if result.skipped_reason:
        outcome = "skipped"
    elif result.success:
        outcome = "success"
    else:
        outcome = "partial_failure"
    repayment_cycle_counter.labels(outcome=outcome).inc()
    repayment_fiat_spent_counter.inc(result.total_fiat_spent)


def record_action(action_type: str, executed: bool) -> None:
    repayment_action_counter.labels(type=action_type, status="executed" if executed else "failed").inc()


def record_loan_metrics(metrics) -> None:
    """Publish the latest loan snapshot as gauges, dropping currencies no longer in it"""
    loan_amount_gauge.clear()
    loan_apr_gauge.clear()
    for loan in metrics.loans:
        loan_amount_gauge.labels(currency=loan.currency).set(loan.amount)
    for currency, apr in metrics.effective_apr_by_currency.items():
        loan_apr_gauge.labels(currency=currency).set(apr)
    margin_ratio_gauge.set(metrics.margin_ratio)
