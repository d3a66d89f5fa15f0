"""Pydantic schemas for API responses

Personal details of obligation lenders (names, recipient values, notes) are
masked here, before anything leaves the service.
"""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel

from loan_monitor.domain.models import (
    ExecutionResult,
    LoanMetrics,
    ObligationPayment,
    ObligationSummary,
    RepaymentAction,
    RepaymentPlan,
)
from loan_monitor.utils.sanitization import mask_contact, mask_name, redact_notes


class RepaymentActionSchema(BaseModel):
    """Single planned purchase + transfer"""

    priority: int
    type: str
    target: str
    currency: str
    amount_fiat: float
    apr: Optional[float] = None
    recipient_kind: Optional[str] = None
    recipient_name: Optional[str] = None

    @classmethod
    def from_action(cls, action: RepaymentAction) -> "RepaymentActionSchema":
        return cls(**action.to_dict(), recipient_name=mask_name(action.recipient_name) if action.recipient_name else None)


class PlanResponse(BaseModel):
    """Response for GET /v1/repayments/plan"""

    total_available_fiat: float
    usable_fiat: float
    total_fiat_needed: float
    can_execute: bool
    actions: List[RepaymentActionSchema]
    skipped_reason: Optional[str] = None
    dry_run: bool

    @classmethod
    def from_plan(cls, plan: RepaymentPlan, dry_run: bool) -> "PlanResponse":
        return cls(
            total_available_fiat=plan.total_available_fiat,
            usable_fiat=plan.usable_fiat,
            total_fiat_needed=plan.total_fiat_needed,
            can_execute=plan.can_execute,
            actions=[RepaymentActionSchema.from_action(a) for a in plan.actions],
            skipped_reason=plan.skipped_reason,
            dry_run=dry_run,
        )


class ExecutionResultResponse(BaseModel):
    """Response for POST /v1/repayments/run"""

    cycle_id: str
    timestamp: datetime
    dry_run: bool
    actions_planned: int
    actions_executed: int
    total_fiat_spent: float
    obligation_payments: int
    revolving_debt_payments: int
    success: bool
    errors: List[str]
    skipped_reason: Optional[str] = None

    @classmethod
    def from_result(cls, result: ExecutionResult) -> "ExecutionResultResponse":
        return cls(**result.to_dict())


class ExecutionRecordSchema(BaseModel):
    """Stored cycle record"""

    execution_id: str
    execution_date: datetime
    dry_run: bool
    actions_planned: int
    actions_executed: int
    total_fiat_spent: float
    obligation_payments_count: int
    revolving_payments_count: int
    success: bool
    errors: List[str]

    @classmethod
    def from_record(cls, record) -> "ExecutionRecordSchema":
        return cls(
            execution_id=str(record.id),
            execution_date=record.execution_date,
            dry_run=record.dry_run,
            actions_planned=record.actions_planned,
            actions_executed=record.actions_executed,
            total_fiat_spent=record.total_fiat_spent,
            obligation_payments_count=record.obligation_payments_count,
            revolving_payments_count=record.revolving_payments_count,
            success=record.success,
            errors=record.errors or [],
        )


class ExecutionStatsSchema(BaseModel):
    total_executions: int
    success_count: int
    failure_count: int
    total_fiat_spent: float
    success_rate: float


class ObligationSummarySchema(BaseModel):
    """Obligation status with lender details masked"""

    id: str
    name: str
    recipient_type: str
    recipient: str
    principal: float
    currency: str
    interest_rate: float
    settlement_currency: str
    monthly_interest_due: float
    total_interest_paid: float
    total_principal_paid: float
    last_payment_date: Optional[datetime] = None
    days_since_last_payment: int
    payments_this_month: int
    notes: Optional[str] = None

    @classmethod
    def from_summary(cls, summary: ObligationSummary) -> "ObligationSummarySchema":
        obligation = summary.obligation
        return cls(
            id=obligation.id,
            name=mask_name(obligation.name),
            recipient_type=obligation.recipient.kind.value,
            recipient=mask_contact(obligation.recipient.value),
            principal=obligation.principal,
            currency=obligation.currency,
            interest_rate=obligation.interest_rate,
            settlement_currency=obligation.settlement_currency,
            monthly_interest_due=summary.monthly_interest_due,
            total_interest_paid=summary.total_interest_paid,
            total_principal_paid=summary.total_principal_paid,
            last_payment_date=summary.last_payment_date,
            days_since_last_payment=summary.days_since_last_payment,
            payments_this_month=summary.payments_this_month,
            notes=redact_notes(obligation.notes),
        )


class DuePaymentSchema(BaseModel):
    loan_id: str
    amount_fiat: float
    crypto_currency: str

    @classmethod
    def from_payment(cls, payment: ObligationPayment) -> "DuePaymentSchema":
        return cls(loan_id=payment.loan_id, amount_fiat=payment.amount_fiat, crypto_currency=payment.crypto_currency)


class StatusResponse(BaseModel):
    """Response for GET /v1/repayments/status"""

    dry_run: bool
    cycle_in_progress: bool
    fiat_currency: str
    minimum_fiat_reserve: float
    total_monthly_obligation: float
    obligations_error: Optional[str] = None
    obligations: List[ObligationSummarySchema]
    due_payments: List[DuePaymentSchema]
    recent_executions: List[ExecutionRecordSchema]
    stats: ExecutionStatsSchema


class HistoryResponse(BaseModel):
    """Response for GET /v1/repayments/history"""

    executions: List[ExecutionRecordSchema]


class PaymentHistoryItem(BaseModel):
    payment_date: datetime
    amount_fiat: float
    crypto_currency: str
    crypto_amount: float
    transfer_id: Optional[str] = None
    payment_type: str
    dry_run: bool


class PaymentHistoryResponse(BaseModel):
    """Response for GET /v1/obligations/{loan_id}/payments"""

    loan_id: str
    payments: List[PaymentHistoryItem]


class ReloadResponse(BaseModel):
    """Response for POST /v1/obligations/reload"""

    success: bool
    active_obligations: int
    error: Optional[str] = None


class PositionSchema(BaseModel):
    currency: str
    amount: float
    value_fiat: Optional[float] = None


class LoanStatusResponse(BaseModel):
    """Response for GET /v1/loans/status"""

    refreshed_at: Optional[datetime] = None
    fiat_currency: str
    loans: List[PositionSchema]
    collateral: List[PositionSchema]
    total_loan_value_fiat: float
    total_collateral_value_fiat: float
    margin_ratio: float
    interest_by_currency: Dict[str, float]
    interest_fiat_by_currency: Dict[str, float]
    interest_payment_counts: Dict[str, int]
    monthly_interest_by_currency: Dict[str, float]
    monthly_interest_fiat_by_currency: Dict[str, float]
    effective_apr_by_currency: Dict[str, float]
    payments_by_currency: Dict[str, float]
    payments_fiat_by_currency: Dict[str, float]
    hours_since_first_payment: float

    @classmethod
    def from_metrics(cls, metrics: LoanMetrics, fiat_currency: str) -> "LoanStatusResponse":
        return cls(
            refreshed_at=metrics.refreshed_at,
            fiat_currency=fiat_currency,
            loans=[PositionSchema(currency=p.currency, amount=p.amount, value_fiat=p.value_fiat) for p in metrics.loans],
            collateral=[
                PositionSchema(currency=p.currency, amount=p.amount, value_fiat=p.value_fiat) for p in metrics.collateral
            ],
            total_loan_value_fiat=metrics.total_loan_value_fiat,
            total_collateral_value_fiat=metrics.total_collateral_value_fiat,
            margin_ratio=metrics.margin_ratio,
            interest_by_currency=metrics.interest_by_currency,
            interest_fiat_by_currency=metrics.interest_fiat_by_currency,
            interest_payment_counts=metrics.interest_payment_counts,
            monthly_interest_by_currency=metrics.monthly_interest_by_currency,
            monthly_interest_fiat_by_currency=metrics.monthly_interest_fiat_by_currency,
            effective_apr_by_currency=metrics.effective_apr_by_currency,
            payments_by_currency=metrics.payments_by_currency,
            payments_fiat_by_currency=metrics.payments_fiat_by_currency,
            hours_since_first_payment=metrics.hours_since_first_payment,
        )
