"""Loan endpoints - revolving debt snapshot and informal obligation management"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from loan_monitor.api.dependencies import get_request_id, get_scheduler
from loan_monitor.api.v1.schemas import (
    LoanStatusResponse,
    PaymentHistoryItem,
    PaymentHistoryResponse,
    ReloadResponse,
)
from loan_monitor.domain.exceptions import ExchangeAPIError
from loan_monitor.infrastructure.database.repositories import ObligationPaymentRepository, TransactionRepository
from loan_monitor.infrastructure.database.session import get_db
from loan_monitor.infrastructure.observability.metrics import loan_refresh_failures_counter, record_loan_metrics
from loan_monitor.runner.scheduler import RepaymentScheduler

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/loans/status", response_model=LoanStatusResponse)
def get_loan_status(scheduler: RepaymentScheduler = Depends(get_scheduler)):
    """Latest loan snapshot (as of the last refresh)"""
    return LoanStatusResponse.from_metrics(scheduler.loan_monitor.latest, scheduler.market.fiat_currency)


@router.post("/loans/refresh", response_model=LoanStatusResponse)
async def refresh_loans(
    request: Request,
    db: Session = Depends(get_db),
    scheduler: RepaymentScheduler = Depends(get_scheduler),
):
    """Re-read balances and interest charges now"""
    await scheduler.sync_transactions(db)
    try:
        metrics = await scheduler.loan_monitor.refresh(TransactionRepository(db))
    except ExchangeAPIError as e:
        loan_refresh_failures_counter.inc()
        logger.error(f"Exchange API error: {e}", extra={"request_id": get_request_id(request)})
        raise HTTPException(status_code=503, detail="Exchange unavailable")

    record_loan_metrics(metrics)
    return LoanStatusResponse.from_metrics(metrics, scheduler.market.fiat_currency)


@router.post("/obligations/reload", response_model=ReloadResponse)
def reload_obligations(scheduler: RepaymentScheduler = Depends(get_scheduler)):
    """
    Re-read the obligations document.

    An invalid document is rejected (422) and the previously loaded
    obligations stay active.
    """
    registry = scheduler.registry
    if not registry.reload():
        raise HTTPException(status_code=422, detail=registry.last_error)
    return ReloadResponse(success=True, active_obligations=len(registry.list_active()))


@router.get("/obligations/{loan_id}/payments", response_model=PaymentHistoryResponse)
def get_obligation_payments(
    loan_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    scheduler: RepaymentScheduler = Depends(get_scheduler),
):
    """Payments recorded for one obligation, newest first (dry-run rows flagged)"""
    if not any(o.id == loan_id for o in scheduler.registry.list_all()):
        raise HTTPException(status_code=404, detail="Obligation not found")

    records = scheduler.registry.payment_history(ObligationPaymentRepository(db), loan_id, limit)
    return PaymentHistoryResponse(
        loan_id=loan_id,
        payments=[
            PaymentHistoryItem(
                payment_date=r.payment_date,
                amount_fiat=r.amount_fiat,
                crypto_currency=r.crypto_currency,
                crypto_amount=r.crypto_amount,
                transfer_id=r.transfer_id,
                payment_type=r.payment_type,
                dry_run=r.dry_run,
            )
            for r in records
        ],
    )
