"""Repayment endpoints - run a cycle now, preview the plan, inspect status and history"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from loan_monitor.api.dependencies import get_request_id, get_scheduler
from loan_monitor.api.v1.schemas import (
    DuePaymentSchema,
    ExecutionRecordSchema,
    ExecutionResultResponse,
    ExecutionStatsSchema,
    HistoryResponse,
    ObligationSummarySchema,
    PlanResponse,
    StatusResponse,
)
from loan_monitor.config import settings
from loan_monitor.domain.exceptions import CycleInProgressError
from loan_monitor.infrastructure.database.repositories import ExecutionRepository, ObligationPaymentRepository
from loan_monitor.infrastructure.database.session import get_db
from loan_monitor.runner.scheduler import RepaymentScheduler

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/repayments/run", response_model=ExecutionResultResponse)
async def run_repayments(request: Request, scheduler: RepaymentScheduler = Depends(get_scheduler)):
    """
    Run one repayment cycle immediately.

    Returns:
        The cycle outcome. 409 if a cycle is already running, 500 if the
        ledger could not be written.
    """
    request_id = get_request_id(request)
    try:
        result = await scheduler.run_once()
    except CycleInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SQLAlchemyError as e:
        logger.error(f"Ledger error during repayment cycle: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Ledger unavailable")

    return ExecutionResultResponse.from_result(result)


@router.get("/repayments/status", response_model=StatusResponse)
def get_repayment_status(
    limit: int = Query(settings.status_history_limit, ge=1, le=100, description="Recent cycles to include"),
    db: Session = Depends(get_db),
    scheduler: RepaymentScheduler = Depends(get_scheduler),
):
    """Obligation summaries, payments due now, recent cycles and aggregate stats"""
    registry = scheduler.registry
    payments = ObligationPaymentRepository(db)
    executions = ExecutionRepository(db)

    return StatusResponse(
        dry_run=scheduler.market.dry_run,
        cycle_in_progress=scheduler.busy,
        fiat_currency=scheduler.market.fiat_currency,
        minimum_fiat_reserve=scheduler.planner.minimum_reserve,
        total_monthly_obligation=registry.total_monthly_obligation(),
        obligations_error=registry.last_error,
        obligations=[ObligationSummarySchema.from_summary(s) for s in registry.summaries(payments)],
        due_payments=[DuePaymentSchema.from_payment(p) for p in registry.payments_due_this_cycle(payments)],
        recent_executions=[ExecutionRecordSchema.from_record(r) for r in executions.get_recent(limit)],
        stats=ExecutionStatsSchema(**executions.get_stats()),
    )


@router.get("/repayments/plan", response_model=PlanResponse)
async def preview_repayment_plan(
    db: Session = Depends(get_db),
    scheduler: RepaymentScheduler = Depends(get_scheduler),
):
    """Plan a cycle against the current balance and last loan snapshot without executing it"""
    plan = await scheduler.planner.build_plan(ObligationPaymentRepository(db), scheduler.loan_monitor.latest)
    return PlanResponse.from_plan(plan, dry_run=scheduler.market.dry_run)


@router.get("/repayments/history", response_model=HistoryResponse)
def get_repayment_history(
    limit: int = Query(20, ge=1, le=500, description="Number of cycles, newest first"),
    db: Session = Depends(get_db),
):
    executions = ExecutionRepository(db).get_recent(limit)
    return HistoryResponse(executions=[ExecutionRecordSchema.from_record(r) for r in executions])
