"""Repayment executor - runs one planned cycle and records it in the ledger"""

import logging
import time
import uuid
from dataclasses import replace
from datetime import datetime
from enum import Enum
from sqlalchemy.orm import Session

from loan_monitor.config import settings
from loan_monitor.domain.exceptions import RepaymentActionError
from loan_monitor.domain.models import (
    ActionType,
    ExecutionResult,
    LoanMetrics,
    ObligationPayment,
    PaymentKind,
    RepaymentAction,
    RepaymentPlan,
    TradeResult,
)
from loan_monitor.domain.planner import RepaymentPlanner
from loan_monitor.infrastructure.database.repositories import (
    ExecutionRepository,
    ObligationPaymentRepository,
    RevolvingRepaymentRepository,
)
from loan_monitor.infrastructure.observability.logging import log_cycle
from loan_monitor.infrastructure.observability.metrics import record_action, record_cycle
from loan_monitor.utils.date_utils import utc_now

logger = logging.getLogger(__name__)


class CyclePhase(str, Enum):
    PLANNING = "PLANNING"
    SKIPPED = "SKIPPED"
    EXECUTING = "EXECUTING"
    DONE = "DONE"


class RepaymentExecutor:
    """
    Executes a repayment plan action by action.

    Flow:
    1. PLANNING: ask the planner for this cycle's plan
    2. SKIPPED: plan not executable → one terminal record, no actions
    3. EXECUTING: provisional record, then buy + transfer per action in
       priority order. A failed action is recorded and the next one still runs
    4. DONE: the cycle's record is overwritten with final counts and errors

    Exchange failures never escape a cycle. Ledger (database) errors do.

    A purchase followed by a failed transfer leaves the bought crypto on the
    funding account. It is recorded as an error and not reversed.
    """

    def __init__(
        self,
        db: Session,
        market,
        planner: RepaymentPlanner,
        debt_account: str | None = None,
    ):
        self.db = db
        self.market = market
        self.planner = planner
        self.debt_account = debt_account if debt_account is not None else settings.loan_principal_subaccount
        self.payments = ObligationPaymentRepository(db)
        self.executions = ExecutionRepository(db)
        self.revolving = RevolvingRepaymentRepository(db)
        self.phase = CyclePhase.PLANNING

    @property
    def dry_run(self) -> bool:
        return self.market.dry_run

    def _enter(self, phase: CyclePhase, cycle_id: str) -> None:
        self.phase = phase
        logger.info(f"Repayment cycle {phase.value}", extra={"cycle_id": cycle_id, "phase": phase.value})

    def _save(self, result: ExecutionResult, plan: RepaymentPlan, final: bool) -> None:
        details = {"plan": plan.to_dict()}
        if final:
            details["result"] = result.to_dict()
        self.executions.save_execution(result, details)
        self.db.commit()

    async def run_cycle(self, loan_metrics: LoanMetrics, now: datetime | None = None) -> ExecutionResult:
        start_time = time.time()
        result = ExecutionResult(cycle_id=str(uuid.uuid4()), timestamp=now or utc_now(), dry_run=self.dry_run)

        self._enter(CyclePhase.PLANNING, result.cycle_id)
        plan = await self.planner.build_plan(self.payments, loan_metrics, now)
        result.actions_planned = len(plan.actions)

        if not plan.can_execute:
            self._enter(CyclePhase.SKIPPED, result.cycle_id)
            result.skipped_reason = plan.skipped_reason or "Skipped"
            result.errors.append(result.skipped_reason)
            logger.info(f"Skipping repayment cycle: {result.skipped_reason}")
            self._save(result, plan, final=True)
        else:
            self._enter(CyclePhase.EXECUTING, result.cycle_id)
            self._save(replace(result, success=False), plan, final=False)
            await self._execute_plan(plan, result)
            self._save(result, plan, final=True)

        self._enter(CyclePhase.DONE, result.cycle_id)
        record_cycle(result)
        log_cycle(result, (time.time() - start_time) * 1000)
        return result

    async def _execute_plan(self, plan: RepaymentPlan, result: ExecutionResult) -> None:
        execution_id = uuid.UUID(result.cycle_id)

        for action in plan.actions:
            logger.info(
                f"[Priority {action.priority}] {action.type.value} - {action.target}: "
                f"{action.amount_fiat:.2f} {self.market.fiat_currency}"
            )
            try:
                if action.type == ActionType.OBLIGATION:
                    fiat_spent = await self._pay_obligation(action, result.timestamp)
                    result.obligation_payments += 1
                else:
                    fiat_spent = await self._pay_revolving_debt(action, execution_id)
                    result.revolving_debt_payments += 1

            except RepaymentActionError as e:
                result.success = False
                result.errors.append(f"{action.target}: {e}")
                record_action(action.type.value, executed=False)
                logger.error(f"Repayment action failed for {action.target}: {e}", extra={"cycle_id": result.cycle_id})
                continue

            result.actions_executed += 1
            result.total_fiat_spent += fiat_spent
            record_action(action.type.value, executed=True)

    async def _buy(self, action: RepaymentAction) -> TradeResult:
        trade = await self.market.buy_with_fiat(action.currency, action.amount_fiat)
        if not trade.success:
            raise RepaymentActionError(f"Trade failed: {trade.error}")
        logger.info(f"Bought {trade.crypto_received:.8f} {action.currency} for {trade.fiat_spent:.2f}")
        return trade

    def _transfer_failed(self, action: RepaymentAction, trade: TradeResult, error: str | None) -> RepaymentActionError:
        logger.error(
            f"Bought {trade.crypto_received:.8f} {action.currency} but could not deliver it; "
            "funds remain on the funding account",
            extra={"target": action.target, "order_id": trade.order_id},
        )
        return RepaymentActionError(f"Transfer failed: {error}")

    async def _pay_obligation(self, action: RepaymentAction, paid_at: datetime) -> float:
        if action.recipient is None:
            raise RepaymentActionError("No recipient configured")

        trade = await self._buy(action)
        transfer = await self.market.transfer_to_recipient(
            action.currency, trade.crypto_received, self.market.funding_account, action.recipient
        )
        if not transfer.success:
            raise self._transfer_failed(action, trade, transfer.error)

        self.payments.create_payment(
            ObligationPayment(
                loan_id=action.target,
                payment_date=paid_at,
                amount_fiat=trade.fiat_spent,
                crypto_currency=action.currency,
                crypto_amount=trade.crypto_received,
                transfer_id=transfer.transfer_id,
                kind=PaymentKind.INTEREST,
            ),
            dry_run=self.dry_run,
        )
        self.db.commit()
        return trade.fiat_spent

    async def _pay_revolving_debt(self, action: RepaymentAction, execution_id: uuid.UUID) -> float:
        trade = await self._buy(action)
        transfer = await self.market.transfer_between_accounts(
            action.currency, trade.crypto_received, self.market.funding_account, self.debt_account
        )
        if not transfer.success:
            raise self._transfer_failed(action, trade, transfer.error)

        self.revolving.create_repayment(
            execution_id=execution_id,
            currency=action.currency,
            amount=trade.crypto_received,
            amount_fiat=trade.fiat_spent,
            transfer_id=transfer.transfer_id,
            dry_run=self.dry_run,
        )
        self.db.commit()
        return trade.fiat_spent
