"""Single-flight repayment cycle runner (fixed interval + on-demand trigger)"""

import asyncio
import logging
import time
from typing import Callable, Optional
from sqlalchemy.orm import Session

from loan_monitor.config import settings
from loan_monitor.domain.exceptions import CycleInProgressError, ExchangeAPIError
from loan_monitor.domain.loan_metrics import LoanMonitor
from loan_monitor.domain.models import ExecutionResult, LoanMetrics
from loan_monitor.domain.obligations import ObligationRegistry
from loan_monitor.domain.planner import RepaymentPlanner
from loan_monitor.infrastructure.clients.market import MarketAccess
from loan_monitor.infrastructure.database.repositories import TransactionRepository
from loan_monitor.infrastructure.database.session import SessionLocal
from loan_monitor.infrastructure.observability.metrics import loan_refresh_failures_counter, record_loan_metrics
from loan_monitor.runner.executor import RepaymentExecutor

logger = logging.getLogger(__name__)


class RepaymentScheduler:
    """
    Owns the collaborators of a repayment cycle and guarantees that at most
    one cycle runs at a time, whether triggered by the interval loop or on
    demand (HTTP).
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        market,
        registry: ObligationRegistry,
        loan_monitor: LoanMonitor,
        planner: RepaymentPlanner | None = None,
    ):
        self.session_factory = session_factory
        self.market = market
        self.registry = registry
        self.loan_monitor = loan_monitor
        self.planner = planner or RepaymentPlanner(market, registry)
        self.last_result: Optional[ExecutionResult] = None
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def sync_transactions(self, db: Session) -> int:
        """
        Store principal-account transactions newer than the last stored one.

        Interest charges carry the hourly rates the APR ranking is built from.
        An unreachable exchange leaves the stored history as it is.

        Returns:
            Number of new transactions
        """
        account = self.loan_monitor.principal_account
        transactions = TransactionRepository(db)
        since = transactions.get_latest_event_at(account_id=account)
        try:
            rows = await self.market.get_transaction_history(account, since=since)
        except ExchangeAPIError as e:
            logger.warning(f"Transaction history sync failed, using stored history: {e}")
            return 0

        inserted = transactions.store_transactions(rows, account_id=account)
        db.commit()
        if inserted:
            logger.info(f"Stored {inserted} new transactions for the principal account")
        return inserted

    async def refresh_loans(self, db: Session) -> LoanMetrics:
        """Refresh loan metrics; on exchange failure keep serving the previous snapshot"""
        await self.sync_transactions(db)
        try:
            metrics = await self.loan_monitor.refresh(TransactionRepository(db))
        except ExchangeAPIError as e:
            loan_refresh_failures_counter.inc()
            logger.error(
                f"Loan metrics refresh failed, keeping snapshot from {self.loan_monitor.latest.refreshed_at}: {e}"
            )
            return self.loan_monitor.latest
        record_loan_metrics(metrics)
        return metrics

    async def run_once(self) -> ExecutionResult:
        """
        Run one repayment cycle now.

        Raises:
            CycleInProgressError: If another cycle is still running
            SQLAlchemyError: If the ledger cannot be written
        """
        if self._lock.locked():
            raise CycleInProgressError("A repayment cycle is already in progress")

        async with self._lock:
            db = self.session_factory()
            try:
                loan_metrics = await self.refresh_loans(db)
                executor = RepaymentExecutor(db, self.market, self.planner)
                result = await executor.run_cycle(loan_metrics)
                self.last_result = result
                return result
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    async def run_forever(self, interval_seconds: float | None = None) -> None:
        interval = max(float(interval_seconds or settings.repayment_interval_seconds), 1.0)
        logger.info(f"Starting repayment loop (interval={interval}s, dry_run={self.market.dry_run})")

        self._running = True
        while self._running:
            start = time.monotonic()
            try:
                await self.run_once()
            except CycleInProgressError:
                logger.info("Skipping scheduled cycle: another cycle is in progress")
            except Exception as e:
                logger.exception(f"Repayment cycle failed: {e}")

            elapsed = time.monotonic() - start
            sleep_for = max(interval - elapsed, 1.0)
            logger.info(f"Cycle took {elapsed:.2f}s, sleeping {sleep_for:.2f}s")
            await asyncio.sleep(sleep_for)

        logger.info("Repayment loop stopped cleanly.")

    def start(self, interval_seconds: float | None = None) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self.run_forever(interval_seconds))

    async def stop(self) -> None:
        self._running = False
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


def build_scheduler() -> RepaymentScheduler:
    """Wire the production collaborators from settings"""
    market = MarketAccess()
    registry = ObligationRegistry()
    loan_monitor = LoanMonitor(
        market,
        principal_account=settings.loan_principal_subaccount,
        ignore_transfer_ids=settings.payment_ignore_transfer_ids.split(","),
    )
    return RepaymentScheduler(SessionLocal, market, registry, loan_monitor)
