"""Data access layer for the repayment ledger"""

import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session
from loan_monitor.infrastructure.database.models import (
    AccountTransaction,
    ObligationPaymentRecord,
    RepaymentExecution,
    RevolvingDebtRepayment,
)
from loan_monitor.domain.models import ExecutionResult, ObligationPayment, PaymentKind
from loan_monitor.utils.date_utils import as_utc


class ObligationPaymentRepository:
    """Repository for informal-loan payments (append-only)

    Dry-run rows are kept for audit but never count towards what has been paid.
    """

    def __init__(self, db: Session):
        self.db = db

    def create_payment(self, payment: ObligationPayment, dry_run: bool = False) -> ObligationPaymentRecord:
        record = ObligationPaymentRecord(
            loan_id=payment.loan_id,
            payment_date=payment.payment_date,
            amount_fiat=payment.amount_fiat,
            crypto_currency=payment.crypto_currency,
            crypto_amount=payment.crypto_amount,
            transfer_id=payment.transfer_id,
            payment_type=payment.kind.value,
            dry_run=dry_run,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def _live(self, loan_id: str):
        return self.db.query(ObligationPaymentRecord).filter(
            ObligationPaymentRecord.loan_id == loan_id,
            ObligationPaymentRecord.dry_run.is_(False),
        )

    def get_last_payment_date(self, loan_id: str) -> Optional[datetime]:
        latest = self._live(loan_id).order_by(ObligationPaymentRecord.payment_date.desc()).first()
        return as_utc(latest.payment_date) if latest else None

    def get_payments_since(self, loan_id: str, since: datetime) -> List[ObligationPaymentRecord]:
        return (
            self._live(loan_id)
            .filter(ObligationPaymentRecord.payment_date >= since)
            .order_by(ObligationPaymentRecord.payment_date.desc())
            .all()
        )

    def get_total_paid(self, loan_id: str, kind: PaymentKind) -> float:
        total = (
            self.db.query(func.coalesce(func.sum(ObligationPaymentRecord.amount_fiat), 0.0))
            .filter(
                ObligationPaymentRecord.loan_id == loan_id,
                ObligationPaymentRecord.payment_type == kind.value,
                ObligationPaymentRecord.dry_run.is_(False),
            )
            .scalar()
        )
        return float(total or 0.0)

    def get_history(self, loan_id: str, limit: int | None = None) -> List[ObligationPaymentRecord]:
        """All payments for a loan, newest first, including dry-run rows"""
        query = (
            self.db.query(ObligationPaymentRecord)
            .filter(ObligationPaymentRecord.loan_id == loan_id)
            .order_by(ObligationPaymentRecord.payment_date.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()


class ExecutionRepository:
    """Repository for repayment cycle records (upsert by cycle id)"""

    def __init__(self, db: Session):
        self.db = db

    def save_execution(self, result: ExecutionResult, details: Dict[str, Any] | None = None) -> RepaymentExecution:
        """Insert the cycle's record, or overwrite it if the cycle already wrote one"""
        cycle_id = uuid.UUID(result.cycle_id)
        record = self.db.get(RepaymentExecution, cycle_id)
        if record is None:
            record = RepaymentExecution(id=cycle_id)
            self.db.add(record)

        record.execution_date = result.timestamp
        record.dry_run = result.dry_run
        record.actions_planned = result.actions_planned
        record.actions_executed = result.actions_executed
        record.total_fiat_spent = result.total_fiat_spent
        record.obligation_payments_count = result.obligation_payments
        record.revolving_payments_count = result.revolving_debt_payments
        record.success = result.success
        record.errors = list(result.errors)
        record.execution_details = details

        self.db.flush()
        return record

    def get_execution(self, cycle_id: uuid.UUID) -> Optional[RepaymentExecution]:
        return self.db.get(RepaymentExecution, cycle_id)

    def get_recent(self, limit: int = 10) -> List[RepaymentExecution]:
        return (
            self.db.query(RepaymentExecution)
            .order_by(RepaymentExecution.execution_date.desc())
            .limit(limit)
            .all()
        )

    def get_stats(self) -> Dict[str, float]:
        """Aggregate outcome counts; success_rate is a percentage"""
        total, successes, spent = self.db.query(
            func.count(RepaymentExecution.id),
            func.coalesce(func.sum(case((RepaymentExecution.success.is_(True), 1), else_=0)), 0),
            func.coalesce(func.sum(RepaymentExecution.total_fiat_spent), 0.0),
        ).one()

        total = int(total or 0)
        successes = int(successes or 0)
        return {
            "total_executions": total,
            "success_count": successes,
            "failure_count": total - successes,
            "total_fiat_spent": float(spent or 0.0),
            "success_rate": (successes / total) * 100 if total > 0 else 0.0,
        }


class RevolvingRepaymentRepository:
    """Repository for exchange-debt repayments (append-only)"""

    def __init__(self, db: Session):
        self.db = db

    def create_repayment(
        self,
        execution_id: uuid.UUID,
        currency: str,
        amount: float,
        amount_fiat: float,
        transfer_id: str | None = None,
        dry_run: bool = False,
    ) -> RevolvingDebtRepayment:
        record = RevolvingDebtRepayment(
            execution_id=execution_id,
            currency=currency,
            amount=amount,
            amount_fiat=amount_fiat,
            transfer_id=transfer_id,
            dry_run=dry_run,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def get_for_execution(self, execution_id: uuid.UUID) -> List[RevolvingDebtRepayment]:
        return (
            self.db.query(RevolvingDebtRepayment)
            .filter(RevolvingDebtRepayment.execution_id == execution_id)
            .order_by(RevolvingDebtRepayment.id)
            .all()
        )

    def get_total(self, currency: str | None = None) -> float:
        """Crypto repaid in `currency`, or total fiat spent across currencies"""
        if currency:
            query = self.db.query(func.coalesce(func.sum(RevolvingDebtRepayment.amount), 0.0)).filter(
                RevolvingDebtRepayment.currency == currency
            )
        else:
            query = self.db.query(func.coalesce(func.sum(RevolvingDebtRepayment.amount_fiat), 0.0))
        return float(query.filter(RevolvingDebtRepayment.dry_run.is_(False)).scalar() or 0.0)


def _parse_event_at(value: str) -> datetime:
    return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


class TransactionRepository:
    """Repository for exchange transaction history"""

    def __init__(self, db: Session):
        self.db = db

    def store_transactions(self, transactions: Iterable[Dict[str, Any]], account_id: str | None = None) -> int:
        """
        Insert exchange transactions, skipping ids already stored.

        Accepts rows in the exchange's transaction-history shape
        (transactionType.type, debitCurrency, eventAt, ...).

        Returns:
            Number of new rows
        """
        rows = list(transactions)
        if not rows:
            return 0

        ids = [tx["id"] for tx in rows]
        existing = {
            row_id for (row_id,) in self.db.query(AccountTransaction.id).filter(AccountTransaction.id.in_(ids))
        }

        inserted = 0
        for tx in rows:
            if tx["id"] in existing:
                continue
            tx_type = tx.get("transactionType") or {}
            self.db.add(
                AccountTransaction(
                    id=tx["id"],
                    transaction_type=tx_type.get("type", "UNKNOWN"),
                    description=tx_type.get("description"),
                    debit_currency=tx.get("debitCurrency"),
                    debit_value=tx.get("debitValue"),
                    credit_currency=tx.get("creditCurrency"),
                    credit_value=tx.get("creditValue"),
                    event_at=_parse_event_at(tx["eventAt"]),
                    additional_info=tx.get("additionalInfo"),
                    account_id=account_id,
                )
            )
            existing.add(tx["id"])
            inserted += 1

        self.db.flush()
        return inserted

    def get_latest_event_at(self, account_id: str | None = None) -> Optional[datetime]:
        query = self.db.query(func.max(AccountTransaction.event_at))
        if account_id:
            query = query.filter(AccountTransaction.account_id == account_id)
        latest = query.scalar()
        return as_utc(latest) if latest else None

    def get_interest_transactions(self, since: datetime | None = None) -> List[AccountTransaction]:
        """Interest and borrow charges, oldest first"""
        query = self.db.query(AccountTransaction).filter(
            or_(
                AccountTransaction.transaction_type.like("%INTEREST%"),
                AccountTransaction.transaction_type.like("%BORROW%"),
            )
        )
        if since is not None:
            query = query.filter(AccountTransaction.event_at >= since)
        return query.order_by(AccountTransaction.event_at.asc()).all()

    def get_payment_transactions(self, ignore_transfer_ids: Iterable[str] = ()) -> List[AccountTransaction]:
        """Incoming internal transfers, minus the listed transfer ids"""
        ignored = set(ignore_transfer_ids)
        rows = (
            self.db.query(AccountTransaction)
            .filter(
                AccountTransaction.transaction_type == "INTERNAL_TRANSFER",
                AccountTransaction.credit_currency.isnot(None),
            )
            .order_by(AccountTransaction.event_at.asc())
            .all()
        )
        return [row for row in rows if (row.additional_info or {}).get("transferId") not in ignored]

    def count(self) -> int:
        return self.db.query(func.count(AccountTransaction.id)).scalar() or 0
