"""SQLAlchemy ORM models for the repayment ledger"""

import uuid
from sqlalchemy import Column, String, Boolean, Float, DateTime, Integer, ForeignKey, Text, JSON
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class AccountTransaction(Base):
    """Exchange transaction history row (interest charges, transfers, trades)"""

    __tablename__ = "account_transaction"

    id = Column(Text, primary_key=True)
    transaction_type = Column(Text, nullable=False, index=True)
    description = Column(Text, nullable=True)
    debit_currency = Column(String(16), nullable=True, index=True)
    debit_value = Column(Text, nullable=True)
    credit_currency = Column(String(16), nullable=True)
    credit_value = Column(Text, nullable=True)
    event_at = Column(DateTime(timezone=True), nullable=False, index=True)
    additional_info = Column(JSON, nullable=True)
    account_id = Column(Text, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ObligationPaymentRecord(Base):
    """Payment made towards an informal loan"""

    __tablename__ = "obligation_payment"

    id = Column(Integer, primary_key=True, autoincrement=True)
    loan_id = Column(Text, nullable=False, index=True)
    payment_date = Column(DateTime(timezone=True), nullable=False, index=True)
    amount_fiat = Column(Float, nullable=False)
    crypto_currency = Column(String(16), nullable=False)
    crypto_amount = Column(Float, nullable=False)
    transfer_id = Column(Text, nullable=True)
    payment_type = Column(String(16), nullable=False)  # INTEREST | PRINCIPAL
    dry_run = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class RepaymentExecution(Base):
    """Audit record of one repayment cycle, keyed by cycle id"""

    __tablename__ = "repayment_execution"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    execution_date = Column(DateTime(timezone=True), nullable=False, index=True)
    dry_run = Column(Boolean, nullable=False, default=False)
    actions_planned = Column(Integer, nullable=False)
    actions_executed = Column(Integer, nullable=False)
    total_fiat_spent = Column(Float, nullable=False)
    obligation_payments_count = Column(Integer, nullable=False, default=0)
    revolving_payments_count = Column(Integer, nullable=False, default=0)
    success = Column(Boolean, nullable=False)
    errors = Column(JSON, nullable=False, default=list)
    execution_details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    revolving_repayments = relationship(
        "RevolvingDebtRepayment", back_populates="execution", cascade="all, delete-orphan"
    )


class RevolvingDebtRepayment(Base):
    """Crypto moved into the margin account to pay down exchange debt"""

    __tablename__ = "revolving_debt_repayment"

    id = Column(Integer, primary_key=True, autoincrement=True)
    execution_id = Column(
        UUID(as_uuid=True), ForeignKey("repayment_execution.id", ondelete="CASCADE"), nullable=False, index=True
    )
    currency = Column(String(16), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    amount_fiat = Column(Float, nullable=False)
    transfer_id = Column(Text, nullable=True)
    dry_run = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    execution = relationship("RepaymentExecution", back_populates="revolving_repayments")
