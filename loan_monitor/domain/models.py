"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Tuple


class RecipientKind(str, Enum):
    """How an obligation's recipient is addressed on the exchange"""

    ACCOUNT_ID = "valrAccountId"
    EMAIL = "email"
    PHONE = "cellNumber"


class PaymentKind(str, Enum):
    INTEREST = "INTEREST"
    PRINCIPAL = "PRINCIPAL"


class ActionType(str, Enum):
    OBLIGATION = "OBLIGATION"
    REVOLVING_DEBT = "REVOLVING_DEBT"


@dataclass(frozen=True)
class Recipient:
    kind: RecipientKind
    value: str


@dataclass(frozen=True)
class Obligation:
    """Informal fixed-rate loan owed to a person"""

    id: str
    name: str
    principal: float
    interest_rate: float  # Annual, 0.07 = 7%
    start_date: datetime
    settlement_currency: str
    recipient: Recipient
    currency: str = "ZAR"
    active: bool = False
    notes: str | None = None


@dataclass
class ObligationPayment:
    """Payment towards an obligation, due or already made"""

    loan_id: str
    payment_date: datetime
    amount_fiat: float
    crypto_currency: str
    crypto_amount: float = 0.0
    transfer_id: str | None = None
    kind: PaymentKind = PaymentKind.INTEREST


@dataclass
class ObligationSummary:
    obligation: Obligation
    total_interest_paid: float
    total_principal_paid: float
    monthly_interest_due: float
    last_payment_date: datetime | None
    days_since_last_payment: int
    payments_this_month: int


@dataclass
class RepaymentAction:
    """Single step of a repayment plan: buy a currency with fiat, then move it"""

    priority: int
    type: ActionType
    target: str
    currency: str
    amount_fiat: float
    apr: float | None = None
    recipient: Recipient | None = None
    recipient_name: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priority": self.priority,
            "type": self.type.value,
            "target": self.target,
            "currency": self.currency,
            "amount_fiat": self.amount_fiat,
            "apr": self.apr,
            "recipient_kind": self.recipient.kind.value if self.recipient else None,
        }


@dataclass
class RepaymentPlan:
    total_available_fiat: float
    usable_fiat: float
    total_fiat_needed: float
    can_execute: bool
    actions: List[RepaymentAction] = field(default_factory=list)
    skipped_reason: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_available_fiat": self.total_available_fiat,
            "usable_fiat": self.usable_fiat,
            "total_fiat_needed": self.total_fiat_needed,
            "can_execute": self.can_execute,
            "actions": [action.to_dict() for action in self.actions],
            "skipped_reason": self.skipped_reason,
        }


@dataclass
class ExecutionResult:
    """Outcome of one repayment cycle"""

    cycle_id: str
    timestamp: datetime
    dry_run: bool
    actions_planned: int = 0
    actions_executed: int = 0
    total_fiat_spent: float = 0.0
    obligation_payments: int = 0
    revolving_debt_payments: int = 0
    success: bool = True
    errors: List[str] = field(default_factory=list)
    skipped_reason: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "timestamp": self.timestamp.isoformat(),
            "dry_run": self.dry_run,
            "actions_planned": self.actions_planned,
            "actions_executed": self.actions_executed,
            "total_fiat_spent": self.total_fiat_spent,
            "obligation_payments": self.obligation_payments,
            "revolving_debt_payments": self.revolving_debt_payments,
            "success": self.success,
            "errors": list(self.errors),
            "skipped_reason": self.skipped_reason,
        }


@dataclass
class TradeResult:
    success: bool
    crypto_received: float = 0.0
    fiat_spent: float = 0.0
    price: float = 0.0
    order_id: str | None = None
    error: str | None = None


@dataclass
class TransferResult:
    success: bool
    transfer_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class Balance:
    currency: str
    available: float
    total: float


@dataclass(frozen=True)
class LoanPosition:
    """Revolving debt detected from a negative balance"""

    currency: str
    amount: float
    value_fiat: float | None = None


@dataclass(frozen=True)
class CollateralPosition:
    currency: str
    amount: float
    value_fiat: float | None = None


@dataclass(frozen=True)
class LoanMetrics:
    """Point-in-time view of revolving debt, collateral and interest"""

    refreshed_at: datetime | None = None
    loans: Tuple[LoanPosition, ...] = ()
    collateral: Tuple[CollateralPosition, ...] = ()
    total_loan_value_fiat: float = 0.0
    total_collateral_value_fiat: float = 0.0
    margin_ratio: float = 0.0
    interest_by_currency: Dict[str, float] = field(default_factory=dict)
    interest_fiat_by_currency: Dict[str, float] = field(default_factory=dict)
    interest_payment_counts: Dict[str, int] = field(default_factory=dict)
    monthly_interest_by_currency: Dict[str, float] = field(default_factory=dict)
    monthly_interest_fiat_by_currency: Dict[str, float] = field(default_factory=dict)
    effective_apr_by_currency: Dict[str, float] = field(default_factory=dict)
    payments_by_currency: Dict[str, float] = field(default_factory=dict)
    payments_fiat_by_currency: Dict[str, float] = field(default_factory=dict)
    hours_since_first_payment: float = 0.0

    def loans_by_rate(self) -> List[Tuple[str, float]]:
        """Active loan currencies with their APR, most expensive first"""
        rates = [
            (loan.currency, self.effective_apr_by_currency.get(loan.currency, 0.0))
            for loan in self.loans
        ]
        return sorted(rates, key=lambda item: item[1], reverse=True)
