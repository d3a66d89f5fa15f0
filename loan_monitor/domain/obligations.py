"""Obligation registry - informal loans loaded from a versioned JSON document"""

import json
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Protocol
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from loan_monitor.config import settings
from loan_monitor.domain.exceptions import ObligationConfigError
from loan_monitor.domain.models import (
    Obligation,
    ObligationPayment,
    ObligationSummary,
    PaymentKind,
    Recipient,
    RecipientKind,
)
from loan_monitor.utils.date_utils import as_utc, days_between, month_start, utc_now

logger = logging.getLogger(__name__)

PAYMENT_INTERVAL_DAYS = 30


class PaymentHistory(Protocol):
    """Ledger queries the registry needs (see ObligationPaymentRepository)"""

    def get_last_payment_date(self, loan_id: str) -> Optional[datetime]: ...

    def get_payments_since(self, loan_id: str, since: datetime) -> List[Any]: ...

    def get_total_paid(self, loan_id: str, kind: PaymentKind) -> float: ...

    def get_history(self, loan_id: str, limit: int | None = None) -> List[Any]: ...


class RecipientEntry(BaseModel):
    type: RecipientKind
    value: str = Field(..., min_length=1)


class ObligationEntry(BaseModel):
    """One loan in the obligations document"""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    principal: float = Field(..., gt=0)
    currency: str = "ZAR"
    recipient: RecipientEntry
    interest_rate: float = Field(..., alias="interestRate", ge=0, le=1)
    start_date: datetime = Field(..., alias="startDate")
    crypto_preference: str = Field(..., alias="cryptoPreference", min_length=1)
    active: bool = False
    notes: str | None = None

    @field_validator("start_date", mode="before")
    @classmethod
    def parse_start_date(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError as e:
                raise ValueError(f"unparseable start date {value!r}") from e
        return value

    def to_obligation(self) -> Obligation:
        return Obligation(
            id=self.id,
            name=self.name,
            principal=self.principal,
            interest_rate=self.interest_rate,
            start_date=as_utc(self.start_date),
            settlement_currency=self.crypto_preference,
            recipient=Recipient(kind=self.recipient.type, value=self.recipient.value),
            currency=self.currency,
            active=self.active,
            notes=self.notes,
        )


class ObligationDocument(BaseModel):
    version: str = Field(..., min_length=1)
    loans: List[ObligationEntry]

    @field_validator("version", mode="before")
    @classmethod
    def coerce_version(cls, value: Any) -> Any:
        """Any non-empty tag is accepted, numbers included"""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @model_validator(mode="after")
    def unique_ids(self) -> "ObligationDocument":
        seen = set()
        for loan in self.loans:
            if loan.id in seen:
                raise ValueError(f"duplicate loan id {loan.id!r}")
            seen.add(loan.id)
        return self


def parse_obligation_document(data: Any) -> List[Obligation]:
    """
    Validate a decoded obligations document.

    Raises:
        ObligationConfigError: If the version tag or loans list is missing, or any loan is invalid
    """
    if not isinstance(data, dict):
        raise ObligationConfigError("Invalid obligations document: expected a JSON object")
    try:
        document = ObligationDocument.model_validate(data)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'document'}: {err['msg']}" for err in e.errors()
        )
        raise ObligationConfigError(f"Invalid obligations document: {details}") from e
    return [entry.to_obligation() for entry in document.loans]


def monthly_due(obligation: Obligation) -> float:
    """Simple interest: principal * annual rate / 12"""
    return obligation.principal * obligation.interest_rate / 12


class ObligationRegistry:
    """
    In-memory set of informal loans, reloadable from its JSON source.

    Loading is all-or-nothing: one invalid loan rejects the whole document and
    the previously loaded set stays active.
    """

    def __init__(self, source: str | Path | None = None, autoload: bool = True):
        self.source = Path(source or settings.obligations_config_path)
        self._obligations: List[Obligation] = []
        self.last_error: str | None = None
        if autoload:
            self.load()

    def load(self, source: str | Path | None = None) -> bool:
        """Load obligations from `source` (default: current source). Returns False on error."""
        if source is not None:
            self.source = Path(source)

        if not self.source.exists():
            logger.warning(f"Obligations config not found at {self.source}, using empty list")
            self._obligations = []
            self.last_error = None
            return True

        try:
            data = json.loads(self.source.read_text(encoding="utf-8"))
            obligations = parse_obligation_document(data)
        except (OSError, ValueError, ObligationConfigError) as e:
            # json.JSONDecodeError is a ValueError
            self.last_error = str(e)
            logger.error(
                f"Error loading obligations config: {e}",
                extra={"source": str(self.source), "kept_obligations": len(self._obligations)},
            )
            return False

        self._obligations = obligations
        self.last_error = None
        logger.info(f"Loaded {len(self.list_active())} active obligation(s) from {self.source}")
        return True

    def reload(self) -> bool:
        return self.load()

    def list_all(self) -> List[Obligation]:
        return list(self._obligations)

    def list_active(self) -> List[Obligation]:
        return [o for o in self._obligations if o.active]

    def get(self, loan_id: str) -> Optional[Obligation]:
        """Active obligation by id"""
        return next((o for o in self.list_active() if o.id == loan_id), None)

    def monthly_due(self, obligation: Obligation) -> float:
        return monthly_due(obligation)

    def total_monthly_obligation(self) -> float:
        return sum(monthly_due(o) for o in self.list_active())

    def total_principal(self) -> float:
        return sum(o.principal for o in self.list_active())

    def payments_due_this_cycle(self, payments: PaymentHistory, now: datetime | None = None) -> List[ObligationPayment]:
        """
        Interest payments due now, one per active obligation at most.

        Due when:
        - never paid and at least 30 days since the loan started, OR
        - no payment recorded in the current calendar month, OR
        - the latest payment is at least 30 days old
        """
        now = as_utc(now or utc_now())
        current_month = month_start(now)
        due: List[ObligationPayment] = []

        for obligation in self.list_active():
            last_payment = payments.get_last_payment_date(obligation.id)

            if last_payment is None:
                is_due = days_between(obligation.start_date, now) >= PAYMENT_INTERVAL_DAYS
            elif not payments.get_payments_since(obligation.id, current_month):
                is_due = True
            else:
                is_due = days_between(last_payment, now) >= PAYMENT_INTERVAL_DAYS

            if is_due:
                due.append(
                    ObligationPayment(
                        loan_id=obligation.id,
                        payment_date=now,
                        amount_fiat=monthly_due(obligation),
                        crypto_currency=obligation.settlement_currency,
                        kind=PaymentKind.INTEREST,
                    )
                )

        return due

    def summaries(self, payments: PaymentHistory, now: datetime | None = None) -> List[ObligationSummary]:
        now = as_utc(now or utc_now())
        current_month = month_start(now)
        result = []

        for obligation in self.list_active():
            last_payment = payments.get_last_payment_date(obligation.id)
            since = last_payment or obligation.start_date
            result.append(
                ObligationSummary(
                    obligation=obligation,
                    total_interest_paid=payments.get_total_paid(obligation.id, PaymentKind.INTEREST),
                    total_principal_paid=payments.get_total_paid(obligation.id, PaymentKind.PRINCIPAL),
                    monthly_interest_due=monthly_due(obligation),
                    last_payment_date=last_payment,
                    days_since_last_payment=math.floor(days_between(since, now)),
                    payments_this_month=len(payments.get_payments_since(obligation.id, current_month)),
                )
            )

        return result

    def payment_history(self, payments: PaymentHistory, loan_id: str, limit: int | None = None) -> List[Any]:
        return payments.get_history(loan_id, limit)
