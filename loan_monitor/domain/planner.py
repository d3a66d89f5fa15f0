"""Repayment planning - allocate spendable fiat across obligations and revolving debt"""

import logging
from datetime import datetime
from typing import Dict, List
from loan_monitor.config import settings
from loan_monitor.domain.exceptions import ExchangeAPIError
from loan_monitor.domain.models import (
    ActionType,
    LoanMetrics,
    Obligation,
    ObligationPayment,
    RepaymentAction,
    RepaymentPlan,
)
from loan_monitor.domain.obligations import ObligationRegistry, PaymentHistory

logger = logging.getLogger(__name__)

OBLIGATION_PRIORITY = 1
REVOLVING_DEBT_PRIORITY = 2


def build_repayment_plan(
    available_fiat: float,
    minimum_reserve: float,
    due_payments: List[ObligationPayment],
    obligations: Dict[str, Obligation],
    loan_metrics: LoanMetrics,
    fiat_currency: str = "ZAR",
) -> RepaymentPlan:
    """
    Build a prioritised repayment plan.

    Rules:
    - Keep `minimum_reserve` untouched; nothing to do if that leaves no fiat
    - Priority 1: every due obligation, in registry order, all-or-nothing.
      If usable fiat cannot cover all of them the plan is not executable
      (actions are kept for visibility)
    - Priority 2: whatever is left goes, in full, to the revolving debt with
      the highest effective APR

    Example:
        available 500, reserve 50, one obligation due at 120
        → usable 450 → [P1 obligation 120, P2 highest-APR debt 330]
    """
    usable = available_fiat - minimum_reserve

    if usable <= 0:
        return RepaymentPlan(
            total_available_fiat=available_fiat,
            usable_fiat=usable,
            total_fiat_needed=0.0,
            can_execute=False,
            skipped_reason=(
                f"Insufficient {fiat_currency} after reserve "
                f"(have {available_fiat:.2f}, reserve {minimum_reserve:.2f})"
            ),
        )

    actions: List[RepaymentAction] = []
    for payment in due_payments:
        obligation = obligations.get(payment.loan_id)
        if obligation is None:
            continue
        actions.append(
            RepaymentAction(
                priority=OBLIGATION_PRIORITY,
                type=ActionType.OBLIGATION,
                target=obligation.id,
                currency=payment.crypto_currency,
                amount_fiat=payment.amount_fiat,
                recipient=obligation.recipient,
                recipient_name=obligation.name,
            )
        )

    obligation_total = sum(action.amount_fiat for action in actions)
    if usable < obligation_total:
        return RepaymentPlan(
            total_available_fiat=available_fiat,
            usable_fiat=usable,
            total_fiat_needed=obligation_total,
            can_execute=False,
            actions=actions,
            skipped_reason=(
                f"Insufficient {fiat_currency} for obligation payments. "
                f"Need: {obligation_total:.2f}, Have: {usable:.2f}"
            ),
        )

    total_needed = obligation_total
    remaining = usable - obligation_total
    if remaining > 0:
        ranked = loan_metrics.loans_by_rate()
        if ranked:
            currency, apr = ranked[0]
            actions.append(
                RepaymentAction(
                    priority=REVOLVING_DEBT_PRIORITY,
                    type=ActionType.REVOLVING_DEBT,
                    target=currency,
                    currency=currency,
                    amount_fiat=remaining,
                    apr=apr,
                )
            )
            total_needed += remaining

    return RepaymentPlan(
        total_available_fiat=available_fiat,
        usable_fiat=usable,
        total_fiat_needed=total_needed,
        can_execute=True,
        actions=sorted(actions, key=lambda action: action.priority),
    )


class RepaymentPlanner:
    """Reads the funding balance and due obligations, then plans the cycle"""

    def __init__(self, market, registry: ObligationRegistry, minimum_reserve: float | None = None):
        self.market = market
        self.registry = registry
        self.minimum_reserve = settings.minimum_fiat_reserve if minimum_reserve is None else minimum_reserve

    async def available_fiat(self) -> float:
        """Spendable fiat on the funding account; 0 if it cannot be read"""
        try:
            return await self.market.get_balance(self.market.fiat_currency)
        except ExchangeAPIError as e:
            logger.error(f"Error getting {self.market.fiat_currency} balance: {e}")
            return 0.0

    async def build_plan(
        self, payments: PaymentHistory, loan_metrics: LoanMetrics, now: datetime | None = None
    ) -> RepaymentPlan:
        available = await self.available_fiat()
        plan = build_repayment_plan(
            available_fiat=available,
            minimum_reserve=self.minimum_reserve,
            due_payments=self.registry.payments_due_this_cycle(payments, now),
            obligations={o.id: o for o in self.registry.list_active()},
            loan_metrics=loan_metrics,
            fiat_currency=self.market.fiat_currency,
        )
        log_plan(plan)
        return plan


def log_plan(plan: RepaymentPlan) -> None:
    logger.info(
        "Repayment plan built",
        extra={
            "step": "plan",
            "total_available_fiat": plan.total_available_fiat,
            "usable_fiat": plan.usable_fiat,
            "total_fiat_needed": plan.total_fiat_needed,
            "can_execute": plan.can_execute,
            "actions": [action.to_dict() for action in plan.actions],
            "skipped_reason": plan.skipped_reason,
        },
    )
