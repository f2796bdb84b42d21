"""
HRFlow - Salary Advance Repayment Ledger

Computes the effect of one repayment on a disbursed advance. Only the
principal part reduces the outstanding balance; interest is tracked on the
repayment row. The balance never increases, and a request whose balance
reaches zero is REPAID and accepts nothing further.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from app.models.salary_advance import (
    AdvanceAction,
    AdvanceRequest,
    AdvanceStatus,
    RepaymentMethod,
)
from app.services.salary_advance.repayment_calculator import to_money
from app.services.salary_advance.workflow import AdvanceWorkflow
from app.utils.error_handling import validate_amount


@dataclass
class LedgerPosting:
    """Repayment row values plus the request's new running position."""
    principal_amount: Decimal
    interest_amount: Decimal
    total_amount: Decimal
    previous_total_repaid: Decimal
    total_repaid: Decimal
    outstanding_balance: Decimal
    status: AdvanceStatus
    payment_method: RepaymentMethod
    repayment_date: datetime
    reference: Optional[str] = None
    payroll_period_id: Optional[str] = None
    notes: Optional[str] = None

    @property
    def settled(self) -> bool:
        return self.status == AdvanceStatus.REPAID

    def repayment_values(self) -> Dict[str, Any]:
        return {
            "repayment_date": self.repayment_date,
            "principal_amount": self.principal_amount,
            "interest_amount": self.interest_amount,
            "total_amount": self.total_amount,
            "balance_after": self.outstanding_balance,
            "payment_method": self.payment_method,
            "reference": self.reference,
            "payroll_period_id": self.payroll_period_id,
            "notes": self.notes,
        }


class RepaymentLedger:
    """Applies repayments to an advance request (pure)."""

    def __init__(self, workflow: Optional[AdvanceWorkflow] = None):
        self.workflow = workflow or AdvanceWorkflow()

    def apply(
        self,
        request: AdvanceRequest,
        principal_amount: Any,
        interest_amount: Any = None,
        method: RepaymentMethod = RepaymentMethod.SALARY_DEDUCTION,
        reference: Optional[str] = None,
        payroll_period_id: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LedgerPosting:
        """
        Post a repayment against a DISBURSED request.

        Raises:
            InvalidStateException: the request is not DISBURSED (never paid
                out, or already fully repaid)
            ValidationException: non-positive principal or negative interest
        """
        # Guards the status before looking at amounts
        self.workflow.resolve(request, AdvanceAction.REPAY)

        principal = to_money(validate_amount(principal_amount, "principal_amount"))
        interest = to_money(
            validate_amount(interest_amount, "interest_amount", allow_zero=True)
            if interest_amount is not None else Decimal("0")
        )

        previous = to_money(request.total_repaid or Decimal("0"))
        total_repaid = previous + principal
        outstanding = max(Decimal("0.00"), to_money(request.principal) - total_repaid)
        status = AdvanceStatus.REPAID if outstanding <= 0 else AdvanceStatus.DISBURSED

        return LedgerPosting(
            principal_amount=principal,
            interest_amount=interest,
            total_amount=principal + interest,
            previous_total_repaid=previous,
            total_repaid=total_repaid,
            outstanding_balance=outstanding,
            status=status,
            payment_method=method,
            repayment_date=now or datetime.utcnow(),
            reference=reference,
            payroll_period_id=payroll_period_id,
            notes=notes,
        )
