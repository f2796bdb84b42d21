"""
HRFlow - Salary Advance Repayment Calculator

Terms of an advance under a lending policy:

    max_allowed_amount         = min(salary x max_advance_percentage / 100, max_advance_amount)
    monthly_deduction          = amount x monthly_deduction_percentage / 100
    estimated_repayment_months = ceil(amount / monthly_deduction)
    total_interest             = amount x interest_rate x months / 1200
    total_repayment            = amount + total_interest

Interest is simple interest prorated over the estimated duration; it does
not compound. All arithmetic is exact Decimal; money is rounded to cents
only on the way out.
"""

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from app.utils.error_handling import PolicyConfigurationException


CENT = Decimal("0.01")
HUNDRED = Decimal("100")
MONTHS_PER_YEAR = Decimal("12")


def to_money(value: Decimal) -> Decimal:
    """Round to cents, half up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def add_months(start: date, months: int) -> date:
    """Shift a date by whole calendar months, clamping the day to month end."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def max_allowed_amount(salary: Decimal, policy: Any) -> Decimal:
    """
    Largest advance the policy allows for a monthly salary (exact, unrounded).

    Non-decreasing in both salary and the policy cap.
    """
    by_salary = Decimal(salary) * Decimal(policy.max_advance_percentage) / HUNDRED
    if policy.max_advance_amount is None:
        return by_salary
    return min(by_salary, Decimal(policy.max_advance_amount))


@dataclass
class RepaymentCalculation:
    """Repayment terms for one advance amount."""
    requested_amount: Decimal
    max_allowed_amount: Decimal
    monthly_deduction: Decimal
    interest_rate: Decimal
    estimated_repayment_months: int
    total_interest: Decimal
    total_repayment: Decimal
    repayment_start_date: date

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requested_amount": str(self.requested_amount),
            "max_allowed_amount": str(self.max_allowed_amount),
            "monthly_deduction": str(self.monthly_deduction),
            "interest_rate": str(self.interest_rate),
            "estimated_repayment_months": self.estimated_repayment_months,
            "total_interest": str(self.total_interest),
            "total_repayment": str(self.total_repayment),
            "repayment_start_date": self.repayment_start_date.isoformat(),
        }


@dataclass
class ScheduledInstallment:
    """One projected monthly deduction."""
    installment_number: int
    due_date: date
    principal_amount: Decimal
    interest_amount: Decimal
    total_amount: Decimal
    balance_after: Decimal
    is_paid: bool = False


@dataclass
class RepaymentSchedule:
    principal: Decimal
    total_interest: Decimal
    total_repaid: Decimal
    outstanding_balance: Decimal
    installments: List[ScheduledInstallment] = field(default_factory=list)


class RepaymentCalculator:
    """
    Salary advance repayment calculator.

    Stateless. The policy argument is anything carrying the lending policy
    fields (normally an AdvancePolicy row).
    """

    def calculate(
        self,
        salary: Decimal,
        policy: Optional[Any],
        amount: Decimal,
        now: Optional[datetime] = None,
    ) -> Optional[RepaymentCalculation]:
        """
        Calculate repayment terms for an advance.

        Returns None when there is no policy; callers treat that as
        "no terms available" and never substitute default rates.

        Raises:
            PolicyConfigurationException: the policy's deduction percentage
                is not positive, so no schedule exists
        """
        if policy is None:
            return None

        now = now or datetime.utcnow()
        amount = Decimal(amount)

        deduction_pct = Decimal(policy.monthly_deduction_percentage)
        monthly_deduction = amount * deduction_pct / HUNDRED
        if monthly_deduction <= 0:
            raise PolicyConfigurationException(
                "Policy monthly deduction percentage must be greater than zero",
                field="monthly_deduction_percentage",
                details={"monthly_deduction_percentage": str(deduction_pct)},
            )

        months = int((amount / monthly_deduction).to_integral_value(rounding=ROUND_CEILING))
        interest_rate = Decimal(policy.interest_rate or 0)
        total_interest = amount * interest_rate * Decimal(months) / (HUNDRED * MONTHS_PER_YEAR)

        return RepaymentCalculation(
            requested_amount=to_money(amount),
            max_allowed_amount=to_money(max_allowed_amount(salary, policy)),
            monthly_deduction=to_money(monthly_deduction),
            interest_rate=interest_rate,
            estimated_repayment_months=months,
            total_interest=to_money(total_interest),
            total_repayment=to_money(amount + total_interest),
            repayment_start_date=add_months(now.date(), 1),
        )

    def build_schedule(
        self,
        principal: Decimal,
        monthly_deduction: Decimal,
        total_interest: Decimal,
        start_date: date,
        total_repaid: Decimal = Decimal("0"),
    ) -> RepaymentSchedule:
        """
        Project the month-by-month deductions for an advance.

        Each installment takes min(monthly_deduction, remaining principal);
        interest is spread evenly and the last installment absorbs the
        rounding remainder. Installments already covered by total_repaid
        are marked paid.
        """
        principal = to_money(principal)
        monthly_deduction = to_money(monthly_deduction)
        total_interest = to_money(total_interest)
        total_repaid = to_money(total_repaid)

        if monthly_deduction <= 0:
            raise PolicyConfigurationException(
                "Monthly deduction must be greater than zero",
                field="monthly_deduction",
            )

        count = int((principal / monthly_deduction).to_integral_value(rounding=ROUND_CEILING))
        interest_share = to_money(total_interest / count) if count else Decimal("0.00")

        installments: List[ScheduledInstallment] = []
        remaining = principal
        interest_left = total_interest
        covered = Decimal("0.00")
        for number in range(1, count + 1):
            principal_part = min(monthly_deduction, remaining)
            interest_part = interest_left if number == count else min(interest_share, interest_left)
            remaining -= principal_part
            interest_left -= interest_part
            covered += principal_part
            installments.append(ScheduledInstallment(
                installment_number=number,
                due_date=add_months(start_date, number - 1),
                principal_amount=principal_part,
                interest_amount=interest_part,
                total_amount=principal_part + interest_part,
                balance_after=remaining,
                is_paid=covered <= total_repaid,
            ))

        return RepaymentSchedule(
            principal=principal,
            total_interest=total_interest,
            total_repaid=total_repaid,
            outstanding_balance=max(Decimal("0.00"), principal - total_repaid),
            installments=installments,
        )
