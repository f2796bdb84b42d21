"""
HRFlow - Salary Advance Eligibility

Ordered eligibility checks for an advance request. Checks short-circuit on
the first failure so the reason shown to the employee is deterministic:

1. employee exists
2. employee is active
3. salary is defined and positive
4. a lending policy applies
5. minimum service period
6. yearly advance limit
7. no advance still being repaid
8. amount within the policy maximum
"""

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence

from app.models.employee import Employee
from app.models.salary_advance import AdvancePolicy, AdvanceRequest, AdvanceStatus
from app.services.salary_advance.repayment_calculator import max_allowed_amount, to_money
from app.services.salary_advance.workflow import COUNTED_TOWARDS_LIMIT


SERVICE_MONTH = timedelta(days=30)


@dataclass
class EligibilityResult:
    """Outcome of an eligibility check, with the numbers behind it."""
    is_eligible: bool
    reason: Optional[str] = None
    max_amount: Optional[Decimal] = None
    service_months: Optional[int] = None
    existing_advances: Optional[int] = None
    max_advances_per_year: Optional[int] = None

    def to_details(self) -> Dict[str, Any]:
        details: Dict[str, Any] = {}
        if self.max_amount is not None:
            details["max_amount"] = str(self.max_amount)
        if self.service_months is not None:
            details["service_months"] = self.service_months
        if self.existing_advances is not None:
            details["existing_advances"] = self.existing_advances
        if self.max_advances_per_year is not None:
            details["max_advances_per_year"] = self.max_advances_per_year
        return details


def service_months(hire_date, now: datetime) -> int:
    """Whole 30-day periods since the hire date."""
    hired_at = datetime.combine(hire_date, time.min)
    return (now - hired_at) // SERVICE_MONTH


def ineligible(reason: str, **numbers) -> EligibilityResult:
    return EligibilityResult(is_eligible=False, reason=reason, **numbers)


class EligibilityEvaluator:
    """Pure evaluator; the caller loads the employee's requests."""

    def evaluate(
        self,
        employee: Optional[Employee],
        policy: Optional[AdvancePolicy],
        requested_amount: Decimal,
        requests_this_year: Sequence[AdvanceRequest],
        open_requests: Sequence[AdvanceRequest],
        now: Optional[datetime] = None,
    ) -> EligibilityResult:
        now = now or datetime.utcnow()

        if employee is None:
            return ineligible("Employee not found")

        if not employee.is_active:
            return ineligible("Employee is not active")

        salary = employee.monthly_salary
        if salary is None or Decimal(salary) <= 0:
            return ineligible("Employee salary not defined")

        if policy is None:
            return ineligible("No active salary advance policy found")

        months = service_months(employee.hire_date, now)
        if months < policy.min_service_months:
            return ineligible(
                f"Minimum service period of {policy.min_service_months} months required",
                service_months=months,
            )

        counted = sum(1 for r in requests_this_year if r.status in COUNTED_TOWARDS_LIMIT)
        if counted >= policy.max_advances_per_year:
            return ineligible(
                f"Maximum of {policy.max_advances_per_year} salary advances per year reached "
                f"({counted} already approved this year)",
                existing_advances=counted,
                max_advances_per_year=policy.max_advances_per_year,
            )

        if any(
            r.status == AdvanceStatus.DISBURSED and Decimal(r.outstanding_balance) > 0
            for r in open_requests
        ):
            return ineligible("Employee has an outstanding salary advance that must be repaid first")

        limit = max_allowed_amount(salary, policy)
        if Decimal(requested_amount) > limit:
            return ineligible(
                f"Requested amount exceeds the maximum allowed advance of {to_money(limit):,.2f}",
                max_amount=to_money(limit),
            )

        return EligibilityResult(
            is_eligible=True,
            max_amount=to_money(limit),
            service_months=months,
            existing_advances=counted,
            max_advances_per_year=policy.max_advances_per_year,
        )
