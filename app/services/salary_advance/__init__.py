"""
HRFlow - Salary Advance Engine

Lending policy resolution, eligibility, repayment terms, the request
lifecycle state machine, the repayment ledger and analytics.

Usage:
    from app.services.salary_advance import SalaryAdvanceService

    service = SalaryAdvanceService(db)
    result = await service.check_eligibility("EMP-0042", org_id, Decimal("15000"))
"""

from app.services.salary_advance.advance_service import PayrollDeductionRun, SalaryAdvanceService
from app.services.salary_advance.analytics import AdvanceAnalyticsService, AdvanceSummary
from app.services.salary_advance.eligibility import EligibilityEvaluator, EligibilityResult
from app.services.salary_advance.ledger import LedgerPosting, RepaymentLedger
from app.services.salary_advance.policy_resolver import (
    AdvancePolicyService,
    PolicyResolver,
    validate_policy_terms,
)
from app.services.salary_advance.repayment_calculator import (
    RepaymentCalculation,
    RepaymentCalculator,
    RepaymentSchedule,
    ScheduledInstallment,
    add_months,
    max_allowed_amount,
)
from app.services.salary_advance.workflow import Actor, AdvanceWorkflow, Transition

__all__ = [
    "SalaryAdvanceService",
    "PayrollDeductionRun",
    "AdvanceAnalyticsService",
    "AdvanceSummary",
    "EligibilityEvaluator",
    "EligibilityResult",
    "RepaymentLedger",
    "LedgerPosting",
    "PolicyResolver",
    "AdvancePolicyService",
    "validate_policy_terms",
    "RepaymentCalculator",
    "RepaymentCalculation",
    "RepaymentSchedule",
    "ScheduledInstallment",
    "add_months",
    "max_allowed_amount",
    "Actor",
    "AdvanceWorkflow",
    "Transition",
]
