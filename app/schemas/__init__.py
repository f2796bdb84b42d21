"""
HRFlow - Schemas Package

Pydantic schemas for request/response validation.
"""

from app.schemas.salary_advance import (
    # Eligibility & terms
    EligibilityCheckRequest,
    EligibilityResponse,
    RepaymentCalculationRequest,
    RepaymentCalculationResponse,
    # Requests
    AdvanceRequestCreate,
    AdvanceDecisionRequest,
    DisbursementRequest,
    CancelRequest,
    AdvanceRequestResponse,
    AdvanceRequestDetailResponse,
    AdvanceRequestListResponse,
    ApprovalStepResponse,
    # Repayments
    RepaymentCreate,
    RepaymentResponse,
    RepaymentScheduleResponse,
    ScheduledInstallmentResponse,
    EmployeeOutstandingResponse,
    PayrollDeductionRunRequest,
    PayrollDeductionRunResponse,
    # Reporting
    AdvanceSummaryResponse,
    # Policies
    AdvancePolicyCreate,
    AdvancePolicyResponse,
)

__all__ = [
    "EligibilityCheckRequest",
    "EligibilityResponse",
    "RepaymentCalculationRequest",
    "RepaymentCalculationResponse",
    "AdvanceRequestCreate",
    "AdvanceDecisionRequest",
    "DisbursementRequest",
    "CancelRequest",
    "AdvanceRequestResponse",
    "AdvanceRequestDetailResponse",
    "AdvanceRequestListResponse",
    "ApprovalStepResponse",
    "RepaymentCreate",
    "RepaymentResponse",
    "RepaymentScheduleResponse",
    "ScheduledInstallmentResponse",
    "EmployeeOutstandingResponse",
    "PayrollDeductionRunRequest",
    "PayrollDeductionRunResponse",
    "AdvanceSummaryResponse",
    "AdvancePolicyCreate",
    "AdvancePolicyResponse",
]
