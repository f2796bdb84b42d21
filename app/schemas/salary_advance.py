"""
HRFlow - Salary Advance Schemas

Pydantic schemas for salary advance requests and responses.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.models.salary_advance import (
    AdvanceAction,
    AdvanceStatus,
    ApprovalFlow,
    DisbursementMethod,
    RepaymentMethod,
)


# ===========================================
# ENUMS AS LITERALS
# ===========================================

AdvanceDecisionEnum = Literal["APPROVED", "REJECTED", "FORWARDED_TO_HR"]


# ===========================================
# ELIGIBILITY & CALCULATION
# ===========================================

class EligibilityCheckRequest(BaseModel):
    """Eligibility check. employee_id may be the UUID or the employee number."""
    employee_id: Optional[str] = None
    amount: Decimal = Field(..., gt=0, decimal_places=2)


class EligibilityResponse(BaseModel):
    is_eligible: bool
    reason: Optional[str] = None
    max_amount: Optional[Decimal] = None
    service_months: Optional[int] = None
    existing_advances: Optional[int] = None
    max_advances_per_year: Optional[int] = None

    class Config:
        from_attributes = True


class RepaymentCalculationRequest(BaseModel):
    employee_id: Optional[str] = None
    amount: Decimal = Field(..., gt=0, decimal_places=2)


class RepaymentCalculationResponse(BaseModel):
    requested_amount: Decimal
    max_allowed_amount: Decimal
    monthly_deduction: Decimal
    interest_rate: Decimal
    estimated_repayment_months: int
    total_interest: Decimal
    total_repayment: Decimal
    repayment_start_date: date

    class Config:
        from_attributes = True


# ===========================================
# REQUEST SCHEMAS
# ===========================================

class AdvanceRequestCreate(BaseModel):
    """
    Submit a salary advance request.

    employee_id is only needed when HR files on an employee's behalf;
    otherwise the caller's own employee record is used.
    """
    employee_id: Optional[str] = None
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    reason: str = Field(..., min_length=1, max_length=2000)
    attachments: List[str] = Field(default_factory=list)


class AdvanceDecisionRequest(BaseModel):
    """Review decision on a pending request."""
    decision: AdvanceDecisionEnum
    approved_amount: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    rejection_reason: Optional[str] = None
    comments: Optional[str] = None


class DisbursementRequest(BaseModel):
    method: DisbursementMethod
    reference: Optional[str] = Field(None, max_length=100)
    comments: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class RepaymentCreate(BaseModel):
    principal_amount: Decimal = Field(..., gt=0, decimal_places=2)
    interest_amount: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    payment_method: Optional[RepaymentMethod] = None
    reference: Optional[str] = Field(None, max_length=100)
    payroll_period_id: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None


class PayrollDeductionRunRequest(BaseModel):
    """Post a payroll period's salary deductions."""
    payroll_period_id: str = Field(..., min_length=1, max_length=50)
    as_of: Optional[date] = None


# ===========================================
# RESPONSE SCHEMAS
# ===========================================

class AdvanceRequestResponse(BaseModel):
    """Salary advance request response."""
    id: UUID
    organization_id: UUID
    employee_id: UUID
    policy_id: Optional[UUID] = None
    branch_id: Optional[UUID] = None
    request_date: datetime
    requested_amount: Decimal
    reason: str
    attachments: List[str] = []
    approval_flow: ApprovalFlow
    status: AdvanceStatus
    escalated_to_role: Optional[str] = None
    recommended_amount: Optional[Decimal] = None
    approved_amount: Optional[Decimal] = None
    approved_at: Optional[datetime] = None
    approved_by_id: Optional[UUID] = None
    rejected_at: Optional[datetime] = None
    rejected_by_id: Optional[UUID] = None
    rejection_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    comments: Optional[str] = None
    disbursed_at: Optional[datetime] = None
    disbursed_by_id: Optional[UUID] = None
    disbursement_method: Optional[DisbursementMethod] = None
    disbursement_reference: Optional[str] = None
    repayment_start_date: date
    monthly_deduction: Decimal
    interest_rate: Decimal
    total_interest: Decimal
    total_repaid: Decimal
    outstanding_balance: Decimal
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AdvanceRequestListResponse(BaseModel):
    requests: List[AdvanceRequestResponse]
    total: int
    page: int
    per_page: int


class RepaymentResponse(BaseModel):
    id: UUID
    request_id: UUID
    repayment_date: datetime
    principal_amount: Decimal
    interest_amount: Decimal
    total_amount: Decimal
    balance_after: Decimal
    payment_method: RepaymentMethod
    reference: Optional[str] = None
    payroll_period_id: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class ApprovalStepResponse(BaseModel):
    id: UUID
    action: AdvanceAction
    from_status: Optional[AdvanceStatus] = None
    to_status: AdvanceStatus
    actor_user_id: Optional[UUID] = None
    actor_role: Optional[str] = None
    amount: Optional[Decimal] = None
    comments: Optional[str] = None
    occurred_at: datetime

    class Config:
        from_attributes = True


class AdvanceRequestDetailResponse(AdvanceRequestResponse):
    """Request with its approval trail and repayments."""
    approval_steps: List[ApprovalStepResponse] = []
    repayments: List[RepaymentResponse] = []


class ScheduledInstallmentResponse(BaseModel):
    installment_number: int
    due_date: date
    principal_amount: Decimal
    interest_amount: Decimal
    total_amount: Decimal
    balance_after: Decimal
    is_paid: bool

    class Config:
        from_attributes = True


class RepaymentScheduleResponse(BaseModel):
    principal: Decimal
    total_interest: Decimal
    total_repaid: Decimal
    outstanding_balance: Decimal
    installments: List[ScheduledInstallmentResponse]

    class Config:
        from_attributes = True


class EmployeeOutstandingResponse(BaseModel):
    employee_id: UUID
    outstanding_balance: Decimal
    requests: List[AdvanceRequestResponse]


class AdvanceSummaryResponse(BaseModel):
    """Yearly salary advance rollup."""
    year: int
    total_requests: int
    approved_requests: int
    disbursed_requests: int
    approval_rate: Decimal
    disbursement_rate: Decimal
    total_disbursed: Decimal
    total_repaid: Decimal
    outstanding_amount: Decimal

    class Config:
        from_attributes = True


class PayrollDeductionRunResponse(BaseModel):
    payroll_period_id: str
    processed: int
    skipped: int
    total_deducted: Decimal
    repayments: List[RepaymentResponse]

    class Config:
        from_attributes = True


# ===========================================
# POLICY SCHEMAS
# ===========================================

class AdvancePolicyCreate(BaseModel):
    """Create a lending policy. Terms are re-checked when it is activated."""
    name: str = Field(..., min_length=1, max_length=150)
    description: Optional[str] = None
    effective_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    is_active: bool = False
    min_service_months: int = Field(0, ge=0)
    max_advance_percentage: Decimal = Field(..., gt=0, le=100)
    max_advance_amount: Optional[Decimal] = Field(None, gt=0)
    max_advances_per_year: int = Field(1, ge=1)
    interest_rate: Decimal = Field(Decimal("0"), ge=0)
    monthly_deduction_percentage: Decimal = Field(..., gt=0, le=100)
    auto_approve: bool = False
    approval_flow: ApprovalFlow = ApprovalFlow.SIMPLE

    @model_validator(mode="after")
    def validate_window(self):
        if self.expiry_date and self.effective_date and self.expiry_date < self.effective_date:
            raise ValueError("expiry_date must be on or after effective_date")
        return self


class AdvancePolicyResponse(BaseModel):
    id: UUID
    organization_id: UUID
    name: str
    description: Optional[str] = None
    effective_date: datetime
    expiry_date: Optional[datetime] = None
    is_active: bool
    min_service_months: int
    max_advance_percentage: Decimal
    max_advance_amount: Optional[Decimal] = None
    max_advances_per_year: int
    interest_rate: Decimal
    monthly_deduction_percentage: Decimal
    auto_approve: bool
    approval_flow: ApprovalFlow
    created_at: datetime

    class Config:
        from_attributes = True
