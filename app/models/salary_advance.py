"""
HRFlow - Salary Advance Models

Lending policy, advance requests, the repayment ledger and the approval
trail.

Lifecycle:
- Requests are never deleted; they are the audit record of the advance.
- Repayments are append-only ledger rows, written only while the request
  is DISBURSED.
- Approval steps are append-only; one row per actor action.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text,
    Enum as SQLEnum, JSON, CheckConstraint, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, TenantMixin, AuditMixin

if TYPE_CHECKING:
    from app.models.employee import Employee


# ===========================================
# ENUMS
# ===========================================

class ApprovalFlow(str, Enum):
    """Which approval chain a policy (and the requests it creates) uses."""
    SIMPLE = "simple"
    MULTI_STAGE = "multi_stage"


class AdvanceStatus(str, Enum):
    """
    Status of an advance request.

    Simple flow:      PENDING -> APPROVED | REJECTED
    Multi-stage flow: PENDING_OPS_REVIEW -> FORWARDED_TO_HR
                      -> HR_APPROVED | HR_REJECTED
                      -> OPS_FINAL_APPROVED | OPS_FINAL_REJECTED
    Both:             approved -> DISBURSED -> REPAID
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING_OPS_REVIEW = "pending_ops_review"
    FORWARDED_TO_HR = "forwarded_to_hr"
    HR_APPROVED = "hr_approved"
    HR_REJECTED = "hr_rejected"
    OPS_FINAL_APPROVED = "ops_final_approved"
    OPS_FINAL_REJECTED = "ops_final_rejected"
    DISBURSED = "disbursed"
    REPAID = "repaid"
    CANCELLED = "cancelled"


class AdvanceAction(str, Enum):
    """Actions recorded against a request."""
    SUBMIT = "submit"
    AUTO_APPROVE = "auto_approve"
    FORWARD = "forward"
    APPROVE = "approve"
    REJECT = "reject"
    ESCALATE = "escalate"
    DISBURSE = "disburse"
    REPAY = "repay"
    SETTLE = "settle"
    CANCEL = "cancel"


class DisbursementMethod(str, Enum):
    """How approved funds were paid out."""
    BANK_TRANSFER = "bank_transfer"
    MOBILE_MONEY = "mobile_money"
    CASH = "cash"
    CHEQUE = "cheque"


class RepaymentMethod(str, Enum):
    """How a repayment was collected."""
    SALARY_DEDUCTION = "salary_deduction"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_MONEY = "mobile_money"
    CASH = "cash"


# ===========================================
# LENDING POLICY
# ===========================================

class AdvancePolicy(BaseModel, TenantMixin, AuditMixin):
    """
    Tenant lending policy for salary advances.

    At most one policy applies at any instant: the active one with the
    latest effective_date whose window contains that instant.
    """

    __tablename__ = "advance_policies"

    name: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    effective_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expiry_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Eligibility
    min_service_months: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_advance_percentage: Mapped[Decimal] = mapped_column(
        Numeric(precision=7, scale=4),
        nullable=False,
        comment="Maximum advance as % of monthly salary",
    )
    max_advance_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=True,
        comment="Absolute cap; NULL means no cap",
    )
    max_advances_per_year: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Cost & repayment
    interest_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=7, scale=4),
        default=Decimal("0"),
        nullable=False,
        comment="Annual simple interest %",
    )
    monthly_deduction_percentage: Mapped[Decimal] = mapped_column(
        Numeric(precision=7, scale=4),
        nullable=False,
        comment="% of principal deducted per payroll period",
    )

    # Workflow
    auto_approve: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    approval_flow: Mapped[ApprovalFlow] = mapped_column(
        SQLEnum(ApprovalFlow),
        default=ApprovalFlow.SIMPLE,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AdvancePolicy(name={self.name}, effective={self.effective_date}, active={self.is_active})>"


# ===========================================
# ADVANCE REQUEST
# ===========================================

class AdvanceRequest(BaseModel, TenantMixin):
    """
    A salary advance request and its running repayment position.

    outstanding_balance = (approved_amount or requested_amount) - total_repaid,
    floored at zero.
    """

    __tablename__ = "advance_requests"

    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("employees.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    policy_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("advance_policies.id", ondelete="SET NULL"),
        nullable=True,
    )
    branch_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)

    request_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    requested_amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    attachments: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)

    approval_flow: Mapped[ApprovalFlow] = mapped_column(
        SQLEnum(ApprovalFlow),
        default=ApprovalFlow.SIMPLE,
        nullable=False,
    )
    status: Mapped[AdvanceStatus] = mapped_column(
        SQLEnum(AdvanceStatus),
        default=AdvanceStatus.PENDING,
        nullable=False,
        index=True,
    )
    escalated_to_role: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True,
        comment="Role that must act on the current stage after a refused self-approval",
    )

    # HR stage proposal (multi-stage flow)
    recommended_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(precision=15, scale=2), nullable=True)

    # Decision
    approved_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(precision=15, scale=2), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Disbursement
    disbursed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    disbursed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    disbursement_method: Mapped[Optional[DisbursementMethod]] = mapped_column(
        SQLEnum(DisbursementMethod), nullable=True,
    )
    disbursement_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Repayment terms
    repayment_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    monthly_deduction: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    interest_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=7, scale=4),
        default=Decimal("0"),
        nullable=False,
    )
    total_interest: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )

    # Running position
    total_repaid: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    outstanding_balance: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)

    employee: Mapped["Employee"] = relationship("Employee")
    repayments: Mapped[List["AdvanceRepayment"]] = relationship(
        "AdvanceRepayment",
        back_populates="request",
        order_by="AdvanceRepayment.repayment_date",
    )

    __table_args__ = (
        CheckConstraint('requested_amount > 0', name='requested_amount_positive'),
        CheckConstraint('outstanding_balance >= 0', name='outstanding_balance_non_negative'),
        CheckConstraint('total_repaid >= 0', name='total_repaid_non_negative'),
    )

    @property
    def principal(self) -> Decimal:
        """Amount the employee owes: the approved amount once decided."""
        return self.approved_amount if self.approved_amount is not None else self.requested_amount

    def __repr__(self) -> str:
        return f"<AdvanceRequest(id={self.id}, status={self.status}, outstanding={self.outstanding_balance})>"


# ===========================================
# REPAYMENT LEDGER
# ===========================================

class AdvanceRepayment(BaseModel, TenantMixin):
    """
    Immutable repayment entry. total_amount = principal_amount + interest_amount.
    """

    __tablename__ = "advance_repayments"

    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("advance_requests.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    repayment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    principal_amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    interest_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)

    payment_method: Mapped[RepaymentMethod] = mapped_column(
        SQLEnum(RepaymentMethod),
        default=RepaymentMethod.SALARY_DEDUCTION,
        nullable=False,
    )
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payroll_period_id: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True,
        comment="Payroll period the deduction was taken in, e.g. 2026-03",
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    request: Mapped["AdvanceRequest"] = relationship(
        "AdvanceRequest", back_populates="repayments",
    )

    __table_args__ = (
        CheckConstraint('principal_amount > 0', name='principal_amount_positive'),
        CheckConstraint('interest_amount >= 0', name='interest_amount_non_negative'),
        UniqueConstraint(
            'request_id', 'payroll_period_id',
            name='uq_advance_repayment_request_period'
        ),
    )

    def __repr__(self) -> str:
        return f"<AdvanceRepayment(request_id={self.request_id}, total={self.total_amount})>"


# ===========================================
# APPROVAL TRAIL
# ===========================================

class AdvanceApprovalStep(BaseModel, TenantMixin):
    """One actor action on a request (submission, review, escalation, payout)."""

    __tablename__ = "advance_approval_steps"

    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("advance_requests.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    action: Mapped[AdvanceAction] = mapped_column(SQLEnum(AdvanceAction), nullable=False)
    from_status: Mapped[Optional[AdvanceStatus]] = mapped_column(SQLEnum(AdvanceStatus), nullable=True)
    to_status: Mapped[AdvanceStatus] = mapped_column(SQLEnum(AdvanceStatus), nullable=False)
    actor_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(precision=15, scale=2), nullable=True)
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<AdvanceApprovalStep(action={self.action}, {self.from_status}->{self.to_status})>"
