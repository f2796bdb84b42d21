"""
HRFlow - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from app.models.base import BaseModel, TimestampMixin, TenantMixin, AuditMixin
from app.models.organization import Organization
from app.models.user import User, UserRole
from app.models.employee import Employee, EmploymentStatus, EmployeePosition
from app.models.salary_advance import (
    ApprovalFlow,
    AdvanceStatus,
    AdvanceAction,
    DisbursementMethod,
    RepaymentMethod,
    AdvancePolicy,
    AdvanceRequest,
    AdvanceRepayment,
    AdvanceApprovalStep,
)

__all__ = [
    # Base
    "BaseModel",
    "TimestampMixin",
    "TenantMixin",
    "AuditMixin",
    # Tenancy & identity
    "Organization",
    "User",
    "UserRole",
    # HR records
    "Employee",
    "EmploymentStatus",
    "EmployeePosition",
    # Salary advances
    "ApprovalFlow",
    "AdvanceStatus",
    "AdvanceAction",
    "DisbursementMethod",
    "RepaymentMethod",
    "AdvancePolicy",
    "AdvanceRequest",
    "AdvanceRepayment",
    "AdvanceApprovalStep",
]
