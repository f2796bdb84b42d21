"""
HRFlow - Employee Model

Employee records are maintained by the HR records module. The salary
advance engine only reads them: salary, hire date, employment status,
branch and position.
"""

import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Date, Numeric, String, Enum as SQLEnum, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel, TenantMixin


class EmploymentStatus(str, Enum):
    """Employment status."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"


class EmployeePosition(str, Enum):
    """Position in the branch hierarchy (drives approval routing)."""
    STAFF = "staff"
    BRANCH_MANAGER = "branch_manager"
    OPERATIONS_MANAGER = "operations_manager"
    HR_MANAGER = "hr_manager"


class Employee(BaseModel, TenantMixin):
    """Employee HR record."""

    __tablename__ = "employees"

    employee_number: Mapped[str] = mapped_column(
        String(50), nullable=False,
        comment="Staff number e.g. EMP-0042",
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    monthly_salary: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=True,
        comment="Monthly gross salary; NULL until payroll sets it",
    )
    hire_date: Mapped[date] = mapped_column(Date, nullable=False)
    employment_status: Mapped[EmploymentStatus] = mapped_column(
        SQLEnum(EmploymentStatus),
        default=EmploymentStatus.ACTIVE,
        nullable=False,
    )

    branch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True, index=True,
    )
    position: Mapped[EmployeePosition] = mapped_column(
        SQLEnum(EmployeePosition),
        default=EmployeePosition.STAFF,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            'organization_id', 'employee_number',
            name='uq_employee_org_number'
        ),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_active(self) -> bool:
        return self.employment_status == EmploymentStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<Employee(number={self.employee_number}, status={self.employment_status})>"
