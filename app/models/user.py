"""
HRFlow - User Model

Users are issued by the identity service. This service only needs the
role, the tenant and (for staff) the linked employee record, which is what
the salary advance workflow uses to enforce its role gates and to refuse
self-approval.
"""

import uuid
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, ForeignKey, String, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, TenantMixin

if TYPE_CHECKING:
    from app.models.organization import Organization


class UserRole(str, Enum):
    """
    Organization user roles.

    ADMIN can act at every stage. The other roles map onto the stages of
    the approval chain: branch / operations managers review first, HR
    decides, payroll disburses.
    """
    ADMIN = "admin"
    HR_MANAGER = "hr_manager"
    OPERATIONS_MANAGER = "operations_manager"
    BRANCH_MANAGER = "branch_manager"
    PAYROLL_MANAGER = "payroll_manager"
    EMPLOYEE = "employee"


class User(BaseModel, TenantMixin):
    """Authenticated organization user."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    role: Mapped[UserRole] = mapped_column(
        SQLEnum(UserRole),
        default=UserRole.EMPLOYEE,
        nullable=False,
    )

    # Link to the HR record of the person behind this login (if any)
    employee_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    organization: Mapped["Organization"] = relationship(
        "Organization",
        back_populates="users",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<User(email={self.email}, role={self.role})>"
