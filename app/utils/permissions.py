"""
HRFlow - Permissions System

RBAC permissions for the salary advance module.

Permission Matrix:
==================

| Permission          | Admin | HR Mgr | Ops Mgr | Branch Mgr | Payroll | Employee |
|---------------------|-------|--------|---------|------------|---------|----------|
| request             | X     | X      | X       | X          | X       | X        |
| review              | X     | X      | X       | X          |         |          |
| disburse            | X     | X      |         |            | X       |          |
| record_repayment    | X     | X      |         |            | X       |          |
| view_all            | X     | X      | X       | X          | X       |          |
| view_analytics      | X     | X      | X       |            | X       |          |
| manage_policy       | X     | X      |         |            |         |          |

Which review stage a role may act on is decided by the workflow transition
table, not here; "review" only opens the decision endpoints.

Escalation chain (used when an actor would approve their own request):
BRANCH_MANAGER -> OPERATIONS_MANAGER -> HR_MANAGER -> ADMIN
PAYROLL_MANAGER -> HR_MANAGER
"""

from enum import Enum
from typing import Dict, List, Set

from app.models.user import UserRole


# ===========================================
# PERMISSION ENUMS
# ===========================================

class AdvancePermission(str, Enum):
    """Permissions for the salary advance module."""

    REQUEST = "salary_advance:request"
    REVIEW = "salary_advance:review"
    DISBURSE = "salary_advance:disburse"
    RECORD_REPAYMENT = "salary_advance:record_repayment"
    VIEW_ALL = "salary_advance:view_all"
    VIEW_ANALYTICS = "salary_advance:view_analytics"
    MANAGE_POLICY = "salary_advance:manage_policy"


# ===========================================
# PERMISSION MAPPINGS
# ===========================================

ROLE_PERMISSIONS: Dict[UserRole, Set[AdvancePermission]] = {
    UserRole.ADMIN: set(AdvancePermission),
    UserRole.HR_MANAGER: set(AdvancePermission),
    UserRole.OPERATIONS_MANAGER: {
        AdvancePermission.REQUEST,
        AdvancePermission.REVIEW,
        AdvancePermission.VIEW_ALL,
        AdvancePermission.VIEW_ANALYTICS,
    },
    UserRole.BRANCH_MANAGER: {
        AdvancePermission.REQUEST,
        AdvancePermission.REVIEW,
        AdvancePermission.VIEW_ALL,
    },
    UserRole.PAYROLL_MANAGER: {
        AdvancePermission.REQUEST,
        AdvancePermission.DISBURSE,
        AdvancePermission.RECORD_REPAYMENT,
        AdvancePermission.VIEW_ALL,
        AdvancePermission.VIEW_ANALYTICS,
    },
    UserRole.EMPLOYEE: {
        AdvancePermission.REQUEST,
    },
}


def get_role_permissions(role: UserRole) -> Set[AdvancePermission]:
    """Get all permissions for a role."""
    return ROLE_PERMISSIONS.get(role, set())


def has_permission(role: UserRole, permission: AdvancePermission) -> bool:
    """Check if a role has a specific permission."""
    return permission in get_role_permissions(role)


def has_all_permissions(role: UserRole, permissions: List[AdvancePermission]) -> bool:
    granted = get_role_permissions(role)
    return all(p in granted for p in permissions)


# ===========================================
# ESCALATION CHAIN
# ===========================================

ESCALATION_CHAIN: Dict[UserRole, UserRole] = {
    UserRole.EMPLOYEE: UserRole.BRANCH_MANAGER,
    UserRole.BRANCH_MANAGER: UserRole.OPERATIONS_MANAGER,
    UserRole.OPERATIONS_MANAGER: UserRole.HR_MANAGER,
    UserRole.PAYROLL_MANAGER: UserRole.HR_MANAGER,
    UserRole.HR_MANAGER: UserRole.ADMIN,
    # Another administrator must act
    UserRole.ADMIN: UserRole.ADMIN,
}


def next_role_in_chain(role: UserRole) -> UserRole:
    """Role a stage is routed to when the given role may not act on it."""
    return ESCALATION_CHAIN.get(role, UserRole.ADMIN)
