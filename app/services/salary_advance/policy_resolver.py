"""
HRFlow - Salary Advance Policy Resolver

Finds the lending policy in force for a tenant at an instant, and manages
the tenant's policies. Policies are resolved on every operation and never
cached, so a policy change applies to the next request immediately.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.salary_advance import AdvancePolicy, ApprovalFlow
from app.utils.error_handling import (
    InvalidDateRangeException,
    PolicyConfigurationException,
    PolicyNotFoundException,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class PolicyResolver:
    """Selects the active policy for a tenant."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve(
        self,
        organization_id: uuid.UUID,
        at: Optional[datetime] = None,
    ) -> Optional[AdvancePolicy]:
        """
        Active policy whose window contains `at`, latest effective date first.

        None means no policy applies; callers treat that as ineligibility.
        """
        at = at or datetime.utcnow()
        result = await self.db.execute(
            select(AdvancePolicy)
            .where(
                and_(
                    AdvancePolicy.organization_id == organization_id,
                    AdvancePolicy.is_active == True,  # noqa: E712
                    AdvancePolicy.effective_date <= at,
                    or_(
                        AdvancePolicy.expiry_date.is_(None),
                        AdvancePolicy.expiry_date >= at,
                    ),
                )
            )
            .order_by(AdvancePolicy.effective_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


def validate_policy_terms(policy: Any) -> None:
    """
    Reject policy parameters that cannot produce valid advances.

    Raises:
        PolicyConfigurationException: on the first bad parameter
        InvalidDateRangeException: expiry before effective date
    """
    deduction = Decimal(policy.monthly_deduction_percentage)
    if deduction <= 0 or deduction > HUNDRED:
        raise PolicyConfigurationException(
            "Monthly deduction percentage must be greater than 0 and at most 100",
            field="monthly_deduction_percentage",
            details={"monthly_deduction_percentage": str(deduction)},
        )

    percentage = Decimal(policy.max_advance_percentage)
    if percentage <= 0 or percentage > HUNDRED:
        raise PolicyConfigurationException(
            "Maximum advance percentage must be greater than 0 and at most 100",
            field="max_advance_percentage",
            details={"max_advance_percentage": str(percentage)},
        )

    if policy.max_advance_amount is not None and Decimal(policy.max_advance_amount) <= 0:
        raise PolicyConfigurationException(
            "Maximum advance amount must be positive when set",
            field="max_advance_amount",
        )

    if Decimal(policy.interest_rate or 0) < 0:
        raise PolicyConfigurationException("Interest rate cannot be negative", field="interest_rate")

    if policy.min_service_months < 0:
        raise PolicyConfigurationException(
            "Minimum service months cannot be negative", field="min_service_months",
        )

    if policy.max_advances_per_year < 1:
        raise PolicyConfigurationException(
            "At least one advance per year must be allowed", field="max_advances_per_year",
        )

    if policy.expiry_date is not None and policy.expiry_date < policy.effective_date:
        raise InvalidDateRangeException(
            start_date=policy.effective_date.isoformat(),
            end_date=policy.expiry_date.isoformat(),
        )


class AdvancePolicyService:
    """Tenant policy management."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_policies(
        self,
        organization_id: uuid.UUID,
        active_only: bool = False,
    ) -> List[AdvancePolicy]:
        query = select(AdvancePolicy).where(AdvancePolicy.organization_id == organization_id)
        if active_only:
            query = query.where(AdvancePolicy.is_active == True)  # noqa: E712
        result = await self.db.execute(query.order_by(AdvancePolicy.effective_date.desc()))
        return list(result.scalars().all())

    async def get_policy(self, policy_id: uuid.UUID, organization_id: uuid.UUID) -> AdvancePolicy:
        result = await self.db.execute(
            select(AdvancePolicy).where(
                and_(
                    AdvancePolicy.id == policy_id,
                    AdvancePolicy.organization_id == organization_id,
                )
            )
        )
        policy = result.scalar_one_or_none()
        if policy is None:
            raise PolicyNotFoundException(policy_id)
        return policy

    async def create_policy(
        self,
        organization_id: uuid.UUID,
        data: Dict[str, Any],
        created_by_id: Optional[uuid.UUID] = None,
    ) -> AdvancePolicy:
        """Create a policy. Terms are validated before anything is stored."""
        policy = AdvancePolicy(
            organization_id=organization_id,
            name=data["name"],
            description=data.get("description"),
            effective_date=data.get("effective_date") or datetime.utcnow(),
            expiry_date=data.get("expiry_date"),
            is_active=data.get("is_active", False),
            min_service_months=data.get("min_service_months", 0),
            max_advance_percentage=data["max_advance_percentage"],
            max_advance_amount=data.get("max_advance_amount"),
            max_advances_per_year=data.get("max_advances_per_year", 1),
            interest_rate=data.get("interest_rate") or Decimal("0"),
            monthly_deduction_percentage=data["monthly_deduction_percentage"],
            auto_approve=data.get("auto_approve", False),
            approval_flow=data.get("approval_flow") or ApprovalFlow.SIMPLE,
            created_by_id=created_by_id,
        )
        validate_policy_terms(policy)

        self.db.add(policy)
        await self.db.commit()
        await self.db.refresh(policy)

        logger.info(
            f"Created advance policy {policy.id} '{policy.name}' for org {organization_id} "
            f"(active={policy.is_active})"
        )
        return policy

    async def activate_policy(self, policy_id: uuid.UUID, organization_id: uuid.UUID) -> AdvancePolicy:
        policy = await self.get_policy(policy_id, organization_id)
        validate_policy_terms(policy)

        policy.is_active = True
        await self.db.commit()
        await self.db.refresh(policy)

        logger.info(f"Activated advance policy {policy.id} for org {organization_id}")
        return policy

    async def deactivate_policy(self, policy_id: uuid.UUID, organization_id: uuid.UUID) -> AdvancePolicy:
        policy = await self.get_policy(policy_id, organization_id)

        policy.is_active = False
        await self.db.commit()
        await self.db.refresh(policy)

        logger.info(f"Deactivated advance policy {policy.id} for org {organization_id}")
        return policy
