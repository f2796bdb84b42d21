"""
HRFlow - Salary Advance Analytics

Read-only yearly rollups over a tenant's advance requests.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.salary_advance import AdvanceRequest, AdvanceStatus
from app.services.salary_advance.repayment_calculator import to_money


APPROVED_FOR_ANALYTICS = (
    AdvanceStatus.APPROVED,
    AdvanceStatus.OPS_FINAL_APPROVED,
    AdvanceStatus.DISBURSED,
    AdvanceStatus.REPAID,
)
DISBURSED_FOR_ANALYTICS = (AdvanceStatus.DISBURSED, AdvanceStatus.REPAID)


def percentage(part: int, whole: int) -> Decimal:
    """part / whole x 100, unrounded; 0 when whole is 0."""
    if not whole:
        return Decimal("0")
    return Decimal(part) * 100 / Decimal(whole)


@dataclass
class AdvanceSummary:
    year: int
    total_requests: int
    approved_requests: int
    disbursed_requests: int
    approval_rate: Decimal
    disbursement_rate: Decimal
    total_disbursed: Decimal
    total_repaid: Decimal
    outstanding_amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "year": self.year,
            "total_requests": self.total_requests,
            "approved_requests": self.approved_requests,
            "disbursed_requests": self.disbursed_requests,
            "approval_rate": self.approval_rate,
            "disbursement_rate": self.disbursement_rate,
            "total_disbursed": self.total_disbursed,
            "total_repaid": self.total_repaid,
            "outstanding_amount": self.outstanding_amount,
        }


class AdvanceAnalyticsService:
    """Service for salary advance rollups."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def summary(
        self,
        organization_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> AdvanceSummary:
        """
        Yearly summary. Counts and sums cover requests dated in `year`;
        the outstanding amount covers every request currently DISBURSED.
        """
        year = year or datetime.utcnow().year
        in_year = and_(
            AdvanceRequest.organization_id == organization_id,
            AdvanceRequest.request_date >= datetime(year, 1, 1),
            AdvanceRequest.request_date < datetime(year + 1, 1, 1),
        )

        total = await self._count(in_year)
        approved = await self._count(in_year, APPROVED_FOR_ANALYTICS)
        disbursed = await self._count(in_year, DISBURSED_FOR_ANALYTICS)

        total_disbursed = await self._sum(
            AdvanceRequest.approved_amount,
            and_(in_year, AdvanceRequest.status.in_(DISBURSED_FOR_ANALYTICS)),
        )
        total_repaid = await self._sum(AdvanceRequest.total_repaid, in_year)
        outstanding = await self._sum(
            AdvanceRequest.outstanding_balance,
            and_(
                AdvanceRequest.organization_id == organization_id,
                AdvanceRequest.status == AdvanceStatus.DISBURSED,
            ),
        )

        return AdvanceSummary(
            year=year,
            total_requests=total,
            approved_requests=approved,
            disbursed_requests=disbursed,
            approval_rate=percentage(approved, total),
            disbursement_rate=percentage(disbursed, approved),
            total_disbursed=total_disbursed,
            total_repaid=total_repaid,
            outstanding_amount=outstanding,
        )

    async def _count(self, condition, statuses: Optional[Iterable[AdvanceStatus]] = None) -> int:
        query = select(func.count(AdvanceRequest.id)).where(condition)
        if statuses is not None:
            query = query.where(AdvanceRequest.status.in_(statuses))
        result = await self.db.execute(query)
        return result.scalar() or 0

    async def _sum(self, column, condition) -> Decimal:
        result = await self.db.execute(select(func.coalesce(func.sum(column), 0)).where(condition))
        return to_money(Decimal(str(result.scalar() or 0)))
