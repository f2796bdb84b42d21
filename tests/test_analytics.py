"""
HRFlow - Salary Advance Analytics Tests
"""

from datetime import datetime
from decimal import Decimal

import pytest

from app.models import AdvanceStatus
from app.services.salary_advance import AdvanceAnalyticsService
from app.services.salary_advance.analytics import percentage


class TestPercentage:

    def test_returns_exact_ratio(self):
        assert percentage(2, 3) == Decimal(200) / Decimal(3)
        assert percentage(1, 8) == Decimal("12.5")
        assert percentage(2, 3).quantize(Decimal("0.01")) == Decimal("66.67")

    def test_zero_denominator(self):
        assert percentage(0, 0) == Decimal("0.00")
        assert percentage(5, 0) == Decimal("0.00")


class TestAdvanceSummary:
    """Yearly rollup for a tenant."""

    @pytest.mark.asyncio
    async def test_empty_tenant(self, db_session, organization):
        summary = await AdvanceAnalyticsService(db_session).summary(organization.id, 2026)

        assert summary.total_requests == 0
        assert summary.approval_rate == Decimal("0.00")
        assert summary.disbursement_rate == Decimal("0.00")
        assert summary.outstanding_amount == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_rates_and_totals(self, db_session, organization, staff_employee, request_factory):
        year = datetime.utcnow().year
        await request_factory(staff_employee, AdvanceStatus.PENDING)
        await request_factory(staff_employee, AdvanceStatus.APPROVED)
        await request_factory(staff_employee, AdvanceStatus.REJECTED, Decimal("8000.00"))
        await request_factory(
            staff_employee, AdvanceStatus.DISBURSED,
            total_repaid=Decimal("4000.00"), outstanding_balance=Decimal("6000.00"),
        )
        await request_factory(
            staff_employee, AdvanceStatus.REPAID, Decimal("5000.00"),
            total_repaid=Decimal("5000.00"), outstanding_balance=Decimal("0.00"),
        )
        # Disbursed last year and still being repaid
        await request_factory(
            staff_employee, AdvanceStatus.DISBURSED, Decimal("2000.00"),
            request_date=datetime(year - 1, 6, 1),
        )

        summary = await AdvanceAnalyticsService(db_session).summary(organization.id, year)

        assert summary.year == year
        assert summary.total_requests == 5
        assert summary.approved_requests == 3
        assert summary.disbursed_requests == 2
        assert summary.approval_rate == Decimal("60.00")
        assert summary.disbursement_rate == Decimal(200) / Decimal(3)
        assert summary.total_disbursed == Decimal("15000.00")
        assert summary.total_repaid == Decimal("9000.00")
        assert summary.outstanding_amount == Decimal("8000.00")

    @pytest.mark.asyncio
    async def test_other_tenants_excluded(
        self, db_session, organization, other_organization, staff_employee, request_factory,
    ):
        await request_factory(staff_employee, AdvanceStatus.DISBURSED)

        summary = await AdvanceAnalyticsService(db_session).summary(other_organization.id)
        assert summary.total_requests == 0
        assert summary.outstanding_amount == Decimal("0.00")
