"""
HRFlow - Advance Policy Tests

Tests for resolving a tenant's policy in force and for policy management.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest

from app.services.salary_advance import AdvancePolicyService, PolicyResolver, validate_policy_terms
from app.utils.error_handling import (
    InvalidDateRangeException,
    PolicyConfigurationException,
    PolicyNotFoundException,
)


class TestPolicyResolution:
    """Which policy applies at an instant."""

    @pytest.mark.asyncio
    async def test_no_policy(self, db_session, organization):
        assert await PolicyResolver(db_session).resolve(organization.id) is None

    @pytest.mark.asyncio
    async def test_latest_effective_date_wins(self, db_session, policy_factory, organization):
        now = datetime.utcnow()
        await policy_factory(name="Old", effective_date=now - timedelta(days=400))
        newer = await policy_factory(name="New", effective_date=now - timedelta(days=10))

        policy = await PolicyResolver(db_session).resolve(organization.id)
        assert policy.id == newer.id

    @pytest.mark.asyncio
    async def test_future_policy_not_yet_in_force(self, db_session, policy_factory, organization):
        now = datetime.utcnow()
        current = await policy_factory(name="Current", effective_date=now - timedelta(days=30))
        await policy_factory(name="Next year", effective_date=now + timedelta(days=90))

        policy = await PolicyResolver(db_session).resolve(organization.id)
        assert policy.id == current.id

    @pytest.mark.asyncio
    async def test_expired_and_inactive_excluded(self, db_session, policy_factory, organization):
        now = datetime.utcnow()
        await policy_factory(name="Expired", expiry_date=now - timedelta(days=1))
        await policy_factory(name="Inactive", is_active=False, effective_date=now - timedelta(days=5))

        assert await PolicyResolver(db_session).resolve(organization.id) is None

    @pytest.mark.asyncio
    async def test_other_tenant_policy_ignored(self, db_session, policy_factory, organization, other_organization):
        await policy_factory(organization_id=other_organization.id)
        resolver = PolicyResolver(db_session)

        assert (await resolver.resolve(other_organization.id)) is not None
        assert (await resolver.resolve(organization.id)) is None


class TestPolicyTerms:
    """Validation of policy parameters."""

    def make_policy(self, **overrides):
        values = dict(
            monthly_deduction_percentage=Decimal("20"),
            max_advance_percentage=Decimal("50"),
            max_advance_amount=None,
            interest_rate=Decimal("0"),
            min_service_months=0,
            max_advances_per_year=1,
            effective_date=datetime(2026, 1, 1),
            expiry_date=None,
        )
        values.update(overrides)
        return SimpleNamespace(**values)

    def test_valid_terms(self):
        validate_policy_terms(self.make_policy())

    def test_zero_deduction_rejected(self):
        with pytest.raises(PolicyConfigurationException) as exc_info:
            validate_policy_terms(self.make_policy(monthly_deduction_percentage=Decimal("0")))
        assert exc_info.value.field == "monthly_deduction_percentage"

    def test_percentage_over_hundred_rejected(self):
        with pytest.raises(PolicyConfigurationException):
            validate_policy_terms(self.make_policy(max_advance_percentage=Decimal("120")))

    def test_negative_interest_rejected(self):
        with pytest.raises(PolicyConfigurationException):
            validate_policy_terms(self.make_policy(interest_rate=Decimal("-1")))

    def test_zero_advances_per_year_rejected(self):
        with pytest.raises(PolicyConfigurationException):
            validate_policy_terms(self.make_policy(max_advances_per_year=0))

    def test_expiry_before_effective_rejected(self):
        with pytest.raises(InvalidDateRangeException):
            validate_policy_terms(self.make_policy(expiry_date=datetime(2025, 12, 31)))


class TestPolicyManagement:
    """Creating and toggling policies."""

    @pytest.mark.asyncio
    async def test_create_policy(self, db_session, organization):
        service = AdvancePolicyService(db_session)
        policy = await service.create_policy(organization.id, {
            "name": "2026 policy",
            "is_active": True,
            "max_advance_percentage": Decimal("40"),
            "monthly_deduction_percentage": Decimal("25"),
            "max_advances_per_year": 3,
        })

        assert policy.id is not None
        assert policy.organization_id == organization.id
        resolved = await PolicyResolver(db_session).resolve(organization.id)
        assert resolved.id == policy.id

    @pytest.mark.asyncio
    async def test_create_invalid_policy_stores_nothing(self, db_session, organization):
        service = AdvancePolicyService(db_session)

        with pytest.raises(PolicyConfigurationException):
            await service.create_policy(organization.id, {
                "name": "Broken",
                "max_advance_percentage": Decimal("40"),
                "monthly_deduction_percentage": Decimal("0"),
            })
        assert await service.list_policies(organization.id) == []

    @pytest.mark.asyncio
    async def test_deactivate_then_activate(self, db_session, policy_factory, organization):
        policy = await policy_factory()
        service = AdvancePolicyService(db_session)
        resolver = PolicyResolver(db_session)

        await service.deactivate_policy(policy.id, organization.id)
        assert await resolver.resolve(organization.id) is None

        await service.activate_policy(policy.id, organization.id)
        assert (await resolver.resolve(organization.id)).id == policy.id

    @pytest.mark.asyncio
    async def test_activation_validates_terms(self, db_session, policy_factory, organization):
        policy = await policy_factory(is_active=False, monthly_deduction_percentage=Decimal("0"))

        with pytest.raises(PolicyConfigurationException):
            await AdvancePolicyService(db_session).activate_policy(policy.id, organization.id)

    @pytest.mark.asyncio
    async def test_policy_of_other_tenant_not_found(self, db_session, policy_factory, other_organization):
        policy = await policy_factory(organization_id=other_organization.id)

        with pytest.raises(PolicyNotFoundException):
            await AdvancePolicyService(db_session).get_policy(policy.id, uuid4())

    @pytest.mark.asyncio
    async def test_list_active_only(self, db_session, policy_factory, organization):
        await policy_factory(name="On")
        await policy_factory(name="Off", is_active=False)
        service = AdvancePolicyService(db_session)

        assert len(await service.list_policies(organization.id)) == 2
        names = [p.name for p in await service.list_policies(organization.id, active_only=True)]
        assert names == ["On"]
