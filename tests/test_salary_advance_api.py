"""
HRFlow - Salary Advance API Tests

End-to-end tests through the HTTP surface: authentication, permissions,
the request lifecycle and the standard error envelope.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient

from app.models import AdvanceStatus, UserRole

BASE = "/api/v1/salary-advances"


class TestHealthAndAuth:
    """Service health and authentication."""

    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient):
        response = await client.get(BASE)

        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_invalid_token(self, client: AsyncClient):
        response = await client.get(BASE, headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_token_from_cookie(self, client: AsyncClient, employee_user, headers_for):
        token = headers_for(employee_user)["Authorization"].split(" ", 1)[1]

        response = await client.get(BASE, headers={"Cookie": f"access_token={token}"})
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_deactivated_user(self, client: AsyncClient, user_factory, headers_for):
        user = await user_factory(UserRole.HR_MANAGER, is_active=False)

        response = await client.get(BASE, headers=headers_for(user))
        assert response.status_code == 403


class TestEligibilityEndpoints:

    @pytest.mark.asyncio
    async def test_own_eligibility(self, client: AsyncClient, employee_user, policy_factory, headers_for):
        await policy_factory()

        response = await client.post(f"{BASE}/eligibility", json={"amount": "35000"}, headers=headers_for(employee_user))

        assert response.status_code == 200
        data = response.json()
        assert data["is_eligible"] is False
        assert "30,000.00" in data["reason"]
        assert Decimal(data["max_amount"]) == Decimal("30000")

    @pytest.mark.asyncio
    async def test_calculate(self, client: AsyncClient, employee_user, policy_factory, headers_for):
        await policy_factory()

        response = await client.post(f"{BASE}/calculate", json={"amount": "10000"}, headers=headers_for(employee_user))

        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["monthly_deduction"]) == Decimal("2000")
        assert data["estimated_repayment_months"] == 5
        assert Decimal(data["total_repayment"]) == Decimal("10500")

    @pytest.mark.asyncio
    async def test_employee_cannot_check_colleague(
        self, client: AsyncClient, employee_user, employee_factory, policy_factory, headers_for,
    ):
        await policy_factory()
        colleague = await employee_factory()

        response = await client.post(
            f"{BASE}/eligibility",
            json={"employee_id": str(colleague.id), "amount": "1000"},
            headers=headers_for(employee_user),
        )
        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "INSUFFICIENT_PERMISSIONS"

    @pytest.mark.asyncio
    async def test_non_positive_amount_rejected(self, client: AsyncClient, employee_user, headers_for):
        response = await client.post(f"{BASE}/eligibility", json={"amount": "0"}, headers=headers_for(employee_user))

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_fraction_of_a_cent_rejected(
        self, client: AsyncClient, staff_employee, employee_user, payroll_user, request_factory, headers_for,
    ):
        request = await request_factory(staff_employee, AdvanceStatus.DISBURSED)

        response = await client.post(
            BASE, json={"amount": "0.004", "reason": "Rent"}, headers=headers_for(employee_user),
        )
        assert response.status_code == 422

        response = await client.post(
            f"{BASE}/{request.id}/repayments",
            json={"principal_amount": "0.004"},
            headers=headers_for(payroll_user),
        )
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"


class TestRequestLifecycle:
    """Submit, decide, disburse and repay over HTTP."""

    @pytest.mark.asyncio
    async def test_full_lifecycle(
        self, client: AsyncClient, employee_user, hr_user, payroll_user, policy_factory, headers_for,
    ):
        await policy_factory()
        employee_headers = headers_for(employee_user)
        hr_headers = headers_for(hr_user)
        payroll_headers = headers_for(payroll_user)

        response = await client.post(
            BASE, json={"amount": "10000", "reason": "School fees"}, headers=employee_headers,
        )
        assert response.status_code == 201
        created = response.json()
        assert created["status"] == "pending"
        request_id = created["id"]

        response = await client.get(f"{BASE}/pending", headers=hr_headers)
        assert [r["id"] for r in response.json()] == [request_id]

        response = await client.post(
            f"{BASE}/{request_id}/decision", json={"decision": "APPROVED"}, headers=hr_headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "approved"

        response = await client.post(
            f"{BASE}/{request_id}/disburse",
            json={"method": "bank_transfer", "reference": "TRX-77"},
            headers=payroll_headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "disbursed"

        response = await client.post(
            f"{BASE}/{request_id}/repayments", json={"principal_amount": "3000"}, headers=payroll_headers,
        )
        assert response.status_code == 201
        assert Decimal(response.json()["balance_after"]) == Decimal("7000")

        response = await client.get(f"{BASE}/{request_id}", headers=employee_headers)
        assert response.status_code == 200
        detail = response.json()
        assert Decimal(detail["outstanding_balance"]) == Decimal("7000")
        assert [s["action"] for s in detail["approval_steps"]] == ["submit", "approve", "disburse", "repay"]
        assert len(detail["repayments"]) == 1

        response = await client.get(f"{BASE}/{request_id}/repayment-schedule", headers=employee_headers)
        assert response.status_code == 200
        assert len(response.json()["installments"]) == 5

    @pytest.mark.asyncio
    async def test_ineligible_submission(self, client: AsyncClient, employee_user, policy_factory, headers_for):
        await policy_factory()

        response = await client.post(
            BASE, json={"amount": "35000", "reason": "Car"}, headers=headers_for(employee_user),
        )

        assert response.status_code == 422
        error = response.json()["detail"]
        assert error["code"] == "INELIGIBLE"
        assert error["details"]["max_amount"] == "30000.00"

    @pytest.mark.asyncio
    async def test_second_decision_conflicts(
        self, client: AsyncClient, staff_employee, hr_user, request_factory, headers_for,
    ):
        request = await request_factory(staff_employee, AdvanceStatus.PENDING)
        headers = headers_for(hr_user)

        first = await client.post(f"{BASE}/{request.id}/decision", json={"decision": "APPROVED"}, headers=headers)
        second = await client.post(
            f"{BASE}/{request.id}/decision",
            json={"decision": "REJECTED", "rejection_reason": "Changed my mind"},
            headers=headers,
        )

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["detail"]["code"] == "ALREADY_PROCESSED"

    @pytest.mark.asyncio
    async def test_employee_cannot_decide(
        self, client: AsyncClient, staff_employee, employee_user, request_factory, headers_for,
    ):
        request = await request_factory(staff_employee, AdvanceStatus.PENDING)

        response = await client.post(
            f"{BASE}/{request.id}/decision", json={"decision": "APPROVED"}, headers=headers_for(employee_user),
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_self_approval_is_escalated(
        self, client: AsyncClient, hr_employee, hr_user, request_factory, headers_for,
    ):
        request = await request_factory(hr_employee, AdvanceStatus.PENDING)

        response = await client.post(
            f"{BASE}/{request.id}/decision", json={"decision": "APPROVED"}, headers=headers_for(hr_user),
        )

        assert response.status_code == 403
        error = response.json()["detail"]
        assert error["code"] == "SELF_APPROVAL_FORBIDDEN"
        assert error["details"]["escalated_to"] == "admin"

    @pytest.mark.asyncio
    async def test_unknown_decision_value(
        self, client: AsyncClient, staff_employee, hr_user, request_factory, headers_for,
    ):
        request = await request_factory(staff_employee, AdvanceStatus.PENDING)

        response = await client.post(
            f"{BASE}/{request.id}/decision", json={"decision": "MAYBE"}, headers=headers_for(hr_user),
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_disburse_before_approval(
        self, client: AsyncClient, staff_employee, payroll_user, request_factory, headers_for,
    ):
        request = await request_factory(staff_employee, AdvanceStatus.PENDING)

        response = await client.post(
            f"{BASE}/{request.id}/disburse", json={"method": "cash"}, headers=headers_for(payroll_user),
        )
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "INVALID_STATE"

    @pytest.mark.asyncio
    async def test_employee_cancels_own_request(
        self, client: AsyncClient, staff_employee, employee_user, request_factory, headers_for,
    ):
        request = await request_factory(staff_employee, AdvanceStatus.PENDING)

        response = await client.post(
            f"{BASE}/{request.id}/cancel", json={"reason": "Sorted it out"}, headers=headers_for(employee_user),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"


class TestVisibility:
    """Who can see which requests."""

    @pytest.mark.asyncio
    async def test_colleague_request_hidden(
        self, client: AsyncClient, employee_user, employee_factory, request_factory, headers_for,
    ):
        colleague = await employee_factory()
        request = await request_factory(colleague, AdvanceStatus.PENDING)

        response = await client.get(f"{BASE}/{request.id}", headers=headers_for(employee_user))
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "REQUEST_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_other_tenant_request_hidden(
        self, client: AsyncClient, other_organization, staff_employee, user_factory, request_factory, headers_for,
    ):
        request = await request_factory(staff_employee, AdvanceStatus.PENDING)
        outsider = await user_factory(UserRole.ADMIN, organization_id=other_organization.id)

        response = await client.get(f"{BASE}/{request.id}", headers=headers_for(outsider))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_employee_list_is_scoped_to_self(
        self, client: AsyncClient, staff_employee, employee_user, employee_factory, request_factory, headers_for,
    ):
        mine = await request_factory(staff_employee, AdvanceStatus.PENDING)
        await request_factory(await employee_factory(), AdvanceStatus.PENDING)

        response = await client.get(BASE, headers=headers_for(employee_user))

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["requests"][0]["id"] == str(mine.id)

    @pytest.mark.asyncio
    async def test_hr_lists_everything(
        self, client: AsyncClient, staff_employee, hr_user, employee_factory, request_factory, headers_for,
    ):
        await request_factory(staff_employee, AdvanceStatus.PENDING)
        await request_factory(await employee_factory(), AdvanceStatus.REJECTED)

        response = await client.get(BASE, params={"status": "rejected"}, headers=headers_for(hr_user))

        assert response.status_code == 200
        assert response.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_employee_outstanding(
        self, client: AsyncClient, staff_employee, employee_user, employee_factory, request_factory, headers_for,
    ):
        colleague = await employee_factory()
        await request_factory(
            staff_employee, AdvanceStatus.DISBURSED,
            total_repaid=Decimal("2500.00"), outstanding_balance=Decimal("7500.00"),
        )

        for ref in (staff_employee.id, staff_employee.employee_number):
            response = await client.get(f"{BASE}/employees/{ref}/outstanding", headers=headers_for(employee_user))
            assert response.status_code == 200
            assert Decimal(response.json()["outstanding_balance"]) == Decimal("7500")

        for ref in (colleague.id, colleague.employee_number):
            response = await client.get(f"{BASE}/employees/{ref}/outstanding", headers=headers_for(employee_user))
            assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_request_by_own_employee_number(
        self, client: AsyncClient, staff_employee, employee_user, policy_factory, headers_for,
    ):
        await policy_factory()

        response = await client.post(
            f"{BASE}/eligibility",
            json={"employee_id": staff_employee.employee_number, "amount": "5000"},
            headers=headers_for(employee_user),
        )

        assert response.status_code == 200
        assert response.json()["is_eligible"] is True


class TestPayrollAndReporting:

    @pytest.mark.asyncio
    async def test_payroll_deduction_run(
        self, client: AsyncClient, staff_employee, payroll_user, request_factory, headers_for,
    ):
        await request_factory(staff_employee, AdvanceStatus.DISBURSED)
        headers = headers_for(payroll_user)
        payload = {"payroll_period_id": "2026-11", "as_of": (date.today() + timedelta(days=45)).isoformat()}

        response = await client.post(f"{BASE}/payroll-deductions", json=payload, headers=headers)
        assert response.status_code == 200
        data = response.json()
        assert data["processed"] == 1
        assert Decimal(data["total_deducted"]) == Decimal("2000")
        assert data["repayments"][0]["payroll_period_id"] == "2026-11"

        response = await client.post(f"{BASE}/payroll-deductions", json=payload, headers=headers)
        assert response.json()["processed"] == 0
        assert response.json()["skipped"] == 1

    @pytest.mark.asyncio
    async def test_analytics_permissions(self, client: AsyncClient, hr_user, employee_user, headers_for):
        response = await client.get(f"{BASE}/analytics", params={"year": 2026}, headers=headers_for(hr_user))
        assert response.status_code == 200
        assert response.json()["year"] == 2026
        assert Decimal(response.json()["approval_rate"]) == Decimal("0")

        response = await client.get(f"{BASE}/analytics", headers=headers_for(employee_user))
        assert response.status_code == 403


class TestPolicyEndpoints:

    @pytest.mark.asyncio
    async def test_create_and_resolve_policy(self, client: AsyncClient, hr_user, headers_for):
        headers = headers_for(hr_user)
        payload = {
            "name": "2026 advances",
            "is_active": True,
            "min_service_months": 3,
            "max_advance_percentage": "40",
            "max_advances_per_year": 2,
            "interest_rate": "10",
            "monthly_deduction_percentage": "25",
        }

        response = await client.post(f"{BASE}/policies", json=payload, headers=headers)
        assert response.status_code == 201
        policy_id = response.json()["id"]

        response = await client.get(f"{BASE}/policies/current", headers=headers)
        assert response.status_code == 200
        assert response.json()["id"] == policy_id

        response = await client.post(f"{BASE}/policies/{policy_id}/deactivate", headers=headers)
        assert response.json()["is_active"] is False

        response = await client.get(f"{BASE}/policies/current", headers=headers)
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "POLICY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_zero_deduction_policy_rejected(self, client: AsyncClient, hr_user, headers_for):
        response = await client.post(
            f"{BASE}/policies",
            json={"name": "Broken", "max_advance_percentage": "40", "monthly_deduction_percentage": "0"},
            headers=headers_for(hr_user),
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_employee_cannot_manage_policies(self, client: AsyncClient, employee_user, headers_for):
        response = await client.get(f"{BASE}/policies", headers=headers_for(employee_user))
        assert response.status_code == 403
