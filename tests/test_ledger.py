"""
HRFlow - Repayment Ledger Tests
"""

from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest

from app.models import AdvanceStatus, ApprovalFlow, RepaymentMethod
from app.services.salary_advance import RepaymentLedger
from app.utils.error_handling import InvalidAmountException, InvalidStateException, validate_amount


def make_request(status=AdvanceStatus.DISBURSED, approved=Decimal("10000"), repaid=Decimal("0")):
    request = SimpleNamespace(
        id=uuid4(),
        approval_flow=ApprovalFlow.SIMPLE,
        status=status,
        escalated_to_role=None,
        requested_amount=Decimal("12000"),
        approved_amount=approved,
        total_repaid=repaid,
    )
    request.principal = approved if approved is not None else request.requested_amount
    return request


def post(ledger, request, principal, **kwargs):
    """Apply a repayment and carry its running position onto the request."""
    posting = ledger.apply(request, principal, **kwargs)
    request.total_repaid = posting.total_repaid
    request.status = posting.status
    return posting


class TestRepaymentLedger:
    """Posting repayments against a disbursed advance."""

    def setup_method(self):
        self.ledger = RepaymentLedger()

    def test_partial_repayments_then_settlement(self):
        """Three repayments of 3,000 leave 1,000; a fourth settles the advance."""
        request = make_request()

        for _ in range(3):
            posting = post(self.ledger, request, Decimal("3000"))

        assert posting.total_repaid == Decimal("9000.00")
        assert posting.outstanding_balance == Decimal("1000.00")
        assert posting.status == AdvanceStatus.DISBURSED
        assert not posting.settled

        posting = post(self.ledger, request, Decimal("1000"))
        assert posting.outstanding_balance == Decimal("0.00")
        assert posting.status == AdvanceStatus.REPAID
        assert posting.settled

    def test_repaid_request_accepts_nothing(self):
        request = make_request()
        post(self.ledger, request, Decimal("10000"))

        with pytest.raises(InvalidStateException):
            self.ledger.apply(request, Decimal("1"))

    def test_cannot_repay_before_disbursement(self):
        request = make_request(status=AdvanceStatus.APPROVED)

        with pytest.raises(InvalidStateException) as exc_info:
            self.ledger.apply(request, Decimal("500"))
        assert exc_info.value.message == "Advance must be disbursed before repayment"

    def test_exact_cents_across_many_repayments(self):
        """Ten repayments of 333.33 plus one of 0.03 reach zero exactly."""
        request = make_request(approved=Decimal("3333.33"))

        for _ in range(9):
            post(self.ledger, request, Decimal("333.33"))
        posting = post(self.ledger, request, Decimal("333.33"))
        assert posting.outstanding_balance == Decimal("0.03")

        posting = post(self.ledger, request, Decimal("0.03"))
        assert posting.outstanding_balance == Decimal("0.00")
        assert posting.status == AdvanceStatus.REPAID

    def test_overpayment_floors_balance_at_zero(self):
        request = make_request(repaid=Decimal("9500"))
        posting = self.ledger.apply(request, Decimal("800"))

        assert posting.total_repaid == Decimal("10300.00")
        assert posting.outstanding_balance == Decimal("0.00")
        assert posting.status == AdvanceStatus.REPAID

    def test_interest_does_not_reduce_balance(self):
        request = make_request()
        posting = self.ledger.apply(request, Decimal("2000"), interest_amount=Decimal("100"))

        assert posting.interest_amount == Decimal("100.00")
        assert posting.total_amount == Decimal("2100.00")
        assert posting.outstanding_balance == Decimal("8000.00")

    def test_balance_uses_requested_amount_when_not_approved_explicitly(self):
        request = make_request(approved=None)
        posting = self.ledger.apply(request, Decimal("2000"))
        assert posting.outstanding_balance == Decimal("10000.00")

    def test_rejects_non_positive_principal(self):
        request = make_request()

        with pytest.raises(InvalidAmountException):
            self.ledger.apply(request, Decimal("0"))
        with pytest.raises(InvalidAmountException):
            self.ledger.apply(request, Decimal("-5"))

    def test_rejects_sub_cent_amounts(self):
        request = make_request()

        with pytest.raises(InvalidAmountException):
            self.ledger.apply(request, Decimal("0.004"))
        with pytest.raises(InvalidAmountException):
            self.ledger.apply(request, Decimal("100.005"))
        with pytest.raises(InvalidAmountException):
            self.ledger.apply(request, Decimal("100"), Decimal("0.001"))
        assert request.total_repaid == Decimal("0")

    def test_repayment_values_carry_method_and_period(self):
        request = make_request()
        posting = self.ledger.apply(
            request,
            Decimal("2000"),
            method=RepaymentMethod.MOBILE_MONEY,
            reference="MM-123",
            payroll_period_id="2026-10",
        )

        values = posting.repayment_values()
        assert values["payment_method"] == RepaymentMethod.MOBILE_MONEY
        assert values["reference"] == "MM-123"
        assert values["payroll_period_id"] == "2026-10"
        assert values["balance_after"] == Decimal("8000.00")
        assert posting.previous_total_repaid == Decimal("0.00")


class TestValidateAmount:

    def test_accepts_whole_cents(self):
        assert validate_amount("1000") == Decimal("1000")
        assert validate_amount("1000.50") == Decimal("1000.50")
        assert validate_amount(Decimal("1000.000")) == Decimal("1000")

    def test_rejects_fractions_of_a_cent(self):
        with pytest.raises(InvalidAmountException) as exc_info:
            validate_amount("0.004", "principal_amount")

        assert exc_info.value.field == "principal_amount"
        assert "2 decimal places" in exc_info.value.message
