"""
HRFlow - Salary Advance Service

Orchestrates the advance lifecycle for one tenant: eligibility, request
creation, review decisions, disbursement, repayments, payroll deduction
runs and reporting.

Every status change is a conditional UPDATE guarded by the status that was
read, so of two concurrent decisions on one request only the first can
succeed; the other sees "already processed". Repayments additionally guard
on the total_repaid that was read, and the balance update and the
repayment row are committed together.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.employee import Employee
from app.models.salary_advance import (
    AdvanceAction,
    AdvanceApprovalStep,
    AdvancePolicy,
    AdvanceRepayment,
    AdvanceRequest,
    AdvanceStatus,
    DisbursementMethod,
    RepaymentMethod,
)
from app.models.user import UserRole
from app.services.salary_advance.analytics import AdvanceAnalyticsService, AdvanceSummary
from app.services.salary_advance.eligibility import EligibilityEvaluator, EligibilityResult
from app.services.salary_advance.ledger import RepaymentLedger
from app.services.salary_advance.policy_resolver import PolicyResolver
from app.services.salary_advance.repayment_calculator import (
    RepaymentCalculation,
    RepaymentCalculator,
    RepaymentSchedule,
    to_money,
)
from app.services.salary_advance.workflow import (
    DECISION_ACTIONS,
    PENDING_STATUSES,
    Actor,
    AdvanceWorkflow,
    Transition,
)
from app.utils.error_handling import (
    AdvanceRequestNotFoundException,
    AlreadyProcessedException,
    AuthorizationException,
    ConflictException,
    EmployeeNotFoundException,
    ErrorCode,
    IneligibleException,
    InvalidDateRangeException,
    InvalidStateException,
    PolicyNotFoundException,
    SelfApprovalException,
    ValidationException,
    require_text,
    validate_amount,
)

logger = logging.getLogger(__name__)

EmployeeRef = Union[uuid.UUID, str]


@dataclass
class PayrollDeductionRun:
    """Result of posting one payroll period's advance deductions."""
    payroll_period_id: str
    processed: int = 0
    skipped: int = 0
    total_deducted: Decimal = Decimal("0.00")
    repayments: List[AdvanceRepayment] = field(default_factory=list)


def _as_uuid(value: EmployeeRef) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _enum_value(enum_cls, value, field_name: str):
    """Coerce user input into an enum member, case-insensitively."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationException(
            f"Invalid {field_name} '{value}'. Allowed: {allowed}",
            field=field_name,
        )


class SalaryAdvanceService:
    """Service for the salary advance lifecycle."""

    def __init__(self, db: AsyncSession, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.clock = clock or datetime.utcnow
        self.policy_resolver = PolicyResolver(db)
        self.evaluator = EligibilityEvaluator()
        self.calculator = RepaymentCalculator()
        self.workflow = AdvanceWorkflow()
        self.ledger = RepaymentLedger(self.workflow)
        self.analytics = AdvanceAnalyticsService(db)

    # ===========================================
    # LOOKUPS
    # ===========================================

    async def find_employee(self, employee_ref: EmployeeRef, organization_id: uuid.UUID) -> Optional[Employee]:
        """Find an employee by id or employee number within the tenant."""
        ref_id = _as_uuid(employee_ref)
        if ref_id is not None:
            condition = Employee.id == ref_id
        else:
            condition = Employee.employee_number == str(employee_ref)

        result = await self.db.execute(
            select(Employee).where(and_(Employee.organization_id == organization_id, condition))
        )
        return result.scalar_one_or_none()

    async def get_employee(self, employee_ref: EmployeeRef, organization_id: uuid.UUID) -> Employee:
        employee = await self.find_employee(employee_ref, organization_id)
        if employee is None:
            raise EmployeeNotFoundException(employee_ref)
        return employee

    async def get_request(self, request_id: uuid.UUID, organization_id: uuid.UUID) -> AdvanceRequest:
        result = await self.db.execute(
            select(AdvanceRequest).where(
                and_(
                    AdvanceRequest.id == request_id,
                    AdvanceRequest.organization_id == organization_id,
                )
            )
        )
        request = result.scalar_one_or_none()
        if request is None:
            raise AdvanceRequestNotFoundException(request_id)
        return request

    async def list_repayments(self, request_id: uuid.UUID, organization_id: uuid.UUID) -> List[AdvanceRepayment]:
        await self.get_request(request_id, organization_id)
        result = await self.db.execute(
            select(AdvanceRepayment)
            .where(
                and_(
                    AdvanceRepayment.request_id == request_id,
                    AdvanceRepayment.organization_id == organization_id,
                )
            )
            .order_by(AdvanceRepayment.repayment_date)
        )
        return list(result.scalars().all())

    async def list_approval_steps(self, request_id: uuid.UUID, organization_id: uuid.UUID) -> List[AdvanceApprovalStep]:
        await self.get_request(request_id, organization_id)
        result = await self.db.execute(
            select(AdvanceApprovalStep)
            .where(
                and_(
                    AdvanceApprovalStep.request_id == request_id,
                    AdvanceApprovalStep.organization_id == organization_id,
                )
            )
            .order_by(AdvanceApprovalStep.occurred_at)
        )
        return list(result.scalars().all())

    async def _requests_in_year(self, organization_id: uuid.UUID, employee_id: uuid.UUID, year: int) -> List[AdvanceRequest]:
        result = await self.db.execute(
            select(AdvanceRequest).where(
                and_(
                    AdvanceRequest.organization_id == organization_id,
                    AdvanceRequest.employee_id == employee_id,
                    AdvanceRequest.request_date >= datetime(year, 1, 1),
                    AdvanceRequest.request_date < datetime(year + 1, 1, 1),
                )
            )
        )
        return list(result.scalars().all())

    async def _disbursed_requests(self, organization_id: uuid.UUID, employee_id: uuid.UUID) -> List[AdvanceRequest]:
        result = await self.db.execute(
            select(AdvanceRequest)
            .where(
                and_(
                    AdvanceRequest.organization_id == organization_id,
                    AdvanceRequest.employee_id == employee_id,
                    AdvanceRequest.status == AdvanceStatus.DISBURSED,
                )
            )
            .order_by(AdvanceRequest.request_date)
        )
        return list(result.scalars().all())

    # ===========================================
    # ELIGIBILITY & TERMS
    # ===========================================

    async def check_eligibility(
        self,
        employee_ref: EmployeeRef,
        organization_id: uuid.UUID,
        amount: Any,
    ) -> EligibilityResult:
        """Evaluate whether the employee may take an advance of `amount`."""
        amount = validate_amount(amount, "amount")
        return await self._evaluate(employee_ref, organization_id, amount, self.clock())

    async def _evaluate(
        self,
        employee_ref: EmployeeRef,
        organization_id: uuid.UUID,
        amount: Decimal,
        now: datetime,
        employee: Optional[Employee] = None,
        policy: Optional[AdvancePolicy] = None,
    ) -> EligibilityResult:
        if employee is None:
            employee = await self.find_employee(employee_ref, organization_id)
        if employee is None:
            return self.evaluator.evaluate(None, None, amount, [], [], now)

        if policy is None:
            policy = await self.policy_resolver.resolve(organization_id, now)
        requests_this_year = await self._requests_in_year(organization_id, employee.id, now.year)
        open_requests = await self._disbursed_requests(organization_id, employee.id)
        return self.evaluator.evaluate(employee, policy, amount, requests_this_year, open_requests, now)

    async def calculate_repayment(
        self,
        employee_ref: EmployeeRef,
        organization_id: uuid.UUID,
        amount: Any,
    ) -> Optional[RepaymentCalculation]:
        """
        Repayment terms for an amount under the policy in force now.

        Returns None when no policy applies.
        """
        amount = validate_amount(amount, "amount")
        now = self.clock()
        employee = await self.get_employee(employee_ref, organization_id)
        if employee.monthly_salary is None:
            raise IneligibleException("Employee salary not defined")

        policy = await self.policy_resolver.resolve(organization_id, now)
        return self.calculator.calculate(employee.monthly_salary, policy, amount, now)

    # ===========================================
    # REQUEST CREATION
    # ===========================================

    async def create_request(
        self,
        employee_ref: EmployeeRef,
        organization_id: uuid.UUID,
        data: Dict[str, Any],
        actor: Optional[Actor] = None,
    ) -> AdvanceRequest:
        """
        Submit an advance request.

        Raises:
            ValidationException: missing or non-positive amount, missing reason
            EmployeeNotFoundException: unknown employee
            IneligibleException: any eligibility check failed
        """
        amount = to_money(validate_amount(data.get("amount"), "amount"))
        reason = require_text(data.get("reason"), "reason")
        now = self.clock()

        employee = await self.get_employee(employee_ref, organization_id)
        policy = await self.policy_resolver.resolve(organization_id, now)
        eligibility = await self._evaluate(
            employee.id, organization_id, amount, now, employee=employee, policy=policy,
        )
        if not eligibility.is_eligible:
            logger.info(
                f"Advance request refused for employee {employee.id}: {eligibility.reason}"
            )
            raise IneligibleException(eligibility.reason, details=eligibility.to_details())

        terms = self.calculator.calculate(employee.monthly_salary, policy, amount, now)
        flow = policy.approval_flow
        auto_approved = policy.auto_approve
        if auto_approved:
            status = self.workflow.approved_status(flow)
        else:
            status = self.workflow.initial_status(flow, employee)

        request = AdvanceRequest(
            organization_id=organization_id,
            employee_id=employee.id,
            policy_id=policy.id,
            branch_id=employee.branch_id,
            request_date=now,
            requested_amount=amount,
            reason=reason,
            attachments=list(data.get("attachments") or []),
            approval_flow=flow,
            status=status,
            repayment_start_date=terms.repayment_start_date,
            monthly_deduction=terms.monthly_deduction,
            interest_rate=terms.interest_rate,
            total_interest=terms.total_interest,
            total_repaid=Decimal("0.00"),
            outstanding_balance=amount,
        )
        if auto_approved:
            request.approved_amount = amount
            request.approved_at = now

        self.db.add(request)
        await self.db.flush()

        submitted_to = status if not auto_approved else self.workflow.initial_status(flow, employee)
        self._record_step(request, AdvanceAction.SUBMIT, None, submitted_to, actor, now, amount=amount)
        if auto_approved:
            self._record_step(request, AdvanceAction.AUTO_APPROVE, submitted_to, status, None, now, amount=amount)

        await self.db.commit()
        await self.db.refresh(request)

        logger.info(
            f"Created advance request {request.id} for employee {employee.id}: "
            f"{amount} ({status.value}, {flow.value} flow)"
        )
        return request

    # ===========================================
    # DECISIONS
    # ===========================================

    async def decide(
        self,
        request_id: uuid.UUID,
        organization_id: uuid.UUID,
        decision: Any,
        actor: Actor,
        approved_amount: Any = None,
        rejection_reason: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> AdvanceRequest:
        """
        Apply a review decision (APPROVED, REJECTED or FORWARDED_TO_HR).

        Raises:
            ValidationException: unknown decision, missing rejection reason,
                non-positive approved amount
            AlreadyProcessedException: the request is no longer awaiting this
                decision (including losing a concurrent race)
            InsufficientPermissionsException: actor's role may not decide
                this stage
            SelfApprovalException: the actor is the requester; the request
                has been escalated instead
        """
        status_value = _enum_value(AdvanceStatus, getattr(decision, "value", decision), "decision")
        action = DECISION_ACTIONS.get(status_value)
        if action is None:
            raise ValidationException(
                f"Invalid decision '{decision}'. Allowed: APPROVED, REJECTED, FORWARDED_TO_HR",
                field="decision",
            )
        if action == AdvanceAction.REJECT:
            rejection_reason = require_text(rejection_reason, "rejection_reason")
        if approved_amount is not None:
            approved_amount = to_money(validate_amount(approved_amount, "approved_amount"))

        now = self.clock()
        request = await self.get_request(request_id, organization_id)
        transition = self.workflow.resolve(request, action, actor)
        if self.workflow.is_self_dealing(request, actor):
            await self._escalate(request, actor, action, now, comments)

        values: Dict[str, Any] = {"status": transition.next_status, "escalated_to_role": None}
        if comments:
            values["comments"] = comments
        step_amount: Optional[Decimal] = None

        if self.workflow.is_rejection(transition):
            values.update(
                rejected_at=now,
                rejected_by_id=actor.user_id,
                rejection_reason=rejection_reason,
            )
        elif self.workflow.is_final_approval(transition):
            final_amount = approved_amount
            if final_amount is None:
                final_amount = request.recommended_amount
            if final_amount is None:
                final_amount = to_money(request.requested_amount)
            values.update(
                approved_amount=final_amount,
                approved_at=now,
                approved_by_id=actor.user_id,
                outstanding_balance=final_amount,
            )
            if final_amount != to_money(request.requested_amount):
                terms = await self._recalculate(request, final_amount, now)
                values.update(
                    monthly_deduction=terms.monthly_deduction,
                    repayment_start_date=terms.repayment_start_date,
                    total_interest=terms.total_interest,
                )
            step_amount = final_amount
        elif action == AdvanceAction.APPROVE:
            # Intermediate (HR) approval proposes an amount for the final stage
            step_amount = approved_amount
            if step_amount is None:
                step_amount = to_money(request.requested_amount)
            values["recommended_amount"] = step_amount

        await self._apply_transition(
            request, action, transition, values, actor, now,
            amount=step_amount, comments=rejection_reason or comments,
        )

        logger.info(
            f"Advance {request.id} {action.value} by {actor.role.value} {actor.user_id}: "
            f"now {request.status.value}"
        )
        return request

    async def _recalculate(self, request: AdvanceRequest, amount: Decimal, now: datetime) -> RepaymentCalculation:
        """Terms for a changed amount under the policy the request was made under."""
        policy = None
        if request.policy_id is not None:
            result = await self.db.execute(
                select(AdvancePolicy).where(
                    and_(
                        AdvancePolicy.id == request.policy_id,
                        AdvancePolicy.organization_id == request.organization_id,
                    )
                )
            )
            policy = result.scalar_one_or_none()
        if policy is None:
            policy = await self.policy_resolver.resolve(request.organization_id, now)
        if policy is None:
            raise PolicyNotFoundException()

        employee = await self.get_employee(request.employee_id, request.organization_id)
        return self.calculator.calculate(employee.monthly_salary or Decimal("0"), policy, amount, now)

    async def _escalate(
        self,
        request: AdvanceRequest,
        actor: Actor,
        action: AdvanceAction,
        now: datetime,
        comments: Optional[str],
    ) -> None:
        """Route a self-approval attempt to the next role, then refuse it."""
        target = self.workflow.escalation_role(actor)
        current = request.status
        result = await self.db.execute(
            update(AdvanceRequest)
            .where(
                and_(
                    AdvanceRequest.id == request.id,
                    AdvanceRequest.organization_id == request.organization_id,
                    AdvanceRequest.status == current,
                )
            )
            .values(escalated_to_role=target.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise AlreadyProcessedException(attempted_action=action.value)

        self._record_step(
            request, AdvanceAction.ESCALATE, current, current, actor, now,
            comments=comments or f"Self-{action.value} refused; escalated to {target.value}",
        )
        await self.db.commit()
        await self.db.refresh(request)

        logger.warning(
            f"Refused self-{action.value} on advance {request.id} by user {actor.user_id}; "
            f"escalated to {target.value}"
        )
        raise SelfApprovalException(request.id, target.value)

    async def _apply_transition(
        self,
        request: AdvanceRequest,
        action: AdvanceAction,
        transition: Transition,
        values: Dict[str, Any],
        actor: Optional[Actor],
        now: datetime,
        amount: Optional[Decimal] = None,
        comments: Optional[str] = None,
    ) -> AdvanceRequest:
        """Conditional status update plus its audit step, in one transaction."""
        request_id = request.id
        expected = request.status
        result = await self.db.execute(
            update(AdvanceRequest)
            .where(
                and_(
                    AdvanceRequest.id == request.id,
                    AdvanceRequest.organization_id == request.organization_id,
                    AdvanceRequest.status == expected,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = await self.db.execute(
                select(AdvanceRequest.status).where(AdvanceRequest.id == request_id)
            )
            current_status = current.scalar_one_or_none()
            await self.db.rollback()
            logger.warning(
                f"Lost race on advance {request_id}: expected {expected.value}, "
                f"found {current_status.value if current_status else 'nothing'}"
            )
            raise AlreadyProcessedException(
                current_status=current_status.value if current_status else None,
                attempted_action=action.value,
            )

        self._record_step(
            request, action, expected, transition.next_status, actor, now,
            amount=amount, comments=comments,
        )
        await self.db.commit()
        await self.db.refresh(request)
        return request

    def _record_step(
        self,
        request: AdvanceRequest,
        action: AdvanceAction,
        from_status: Optional[AdvanceStatus],
        to_status: AdvanceStatus,
        actor: Optional[Actor],
        now: datetime,
        amount: Optional[Decimal] = None,
        comments: Optional[str] = None,
    ) -> None:
        self.db.add(AdvanceApprovalStep(
            organization_id=request.organization_id,
            request_id=request.id,
            action=action,
            from_status=from_status,
            to_status=to_status,
            actor_user_id=actor.user_id if actor else None,
            actor_role=actor.role.value if actor else None,
            amount=amount,
            comments=comments,
            occurred_at=now,
        ))

    # ===========================================
    # DISBURSEMENT & CANCELLATION
    # ===========================================

    async def disburse(
        self,
        request_id: uuid.UUID,
        organization_id: uuid.UUID,
        actor: Actor,
        method: Any,
        reference: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> AdvanceRequest:
        """
        Record that approved funds were paid out.

        Raises:
            InvalidStateException: the request is not approved
            SelfApprovalException: the actor is the requester
        """
        method = _enum_value(DisbursementMethod, method, "disbursement_method")
        now = self.clock()

        request = await self.get_request(request_id, organization_id)
        transition = self.workflow.resolve(request, AdvanceAction.DISBURSE, actor)
        if self.workflow.is_self_dealing(request, actor):
            await self._escalate(request, actor, AdvanceAction.DISBURSE, now, comments)

        values = {
            "status": transition.next_status,
            "escalated_to_role": None,
            "disbursed_at": now,
            "disbursed_by_id": actor.user_id,
            "disbursement_method": method,
            "disbursement_reference": reference,
        }
        if comments:
            values["comments"] = comments

        await self._apply_transition(
            request, AdvanceAction.DISBURSE, transition, values, actor, now,
            amount=to_money(request.principal), comments=comments,
        )
        logger.info(
            f"Disbursed advance {request.id}: {request.principal} via {method.value} "
            f"by user {actor.user_id}"
        )
        return request

    async def cancel(
        self,
        request_id: uuid.UUID,
        organization_id: uuid.UUID,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> AdvanceRequest:
        """Withdraw a request that is still awaiting a decision."""
        now = self.clock()
        request = await self.get_request(request_id, organization_id)
        transition = self.workflow.resolve(request, AdvanceAction.CANCEL)
        if not self.workflow.can_withdraw(request, actor):
            raise AuthorizationException(
                "Only the requesting employee can cancel this salary advance request",
                required_permission="salary_advance:cancel",
            )

        values = {"status": transition.next_status, "cancelled_at": now, "escalated_to_role": None}
        if reason:
            values["comments"] = reason

        await self._apply_transition(
            request, AdvanceAction.CANCEL, transition, values, actor, now, comments=reason,
        )
        logger.info(f"Cancelled advance {request.id} by user {actor.user_id}")
        return request

    # ===========================================
    # REPAYMENTS
    # ===========================================

    async def record_repayment(
        self,
        request_id: uuid.UUID,
        organization_id: uuid.UUID,
        data: Dict[str, Any],
        actor: Optional[Actor] = None,
    ) -> AdvanceRepayment:
        """
        Post a repayment against a disbursed advance.

        Raises:
            ValidationException: non-positive principal, negative interest,
                unknown payment method
            InvalidStateException: request not DISBURSED, or changed while
                the repayment was being posted
            ConflictException: a repayment for the payroll period exists
        """
        principal = validate_amount(data.get("principal_amount"), "principal_amount")
        interest = data.get("interest_amount")
        if interest is not None:
            interest = validate_amount(interest, "interest_amount", allow_zero=True)
        method = _enum_value(
            RepaymentMethod,
            data.get("payment_method") or settings.default_repayment_method,
            "payment_method",
        )
        payroll_period_id = data.get("payroll_period_id")
        now = self.clock()

        result = await self.db.execute(
            select(AdvanceRequest)
            .where(
                and_(
                    AdvanceRequest.id == request_id,
                    AdvanceRequest.organization_id == organization_id,
                )
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if request is None:
            raise AdvanceRequestNotFoundException(request_id)

        posting = self.ledger.apply(
            request,
            principal,
            interest,
            method=method,
            reference=data.get("reference"),
            payroll_period_id=payroll_period_id,
            notes=data.get("notes"),
            now=now,
        )

        if payroll_period_id:
            existing = await self.db.execute(
                select(func.count(AdvanceRepayment.id)).where(
                    and_(
                        AdvanceRepayment.request_id == request.id,
                        AdvanceRepayment.payroll_period_id == payroll_period_id,
                    )
                )
            )
            if existing.scalar():
                await self.db.rollback()
                raise ConflictException(
                    f"A repayment for payroll period {payroll_period_id} is already recorded",
                    resource_type="AdvanceRepayment",
                    code=ErrorCode.DUPLICATE_ENTRY,
                )

        update_result = await self.db.execute(
            update(AdvanceRequest)
            .where(
                and_(
                    AdvanceRequest.id == request.id,
                    AdvanceRequest.organization_id == organization_id,
                    AdvanceRequest.status == AdvanceStatus.DISBURSED,
                    AdvanceRequest.total_repaid == posting.previous_total_repaid,
                )
            )
            .values(
                total_repaid=posting.total_repaid,
                outstanding_balance=posting.outstanding_balance,
                status=posting.status,
            )
            .execution_options(synchronize_session=False)
        )
        if update_result.rowcount != 1:
            await self.db.rollback()
            logger.warning(f"Repayment on advance {request_id} conflicted with a concurrent update")
            raise InvalidStateException(
                "The advance changed while the repayment was being recorded",
                attempted_action=AdvanceAction.REPAY.value,
            )

        repayment = AdvanceRepayment(
            organization_id=organization_id,
            request_id=request.id,
            **posting.repayment_values(),
        )
        self.db.add(repayment)
        self._record_step(
            request,
            AdvanceAction.SETTLE if posting.settled else AdvanceAction.REPAY,
            AdvanceStatus.DISBURSED,
            posting.status,
            actor,
            now,
            amount=posting.principal_amount,
            comments=posting.notes,
        )
        await self.db.commit()
        await self.db.refresh(repayment)
        await self.db.refresh(request)

        logger.info(
            f"Recorded repayment of {posting.principal_amount} on advance {request.id}: "
            f"outstanding {posting.outstanding_balance} ({posting.status.value})"
        )
        return repayment

    async def process_payroll_deductions(
        self,
        organization_id: uuid.UUID,
        payroll_period_id: str,
        as_of: Optional[date] = None,
        actor: Optional[Actor] = None,
    ) -> PayrollDeductionRun:
        """
        Post this period's salary deductions for every disbursed advance
        whose repayment has started. Safe to re-run for the same period.
        """
        payroll_period_id = require_text(payroll_period_id, "payroll_period_id")
        as_of = as_of or self.clock().date()
        run = PayrollDeductionRun(payroll_period_id=payroll_period_id)

        result = await self.db.execute(
            select(
                AdvanceRequest.id,
                AdvanceRequest.monthly_deduction,
                AdvanceRequest.outstanding_balance,
            )
            .where(
                and_(
                    AdvanceRequest.organization_id == organization_id,
                    AdvanceRequest.status == AdvanceStatus.DISBURSED,
                    AdvanceRequest.repayment_start_date <= as_of,
                )
            )
            .order_by(AdvanceRequest.request_date)
        )
        due = result.all()

        posted_result = await self.db.execute(
            select(AdvanceRepayment.request_id).where(
                and_(
                    AdvanceRepayment.organization_id == organization_id,
                    AdvanceRepayment.payroll_period_id == payroll_period_id,
                )
            )
        )
        already_posted = set(posted_result.scalars().all())

        for request_id, monthly_deduction, outstanding in due:
            amount = min(to_money(monthly_deduction), to_money(outstanding))
            if request_id in already_posted or amount <= 0:
                run.skipped += 1
                continue
            try:
                repayment = await self.record_repayment(
                    request_id,
                    organization_id,
                    {
                        "principal_amount": amount,
                        "payment_method": RepaymentMethod.SALARY_DEDUCTION,
                        "payroll_period_id": payroll_period_id,
                        "notes": f"Payroll deduction {payroll_period_id}",
                    },
                    actor=actor,
                )
            except ConflictException as exc:
                logger.warning(f"Skipped payroll deduction for advance {request_id}: {exc.message}")
                run.skipped += 1
                continue
            run.processed += 1
            run.total_deducted += repayment.principal_amount
            run.repayments.append(repayment)

        logger.info(
            f"Payroll period {payroll_period_id} for org {organization_id}: "
            f"{run.processed} deductions posted ({run.total_deducted}), {run.skipped} skipped"
        )
        return run

    # ===========================================
    # QUERIES
    # ===========================================

    async def list_requests(
        self,
        organization_id: uuid.UUID,
        employee_ref: Optional[EmployeeRef] = None,
        status: Optional[Any] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        per_page: Optional[int] = None,
        branch_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        """Filtered, paginated list of requests, newest first."""
        if start_date and end_date and start_date > end_date:
            raise InvalidDateRangeException(start_date.isoformat(), end_date.isoformat())
        page = max(page, 1)
        per_page = min(per_page or settings.default_page_size, settings.max_page_size)

        conditions = [AdvanceRequest.organization_id == organization_id]
        if employee_ref is not None:
            employee = await self.get_employee(employee_ref, organization_id)
            conditions.append(AdvanceRequest.employee_id == employee.id)
        if status is not None:
            conditions.append(AdvanceRequest.status == _enum_value(AdvanceStatus, status, "status"))
        if start_date:
            conditions.append(AdvanceRequest.request_date >= datetime.combine(start_date, datetime.min.time()))
        if end_date:
            conditions.append(
                AdvanceRequest.request_date < datetime.combine(end_date + timedelta(days=1), datetime.min.time())
            )
        if branch_id:
            conditions.append(AdvanceRequest.branch_id == branch_id)

        count_result = await self.db.execute(
            select(func.count(AdvanceRequest.id)).where(and_(*conditions))
        )
        total = count_result.scalar() or 0

        result = await self.db.execute(
            select(AdvanceRequest)
            .where(and_(*conditions))
            .order_by(AdvanceRequest.request_date.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return {
            "requests": list(result.scalars().all()),
            "total": total,
            "page": page,
            "per_page": per_page,
        }

    async def list_pending_for_actor(self, organization_id: uuid.UUID, actor: Actor) -> List[AdvanceRequest]:
        """Requests awaiting a decision this actor is allowed to make."""
        conditions = [AdvanceRequest.organization_id == organization_id]

        if actor.role == UserRole.ADMIN:
            conditions.append(AdvanceRequest.status.in_(PENDING_STATUSES))
        else:
            statuses = self.workflow.actionable_statuses(actor.role)
            conditions.append(
                or_(
                    and_(
                        AdvanceRequest.status.in_(statuses),
                        AdvanceRequest.escalated_to_role.is_(None),
                    ),
                    and_(
                        AdvanceRequest.status.in_(PENDING_STATUSES),
                        AdvanceRequest.escalated_to_role == actor.role.value,
                    ),
                )
            )

        if actor.employee_id is not None:
            conditions.append(AdvanceRequest.employee_id != actor.employee_id)
            if actor.role == UserRole.BRANCH_MANAGER:
                manager = await self.find_employee(actor.employee_id, organization_id)
                if manager is not None and manager.branch_id is not None:
                    conditions.append(AdvanceRequest.branch_id == manager.branch_id)

        result = await self.db.execute(
            select(AdvanceRequest)
            .where(and_(*conditions))
            .order_by(AdvanceRequest.request_date)
        )
        return list(result.scalars().all())

    async def get_repayment_schedule(self, request_id: uuid.UUID, organization_id: uuid.UUID) -> RepaymentSchedule:
        request = await self.get_request(request_id, organization_id)
        return self.calculator.build_schedule(
            principal=request.principal,
            monthly_deduction=request.monthly_deduction,
            total_interest=request.total_interest,
            start_date=request.repayment_start_date,
            total_repaid=request.total_repaid,
        )

    async def get_employee_outstanding(self, employee_ref: EmployeeRef, organization_id: uuid.UUID) -> Dict[str, Any]:
        """Advances the employee is still repaying, with the combined balance."""
        employee = await self.get_employee(employee_ref, organization_id)
        requests = await self._disbursed_requests(organization_id, employee.id)
        total = sum((to_money(r.outstanding_balance) for r in requests), Decimal("0.00"))
        return {
            "employee_id": employee.id,
            "outstanding_balance": total,
            "requests": requests,
        }

    async def get_analytics(self, organization_id: uuid.UUID, year: Optional[int] = None) -> AdvanceSummary:
        return await self.analytics.summary(organization_id, year)
