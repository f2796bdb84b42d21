"""
HRFlow - Salary Advances Router

API endpoints for the salary advance lifecycle: eligibility and terms,
requests, review decisions, disbursement, repayments, payroll deduction
runs, lending policies and analytics.

Employees without the view_all permission only see their own requests.
"""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import get_current_actor, require_permission
from app.models.salary_advance import AdvanceRequest, AdvanceStatus
from app.schemas.salary_advance import (
    AdvanceDecisionRequest,
    AdvancePolicyCreate,
    AdvancePolicyResponse,
    AdvanceRequestCreate,
    AdvanceRequestDetailResponse,
    AdvanceRequestListResponse,
    AdvanceRequestResponse,
    AdvanceSummaryResponse,
    ApprovalStepResponse,
    CancelRequest,
    DisbursementRequest,
    EligibilityCheckRequest,
    EligibilityResponse,
    EmployeeOutstandingResponse,
    PayrollDeductionRunRequest,
    PayrollDeductionRunResponse,
    RepaymentCalculationRequest,
    RepaymentCalculationResponse,
    RepaymentCreate,
    RepaymentResponse,
    RepaymentScheduleResponse,
)
from app.services.salary_advance import AdvancePolicyService, SalaryAdvanceService
from app.services.salary_advance.workflow import Actor
from app.utils.error_handling import (
    AdvanceRequestNotFoundException,
    InsufficientPermissionsException,
    MissingFieldException,
    PolicyNotFoundException,
)
from app.utils.permissions import AdvancePermission, has_permission


router = APIRouter()


async def _own_employee_ref(
    service: SalaryAdvanceService,
    actor: Actor,
    employee_id: Optional[str],
) -> str:
    """
    Employee an actor may act for: anyone with view_all, otherwise only
    themselves, addressed by id or employee number.
    """
    if employee_id is None:
        if actor.employee_id is None:
            raise MissingFieldException("employee_id")
        return str(actor.employee_id)
    if has_permission(actor.role, AdvancePermission.VIEW_ALL) or employee_id == str(actor.employee_id):
        return employee_id
    if actor.employee_id is not None:
        employee = await service.find_employee(employee_id, actor.organization_id)
        if employee is not None and employee.id == actor.employee_id:
            return str(employee.id)
    raise InsufficientPermissionsException(
        required_permission=AdvancePermission.VIEW_ALL.value,
        user_role=actor.role.value,
    )


async def _visible_request(
    service: SalaryAdvanceService,
    request_id: uuid.UUID,
    actor: Actor,
) -> AdvanceRequest:
    request = await service.get_request(request_id, actor.organization_id)
    if request.employee_id != actor.employee_id and not has_permission(actor.role, AdvancePermission.VIEW_ALL):
        raise AdvanceRequestNotFoundException(request_id)
    return request


# ===========================================
# ELIGIBILITY & TERMS
# ===========================================

@router.post(
    "/eligibility",
    response_model=EligibilityResponse,
    summary="Check eligibility",
    description="Run the ordered eligibility checks for an advance amount.",
)
async def check_eligibility(
    data: EligibilityCheckRequest,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(require_permission([AdvancePermission.REQUEST])),
):
    service = SalaryAdvanceService(db)
    employee_ref = await _own_employee_ref(service, actor, data.employee_id)
    return await service.check_eligibility(employee_ref, actor.organization_id, data.amount)


@router.post(
    "/calculate",
    response_model=Optional[RepaymentCalculationResponse],
    summary="Calculate repayment terms",
    description="Repayment terms under the policy in force now; null when no policy applies.",
)
async def calculate_repayment(
    data: RepaymentCalculationRequest,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(require_permission([AdvancePermission.REQUEST])),
):
    service = SalaryAdvanceService(db)
    employee_ref = await _own_employee_ref(service, actor, data.employee_id)
    return await service.calculate_repayment(employee_ref, actor.organization_id, data.amount)


# ===========================================
# REQUESTS
# ===========================================

@router.post(
    "",
    response_model=AdvanceRequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a salary advance request",
)
async def create_request(
    data: AdvanceRequestCreate,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(require_permission([AdvancePermission.REQUEST])),
):
    service = SalaryAdvanceService(db)
    employee_ref = await _own_employee_ref(service, actor, data.employee_id)
    return await service.create_request(
        employee_ref,
        actor.organization_id,
        data.model_dump(exclude={"employee_id"}),
        actor=actor,
    )


@router.get(
    "",
    response_model=AdvanceRequestListResponse,
    summary="List salary advance requests",
)
async def list_requests(
    employee_id: Optional[str] = Query(None, description="Employee UUID or employee number"),
    status_filter: Optional[AdvanceStatus] = Query(None, alias="status"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    branch_id: Optional[uuid.UUID] = Query(None),
    page: int = Query(1, ge=1),
    per_page: Optional[int] = Query(None, ge=1),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(get_current_actor),
):
    service = SalaryAdvanceService(db)
    if not has_permission(actor.role, AdvancePermission.VIEW_ALL):
        employee_id = await _own_employee_ref(service, actor, employee_id)
    return await service.list_requests(
        actor.organization_id,
        employee_ref=employee_id,
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
        page=page,
        per_page=per_page,
        branch_id=branch_id,
    )


@router.get(
    "/pending",
    response_model=List[AdvanceRequestResponse],
    summary="Requests awaiting my decision",
)
async def list_pending(
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(require_permission([AdvancePermission.REVIEW])),
):
    service = SalaryAdvanceService(db)
    return await service.list_pending_for_actor(actor.organization_id, actor)


@router.get(
    "/analytics",
    response_model=AdvanceSummaryResponse,
    summary="Yearly salary advance summary",
)
async def get_analytics(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(require_permission([AdvancePermission.VIEW_ANALYTICS])),
):
    service = SalaryAdvanceService(db)
    return await service.get_analytics(actor.organization_id, year)


@router.get(
    "/employees/{employee_id}/outstanding",
    response_model=EmployeeOutstandingResponse,
    summary="Employee's outstanding advances",
)
async def get_employee_outstanding(
    employee_id: str = Path(..., description="Employee UUID or employee number"),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(get_current_actor),
):
    service = SalaryAdvanceService(db)
    employee_ref = await _own_employee_ref(service, actor, employee_id)
    return await service.get_employee_outstanding(employee_ref, actor.organization_id)


@router.post(
    "/payroll-deductions",
    response_model=PayrollDeductionRunResponse,
    summary="Post a payroll period's advance deductions",
    description="Deducts each disbursed advance's monthly amount; re-running a period is a no-op.",
)
async def run_payroll_deductions(
    data: PayrollDeductionRunRequest,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(require_permission([AdvancePermission.RECORD_REPAYMENT])),
):
    service = SalaryAdvanceService(db)
    run = await service.process_payroll_deductions(
        actor.organization_id,
        data.payroll_period_id,
        as_of=data.as_of,
        actor=actor,
    )
    return PayrollDeductionRunResponse.model_validate(run)


# ===========================================
# POLICIES
# ===========================================

@router.get(
    "/policies",
    response_model=List[AdvancePolicyResponse],
    summary="List lending policies",
)
async def list_policies(
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(require_permission([AdvancePermission.MANAGE_POLICY])),
):
    service = AdvancePolicyService(db)
    return await service.list_policies(actor.organization_id, active_only=active_only)


@router.get(
    "/policies/current",
    response_model=AdvancePolicyResponse,
    summary="Policy in force now",
)
async def get_current_policy(
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(get_current_actor),
):
    service = SalaryAdvanceService(db)
    policy = await service.policy_resolver.resolve(actor.organization_id)
    if policy is None:
        raise PolicyNotFoundException()
    return policy


@router.post(
    "/policies",
    response_model=AdvancePolicyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a lending policy",
)
async def create_policy(
    data: AdvancePolicyCreate,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(require_permission([AdvancePermission.MANAGE_POLICY])),
):
    service = AdvancePolicyService(db)
    return await service.create_policy(actor.organization_id, data.model_dump(), created_by_id=actor.user_id)


@router.post(
    "/policies/{policy_id}/activate",
    response_model=AdvancePolicyResponse,
    summary="Activate a lending policy",
)
async def activate_policy(
    policy_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(require_permission([AdvancePermission.MANAGE_POLICY])),
):
    service = AdvancePolicyService(db)
    return await service.activate_policy(policy_id, actor.organization_id)


@router.post(
    "/policies/{policy_id}/deactivate",
    response_model=AdvancePolicyResponse,
    summary="Deactivate a lending policy",
)
async def deactivate_policy(
    policy_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(require_permission([AdvancePermission.MANAGE_POLICY])),
):
    service = AdvancePolicyService(db)
    return await service.deactivate_policy(policy_id, actor.organization_id)


# ===========================================
# SINGLE REQUEST
# ===========================================

@router.get(
    "/{request_id}",
    response_model=AdvanceRequestDetailResponse,
    summary="Get a salary advance request",
)
async def get_request(
    request_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(get_current_actor),
):
    service = SalaryAdvanceService(db)
    request = await _visible_request(service, request_id, actor)
    steps = await service.list_approval_steps(request_id, actor.organization_id)
    repayments = await service.list_repayments(request_id, actor.organization_id)

    detail = AdvanceRequestResponse.model_validate(request).model_dump()
    detail["approval_steps"] = [ApprovalStepResponse.model_validate(s) for s in steps]
    detail["repayments"] = [RepaymentResponse.model_validate(r) for r in repayments]
    return AdvanceRequestDetailResponse(**detail)


@router.post(
    "/{request_id}/decision",
    response_model=AdvanceRequestResponse,
    summary="Approve, reject or forward a request",
    description=(
        "Applies a review decision to a pending request. A decision on a request "
        "that is no longer pending fails with 409; deciding your own request "
        "escalates it and fails with 403."
    ),
)
async def decide(
    data: AdvanceDecisionRequest,
    request_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(require_permission([AdvancePermission.REVIEW])),
):
    service = SalaryAdvanceService(db)
    return await service.decide(
        request_id,
        actor.organization_id,
        data.decision,
        actor,
        approved_amount=data.approved_amount,
        rejection_reason=data.rejection_reason,
        comments=data.comments,
    )


@router.post(
    "/{request_id}/disburse",
    response_model=AdvanceRequestResponse,
    summary="Record disbursement of an approved advance",
)
async def disburse(
    data: DisbursementRequest,
    request_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(require_permission([AdvancePermission.DISBURSE])),
):
    service = SalaryAdvanceService(db)
    return await service.disburse(
        request_id,
        actor.organization_id,
        actor,
        data.method,
        reference=data.reference,
        comments=data.comments,
    )


@router.post(
    "/{request_id}/cancel",
    response_model=AdvanceRequestResponse,
    summary="Cancel a pending request",
)
async def cancel(
    data: CancelRequest,
    request_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(get_current_actor),
):
    service = SalaryAdvanceService(db)
    return await service.cancel(request_id, actor.organization_id, actor, reason=data.reason)


@router.get(
    "/{request_id}/repayments",
    response_model=List[RepaymentResponse],
    summary="List repayments",
)
async def list_repayments(
    request_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(get_current_actor),
):
    service = SalaryAdvanceService(db)
    await _visible_request(service, request_id, actor)
    return await service.list_repayments(request_id, actor.organization_id)


@router.post(
    "/{request_id}/repayments",
    response_model=RepaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a repayment",
)
async def record_repayment(
    data: RepaymentCreate,
    request_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(require_permission([AdvancePermission.RECORD_REPAYMENT])),
):
    service = SalaryAdvanceService(db)
    return await service.record_repayment(
        request_id,
        actor.organization_id,
        data.model_dump(exclude_none=True),
        actor=actor,
    )


@router.get(
    "/{request_id}/repayment-schedule",
    response_model=RepaymentScheduleResponse,
    summary="Projected repayment schedule",
)
async def get_repayment_schedule(
    request_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(get_current_actor),
):
    service = SalaryAdvanceService(db)
    await _visible_request(service, request_id, actor)
    return await service.get_repayment_schedule(request_id, actor.organization_id)
