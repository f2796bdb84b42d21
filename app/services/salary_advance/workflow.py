"""
HRFlow - Salary Advance Workflow

Request lifecycle state machine. Both approval chains (the simple
PENDING -> APPROVED/REJECTED flow and the multi-stage operations -> HR ->
operations flow) are rows of one transition table keyed by
(flow, current status, action). Anything not in the table is refused.

The table has no backward edges, so statuses only move forward.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Set, Tuple

from app.models.employee import Employee, EmployeePosition
from app.models.salary_advance import (
    AdvanceAction,
    AdvanceRequest,
    AdvanceStatus,
    ApprovalFlow,
)
from app.models.user import User, UserRole
from app.utils.error_handling import (
    AlreadyProcessedException,
    InsufficientPermissionsException,
    InvalidStateException,
)
from app.utils.permissions import next_role_in_chain

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, as the engine needs it."""
    user_id: uuid.UUID
    role: UserRole
    organization_id: uuid.UUID
    employee_id: Optional[uuid.UUID] = None

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(
            user_id=user.id,
            role=user.role,
            organization_id=user.organization_id,
            employee_id=user.employee_id,
        )


@dataclass(frozen=True)
class Transition:
    """One edge of the lifecycle graph."""
    next_status: AdvanceStatus
    allowed_roles: FrozenSet[UserRole]
    # review | payout | ledger | withdraw
    kind: str


@dataclass(frozen=True)
class FlowConfig:
    initial_status: AdvanceStatus
    approved_status: AdvanceStatus


# ===========================================
# STATUS GROUPS
# ===========================================

PENDING_STATUSES: FrozenSet[AdvanceStatus] = frozenset({
    AdvanceStatus.PENDING,
    AdvanceStatus.PENDING_OPS_REVIEW,
    AdvanceStatus.FORWARDED_TO_HR,
    AdvanceStatus.HR_APPROVED,
})

APPROVED_STATUSES: FrozenSet[AdvanceStatus] = frozenset({
    AdvanceStatus.APPROVED,
    AdvanceStatus.OPS_FINAL_APPROVED,
})

REJECTED_STATUSES: FrozenSet[AdvanceStatus] = frozenset({
    AdvanceStatus.REJECTED,
    AdvanceStatus.HR_REJECTED,
    AdvanceStatus.OPS_FINAL_REJECTED,
})

TERMINAL_STATUSES: FrozenSet[AdvanceStatus] = REJECTED_STATUSES | {
    AdvanceStatus.REPAID,
    AdvanceStatus.CANCELLED,
}

# Counted against the yearly advance limit
COUNTED_TOWARDS_LIMIT: FrozenSet[AdvanceStatus] = APPROVED_STATUSES | {AdvanceStatus.DISBURSED}

REVIEW_ACTIONS: FrozenSet[AdvanceAction] = frozenset({
    AdvanceAction.FORWARD,
    AdvanceAction.APPROVE,
    AdvanceAction.REJECT,
})


# ===========================================
# TRANSITION TABLE
# ===========================================

SIMPLE_REVIEWERS = frozenset({UserRole.HR_MANAGER, UserRole.ADMIN, UserRole.OPERATIONS_MANAGER})
OPS_REVIEWERS = frozenset({UserRole.OPERATIONS_MANAGER, UserRole.BRANCH_MANAGER, UserRole.ADMIN})
HR_REVIEWERS = frozenset({UserRole.HR_MANAGER, UserRole.ADMIN})
OPS_FINAL_REVIEWERS = frozenset({UserRole.OPERATIONS_MANAGER, UserRole.ADMIN})
DISBURSERS = frozenset({UserRole.PAYROLL_MANAGER, UserRole.HR_MANAGER, UserRole.ADMIN})
EVERYONE = frozenset(UserRole)

FLOWS: Dict[ApprovalFlow, FlowConfig] = {
    ApprovalFlow.SIMPLE: FlowConfig(
        initial_status=AdvanceStatus.PENDING,
        approved_status=AdvanceStatus.APPROVED,
    ),
    ApprovalFlow.MULTI_STAGE: FlowConfig(
        initial_status=AdvanceStatus.PENDING_OPS_REVIEW,
        approved_status=AdvanceStatus.OPS_FINAL_APPROVED,
    ),
}

TransitionKey = Tuple[ApprovalFlow, AdvanceStatus, AdvanceAction]

TRANSITIONS: Dict[TransitionKey, Transition] = {
    # Simple flow
    (ApprovalFlow.SIMPLE, AdvanceStatus.PENDING, AdvanceAction.APPROVE):
        Transition(AdvanceStatus.APPROVED, SIMPLE_REVIEWERS, "review"),
    (ApprovalFlow.SIMPLE, AdvanceStatus.PENDING, AdvanceAction.REJECT):
        Transition(AdvanceStatus.REJECTED, SIMPLE_REVIEWERS, "review"),

    # Multi-stage flow
    (ApprovalFlow.MULTI_STAGE, AdvanceStatus.PENDING_OPS_REVIEW, AdvanceAction.FORWARD):
        Transition(AdvanceStatus.FORWARDED_TO_HR, OPS_REVIEWERS, "review"),
    (ApprovalFlow.MULTI_STAGE, AdvanceStatus.FORWARDED_TO_HR, AdvanceAction.APPROVE):
        Transition(AdvanceStatus.HR_APPROVED, HR_REVIEWERS, "review"),
    (ApprovalFlow.MULTI_STAGE, AdvanceStatus.FORWARDED_TO_HR, AdvanceAction.REJECT):
        Transition(AdvanceStatus.HR_REJECTED, HR_REVIEWERS, "review"),
    (ApprovalFlow.MULTI_STAGE, AdvanceStatus.HR_APPROVED, AdvanceAction.APPROVE):
        Transition(AdvanceStatus.OPS_FINAL_APPROVED, OPS_FINAL_REVIEWERS, "review"),
    (ApprovalFlow.MULTI_STAGE, AdvanceStatus.HR_APPROVED, AdvanceAction.REJECT):
        Transition(AdvanceStatus.OPS_FINAL_REJECTED, OPS_FINAL_REVIEWERS, "review"),
}

for _flow, _config in FLOWS.items():
    TRANSITIONS[(_flow, _config.approved_status, AdvanceAction.DISBURSE)] = Transition(
        AdvanceStatus.DISBURSED, DISBURSERS, "payout",
    )
    TRANSITIONS[(_flow, AdvanceStatus.DISBURSED, AdvanceAction.REPAY)] = Transition(
        AdvanceStatus.DISBURSED, EVERYONE, "ledger",
    )
    TRANSITIONS[(_flow, AdvanceStatus.DISBURSED, AdvanceAction.SETTLE)] = Transition(
        AdvanceStatus.REPAID, EVERYONE, "ledger",
    )
    for _status in PENDING_STATUSES:
        if any(key[0] == _flow and key[1] == _status for key in list(TRANSITIONS)):
            TRANSITIONS[(_flow, _status, AdvanceAction.CANCEL)] = Transition(
                AdvanceStatus.CANCELLED, EVERYONE, "withdraw",
            )

# Roles that may withdraw a request on an employee's behalf
WITHDRAW_ON_BEHALF = frozenset({UserRole.HR_MANAGER, UserRole.ADMIN})

# Decision values accepted from callers
DECISION_ACTIONS: Dict[AdvanceStatus, AdvanceAction] = {
    AdvanceStatus.APPROVED: AdvanceAction.APPROVE,
    AdvanceStatus.REJECTED: AdvanceAction.REJECT,
    AdvanceStatus.FORWARDED_TO_HR: AdvanceAction.FORWARD,
}


class AdvanceWorkflow:
    """Applies the transition table to a request and an actor."""

    def __init__(self, transitions: Optional[Dict[TransitionKey, Transition]] = None):
        self.transitions = transitions or TRANSITIONS

    # ===========================================
    # ROUTING
    # ===========================================

    def initial_status(self, flow: ApprovalFlow, employee: Employee) -> AdvanceStatus:
        """
        Where a new (not auto-approved) request starts.

        In the multi-stage flow, requests from managers, and from staff not
        attached to a branch, skip the operations review and go to HR.
        """
        if flow == ApprovalFlow.MULTI_STAGE:
            if employee.position in (
                EmployeePosition.OPERATIONS_MANAGER,
                EmployeePosition.BRANCH_MANAGER,
            ) or employee.branch_id is None:
                return AdvanceStatus.FORWARDED_TO_HR
        return FLOWS[flow].initial_status

    def approved_status(self, flow: ApprovalFlow) -> AdvanceStatus:
        return FLOWS[flow].approved_status

    def is_final_approval(self, transition: Transition) -> bool:
        return transition.next_status in APPROVED_STATUSES

    def is_rejection(self, transition: Transition) -> bool:
        return transition.next_status in REJECTED_STATUSES

    # ===========================================
    # TRANSITIONS
    # ===========================================

    def resolve(
        self,
        request: AdvanceRequest,
        action: AdvanceAction,
        actor: Optional[Actor] = None,
    ) -> Transition:
        """
        Look up the transition for this request and action and check that
        the actor's role may take it.

        Raises:
            AlreadyProcessedException: review action on a request that is no
                longer awaiting review
            InvalidStateException: any other action not allowed from the
                current status
            InsufficientPermissionsException: actor's role may not act here
        """
        transition = self.transitions.get((request.approval_flow, request.status, action))
        if transition is None:
            raise self._refusal(request, action)

        if actor is not None and transition.kind in ("review", "payout"):
            allowed = self.allowed_roles(request, transition)
            if actor.role not in allowed:
                logger.warning(
                    f"Role {actor.role.value} may not {action.value} advance {request.id} "
                    f"in status {request.status.value}"
                )
                raise InsufficientPermissionsException(
                    required_permission=f"salary_advance:{action.value}",
                    user_role=actor.role.value,
                )
        return transition

    def allowed_roles(self, request: AdvanceRequest, transition: Transition) -> FrozenSet[UserRole]:
        """Roles that may act on the current stage, honoring escalation."""
        if request.escalated_to_role:
            return frozenset({UserRole(request.escalated_to_role), UserRole.ADMIN})
        return transition.allowed_roles

    def is_self_dealing(self, request: AdvanceRequest, actor: Actor) -> bool:
        return actor.employee_id is not None and actor.employee_id == request.employee_id

    def escalation_role(self, actor: Actor) -> UserRole:
        return next_role_in_chain(actor.role)

    def can_withdraw(self, request: AdvanceRequest, actor: Actor) -> bool:
        return (
            (actor.employee_id is not None and actor.employee_id == request.employee_id)
            or actor.role in WITHDRAW_ON_BEHALF
        )

    def actionable_statuses(self, role: UserRole) -> Set[AdvanceStatus]:
        """Statuses awaiting a review decision the given role can make."""
        return {
            status
            for (_flow, status, action), transition in self.transitions.items()
            if action in REVIEW_ACTIONS and role in transition.allowed_roles
        }

    def _refusal(self, request: AdvanceRequest, action: AdvanceAction) -> InvalidStateException:
        current = request.status.value
        if action in REVIEW_ACTIONS:
            return AlreadyProcessedException(current_status=current, attempted_action=action.value)
        if action == AdvanceAction.DISBURSE:
            message = "Request must be approved before disbursement"
        elif action in (AdvanceAction.REPAY, AdvanceAction.SETTLE):
            if request.status == AdvanceStatus.REPAID:
                message = "Advance has already been fully repaid"
            else:
                message = "Advance must be disbursed before repayment"
        elif action == AdvanceAction.CANCEL:
            message = "Only requests awaiting a decision can be cancelled"
        else:
            message = f"Action '{action.value}' is not allowed in status '{current}'"
        return InvalidStateException(message, current_status=current, attempted_action=action.value)
