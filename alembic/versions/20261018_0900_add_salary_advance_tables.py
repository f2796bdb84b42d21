"""Add salary advance tables

Revision ID: 20261018_0900
Revises:
Create Date: 2026-10-18 09:00:00.000000

This migration creates the salary advance schema:
- organizations: tenants
- employees: HR records read by the advance engine
- users: authenticated actors, optionally linked to an employee
- advance_policies: tenant lending policies
- advance_requests: advance requests and their running repayment position
- advance_repayments: append-only repayment ledger
- advance_approval_steps: append-only approval trail
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision = '20261018_0900'
down_revision = None
branch_labels = None
depends_on = None


APPROVAL_FLOW = sa.Enum('SIMPLE', 'MULTI_STAGE', name='approvalflow')
ADVANCE_STATUS = sa.Enum(
    'PENDING', 'APPROVED', 'REJECTED', 'PENDING_OPS_REVIEW', 'FORWARDED_TO_HR',
    'HR_APPROVED', 'HR_REJECTED', 'OPS_FINAL_APPROVED', 'OPS_FINAL_REJECTED',
    'DISBURSED', 'REPAID', 'CANCELLED',
    name='advancestatus',
)
ADVANCE_ACTION = sa.Enum(
    'SUBMIT', 'AUTO_APPROVE', 'FORWARD', 'APPROVE', 'REJECT', 'ESCALATE',
    'DISBURSE', 'REPAY', 'SETTLE', 'CANCEL',
    name='advanceaction',
)
DISBURSEMENT_METHOD = sa.Enum('BANK_TRANSFER', 'MOBILE_MONEY', 'CASH', 'CHEQUE', name='disbursementmethod')
REPAYMENT_METHOD = sa.Enum('SALARY_DEDUCTION', 'BANK_TRANSFER', 'MOBILE_MONEY', 'CASH', name='repaymentmethod')
USER_ROLE = sa.Enum(
    'ADMIN', 'HR_MANAGER', 'OPERATIONS_MANAGER', 'BRANCH_MANAGER', 'PAYROLL_MANAGER', 'EMPLOYEE',
    name='userrole',
)
EMPLOYMENT_STATUS = sa.Enum('ACTIVE', 'INACTIVE', 'SUSPENDED', 'TERMINATED', name='employmentstatus')
EMPLOYEE_POSITION = sa.Enum(
    'STAFF', 'BRANCH_MANAGER', 'OPERATIONS_MANAGER', 'HR_MANAGER',
    name='employeeposition',
)


def table_exists(table_name: str) -> bool:
    """Check if a table exists."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    return table_name in inspector.get_table_names()


def timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def tenant_column():
    return sa.Column(
        'organization_id', UUID(as_uuid=True),
        sa.ForeignKey('organizations.id', ondelete='CASCADE'),
        nullable=False, index=True,
    )


def money(name: str, nullable: bool = False, **kwargs):
    return sa.Column(name, sa.Numeric(15, 2), nullable=nullable, **kwargs)


def upgrade() -> None:
    # ===========================================
    # TENANTS & PEOPLE
    # ===========================================
    if not table_exists('organizations'):
        op.create_table('organizations',
            sa.Column('id', UUID(as_uuid=True), primary_key=True),
            sa.Column('name', sa.String(255), nullable=False),
            sa.Column('slug', sa.String(100), nullable=False, unique=True, index=True),
            sa.Column('country_code', sa.String(2), nullable=False, server_default='KE'),
            sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
            *timestamps(),
        )

    if not table_exists('employees'):
        op.create_table('employees',
            sa.Column('id', UUID(as_uuid=True), primary_key=True),
            tenant_column(),
            sa.Column('employee_number', sa.String(50), nullable=False, comment='Staff number e.g. EMP-0042'),
            sa.Column('first_name', sa.String(100), nullable=False),
            sa.Column('last_name', sa.String(100), nullable=False),
            sa.Column('email', sa.String(255), nullable=True),
            money('monthly_salary', nullable=True),
            sa.Column('hire_date', sa.Date, nullable=False),
            sa.Column('employment_status', EMPLOYMENT_STATUS, nullable=False, server_default='ACTIVE'),
            sa.Column('branch_id', UUID(as_uuid=True), nullable=True, index=True),
            sa.Column('position', EMPLOYEE_POSITION, nullable=False, server_default='STAFF'),
            *timestamps(),
            sa.UniqueConstraint('organization_id', 'employee_number', name='uq_employee_org_number'),
        )

    if not table_exists('users'):
        op.create_table('users',
            sa.Column('id', UUID(as_uuid=True), primary_key=True),
            tenant_column(),
            sa.Column('email', sa.String(255), nullable=False, unique=True, index=True),
            sa.Column('first_name', sa.String(100), nullable=False),
            sa.Column('last_name', sa.String(100), nullable=False),
            sa.Column('role', USER_ROLE, nullable=False, server_default='EMPLOYEE'),
            sa.Column('employee_id', UUID(as_uuid=True), sa.ForeignKey('employees.id', ondelete='SET NULL'), nullable=True),
            sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
            *timestamps(),
        )

    # ===========================================
    # LENDING POLICIES
    # ===========================================
    if not table_exists('advance_policies'):
        op.create_table('advance_policies',
            sa.Column('id', UUID(as_uuid=True), primary_key=True),
            tenant_column(),
            sa.Column('created_by_id', UUID(as_uuid=True), nullable=True),
            sa.Column('name', sa.String(150), nullable=False),
            sa.Column('description', sa.Text, nullable=True),
            sa.Column('effective_date', sa.DateTime(timezone=True), nullable=False),
            sa.Column('expiry_date', sa.DateTime(timezone=True), nullable=True),
            sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column('min_service_months', sa.Integer, nullable=False, server_default='0'),
            sa.Column('max_advance_percentage', sa.Numeric(7, 4), nullable=False, comment='Maximum advance as % of monthly salary'),
            money('max_advance_amount', nullable=True, comment='Absolute cap; NULL means no cap'),
            sa.Column('max_advances_per_year', sa.Integer, nullable=False, server_default='1'),
            sa.Column('interest_rate', sa.Numeric(7, 4), nullable=False, server_default='0', comment='Annual simple interest %'),
            sa.Column('monthly_deduction_percentage', sa.Numeric(7, 4), nullable=False, comment='% of principal deducted per payroll period'),
            sa.Column('auto_approve', sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column('approval_flow', APPROVAL_FLOW, nullable=False, server_default='SIMPLE'),
            *timestamps(),
        )
        op.create_index(
            'ix_advance_policies_resolution', 'advance_policies',
            ['organization_id', 'is_active', 'effective_date'],
        )

    # ===========================================
    # ADVANCE REQUESTS
    # ===========================================
    if not table_exists('advance_requests'):
        op.create_table('advance_requests',
            sa.Column('id', UUID(as_uuid=True), primary_key=True),
            tenant_column(),
            sa.Column('employee_id', UUID(as_uuid=True), sa.ForeignKey('employees.id', ondelete='RESTRICT'), nullable=False, index=True),
            sa.Column('policy_id', UUID(as_uuid=True), sa.ForeignKey('advance_policies.id', ondelete='SET NULL'), nullable=True),
            sa.Column('branch_id', UUID(as_uuid=True), nullable=True),
            sa.Column('request_date', sa.DateTime(timezone=True), nullable=False, index=True),
            money('requested_amount'),
            sa.Column('reason', sa.Text, nullable=False),
            sa.Column('attachments', sa.JSON, nullable=False),
            sa.Column('approval_flow', APPROVAL_FLOW, nullable=False, server_default='SIMPLE'),
            sa.Column('status', ADVANCE_STATUS, nullable=False, server_default='PENDING', index=True),
            sa.Column('escalated_to_role', sa.String(50), nullable=True),

            # Decision
            money('recommended_amount', nullable=True),
            money('approved_amount', nullable=True),
            sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('approved_by_id', UUID(as_uuid=True), nullable=True),
            sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('rejected_by_id', UUID(as_uuid=True), nullable=True),
            sa.Column('rejection_reason', sa.Text, nullable=True),
            sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('comments', sa.Text, nullable=True),

            # Disbursement
            sa.Column('disbursed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('disbursed_by_id', UUID(as_uuid=True), nullable=True),
            sa.Column('disbursement_method', DISBURSEMENT_METHOD, nullable=True),
            sa.Column('disbursement_reference', sa.String(100), nullable=True),

            # Repayment terms & position
            sa.Column('repayment_start_date', sa.Date, nullable=False),
            money('monthly_deduction'),
            sa.Column('interest_rate', sa.Numeric(7, 4), nullable=False, server_default='0'),
            money('total_interest', server_default='0'),
            money('total_repaid', server_default='0'),
            money('outstanding_balance'),
            *timestamps(),

            sa.CheckConstraint('requested_amount > 0', name='ck_advance_requests_requested_amount_positive'),
            sa.CheckConstraint('outstanding_balance >= 0', name='ck_advance_requests_outstanding_balance_non_negative'),
            sa.CheckConstraint('total_repaid >= 0', name='ck_advance_requests_total_repaid_non_negative'),
        )
        op.create_index(
            'ix_advance_requests_org_employee_date', 'advance_requests',
            ['organization_id', 'employee_id', 'request_date'],
        )

    # ===========================================
    # REPAYMENT LEDGER
    # ===========================================
    if not table_exists('advance_repayments'):
        op.create_table('advance_repayments',
            sa.Column('id', UUID(as_uuid=True), primary_key=True),
            tenant_column(),
            sa.Column('request_id', UUID(as_uuid=True), sa.ForeignKey('advance_requests.id', ondelete='RESTRICT'), nullable=False, index=True),
            sa.Column('repayment_date', sa.DateTime(timezone=True), nullable=False),
            money('principal_amount'),
            money('interest_amount', server_default='0'),
            money('total_amount'),
            money('balance_after'),
            sa.Column('payment_method', REPAYMENT_METHOD, nullable=False, server_default='SALARY_DEDUCTION'),
            sa.Column('reference', sa.String(100), nullable=True),
            sa.Column('payroll_period_id', sa.String(50), nullable=True, comment='Payroll period the deduction was taken in, e.g. 2026-03'),
            sa.Column('notes', sa.Text, nullable=True),
            *timestamps(),

            sa.CheckConstraint('principal_amount > 0', name='ck_advance_repayments_principal_amount_positive'),
            sa.CheckConstraint('interest_amount >= 0', name='ck_advance_repayments_interest_amount_non_negative'),
            sa.UniqueConstraint('request_id', 'payroll_period_id', name='uq_advance_repayment_request_period'),
        )

    # ===========================================
    # APPROVAL TRAIL
    # ===========================================
    if not table_exists('advance_approval_steps'):
        op.create_table('advance_approval_steps',
            sa.Column('id', UUID(as_uuid=True), primary_key=True),
            tenant_column(),
            sa.Column('request_id', UUID(as_uuid=True), sa.ForeignKey('advance_requests.id', ondelete='RESTRICT'), nullable=False, index=True),
            sa.Column('action', ADVANCE_ACTION, nullable=False),
            sa.Column('from_status', ADVANCE_STATUS, nullable=True),
            sa.Column('to_status', ADVANCE_STATUS, nullable=False),
            sa.Column('actor_user_id', UUID(as_uuid=True), nullable=True),
            sa.Column('actor_role', sa.String(50), nullable=True),
            money('amount', nullable=True),
            sa.Column('comments', sa.Text, nullable=True),
            sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
            *timestamps(),
        )


def downgrade() -> None:
    op.drop_table('advance_approval_steps')
    op.drop_table('advance_repayments')
    op.drop_index('ix_advance_requests_org_employee_date', table_name='advance_requests')
    op.drop_table('advance_requests')
    op.drop_index('ix_advance_policies_resolution', table_name='advance_policies')
    op.drop_table('advance_policies')
    op.drop_table('users')
    op.drop_table('employees')
    op.drop_table('organizations')

    bind = op.get_bind()
    for enum in (
        ADVANCE_ACTION, ADVANCE_STATUS, APPROVAL_FLOW, DISBURSEMENT_METHOD,
        REPAYMENT_METHOD, USER_ROLE, EMPLOYMENT_STATUS, EMPLOYEE_POSITION,
    ):
        enum.drop(bind, checkfirst=True)
