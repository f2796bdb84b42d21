"""
HRFlow - Test Configuration

Pytest fixtures and configuration.

Each test gets a fresh in-memory SQLite database (aiosqlite); the API
client shares the test's session through a dependency override.
"""

import os

os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("DATABASE_URL_ASYNC", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator, Callable, Dict, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.database import Base, get_async_session
from app.models import (
    AdvancePolicy,
    AdvanceRequest,
    AdvanceStatus,
    ApprovalFlow,
    Employee,
    EmployeePosition,
    EmploymentStatus,
    Organization,
    User,
    UserRole,
)
from app.services.salary_advance import Actor
from app.utils.security import create_access_token
from main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Create test engine
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
)

# Create test session factory
TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session
        await session.rollback()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ===========================================
# DATA FIXTURES
# ===========================================

@pytest_asyncio.fixture
async def organization(db_session: AsyncSession) -> Organization:
    """Create a test organization."""
    org = Organization(id=uuid4(), name="Acme Savings Ltd", slug="acme-savings")
    db_session.add(org)
    await db_session.commit()
    await db_session.refresh(org)
    return org


@pytest_asyncio.fixture
async def other_organization(db_session: AsyncSession) -> Organization:
    org = Organization(id=uuid4(), name="Other Tenant", slug="other-tenant")
    db_session.add(org)
    await db_session.commit()
    await db_session.refresh(org)
    return org


@pytest.fixture
def employee_factory(db_session: AsyncSession, organization: Organization) -> Callable:
    """Create employees; defaults to active staff with three years' service."""
    counter = {"n": 0}

    async def create(**overrides) -> Employee:
        counter["n"] += 1
        values = dict(
            id=uuid4(),
            organization_id=organization.id,
            employee_number=f"EMP-{counter['n']:04d}",
            first_name="Amina",
            last_name=f"Otieno{counter['n']}",
            monthly_salary=Decimal("60000.00"),
            hire_date=date.today() - timedelta(days=3 * 365),
            employment_status=EmploymentStatus.ACTIVE,
            branch_id=uuid4(),
            position=EmployeePosition.STAFF,
        )
        values.update(overrides)
        employee = Employee(**values)
        db_session.add(employee)
        await db_session.commit()
        await db_session.refresh(employee)
        return employee

    return create


@pytest.fixture
def user_factory(db_session: AsyncSession, organization: Organization) -> Callable:
    async def create(role: UserRole, employee: Optional[Employee] = None, **overrides) -> User:
        values = dict(
            id=uuid4(),
            organization_id=organization.id,
            email=f"{role.value}-{uuid4().hex[:8]}@acme.test",
            first_name="Test",
            last_name=role.value.title(),
            role=role,
            employee_id=employee.id if employee else None,
            is_active=True,
        )
        values.update(overrides)
        user = User(**values)
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return create


@pytest.fixture
def policy_factory(db_session: AsyncSession, organization: Organization) -> Callable:
    """
    Create lending policies. Defaults: 50% of salary, no cap, two advances
    a year, six months' service, 12% interest, 20% monthly deduction.
    """
    async def create(**overrides) -> AdvancePolicy:
        values = dict(
            id=uuid4(),
            organization_id=organization.id,
            name="Standard advance policy",
            effective_date=datetime.utcnow() - timedelta(days=365),
            expiry_date=None,
            is_active=True,
            min_service_months=6,
            max_advance_percentage=Decimal("50"),
            max_advance_amount=None,
            max_advances_per_year=2,
            interest_rate=Decimal("12"),
            monthly_deduction_percentage=Decimal("20"),
            auto_approve=False,
            approval_flow=ApprovalFlow.SIMPLE,
        )
        values.update(overrides)
        policy = AdvancePolicy(**values)
        db_session.add(policy)
        await db_session.commit()
        await db_session.refresh(policy)
        return policy

    return create


@pytest.fixture
def request_factory(db_session: AsyncSession, organization: Organization) -> Callable:
    """Insert advance requests directly in a given status."""
    async def create(employee: Employee, status: AdvanceStatus, amount: Decimal = Decimal("10000.00"), **overrides) -> AdvanceRequest:
        values = dict(
            id=uuid4(),
            organization_id=organization.id,
            employee_id=employee.id,
            branch_id=employee.branch_id,
            request_date=datetime.utcnow(),
            requested_amount=amount,
            reason="School fees",
            attachments=[],
            approval_flow=ApprovalFlow.SIMPLE,
            status=status,
            repayment_start_date=date.today() + timedelta(days=30),
            monthly_deduction=amount * Decimal("0.2"),
            interest_rate=Decimal("12"),
            total_interest=Decimal("0.00"),
            total_repaid=Decimal("0.00"),
            outstanding_balance=amount,
        )
        if status in (
            AdvanceStatus.APPROVED,
            AdvanceStatus.OPS_FINAL_APPROVED,
            AdvanceStatus.DISBURSED,
            AdvanceStatus.REPAID,
        ):
            values["approved_amount"] = amount
            values["approved_at"] = datetime.utcnow()
        values.update(overrides)
        request = AdvanceRequest(**values)
        db_session.add(request)
        await db_session.commit()
        await db_session.refresh(request)
        return request

    return create


# ===========================================
# PEOPLE
# ===========================================

@pytest_asyncio.fixture
async def staff_employee(employee_factory) -> Employee:
    return await employee_factory(first_name="Amina")


@pytest_asyncio.fixture
async def ops_employee(employee_factory) -> Employee:
    return await employee_factory(first_name="Brian", position=EmployeePosition.OPERATIONS_MANAGER)


@pytest_asyncio.fixture
async def hr_employee(employee_factory) -> Employee:
    return await employee_factory(first_name="Caro", position=EmployeePosition.HR_MANAGER, branch_id=None)


@pytest_asyncio.fixture
async def employee_user(user_factory, staff_employee: Employee) -> User:
    return await user_factory(UserRole.EMPLOYEE, staff_employee)


@pytest_asyncio.fixture
async def hr_user(user_factory, hr_employee: Employee) -> User:
    return await user_factory(UserRole.HR_MANAGER, hr_employee)


@pytest_asyncio.fixture
async def ops_user(user_factory, ops_employee: Employee) -> User:
    return await user_factory(UserRole.OPERATIONS_MANAGER, ops_employee)


@pytest_asyncio.fixture
async def payroll_user(user_factory) -> User:
    return await user_factory(UserRole.PAYROLL_MANAGER)


@pytest_asyncio.fixture
async def admin_user(user_factory) -> User:
    return await user_factory(UserRole.ADMIN)


# ===========================================
# AUTH HELPERS
# ===========================================

def auth_headers(user: User) -> Dict[str, str]:
    """Bearer headers for a user, as the identity service would issue them."""
    token = create_access_token({"sub": str(user.id), "org": str(user.organization_id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for() -> Callable[[User], Dict[str, str]]:
    return auth_headers


@pytest.fixture
def actor_for() -> Callable[[User], Actor]:
    return Actor.from_user
