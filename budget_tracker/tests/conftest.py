"""
Pytest configuration and fixtures for budget_tracker tests
"""
import pytest
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

from budget_tracker.main import create_app
from budget_tracker.db.base import Base
from budget_tracker.db.immutability import register_immutability_listeners
from budget_tracker.core.security import create_access_token
from budget_tracker.models.department import Department
from budget_tracker.models.implementing_agency import ImplementingAgency
from budget_tracker.models.user import User, UserRole
from budget_tracker.models.fund_type import FundType
from budget_tracker.repositories.user_repository import UserRepository
from budget_tracker.repositories.implementing_agency_repository import ImplementingAgencyRepository
from budget_tracker.services.availability_cache import AvailabilityCache
from budget_tracker.services.fund_adapters import get_adapter
from budget_tracker.services.fund_service import FundService


# Test database URL - use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="session", autouse=True)
def immutability_listeners():
    register_immutability_listeners()


@pytest.fixture(scope="function")
async def test_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a test database session with in-memory SQLite.
    Each test gets a fresh database.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )

    async with async_session() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def disabled_cache() -> AvailabilityCache:
    return AvailabilityCache(redis_url="")


@pytest.fixture
async def test_client(test_db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    Create a test client with dependency override for database.
    """
    app = create_app()

    async def override_get_db():
        yield test_db

    from budget_tracker.db.session import get_db
    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
async def department(test_db: AsyncSession) -> Department:
    dept = Department(name="Provincial Engineering Office", code="PEO")
    test_db.add(dept)
    await test_db.commit()
    await test_db.refresh(dept)
    return dept


async def _create_user(db: AsyncSession, email: str, full_name: str, role: UserRole, department_id=None) -> User:
    user = await UserRepository(db).create(
        User(email=email, full_name=full_name, role=role.value, is_active=True, department_id=department_id)
    )
    await db.commit()
    return user


@pytest.fixture
async def super_admin_user(test_db: AsyncSession, department: Department) -> User:
    return await _create_user(test_db, "root@test.com", "Test Super Admin", UserRole.SUPER_ADMIN, department.id)


@pytest.fixture
async def admin_user(test_db: AsyncSession, department: Department) -> User:
    return await _create_user(test_db, "admin@test.com", "Test Admin", UserRole.ADMIN, department.id)


@pytest.fixture
async def member_user(test_db: AsyncSession) -> User:
    return await _create_user(test_db, "member@test.com", "Test Member", UserRole.USER)


@pytest.fixture
async def other_member_user(test_db: AsyncSession) -> User:
    return await _create_user(test_db, "other@test.com", "Other Member", UserRole.USER)


@pytest.fixture
async def agencies(test_db: AsyncSession) -> dict[str, ImplementingAgency]:
    """Two active offices and one deactivated office"""
    repo = ImplementingAgencyRepository(test_db)
    created = {}
    for code, name, active in (
        ("PEO", "Provincial Engineering Office", True),
        ("PHO", "Provincial Health Office", True),
        ("OLD", "Abolished Office", False),
    ):
        created[code] = await repo.create(ImplementingAgency(code=code, full_name=name, is_active=active))
    await test_db.commit()
    return created


@pytest.fixture
def admin_token(admin_user: User) -> str:
    return create_access_token(admin_user.id)


@pytest.fixture
def member_token(member_user: User) -> str:
    return create_access_token(member_user.id)


@pytest.fixture
def admin_headers(admin_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def member_headers(member_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {member_token}"}


@pytest.fixture
def project_adapter():
    return get_adapter(FundType.PROJECT)


@pytest.fixture
def trust_fund_adapter():
    return get_adapter(FundType.TRUST_FUND)


@pytest.fixture
async def project(test_db: AsyncSession, admin_user: User, agencies, project_adapter, disabled_cache):
    """A Project with 100,000 allocated in auto-calculate mode"""
    return await FundService(test_db, cache=disabled_cache).create_fund(
        project_adapter,
        {"title": "Road Concreting Program", "office": "PEO", "allocated": 100000, "year": 2024},
        admin_user,
    )


@pytest.fixture
async def trust_fund(test_db: AsyncSession, admin_user: User, agencies, trust_fund_adapter, disabled_cache):
    return await FundService(test_db, cache=disabled_cache).create_fund(
        trust_fund_adapter,
        {"title": "Disaster Relief Trust", "office": "PHO", "allocated": 50000, "utilized": 1000},
        admin_user,
    )
