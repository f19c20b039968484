"""Shared test fixtures: async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from backend.common.constants import UserRole
from backend.config import settings
from backend.database import Base, get_db
from backend.leave import business_days
from backend.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import backend.core_hr.models  # noqa: F401
import backend.leave.models  # noqa: F401

# ── SQLite compat: compile PG-specific types ────────────────────────

from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

# Scenario dates are in June/July 2024; "today" is pinned before them
FIXED_TODAY = date(2024, 6, 1)

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from backend.common.rate_limit import limiter

    limiter.reset()
    yield


@pytest.fixture(autouse=True)
def fixed_today(monkeypatch) -> date:
    """Pin the leave clock so the current leave year is 2024."""
    monkeypatch.setattr(business_days, "today", lambda: FIXED_TODAY)
    return FIXED_TODAY


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

def _make_organization(*, name: str = "Acme Corp") -> dict:
    return dict(
        id=uuid.uuid4(),
        name=name,
        domain=f"{uuid.uuid4().hex[:8]}.example.com",
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


def _make_employee(
    *,
    organization_id: uuid.UUID,
    email: str = "test.user@example.com",
    first_name: str | None = "Test",
    last_name: str | None = "User",
    role: UserRole = UserRole.employee,
    is_active: bool = True,
    manager_id: uuid.UUID | None = None,
) -> dict:
    return dict(
        id=uuid.uuid4(),
        organization_id=organization_id,
        employee_number=f"EMP-{uuid.uuid4().hex[:6].upper()}",
        first_name=first_name,
        last_name=last_name,
        email=email,
        role=role,
        manager_id=manager_id,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


def _make_leave_type(
    *,
    organization_id: uuid.UUID,
    name: str = "Annual Leave",
    max_days_per_year: int = 20,
    description: str | None = None,
) -> dict:
    return dict(
        id=uuid.uuid4(),
        organization_id=organization_id,
        name=name,
        description=description,
        max_days_per_year=max_days_per_year,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


@pytest.fixture
async def test_org(db) -> dict:
    from backend.core_hr.models import Organization

    data = _make_organization()
    db.add(Organization(**data))
    await db.flush()
    return data


@pytest.fixture
async def other_org(db) -> dict:
    from backend.core_hr.models import Organization

    data = _make_organization(name="Other Corp")
    db.add(Organization(**data))
    await db.flush()
    return data


@pytest.fixture
async def test_employee(db, test_org) -> dict:
    """Insert an active employee in test_org."""
    from backend.core_hr.models import Employee

    data = _make_employee(organization_id=test_org["id"])
    db.add(Employee(**data))
    await db.flush()
    return data


@pytest.fixture
async def test_manager(db, test_org) -> dict:
    from backend.core_hr.models import Employee

    data = _make_employee(
        organization_id=test_org["id"],
        email="manager@example.com",
        first_name="Mona",
        last_name="Manager",
        role=UserRole.manager,
    )
    db.add(Employee(**data))
    await db.flush()
    return data


@pytest.fixture
async def test_hr_admin(db, test_org) -> dict:
    from backend.core_hr.models import Employee

    data = _make_employee(
        organization_id=test_org["id"],
        email="hr@example.com",
        first_name="Harriet",
        last_name="Admin",
        role=UserRole.hr_admin,
    )
    db.add(Employee(**data))
    await db.flush()
    return data


@pytest.fixture
async def test_leave_type(db, test_org) -> dict:
    from backend.leave.models import LeaveType

    data = _make_leave_type(organization_id=test_org["id"])
    db.add(LeaveType(**data))
    await db.flush()
    return data


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(employee_id: uuid.UUID, expired: bool = False) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {"sub": str(employee_id), "exp": exp}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_header(employee_id: uuid.UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(employee_id)}"}
