"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ.setdefault("ENVIRONMENT", "test")

import asyncio
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator, Iterable, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from leaveflow.auth.principal import Principal
from leaveflow.common.constants import LeaveType, UserRole
from leaveflow.config import settings
from leaveflow.database import Base, get_db
from leaveflow.main import create_app

# Import ALL model modules so every table is registered on Base.metadata
import leaveflow.auth.models  # noqa: F401
import leaveflow.common.audit  # noqa: F401
import leaveflow.leave.models  # noqa: F401
import leaveflow.ledger.models  # noqa: F401

from leaveflow.auth.models import RoleAssignment, User
from leaveflow.ledger.models import LeaveBalance


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)

# Leave dates safely beyond every notice period
NEXT_YEAR = date.today().year + 1


def future(month: int, day: int) -> date:
    return date(NEXT_YEAR, month, day)


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
    from leaveflow.common.rate_limit import limiter
    if hasattr(limiter, "_storage"):
        limiter._storage.reset()
    yield


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


# ── Independent sessions (file database, one connection each) ──────

@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Sessions that, like separate HTTP requests, share nothing but the database."""
    file_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'leaveflow.db'}",
        connect_args={"timeout": 10},
    )
    async with file_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)
    await file_engine.dispose()


async def run_in_session(factory: async_sessionmaker[AsyncSession], operation):
    """Run ``operation(session)`` in its own session, committing afterwards
    the way ``get_db`` does once the handler has returned."""
    async with factory() as session:
        try:
            result = await operation(session)
            await asyncio.sleep(0.05)
            await session.commit()
            return result
        except Exception:
            await session.rollback()
            raise


# ── Model factories ─────────────────────────────────────────────────

def _make_user(
    *,
    email: Optional[str] = None,
    full_name: str = "Test User",
    team_lead_id: Optional[uuid.UUID] = None,
) -> dict:
    return dict(
        id=uuid.uuid4(),
        email=email or f"user-{uuid.uuid4().hex[:8]}@leaveflow.dev",
        full_name=full_name,
        team_lead_id=team_lead_id,
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )


async def seed_user(
    db: AsyncSession,
    *,
    full_name: str = "Test User",
    roles: Iterable[UserRole] = (),
    team_lead_id: Optional[uuid.UUID] = None,
) -> User:
    """Insert a user plus active role assignments."""
    user = User(**_make_user(full_name=full_name, team_lead_id=team_lead_id))
    db.add(user)
    for role in roles:
        db.add(RoleAssignment(
            id=uuid.uuid4(),
            user_id=user.id,
            role=role,
            is_active=True,
            assigned_at=datetime.now(timezone.utc),
        ))
    await db.flush()
    return user


async def seed_balance(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    leave_type: LeaveType = LeaveType.ANNUAL,
    year: int = NEXT_YEAR,
    total_allocated: int = 10,
    carry_over_days: int = 0,
    used_days: int = 0,
) -> LeaveBalance:
    bal = LeaveBalance(
        id=uuid.uuid4(),
        user_id=user_id,
        leave_type=leave_type,
        year=year,
        total_allocated=total_allocated,
        carry_over_days=carry_over_days,
        used_days=used_days,
        remaining_days=total_allocated + carry_over_days - used_days,
        reserved_days=0,
    )
    db.add(bal)
    await db.flush()
    return bal


def principal_for(user: User, *roles: UserRole) -> Principal:
    """Principal as the auth dependency would build it."""
    return Principal.of(
        user.id,
        {UserRole.EMPLOYEE, *roles},
        team_lead_id=user.team_lead_id,
    )


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    user_id: uuid.UUID,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(user_id),
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(user_id: uuid.UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}
