"""
Shared fixtures: an in-memory SQLite database, the default access control and
a recording email dispatcher.
"""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import backoffice.models  # noqa: F401
from backoffice.authz import build_access_control
from backoffice.core.email import LoggingEmailDispatcher
from backoffice.schemas.common import OrganizationRole, SystemRole

from .factories import FailingDispatcher, add_member, make_org, make_user


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(db_engine):
    factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def authz():
    return build_access_control()


@pytest.fixture
def dispatcher():
    return LoggingEmailDispatcher()


@pytest.fixture
def failing_dispatcher():
    return FailingDispatcher()


@pytest.fixture
async def admin(session):
    return await make_user(session, "admin@example.com", SystemRole.ADMIN)


@pytest.fixture
async def org_with_owner(session):
    """An organization 'Acme' with a single owner. Returns (org, owner)."""
    owner = await make_user(session, "owner@example.com")
    org = await make_org(session, "Acme")
    await add_member(session, org, owner, OrganizationRole.OWNER)
    return org, owner
