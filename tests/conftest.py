"""Pytest configuration and fixtures for the CRM backend tests."""

import pytest
import pytest_asyncio
from fastapi import Depends
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database.base import Base
from app.core.database.engine import get_db, import_models
from app.features.organizations.models import Organization
from app.features.permissions.catalog import sync_feature_catalog
from app.features.permissions.models import RoleGrant
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.main import app


import_models()


# ============================================================================
# Database
# ============================================================================

@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test, with the feature catalog synced."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        await sync_feature_catalog(session)
        await session.commit()
    return factory


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as db:
        yield db


# ============================================================================
# Tenants and principals
# ============================================================================

async def make_user(db: AsyncSession, email: str, organization_id=None, role="employee", **extra) -> User:
    user = User(
        appwrite_id=f"aw-{email}",
        email=email,
        name=email.split("@")[0].title(),
        organization_id=organization_id,
        role=role,
        is_active=extra.pop("is_active", True),
        is_platform_admin=extra.pop("is_platform_admin", False),
        **extra,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def grant(db: AsyncSession, organization_id: str, role: str, permissions: dict) -> None:
    for key, enabled in permissions.items():
        db.add(RoleGrant(organization_id=organization_id, role=role, feature_key=key, is_enabled=enabled))
    await db.commit()


@pytest_asyncio.fixture
async def acme(session):
    """
    Organization "Acme".

    employee: view_leads on, edit_leads off.
    manager: may manage permissions, users and read the audit trail.
    """
    org = Organization(name="Acme", slug="acme")
    session.add(org)
    await session.commit()
    await session.refresh(org)

    await grant(session, org.id, "employee", {"view_leads": True, "edit_leads": False})
    await grant(session, org.id, "manager", {
        "view_leads": True,
        "edit_leads": True,
        "manage_permissions": True,
        "manage_users": True,
        "view_users": True,
        "view_audit_logs": True,
    })
    return org


@pytest_asyncio.fixture
async def globex(session):
    org = Organization(name="Globex", slug="globex")
    session.add(org)
    await session.commit()
    await session.refresh(org)
    await grant(session, org.id, "manager", {"manage_permissions": True, "view_leads": True})
    return org


@pytest_asyncio.fixture
async def employee(session, acme):
    return await make_user(session, "emma@acme.com", acme.id, "employee")


@pytest_asyncio.fixture
async def manager(session, acme):
    return await make_user(session, "max@acme.com", acme.id, "manager")


@pytest_asyncio.fixture
async def super_admin(session, acme):
    return await make_user(session, "sam@acme.com", acme.id, "super_admin")


@pytest_asyncio.fixture
async def operator(session):
    return await make_user(session, "ops@platform.io", None, "employee", is_platform_admin=True)


@pytest_asyncio.fixture
async def outsider(session, globex):
    return await make_user(session, "olga@globex.com", globex.id, "manager")


# ============================================================================
# HTTP client
# ============================================================================

@pytest.fixture
def current_user():
    """Holder for the principal the API client acts as; set ``current_user["id"]``."""
    return {"id": None}


@pytest_asyncio.fixture
async def client(session_factory, current_user):
    async def override_get_db():
        async with session_factory() as db:
            try:
                yield db
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    async def override_get_current_user(db: AsyncSession = Depends(get_db)) -> User:
        result = await db.execute(select(User).where(User.id == current_user["id"]))
        return result.scalar_one()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()
