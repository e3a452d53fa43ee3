"""
Tests for the permission seeding script helpers.
"""

from scripts.seed_permissions import backfill_role_grants, promote_operator

from tests.conftest import make_user


async def test_backfill_fills_missing_grants_once(session, acme, globex):
    first = await backfill_role_grants(session)
    second = await backfill_role_grants(session)

    assert first > 0
    assert second == 0


async def test_promote_operator(session):
    user = await make_user(session, "root@platform.io")

    assert await promote_operator(session, "root@platform.io") is True
    await session.refresh(user)
    assert user.is_platform_admin is True


async def test_promote_unknown_user(session):
    assert await promote_operator(session, "ghost@platform.io") is False
