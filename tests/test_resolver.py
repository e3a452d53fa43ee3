"""
Tests for effective permission resolution and the administrative write path.
"""

import pytest
from sqlalchemy import select

from app.features.permissions import provisioning
from app.features.permissions.catalog import FEATURE_KEYS
from app.features.permissions.errors import Forbidden, PermissionDenied, UnknownCapabilityError
from app.features.permissions.models import AuditLog, Feature, UserOverride
from app.features.permissions.repository import PermissionRepository
from app.features.permissions.resolver import PermissionAdministrator, PermissionResolver, bypasses_tables

from tests.conftest import make_user


def resolver_for(db) -> PermissionResolver:
    return PermissionResolver(PermissionRepository(db))


async def override_rows(db, user_id):
    result = await db.execute(select(UserOverride).where(UserOverride.user_id == user_id))
    return {row.feature_key: row.is_enabled for row in result.scalars().all()}


# ============================================================================
# Resolution
# ============================================================================

async def test_role_grants_without_overrides(session, employee):
    effective = await resolver_for(session).get_effective_permissions(employee)
    assert effective == {"view_leads"}


async def test_platform_operator_holds_every_active_feature(session, operator):
    effective = await resolver_for(session).get_effective_permissions(operator)
    assert effective == set(FEATURE_KEYS)


async def test_platform_operator_ignores_overrides_and_role_grants(session, acme):
    # acme employees have edit_leads disabled
    operator = await make_user(session, "opal@acme.com", acme.id, "employee", is_platform_admin=True)
    session.add(UserOverride(user_id=operator.id, organization_id=acme.id,
                             feature_key="view_leads", is_enabled=False))
    session.add(UserOverride(user_id=operator.id, organization_id=acme.id,
                             feature_key="delete_leads", is_enabled=False))
    await session.commit()

    resolver = resolver_for(session)
    assert await resolver.get_effective_permissions(operator) == set(FEATURE_KEYS)
    assert await resolver.has_capability(operator, "view_leads")
    assert await resolver.has_capability(operator, "edit_leads")


async def test_super_admin_bypasses_role_grants(session, super_admin):
    resolver = resolver_for(session)
    assert bypasses_tables(super_admin)
    assert await resolver.get_effective_permissions(super_admin) == set(FEATURE_KEYS)
    assert await resolver.has_capability(super_admin, "delete_leads")


async def test_inactive_principal_holds_nothing(session, acme):
    user = await make_user(session, "gone@acme.com", acme.id, "manager", is_active=False)
    resolver = resolver_for(session)
    assert await resolver.get_effective_permissions(user) == set()
    assert not await resolver.has_capability(user, "view_leads")


async def test_principal_without_organization_holds_nothing(session):
    user = await make_user(session, "new@nowhere.com")
    resolver = resolver_for(session)
    assert await resolver.get_effective_permissions(user) == set()
    assert not await resolver.has_capability(user, "view_leads")


async def test_missing_principal_fails_closed(session):
    resolver = resolver_for(session)
    assert await resolver.get_effective_permissions(None) == set()
    assert not await resolver.has_capability(None, "view_leads")


async def test_has_capability_agrees_with_effective_set(session, employee, manager, super_admin, operator):
    session.add(UserOverride(user_id=employee.id, organization_id=employee.organization_id,
                             feature_key="view_leads", is_enabled=False))
    session.add(UserOverride(user_id=employee.id, organization_id=employee.organization_id,
                             feature_key="export_reports", is_enabled=True))
    await session.commit()

    resolver = resolver_for(session)
    for principal in (employee, manager, super_admin, operator):
        effective = await resolver.get_effective_permissions(principal)
        for key in sorted(FEATURE_KEYS) + ["no_such_feature", ""]:
            assert await resolver.has_capability(principal, key) == (key in effective), (principal.email, key)


async def test_disabled_override_masks_role_grant(session, employee):
    session.add(UserOverride(user_id=employee.id, organization_id=employee.organization_id,
                             feature_key="view_leads", is_enabled=False))
    await session.commit()

    resolver = resolver_for(session)
    assert await resolver.get_effective_permissions(employee) == set()
    assert not await resolver.has_capability(employee, "view_leads")


async def test_enabled_override_adds_to_role(session, employee):
    session.add(UserOverride(user_id=employee.id, organization_id=employee.organization_id,
                             feature_key="edit_leads", is_enabled=True))
    await session.commit()

    effective = await resolver_for(session).get_effective_permissions(employee)
    assert effective == {"view_leads", "edit_leads"}


async def test_retired_feature_is_never_held(session, employee, super_admin):
    result = await session.execute(select(Feature).where(Feature.key == "view_leads"))
    feature = result.scalar_one()
    feature.is_active = False
    await session.commit()

    resolver = resolver_for(session)
    assert not await resolver.has_capability(employee, "view_leads")
    assert not await resolver.has_capability(super_admin, "view_leads")
    assert "view_leads" not in await resolver.get_effective_permissions(employee)
    assert "view_leads" not in await resolver.get_effective_permissions(super_admin)


async def test_any_and_all_capabilities(session, employee):
    resolver = resolver_for(session)
    assert await resolver.has_any_capability(employee, ["edit_leads", "view_leads"])
    assert not await resolver.has_any_capability(employee, ["edit_leads", "delete_leads"])
    assert await resolver.has_all_capabilities(employee, ["view_leads"])
    assert not await resolver.has_all_capabilities(employee, ["view_leads", "edit_leads"])


# ============================================================================
# Wholesale override replace
# ============================================================================

async def test_set_user_overrides_stores_only_the_difference(session, manager, employee):
    administrator = PermissionAdministrator(session)

    result = await administrator.set_user_overrides(manager, employee.id, {"view_leads", "edit_leads"})

    assert result.override_count == 1
    assert result.overrides == ["edit_leads"]
    assert await override_rows(session, employee.id) == {"edit_leads": True}
    assert await resolver_for(session).get_effective_permissions(employee) == {"view_leads", "edit_leads"}


async def test_set_user_overrides_repeat_call_writes_nothing_new(session, manager, employee):
    administrator = PermissionAdministrator(session)
    await administrator.set_user_overrides(manager, employee.id, {"view_leads", "edit_leads"})

    again = await administrator.set_user_overrides(manager, employee.id, {"view_leads", "edit_leads"})

    assert again.override_count == 0
    assert again.overrides == ["edit_leads"]
    assert await override_rows(session, employee.id) == {"edit_leads": True}


async def test_set_user_overrides_replaces_previous_rows(session, manager, employee):
    administrator = PermissionAdministrator(session)
    session.add(UserOverride(user_id=employee.id, organization_id=employee.organization_id,
                             feature_key="view_leads", is_enabled=False))
    await session.commit()

    result = await administrator.set_user_overrides(manager, employee.id, {"export_reports"})

    assert result.override_count == 1
    assert await override_rows(session, employee.id) == {"export_reports": True}
    assert await resolver_for(session).get_effective_permissions(employee) == {"view_leads", "export_reports"}


async def test_set_user_overrides_records_grantor_and_audit(session, manager, employee):
    administrator = PermissionAdministrator(session, audit_context={"ip_address": "10.0.0.1"})
    await administrator.set_user_overrides(manager, employee.id, {"edit_leads"})

    result = await session.execute(select(UserOverride).where(UserOverride.user_id == employee.id))
    row = result.scalar_one()
    assert row.granted_by_id == manager.id
    assert row.granted_at is not None

    result = await session.execute(select(AuditLog).where(AuditLog.action == "user.permissions_updated"))
    entry = result.scalar_one()
    assert entry.user_id == manager.id
    assert entry.resource_id == employee.id
    assert entry.organization_id == employee.organization_id
    assert entry.ip_address == "10.0.0.1"


async def test_super_admin_target_is_forbidden_and_untouched(session, manager, super_admin):
    administrator = PermissionAdministrator(session)

    with pytest.raises(Forbidden) as excinfo:
        await administrator.set_user_overrides(manager, super_admin.id, {"edit_leads"})

    assert excinfo.value.reason == Forbidden.SUPER_ADMIN_TARGET
    assert await override_rows(session, super_admin.id) == {}


async def test_cross_organization_target_is_forbidden(session, outsider, employee):
    administrator = PermissionAdministrator(session)

    with pytest.raises(Forbidden) as excinfo:
        await administrator.set_user_overrides(outsider, employee.id, {"edit_leads"})

    assert excinfo.value.reason == Forbidden.TARGET_UNAVAILABLE
    assert await override_rows(session, employee.id) == {}


async def test_unknown_target_looks_like_cross_organization(session, manager):
    administrator = PermissionAdministrator(session)

    with pytest.raises(Forbidden) as excinfo:
        await administrator.set_user_overrides(manager, "01HZZZZZZZZZZZZZZZZZZZZZZZ", {"edit_leads"})

    assert excinfo.value.reason == Forbidden.TARGET_UNAVAILABLE


async def test_admin_without_manage_permissions_is_denied(session, acme, employee):
    colleague = await make_user(session, "carl@acme.com", acme.id, "employee")
    administrator = PermissionAdministrator(session)

    with pytest.raises(PermissionDenied) as excinfo:
        await administrator.set_user_overrides(colleague, employee.id, {"edit_leads"})

    assert excinfo.value.feature_key == "manage_permissions"
    assert await override_rows(session, employee.id) == {}


async def test_unknown_keys_are_rejected_before_writing(session, manager, employee):
    administrator = PermissionAdministrator(session)

    with pytest.raises(UnknownCapabilityError) as excinfo:
        await administrator.set_user_overrides(manager, employee.id, {"edit_leads", "fly_helicopter"})

    assert excinfo.value.keys == ["fly_helicopter"]
    assert await override_rows(session, employee.id) == {}


async def test_operator_may_manage_any_organization(session, operator, outsider):
    administrator = PermissionAdministrator(session)

    result = await administrator.set_user_overrides(operator, outsider.id, {"view_leads", "export_reports"})

    assert result.overrides == ["export_reports"]


# ============================================================================
# Single overrides and reset
# ============================================================================

async def test_single_override_can_deny_a_role_grant(session, manager, employee):
    administrator = PermissionAdministrator(session)

    stored = await administrator.set_user_override(manager, employee.id, "view_leads", False)

    assert stored is True
    assert await override_rows(session, employee.id) == {"view_leads": False}
    assert await resolver_for(session).get_effective_permissions(employee) == set()


async def test_single_override_matching_role_default_is_pruned(session, manager, employee):
    administrator = PermissionAdministrator(session)
    await administrator.set_user_override(manager, employee.id, "view_leads", False)

    stored = await administrator.set_user_override(manager, employee.id, "view_leads", True)

    assert stored is False
    assert await override_rows(session, employee.id) == {}
    assert await resolver_for(session).get_effective_permissions(employee) == {"view_leads"}


async def test_reset_removes_every_override(session, manager, employee):
    administrator = PermissionAdministrator(session)
    await administrator.set_user_override(manager, employee.id, "view_leads", False)
    await administrator.set_user_override(manager, employee.id, "export_reports", True)

    removed = await administrator.reset_user_overrides(manager, employee.id)

    assert removed == 2
    assert await override_rows(session, employee.id) == {}


async def test_permission_sheet(session, manager, employee):
    administrator = PermissionAdministrator(session)
    await administrator.set_user_override(manager, employee.id, "export_reports", True)

    sheet = await administrator.get_permission_sheet(manager, employee.id)

    assert sheet.user.id == employee.id
    assert sheet.role_permissions == ["view_leads"]
    assert sheet.user_permissions == ["export_reports"]
    assert sheet.effective_permissions == ["export_reports", "view_leads"]
    assert len(sheet.all_features) == len(FEATURE_KEYS)
    assert sheet.user_permission_details[0].granted_by == manager.id


# ============================================================================
# Role grants
# ============================================================================

async def test_update_role_permissions_applies_to_members(session, manager, employee):
    administrator = PermissionAdministrator(session)

    updated = await administrator.update_role_permissions(manager, "employee", {"edit_leads": True, "view_leads": False})

    assert updated == 2
    assert await resolver_for(session).get_effective_permissions(employee) == {"edit_leads"}


async def test_super_admin_role_is_not_editable(session, manager):
    administrator = PermissionAdministrator(session)

    with pytest.raises(Forbidden) as excinfo:
        await administrator.update_role_permissions(manager, "super_admin", {"edit_leads": False})

    assert excinfo.value.reason == Forbidden.ROLE_NOT_EDITABLE


async def test_role_matrix_of_other_organization_is_forbidden(session, manager, globex):
    administrator = PermissionAdministrator(session)

    with pytest.raises(Forbidden):
        await administrator.get_role_permissions(manager, globex.id)


async def test_role_matrix(session, manager, acme):
    administrator = PermissionAdministrator(session)

    matrix = await administrator.get_role_permissions(manager)

    assert matrix.organization_id == acme.id
    assert matrix.roles == ["super_admin", "manager", "employee"]
    assert matrix.role_permissions["employee"]["view_leads"] is True
    assert matrix.role_permissions["employee"]["edit_leads"] is False
    assert matrix.role_permissions["employee"]["delete_leads"] is False
    assert all(matrix.role_permissions["super_admin"].values())


async def test_seed_organization_defaults_keeps_existing_rows(session, acme, employee):
    inserted = await provisioning.seed_organization_defaults(session, acme.id)
    again = await provisioning.seed_organization_defaults(session, acme.id)

    assert inserted > 0
    assert again == 0
    effective = await resolver_for(session).get_effective_permissions(employee)
    assert "view_leads" in effective
    assert "edit_leads" not in effective
    assert "view_own_leads" in effective


async def test_membership_change_clears_overrides(session, manager, employee):
    administrator = PermissionAdministrator(session)
    await administrator.set_user_override(manager, employee.id, "export_reports", True)

    removed = await provisioning.clear_overrides_on_membership_change(session, employee)

    assert removed == 1
    assert await override_rows(session, employee.id) == {}


async def test_administrator_exposes_no_trusted_handles(session):
    administrator = PermissionAdministrator(session)

    assert not hasattr(administrator, "resolver")
    assert not hasattr(administrator, "seed_organization_defaults")
    assert not hasattr(administrator, "clear_overrides_on_membership_change")
