"""
Effective permission resolution.

Priority, highest first:
1. Platform operator flag or the organization ``super_admin`` role: every active feature
2. User override row (enabled or disabled) for the feature
3. Role grant for the user's ``(organization, role)``

Nothing here is cached; every call reads the store.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.audit import create_audit_log
from app.features.permissions.catalog import (
    MANAGE_PERMISSIONS,
    group_by_category,
)
from app.features.permissions.errors import Forbidden, PermissionDenied, UnknownCapabilityError
from app.features.permissions.repository import PermissionRepository, TrustedPermissionRepository
from app.features.permissions.schemas import (
    FeatureResponse,
    PermissionSheetResponse,
    RoleMatrixResponse,
    SheetUser,
    UserOverrideDetail,
)
from app.features.users.models import ALL_ROLES, GRANTABLE_ROLES, User
from app.utils import get_logger


log = get_logger(__name__)


@dataclass
class OverrideResult:
    """Outcome of a wholesale override replace."""
    override_count: int
    overrides: List[str] = field(default_factory=list)


def bypasses_tables(principal: User) -> bool:
    """Platform operators and organization super admins hold every active feature."""
    return bool(principal.is_platform_admin) or principal.is_super_admin


class PermissionResolver:
    """Answers permission questions for a principal. Read-only."""

    def __init__(self, repository: PermissionRepository):
        self._repository = repository

    async def get_effective_permissions(self, principal: Optional[User]) -> Set[str]:
        """
        Compute the effective feature set of ``principal``.

        effective = enabled overrides | (enabled role grants - any overridden key)

        A disabled override is not added but still masks the role grant.
        """
        if principal is None or not principal.is_active:
            return set()

        active = {feature.key for feature in await self._repository.list_active_capabilities()}
        if bypasses_tables(principal):
            return active

        if not principal.organization_id:
            return set()

        overrides = await self._repository.list_user_overrides(principal.id)
        grants = await self._repository.list_role_grants(principal.organization_id, principal.role)

        overridden = {row.feature_key for row in overrides}
        user_keys = {row.feature_key for row in overrides if row.is_enabled}
        role_keys = {row.feature_key for row in grants}

        return (user_keys | (role_keys - overridden)) & active

    async def has_capability(self, principal: Optional[User], key: str) -> bool:
        """
        Point lookup that agrees with ``key in get_effective_permissions(principal)``.

        Unknown or retired keys and unknown principals fail closed.
        """
        if principal is None or not key or not principal.is_active:
            return False

        if await self._repository.get_active_capability(key) is None:
            log.debug(f"Feature {key} unknown or retired - denied for user {principal.id}")
            return False

        if bypasses_tables(principal):
            return True

        if not principal.organization_id:
            return False

        override = await self._repository.get_user_override(principal.id, key)
        if override is not None:
            log.debug(f"User {principal.id} override for {key}: enabled={override.is_enabled}")
            return override.is_enabled

        grant = await self._repository.get_role_grant(principal.organization_id, principal.role, key)
        allowed = grant is not None and grant.is_enabled
        log.debug(f"User {principal.id} role {principal.role} grant for {key}: {allowed}")
        return allowed

    async def has_any_capability(self, principal: Optional[User], keys: Iterable[str]) -> bool:
        effective = await self.get_effective_permissions(principal)
        return any(key in effective for key in keys)

    async def has_all_capabilities(self, principal: Optional[User], keys: Iterable[str]) -> bool:
        effective = await self.get_effective_permissions(principal)
        return all(key in effective for key in keys)


class PermissionAdministrator:
    """
    Administrative write path for role grants and user overrides.

    Keeps its ``TrustedPermissionRepository`` and resolver private. Every
    operation is gated by ``manage_permissions``; tenant lifecycle writes live
    in ``provisioning``.
    """

    def __init__(self, db: AsyncSession, audit_context: Optional[Mapping[str, Optional[str]]] = None):
        self._db = db
        self._repository = TrustedPermissionRepository(db)
        self._resolver = PermissionResolver(self._repository)
        self._audit_context = dict(audit_context or {})

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    async def _require_manage(self, admin: User) -> None:
        if not await self._resolver.has_capability(admin, MANAGE_PERMISSIONS):
            log.info(f"User {admin.id} denied {MANAGE_PERMISSIONS}")
            raise PermissionDenied(MANAGE_PERMISSIONS)

    async def _load_target(self, admin: User, target_user_id: str, allow_super_admin: bool = False) -> User:
        target = await self._repository.get_user(target_user_id)
        same_org = (
            target is not None
            and admin.organization_id is not None
            and target.organization_id == admin.organization_id
        )
        if target is None or not (admin.is_platform_admin or same_org):
            raise Forbidden("User not found in your organization", reason=Forbidden.TARGET_UNAVAILABLE)
        if not allow_super_admin and target.is_super_admin:
            raise Forbidden("Cannot modify super admin permissions", reason=Forbidden.SUPER_ADMIN_TARGET)
        return target

    def _resolve_organization(self, admin: User, organization_id: Optional[str]) -> str:
        if organization_id and admin.is_platform_admin:
            return organization_id
        if organization_id and organization_id != admin.organization_id:
            raise Forbidden("Organization not available", reason=Forbidden.TARGET_UNAVAILABLE)
        if not admin.organization_id:
            raise Forbidden("No organization selected", reason=Forbidden.NO_ORGANIZATION)
        return admin.organization_id

    async def _validate_keys(self, keys: Iterable[str]) -> None:
        active = {feature.key for feature in await self._repository.list_active_capabilities()}
        unknown = set(keys) - active
        if unknown:
            raise UnknownCapabilityError(unknown)

    async def _role_keys(self, user: User) -> Set[str]:
        if not user.organization_id:
            return set()
        grants = await self._repository.list_role_grants(user.organization_id, user.role)
        return {grant.feature_key for grant in grants}

    async def _audit(self, admin: User, action: str, resource_type: str, resource_id: str,
                     organization_id: Optional[str], details: Dict) -> None:
        await create_audit_log(
            self._db,
            user_id=admin.id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            organization_id=organization_id,
            details=details,
            ip_address=self._audit_context.get("ip_address"),
            user_agent=self._audit_context.get("user_agent"),
        )

    # ------------------------------------------------------------------
    # User overrides
    # ------------------------------------------------------------------

    async def get_permission_sheet(self, admin: User, target_user_id: str) -> PermissionSheetResponse:
        """Role, override and effective view of one user for the settings UI."""
        await self._require_manage(admin)
        target = await self._load_target(admin, target_user_id, allow_super_admin=True)

        features = await self._repository.list_active_capabilities()
        role_keys = await self._role_keys(target)
        overrides = await self._repository.list_user_overrides(target.id)
        effective = await self._resolver.get_effective_permissions(target)

        return PermissionSheetResponse(
            user=SheetUser.model_validate(target),
            all_features=[FeatureResponse.model_validate(f) for f in features],
            role_permissions=sorted(role_keys),
            user_permissions=sorted(row.feature_key for row in overrides if row.is_enabled),
            effective_permissions=sorted(effective),
            user_permission_details=[UserOverrideDetail.model_validate(row) for row in overrides],
        )

    async def set_user_overrides(self, admin: User, target_user_id: str, desired_keys: Iterable[str]) -> OverrideResult:
        """
        Replace a user's overrides so they hold ``desired_keys``.

        Only keys the role does not already grant are stored. Keys removed from the
        sheet simply lose their override row; this operation never writes deny rows.

        Returns:
            ``override_count`` is the number of rows new compared with the previous
            override set, so an identical repeat call returns 0.
        """
        await self._require_manage(admin)
        target = await self._load_target(admin, target_user_id)

        desired = set(desired_keys)
        await self._validate_keys(desired)

        role_keys = await self._role_keys(target)
        previous = {row.feature_key for row in await self._repository.list_user_overrides(target.id) if row.is_enabled}
        override_keys = desired - role_keys

        await self._repository.replace_user_overrides(
            target.id, target.organization_id, override_keys, granted_by_id=admin.id
        )
        written = override_keys - previous

        await self._audit(
            admin, "user.permissions_updated", "user", target.id, target.organization_id,
            {"overrides": sorted(override_keys), "added": sorted(written)},
        )
        return OverrideResult(override_count=len(written), overrides=sorted(override_keys))

    async def set_user_override(self, admin: User, target_user_id: str, key: str, enabled: bool) -> bool:
        """
        Set one override. A value equal to the role default prunes the row instead.

        Returns:
            True if a row is stored afterwards, False if it was pruned
        """
        await self._require_manage(admin)
        target = await self._load_target(admin, target_user_id)
        await self._validate_keys([key])

        role_default = key in await self._role_keys(target)
        if enabled == role_default:
            await self._repository.delete_user_override(target.id, key)
            stored = False
        else:
            await self._repository.upsert_user_override(
                target.id, target.organization_id, key, enabled, granted_by_id=admin.id
            )
            stored = True

        await self._audit(
            admin, "user.permission_updated", "user", target.id, target.organization_id,
            {"feature_key": key, "is_enabled": enabled, "stored": stored},
        )
        return stored

    async def reset_user_overrides(self, admin: User, target_user_id: str) -> int:
        """Drop every override so the user falls back to their role defaults."""
        await self._require_manage(admin)
        target = await self._load_target(admin, target_user_id, allow_super_admin=True)
        removed = await self._repository.delete_user_overrides(target.id)
        await self._audit(
            admin, "user.permissions_reset", "user", target.id, target.organization_id, {"removed": removed}
        )
        return removed

    # ------------------------------------------------------------------
    # Role grants
    # ------------------------------------------------------------------

    async def get_role_permissions(self, admin: User, organization_id: Optional[str] = None) -> RoleMatrixResponse:
        """Role permission matrix for the admin's organization (any organization for operators)."""
        await self._require_manage(admin)
        org_id = self._resolve_organization(admin, organization_id)

        features = await self._repository.list_active_capabilities()
        active_keys = [feature.key for feature in features]

        matrix: Dict[str, Dict[str, bool]] = {}
        for role in ALL_ROLES:
            if role in GRANTABLE_ROLES:
                stored = await self._repository.list_role_permission_map(org_id, role)
                matrix[role] = {key: stored.get(key, False) for key in active_keys}
            else:
                matrix[role] = {key: True for key in active_keys}

        return RoleMatrixResponse(
            organization_id=org_id,
            roles=list(ALL_ROLES),
            features={
                category: [FeatureResponse.model_validate(f) for f in items]
                for category, items in group_by_category(features).items()
            },
            role_permissions=matrix,
        )

    async def update_role_permissions(
        self,
        admin: User,
        role: str,
        permissions: Mapping[str, bool],
        organization_id: Optional[str] = None,
    ) -> int:
        """Upsert role grants. ``super_admin`` is not editable since it bypasses grants."""
        await self._require_manage(admin)
        if role not in GRANTABLE_ROLES:
            raise Forbidden(f"Permissions of role '{role}' cannot be edited", reason=Forbidden.ROLE_NOT_EDITABLE)
        org_id = self._resolve_organization(admin, organization_id)
        await self._validate_keys(permissions.keys())

        updated = await self._repository.upsert_role_grants(org_id, role, dict(permissions))
        await self._audit(
            admin, "role.permissions_updated", "role", role, org_id, {"permissions": dict(permissions)}
        )
        return updated

    async def update_role_permission(
        self,
        admin: User,
        role: str,
        key: str,
        enabled: bool,
        organization_id: Optional[str] = None,
    ) -> int:
        return await self.update_role_permissions(admin, role, {key: enabled}, organization_id)

