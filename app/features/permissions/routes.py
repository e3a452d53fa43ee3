"""
Permission management API routes.

Provides the feature catalog, the caller's effective permissions, the role
permission matrix and the per-user permission sheet used by the settings UI.

Denied and forbidden actions come back as HTTP 200 with ``success: false``
(see the ``AuthorizationError`` handler in ``app.main``).
"""
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.features.permissions.catalog import CATEGORY_LABELS, VIEW_AUDIT_LOGS, group_by_category
from app.features.permissions.models import AuditLog
from app.features.permissions.repository import PermissionRepository
from app.features.permissions.resolver import PermissionAdministrator, PermissionResolver
from app.features.permissions.schemas import (
    AuditLogListResponse,
    AuditLogResponse,
    FeatureCatalogResponse,
    FeatureResponse,
    MyPermissionsResponse,
    OverrideUpdateResult,
    OverridesResetResult,
    OverridesUpdateResult,
    PermissionCheckRequest,
    PermissionCheckResponse,
    PermissionSheetResponse,
    RoleMatrixResponse,
    RolePermissionBatchUpdate,
    RolePermissionUpdate,
    RoleUpdateResult,
    UserOverrideUpdate,
    UserOverridesUpdate,
)
from app.features.permissions.dependencies import (
    get_permission_administrator,
    get_resolver,
    require_capability,
)
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Catalog and Self-Service Routes
# ============================================================================

@router.get("/features", response_model=FeatureCatalogResponse)
async def list_features(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Active features grouped by category."""
    features = await PermissionRepository(db).list_active_capabilities()
    return FeatureCatalogResponse(
        categories=dict(CATEGORY_LABELS),
        features={
            category: [FeatureResponse.model_validate(f) for f in items]
            for category, items in group_by_category(features).items()
        },
    )


@router.get("/my-permissions", response_model=MyPermissionsResponse)
async def get_my_permissions(
    resolver: PermissionResolver = Depends(get_resolver),
    current_user: User = Depends(get_current_user)
):
    """Effective permissions of the caller."""
    permissions = await resolver.get_effective_permissions(current_user)
    return MyPermissionsResponse(permissions=sorted(permissions), user_id=current_user.id)


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    check_request: PermissionCheckRequest,
    resolver: PermissionResolver = Depends(get_resolver),
    current_user: User = Depends(get_current_user)
):
    """Check if the caller holds a specific feature."""
    allowed = await resolver.has_capability(current_user, check_request.feature_key)
    return PermissionCheckResponse(feature_key=check_request.feature_key, allowed=allowed)


# ============================================================================
# Role Permission Routes
# ============================================================================

@router.get("/roles", response_model=RoleMatrixResponse)
async def get_role_permissions(
    organization_id: Optional[str] = None,
    administrator: PermissionAdministrator = Depends(get_permission_administrator),
    current_user: User = Depends(get_current_user)
):
    """Role permission matrix for the caller's organization (any organization for platform operators)."""
    return await administrator.get_role_permissions(current_user, organization_id)


@router.put("/roles/{role}", response_model=RoleUpdateResult)
async def update_role_permission(
    role: str,
    update: RolePermissionUpdate,
    organization_id: Optional[str] = None,
    administrator: PermissionAdministrator = Depends(get_permission_administrator),
    current_user: User = Depends(get_current_user)
):
    """Enable or disable one feature for a role."""
    updated = await administrator.update_role_permission(
        current_user, role, update.feature_key, update.is_enabled, organization_id
    )
    state = "enabled" if update.is_enabled else "disabled"
    return RoleUpdateResult(message=f"Permission {update.feature_key} {state} for {role}", updated=updated)


@router.put("/roles/{role}/batch", response_model=RoleUpdateResult)
async def update_role_permissions(
    role: str,
    update: RolePermissionBatchUpdate,
    organization_id: Optional[str] = None,
    administrator: PermissionAdministrator = Depends(get_permission_administrator),
    current_user: User = Depends(get_current_user)
):
    """Enable or disable many features for a role."""
    updated = await administrator.update_role_permissions(
        current_user, role, update.permissions, organization_id
    )
    return RoleUpdateResult(message=f"Updated {updated} permission(s) for {role}", updated=updated)


# ============================================================================
# User Permission Routes
# ============================================================================

@router.get("/users/{user_id}", response_model=PermissionSheetResponse)
async def get_user_permissions(
    user_id: str,
    administrator: PermissionAdministrator = Depends(get_permission_administrator),
    current_user: User = Depends(get_current_user)
):
    """Role-based, user-specific and effective permissions of one user."""
    return await administrator.get_permission_sheet(current_user, user_id)


@router.put("/users/{user_id}", response_model=OverridesUpdateResult)
async def update_user_permissions(
    user_id: str,
    update: UserOverridesUpdate,
    administrator: PermissionAdministrator = Depends(get_permission_administrator),
    current_user: User = Depends(get_current_user)
):
    """Save a user's permission sheet. Only keys that differ from the role are stored."""
    result = await administrator.set_user_overrides(current_user, user_id, update.permissions)
    return OverridesUpdateResult(
        message="Permissions updated successfully",
        override_count=result.override_count,
        overrides=result.overrides,
    )


@router.post("/users/{user_id}/reset", response_model=OverridesResetResult)
async def reset_user_permissions(
    user_id: str,
    administrator: PermissionAdministrator = Depends(get_permission_administrator),
    current_user: User = Depends(get_current_user)
):
    """Remove every user-specific override so the role defaults apply again."""
    removed = await administrator.reset_user_overrides(current_user, user_id)
    return OverridesResetResult(message="User permissions reset to role defaults", removed=removed)


@router.put("/users/{user_id}/{feature_key}", response_model=OverrideUpdateResult)
async def update_user_permission(
    user_id: str,
    feature_key: str,
    update: UserOverrideUpdate,
    administrator: PermissionAdministrator = Depends(get_permission_administrator),
    current_user: User = Depends(get_current_user)
):
    """Grant or deny one feature for one user."""
    stored = await administrator.set_user_override(current_user, user_id, feature_key, update.is_enabled)
    message = "Permission updated successfully" if stored else "Permission matches role default"
    return OverrideUpdateResult(message=message, stored=stored)


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    skip: int = 0,
    limit: int = 50,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_capability(VIEW_AUDIT_LOGS))
):
    """List audit logs of the caller's organization (all organizations for platform operators)."""
    stmt = select(AuditLog)

    if not current_user.is_platform_admin:
        stmt = stmt.where(AuditLog.organization_id == current_user.organization_id)
    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)

    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_result = await db.execute(count_stmt)
    total = total_result.scalar() or 0

    stmt = stmt.order_by(AuditLog.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )
