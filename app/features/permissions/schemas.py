"""
Pydantic schemas for permission management.

Request and response models for the feature catalog, role grants, user
overrides, permission checks and audit logs. The settings UI consumes the
permission sheet in camelCase, so those models serialize by alias.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


# ============================================================================
# Feature Schemas
# ============================================================================

class FeatureResponse(BaseModel):
    """A capability from the feature catalog."""
    key: str
    name: str
    category: str
    description: Optional[str] = None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class FeatureCatalogResponse(BaseModel):
    """Active features grouped by category."""
    categories: Dict[str, str] = Field(..., description="Category key to display label")
    features: Dict[str, List[FeatureResponse]]


# ============================================================================
# Outcome Schemas
# ============================================================================

class ActionSuccess(BaseModel):
    """Generic success payload for write endpoints."""
    success: bool = True
    message: str

    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Check whether the caller holds a capability."""
    feature_key: str = Field(..., min_length=1, max_length=100)


class PermissionCheckResponse(BaseModel):
    feature_key: str
    allowed: bool


class MyPermissionsResponse(BaseModel):
    """Effective permissions of the caller."""
    permissions: List[str]
    user_id: str = Field(..., alias="userId")

    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Role Grant Schemas
# ============================================================================

class RolePermissionUpdate(BaseModel):
    """Enable or disable one feature for a role."""
    feature_key: str = Field(..., min_length=1, max_length=100)
    is_enabled: bool


class RolePermissionBatchUpdate(BaseModel):
    """Enable or disable many features for a role at once."""
    permissions: Dict[str, bool] = Field(..., description="feature_key -> is_enabled")

    @field_validator("permissions")
    @classmethod
    def not_empty(cls, v: Dict[str, bool]) -> Dict[str, bool]:
        if not v:
            raise ValueError("At least one feature is required")
        return v


class RoleMatrixResponse(BaseModel):
    """Role permission matrix for one organization."""
    organization_id: str
    roles: List[str]
    features: Dict[str, List[FeatureResponse]]
    role_permissions: Dict[str, Dict[str, bool]] = Field(..., alias="rolePermissions")

    model_config = ConfigDict(populate_by_name=True)


class RoleUpdateResult(ActionSuccess):
    updated: int


# ============================================================================
# User Override Schemas
# ============================================================================

class UserOverridesUpdate(BaseModel):
    """Desired feature keys for a user's permission sheet (wholesale replace)."""
    permissions: List[str] = Field(..., description="Feature keys the user should have")


class UserOverrideUpdate(BaseModel):
    """Set a single user override."""
    is_enabled: bool


class UserOverrideDetail(BaseModel):
    """One stored override row."""
    feature_key: str
    is_enabled: bool
    granted_by: Optional[str] = Field(None, validation_alias="granted_by_id")
    granted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class SheetUser(BaseModel):
    id: str
    name: str
    email: str
    role: str
    organization_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PermissionSheetResponse(BaseModel):
    """Everything the settings UI needs to edit one user's permissions."""
    user: SheetUser
    all_features: List[FeatureResponse] = Field(..., alias="allFeatures")
    role_permissions: List[str] = Field(..., alias="rolePermissions")
    user_permissions: List[str] = Field(..., alias="userPermissions")
    effective_permissions: List[str] = Field(..., alias="effectivePermissions")
    user_permission_details: List[UserOverrideDetail] = Field(..., alias="userPermissionDetails")

    model_config = ConfigDict(populate_by_name=True)


class OverridesUpdateResult(ActionSuccess):
    override_count: int = Field(..., alias="overrideCount")
    overrides: List[str] = []


class OverrideUpdateResult(ActionSuccess):
    stored: bool = Field(..., description="False when the value matched the role default and the row was pruned")


class OverridesResetResult(ActionSuccess):
    removed: int


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    user_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    organization_id: Optional[str]
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
