"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from typing import Literal
from pydantic import BaseModel, EmailStr, Field


RoleName = Literal["super_admin", "manager", "employee"]


class OrganizationSummary(BaseModel):
    """Minimal organization info embedded in user responses."""
    id: str
    name: str
    slug: str

    model_config = {"from_attributes": True}


class UserUpdate(BaseModel):
    """Schema for updating the caller's own profile."""
    name: str | None = Field(None, min_length=1, max_length=255)
    avatar_url: str | None = Field(None, max_length=500)
    phone: str | None = Field(None, max_length=30)


class UserRoleUpdate(BaseModel):
    """Schema for changing a member's role."""
    role: RoleName


class UserResponse(BaseModel):
    """Schema for user responses."""
    id: str
    email: EmailStr
    name: str
    avatar_url: str | None = None
    phone: str | None = None
    role: str
    organization_id: str | None = None
    organization: OrganizationSummary | None = None
    is_active: bool
    is_platform_admin: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserPublic(BaseModel):
    """Member listing entry (limited fields)."""
    id: str
    name: str
    email: str
    role: str
    avatar_url: str | None = None
    is_active: bool

    model_config = {"from_attributes": True}
