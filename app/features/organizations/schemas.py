"""
Pydantic schemas for organization-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field, EmailStr, model_validator

from app.features.users.schemas import RoleName


class OrganizationBase(BaseModel):
    """Base organization schema."""
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=2, max_length=100, pattern="^[a-z0-9][a-z0-9-]*$",
                      description="URL-safe unique identifier")
    phone: str | None = Field(None, max_length=30)
    email: EmailStr | None = None
    website: str | None = Field(None, max_length=255)


class OrganizationCreate(OrganizationBase):
    """Schema for creating a new organization (platform operators only)."""
    owner_user_id: str | None = Field(None, description="Existing user to install as the organization's super admin")


class OrganizationResponse(OrganizationBase):
    """Schema for organization responses."""
    id: str
    is_active: bool
    created_at: datetime
    updated_at: datetime
    member_count: int = 0
    
    model_config = {"from_attributes": True}


class AddMember(BaseModel):
    """Add an existing user to an organization, by ID or email."""
    user_id: str | None = None
    email: EmailStr | None = None
    role: RoleName = "employee"

    @model_validator(mode="after")
    def user_reference_required(self):
        if not self.user_id and not self.email:
            raise ValueError("user_id or email is required")
        return self


class MemberResponse(BaseModel):
    id: str
    name: str
    email: str
    role: str
    organization_id: str | None = None
    
    model_config = {"from_attributes": True}
