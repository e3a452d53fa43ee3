"""
Organization feature routes (tenant control plane).
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import OrgRole, User
from app.features.users.dependencies import get_current_user, get_platform_operator
from app.features.organizations.models import Organization
from app.features.organizations.schemas import (
    AddMember,
    MemberResponse,
    OrganizationCreate,
    OrganizationResponse,
)
from app.features.organizations.dependencies import get_organization_by_id
from app.features.permissions.catalog import MANAGE_USERS
from app.features.permissions import provisioning
from app.features.permissions.dependencies import get_resolver
from app.features.permissions.errors import Forbidden, PermissionDenied
from app.features.permissions.resolver import PermissionResolver, bypasses_tables
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["organizations"])


def _to_response(org: Organization) -> OrganizationResponse:
    response = OrganizationResponse.model_validate(org)
    response.member_count = len(org.members)
    return response


@router.post("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    org_data: OrganizationCreate,
    operator: Annotated[User, Depends(get_platform_operator)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create an organization and seed its default role permissions (platform operators only)."""
    result = await db.execute(select(Organization).where(Organization.slug == org_data.slug))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Organization with this slug already exists"
        )
    
    owner = None
    if org_data.owner_user_id:
        result = await db.execute(select(User).where(User.id == org_data.owner_user_id))
        owner = result.scalar_one_or_none()
        if owner is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Owner user not found"
            )
    
    new_org = Organization(**org_data.model_dump(exclude={"owner_user_id"}))
    db.add(new_org)
    await db.commit()
    await db.refresh(new_org)
    
    await provisioning.seed_organization_defaults(db, new_org.id)
    
    if owner is not None:
        if owner.organization_id and owner.organization_id != new_org.id:
            await provisioning.clear_overrides_on_membership_change(db, owner)
        owner.organization_id = new_org.id
        owner.role = OrgRole.SUPER_ADMIN.value
        await db.commit()
    
    log.info("Operator %s created organization %s (%s)", operator.id, new_org.id, new_org.slug)
    await db.refresh(new_org)
    return _to_response(new_org)


@router.get("/", response_model=list[OrganizationResponse])
async def list_organizations(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = 0,
    limit: int = 50
):
    """All organizations for platform operators, otherwise the caller's own."""
    query = select(Organization).order_by(Organization.name)
    if not user.is_platform_admin:
        if not user.organization_id:
            return []
        query = query.where(Organization.id == user.organization_id)
    
    result = await db.execute(query.offset(skip).limit(limit))
    return [_to_response(org) for org in result.scalars().all()]


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    user: Annotated[User, Depends(get_current_user)]
):
    """Organization details for its members and platform operators."""
    if not user.is_platform_admin and user.organization_id != organization.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this organization"
        )
    return _to_response(organization)


@router.post("/{organization_id}/members", response_model=MemberResponse)
async def add_member(
    member: AddMember,
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    resolver: Annotated[PermissionResolver, Depends(get_resolver)]
):
    """
    Put an existing user into this organization with a role.
    
    Platform operators may do this anywhere; otherwise the caller must hold
    ``manage_users`` in this organization. Nobody changes their own membership,
    and only super admins or operators touch a super admin. Moving a user between
    organizations drops their user overrides.
    """
    if not user.is_platform_admin:
        if user.organization_id != organization.id:
            raise Forbidden("Organization not available", reason=Forbidden.TARGET_UNAVAILABLE)
        if not await resolver.has_capability(user, MANAGE_USERS):
            raise PermissionDenied(MANAGE_USERS)
    
    if member.role == OrgRole.SUPER_ADMIN.value and not bypasses_tables(user):
        raise Forbidden("Only super admins can grant the super admin role", reason=Forbidden.SUPER_ADMIN_TARGET)
    
    query = select(User)
    query = query.where(User.id == member.user_id) if member.user_id else query.where(User.email == member.email)
    result = await db.execute(query)
    target = result.scalar_one_or_none()
    if target is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    
    if target.id == user.id:
        raise Forbidden("Cannot modify your own membership", reason="self_modification")
    if target.is_super_admin and not bypasses_tables(user):
        raise Forbidden("Only super admins can modify super admins", reason=Forbidden.SUPER_ADMIN_TARGET)
    
    if target.organization_id and target.organization_id != organization.id:
        if not user.is_platform_admin:
            raise Forbidden("User belongs to another organization", reason=Forbidden.TARGET_UNAVAILABLE)
        await provisioning.clear_overrides_on_membership_change(db, target)
    
    target.organization_id = organization.id
    target.role = member.role
    await db.commit()
    await db.refresh(target)
    
    log.info("User %s added %s to organization %s as %s", user.id, target.id, organization.id, member.role)
    return target
