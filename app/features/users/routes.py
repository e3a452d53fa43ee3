"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.catalog import MANAGE_USERS, VIEW_USERS
from app.features.permissions.dependencies import require_any_capability, require_capability
from app.features.permissions.errors import Forbidden
from app.features.permissions.resolver import bypasses_tables
from app.features.permissions.schemas import ActionSuccess
from app.features.users.models import OrgRole, User
from app.features.users.schemas import UserResponse, UserPublic, UserUpdate, UserRoleUpdate
from app.features.users.dependencies import get_current_user
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["users"])


async def _get_member(db: AsyncSession, caller: User, user_id: str) -> User:
    """Load a user the caller may manage; other organizations look like missing users."""
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or (not caller.is_platform_admin and user.organization_id != caller.organization_id):
        raise Forbidden("User not found in your organization", reason=Forbidden.TARGET_UNAVAILABLE)
    if user.is_super_admin and not bypasses_tables(caller):
        raise Forbidden("Only super admins can modify super admins", reason=Forbidden.SUPER_ADMIN_TARGET)
    return user


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)]
):
    """Get current authenticated user's profile."""
    return user


@router.patch("/me", response_model=UserResponse)
async def update_current_user_profile(
    update_data: UserUpdate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update current user's profile."""
    for key, value in update_data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(user, key, value)
    
    await db.commit()
    await db.refresh(user)
    return user


@router.get("/", response_model=list[UserPublic])
async def list_members(
    user: Annotated[User, Depends(require_any_capability([VIEW_USERS, MANAGE_USERS]))],
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = 0,
    limit: int = 50
):
    """List members of the caller's organization."""
    result = await db.execute(
        select(User)
        .where(User.organization_id == user.organization_id)
        .order_by(User.name)
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all()


@router.patch("/{user_id}/role", response_model=UserPublic)
async def change_member_role(
    user_id: str,
    update: UserRoleUpdate,
    admin: Annotated[User, Depends(require_capability(MANAGE_USERS))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Change a member's role. Promoting to super admin needs a super admin or operator."""
    if user_id == admin.id:
        raise Forbidden("Cannot modify your own role", reason="self_modification")
    
    member = await _get_member(db, admin, user_id)
    if update.role == OrgRole.SUPER_ADMIN.value and not bypasses_tables(admin):
        raise Forbidden("Only super admins can grant the super admin role", reason=Forbidden.SUPER_ADMIN_TARGET)
    
    log.info("User %s changed role of %s from %s to %s", admin.id, member.id, member.role, update.role)
    member.role = update.role
    await db.commit()
    await db.refresh(member)
    return member


@router.delete("/{user_id}", response_model=ActionSuccess)
async def deactivate_member(
    user_id: str,
    admin: Annotated[User, Depends(require_capability(MANAGE_USERS))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Deactivate a member account."""
    if user_id == admin.id:
        raise Forbidden("Cannot deactivate your own account", reason="self_modification")
    
    member = await _get_member(db, admin, user_id)
    member.is_active = False
    await db.commit()
    
    return ActionSuccess(message="User deactivated successfully")
