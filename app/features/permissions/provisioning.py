"""
Tenant lifecycle writes on permission data.

Called by the organization control plane after it has authorized the caller:
seeding default role grants for a new organization and dropping user
overrides when a member changes organization.
"""
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.catalog import default_policy_for
from app.features.permissions.repository import TrustedPermissionRepository
from app.features.users.models import GRANTABLE_ROLES, User
from app.utils import get_logger


log = get_logger(__name__)


async def seed_organization_defaults(db: AsyncSession, organization_id: str) -> int:
    """Insert the default role policy for an organization. Existing rows are kept."""
    repository = TrustedPermissionRepository(db)
    active = {feature.key for feature in await repository.list_active_capabilities()}
    policy = {
        role: {key: enabled for key, enabled in default_policy_for(role).items() if key in active}
        for role in GRANTABLE_ROLES
    }
    inserted = await repository.seed_role_grants(organization_id, policy)
    log.info(f"Seeded {inserted} default role grant(s) for organization {organization_id}")
    return inserted


async def clear_overrides_on_membership_change(db: AsyncSession, user: User) -> int:
    """Overrides belong to the old organization; drop them when a user changes tenant."""
    removed = await TrustedPermissionRepository(db).delete_user_overrides(user.id)
    if removed:
        log.info(f"Cleared {removed} override(s) for user {user.id} after membership change")
    return removed
