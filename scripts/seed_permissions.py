"""
Seed script for the feature catalog and default role permissions.

Run this script after deploying a catalog change to:
- Sync the feature catalog into the features table
- Backfill missing default role grants for every organization
- Optionally flag a user as platform operator

Usage:
    uv run python -m scripts.seed_permissions
    uv run python -m scripts.seed_permissions --operator-email ops@example.com
"""
import argparse
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.organizations.models import Organization
from app.features.permissions.catalog import DEFAULT_ROLE_POLICY, sync_feature_catalog
from app.features.permissions.provisioning import seed_organization_defaults
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


async def backfill_role_grants(db: AsyncSession) -> int:
    """
    Insert missing default role grants for all organizations.
    
    Returns:
        Total number of grants inserted
    """
    result = await db.execute(select(Organization).order_by(Organization.name))
    organizations = result.scalars().all()
    
    total = 0
    for organization in organizations:
        inserted = await seed_organization_defaults(db, organization.id)
        if inserted:
            log.info(f"Organization '{organization.slug}': {inserted} grant(s) added")
        total += inserted
    
    log.info(f"Backfilled {total} grant(s) across {len(organizations)} organization(s)")
    return total


async def promote_operator(db: AsyncSession, email: str) -> bool:
    """Set the platform operator flag on the user with ``email``."""
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is None:
        log.warning(f"No user with email {email}; log in once before promoting")
        return False
    user.is_platform_admin = True
    await db.commit()
    log.info(f"User {user.id} ({email}) is now a platform operator")
    return True


async def main(operator_email: str | None = None):
    """Sync catalog, backfill grants, optionally promote an operator."""
    log.info("Starting permission seeding...")
    
    # Creates tables and runs a first catalog sync
    await init_db()
    
    async for db in get_db():
        try:
            changed = await sync_feature_catalog(db)
            await db.commit()
            log.info(f"Catalog sync changed {changed} row(s)")
            
            await backfill_role_grants(db)
            
            if operator_email:
                await promote_operator(db, operator_email)
            
            log.info("Permission seeding completed successfully!")
            log.info("Default role policy:")
            for role, keys in DEFAULT_ROLE_POLICY.items():
                log.info(f"  - {role}: {len(keys)} feature(s)")
        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            await db.rollback()
            raise
        
        break  # Only use first session


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--operator-email", help="Flag this user as platform operator")
    args = parser.parse_args()
    asyncio.run(main(args.operator_email))
