"""
Persistence contract for permission resolution.

``PermissionRepository`` is read-only and is what the resolver uses to answer
questions. ``TrustedPermissionRepository`` adds the writes; it is only built
inside ``PermissionAdministrator`` and ``provisioning`` so request handlers never
hold a handle that can rewrite grants directly.

Transport failures (database unreachable) are not caught here: SQLAlchemy
errors propagate to the caller.
"""
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.models import Feature, RoleGrant, UserOverride
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


class PermissionRepository:
    """Read access to the feature catalog, role grants and user overrides."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_active_capabilities(self) -> List[Feature]:
        result = await self.db.execute(
            select(Feature)
            .where(Feature.is_active == True)  # noqa: E712
            .order_by(Feature.category, Feature.sort_order, Feature.name)
        )
        return list(result.scalars().all())

    async def get_active_capability(self, key: str) -> Optional[Feature]:
        result = await self.db.execute(
            select(Feature).where(Feature.key == key, Feature.is_active == True)  # noqa: E712
        )
        return result.scalar_one_or_none()

    async def list_role_grants(self, organization_id: str, role: str) -> List[RoleGrant]:
        """Enabled grants for ``(organization_id, role)`` on active features only."""
        result = await self.db.execute(
            select(RoleGrant)
            .join(Feature, Feature.key == RoleGrant.feature_key)
            .where(
                RoleGrant.organization_id == organization_id,
                RoleGrant.role == role,
                RoleGrant.is_enabled == True,  # noqa: E712
                Feature.is_active == True,  # noqa: E712
            )
        )
        return list(result.scalars().all())

    async def get_role_grant(self, organization_id: str, role: str, key: str) -> Optional[RoleGrant]:
        result = await self.db.execute(
            select(RoleGrant).where(
                RoleGrant.organization_id == organization_id,
                RoleGrant.role == role,
                RoleGrant.feature_key == key,
            )
        )
        return result.scalar_one_or_none()

    async def list_role_permission_map(self, organization_id: str, role: str) -> Dict[str, bool]:
        """All grant rows for a role as ``{feature_key: is_enabled}``, enabled or not."""
        result = await self.db.execute(
            select(RoleGrant.feature_key, RoleGrant.is_enabled).where(
                RoleGrant.organization_id == organization_id,
                RoleGrant.role == role,
            )
        )
        return {key: enabled for key, enabled in result.all()}

    async def list_user_overrides(self, user_id: str) -> List[UserOverride]:
        """Every override row for the user, enabled or not."""
        result = await self.db.execute(
            select(UserOverride)
            .where(UserOverride.user_id == user_id)
            .order_by(UserOverride.feature_key)
        )
        return list(result.scalars().all())

    async def get_user_override(self, user_id: str, key: str) -> Optional[UserOverride]:
        result = await self.db.execute(
            select(UserOverride).where(
                UserOverride.user_id == user_id,
                UserOverride.feature_key == key,
            )
        )
        return result.scalar_one_or_none()

    async def get_user(self, user_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()


class TrustedPermissionRepository(PermissionRepository):
    """
    Write access for the administrative path.

    Every write commits its own transaction, so a replace is seen by other
    sessions either entirely before or entirely after.
    """

    async def replace_user_overrides(
        self,
        user_id: str,
        organization_id: Optional[str],
        keys: Iterable[str],
        granted_by_id: Optional[str],
    ) -> List[UserOverride]:
        """Delete every override of ``user_id`` and insert ``keys`` as enabled rows."""
        now = datetime.now(timezone.utc)
        try:
            await self.db.execute(delete(UserOverride).where(UserOverride.user_id == user_id))
            rows = [
                UserOverride(
                    user_id=user_id,
                    organization_id=organization_id,
                    feature_key=key,
                    is_enabled=True,
                    granted_by_id=granted_by_id,
                    granted_at=now,
                )
                for key in sorted(set(keys))
            ]
            self.db.add_all(rows)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        log.info("Replaced overrides for user %s with %d row(s)", user_id, len(rows))
        return rows

    async def upsert_user_override(
        self,
        user_id: str,
        organization_id: Optional[str],
        key: str,
        enabled: bool,
        granted_by_id: Optional[str],
    ) -> UserOverride:
        override = await self.get_user_override(user_id, key)
        if override is None:
            override = UserOverride(user_id=user_id, feature_key=key)
            self.db.add(override)
        override.organization_id = organization_id
        override.is_enabled = enabled
        override.granted_by_id = granted_by_id
        override.granted_at = datetime.now(timezone.utc)
        await self.db.commit()
        return override

    async def delete_user_override(self, user_id: str, key: str) -> int:
        result = await self.db.execute(
            delete(UserOverride).where(
                UserOverride.user_id == user_id,
                UserOverride.feature_key == key,
            )
        )
        await self.db.commit()
        return result.rowcount or 0

    async def delete_user_overrides(self, user_id: str) -> int:
        result = await self.db.execute(delete(UserOverride).where(UserOverride.user_id == user_id))
        await self.db.commit()
        return result.rowcount or 0

    async def upsert_role_grants(
        self,
        organization_id: str,
        role: str,
        permissions: Mapping[str, bool],
    ) -> int:
        """Insert or update one grant row per key. Returns rows touched."""
        result = await self.db.execute(
            select(RoleGrant).where(
                RoleGrant.organization_id == organization_id,
                RoleGrant.role == role,
                RoleGrant.feature_key.in_(list(permissions)),
            )
        )
        existing = {grant.feature_key: grant for grant in result.scalars().all()}
        for key, enabled in permissions.items():
            grant = existing.get(key)
            if grant is None:
                self.db.add(RoleGrant(
                    organization_id=organization_id,
                    role=role,
                    feature_key=key,
                    is_enabled=enabled,
                ))
            else:
                grant.is_enabled = enabled
        await self.db.commit()
        return len(permissions)

    async def seed_role_grants(
        self,
        organization_id: str,
        policy: Mapping[str, Mapping[str, bool]],
    ) -> int:
        """Insert default rows that are missing; existing rows are left alone."""
        result = await self.db.execute(
            select(RoleGrant.role, RoleGrant.feature_key).where(
                RoleGrant.organization_id == organization_id
            )
        )
        present = {(role, key) for role, key in result.all()}
        inserted = 0
        for role, permissions in policy.items():
            for key, enabled in permissions.items():
                if (role, key) in present:
                    continue
                self.db.add(RoleGrant(
                    organization_id=organization_id,
                    role=role,
                    feature_key=key,
                    is_enabled=enabled,
                ))
                inserted += 1
        await self.db.commit()
        return inserted

