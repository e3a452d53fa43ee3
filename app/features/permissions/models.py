"""
Feature catalog, role grant, user override and audit models.

Effective permissions are layered from three sources:
- Role grants: per-organization, per-role enablement of each feature
- User overrides: per-user enablement that supersedes the role default
- Platform operator / super admin bypass (no rows needed)
"""
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import (
    String, ForeignKey, JSON, Text, DateTime, Boolean, Integer, UniqueConstraint, Index, func
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, UlidPrimaryKeyMixin


class Feature(Base, TimestampMixin, UlidPrimaryKeyMixin):
    """
    A checkable capability such as ``edit_leads``.

    Rows are owned by the static catalog in ``catalog.py`` and synced at startup.
    Retired capabilities are kept with ``is_active=False`` since grants reference them.
    """
    __tablename__ = "features"

    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="other", index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Feature(key={self.key!r}, category={self.category}, active={self.is_active})>"


class RoleGrant(Base, TimestampMixin, UlidPrimaryKeyMixin):
    """Organization-and-role scoped default for one feature."""
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("organization_id", "role", "feature_key", name="uq_role_permissions_org_role_feature"),
        Index("ix_role_permissions_org_role", "organization_id", "role"),
    )

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False
    )
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    feature_key: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("features.key", ondelete="CASCADE"),
        nullable=False
    )
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<RoleGrant(org_id={self.organization_id}, role={self.role}, key={self.feature_key}, enabled={self.is_enabled})>"


class UserOverride(Base, TimestampMixin, UlidPrimaryKeyMixin):
    """
    User-scoped exception to the role default for one feature.

    The table is kept sparse: a row only exists where the user differs from
    their role, so its presence means "this user is special here".
    """
    __tablename__ = "user_permissions"
    __table_args__ = (
        UniqueConstraint("user_id", "feature_key", name="uq_user_permissions_user_feature"),
    )

    organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    feature_key: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("features.key", ondelete="CASCADE"),
        nullable=False
    )
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    granted_by_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<UserOverride(user_id={self.user_id}, key={self.feature_key}, enabled={self.is_enabled})>"


class AuditLog(Base, TimestampMixin, UlidPrimaryKeyMixin):
    """
    Audit log for permission-related actions.

    Tracks who did what, when, and from where.
    """
    __tablename__ = "audit_logs"

    # Actor
    user_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Action details
    action: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)

    # Context
    organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, resource={self.resource_type})>"
