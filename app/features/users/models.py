"""
User model with ULID primary keys.

A user is a principal within exactly one organization, holding exactly one role
there. Platform operators carry ``is_platform_admin`` independently of any role.
"""
from datetime import datetime
import enum
from sqlalchemy import String, Boolean, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, UlidPrimaryKeyMixin


class OrgRole(str, enum.Enum):
    """Roles a user can hold inside an organization."""
    SUPER_ADMIN = "super_admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"


# Roles whose defaults are stored as role grants (super admins bypass the tables)
GRANTABLE_ROLES = (OrgRole.MANAGER.value, OrgRole.EMPLOYEE.value)
ALL_ROLES = tuple(role.value for role in OrgRole)


class User(Base, TimestampMixin, UlidPrimaryKeyMixin):
    """
    User model representing authenticated users.
    
    Uses ULID instead of auto-incrementing integers for better distributed systems support.
    """
    __tablename__ = "users"
    
    # Appwrite user ID (for linking with Appwrite authentication)
    appwrite_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    
    # User information
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    
    # Tenant membership (null until the user is invited into an organization)
    organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    role: Mapped[str] = mapped_column(String(50), default=OrgRole.EMPLOYEE.value, nullable=False, index=True)
    
    # Status flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_platform_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    
    # Track last login
    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)
    
    organization: Mapped["Organization | None"] = relationship(  # type: ignore
        "Organization",
        back_populates="members",
        lazy="selectin"
    )
    
    @property
    def is_super_admin(self) -> bool:
        return self.role == OrgRole.SUPER_ADMIN.value
    
    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, role={self.role}, org_id={self.organization_id})>"
