"""
Organization model.

Organizations are the tenants of the CRM. Every non-operator user belongs to
exactly one of them; role grants are scoped per organization.
"""
from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, UlidPrimaryKeyMixin


class Organization(Base, TimestampMixin, UlidPrimaryKeyMixin):
    """Tenant organization (a real-estate agency or developer)."""
    __tablename__ = "organizations"
    
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    
    # Optional contact details
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    website: Mapped[str | None] = mapped_column(String(255), nullable=True)
    
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    members: Mapped[list["User"]] = relationship(  # type: ignore
        "User",
        back_populates="organization",
        lazy="selectin"
    )
    
    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r}, slug={self.slug})>"
