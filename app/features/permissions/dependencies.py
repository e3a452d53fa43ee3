"""
FastAPI dependencies for capability checks.

Denials raise ``PermissionDenied``; the app turns it into a ``success: false``
payload with HTTP 200 (see ``app.main``).
"""
from typing import Annotated, List
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.errors import PermissionDenied
from app.features.permissions.repository import PermissionRepository
from app.features.permissions.resolver import PermissionAdministrator, PermissionResolver
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def get_resolver(db: Annotated[AsyncSession, Depends(get_db)]) -> PermissionResolver:
    """Read-only resolver for the request's session."""
    return PermissionResolver(PermissionRepository(db))


def get_permission_administrator(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)]
) -> PermissionAdministrator:
    """Administrative write path, carrying the caller's IP and user agent for auditing."""
    return PermissionAdministrator(
        db,
        audit_context={
            "ip_address": request.client.host if request.client else None,
            "user_agent": request.headers.get("user-agent"),
        },
    )


def require_capability(feature_key: str):
    """
    FastAPI dependency to require a capability.

    Usage:
        @router.delete("/leads/{lead_id}")
        async def delete_lead(
            user: User = Depends(require_capability("delete_leads"))
        ):
            # User holds delete_leads
            pass

    Returns:
        Dependency function that returns the current user if they hold the capability

    Raises:
        PermissionDenied: rendered as ``{"success": false, ...}`` with HTTP 200
    """
    async def capability_dependency(
        resolver: Annotated[PermissionResolver, Depends(get_resolver)],
        current_user: Annotated[User, Depends(get_current_user)]
    ) -> User:
        if not await resolver.has_capability(current_user, feature_key):
            log.debug(f"User {current_user.id} denied {feature_key}")
            raise PermissionDenied(feature_key)
        return current_user

    return capability_dependency


def require_any_capability(feature_keys: List[str]):
    """
    FastAPI dependency to require ANY of the given capabilities.

    Usage:
        @router.get("/calls")
        async def list_calls(
            user: User = Depends(require_any_capability(["view_own_calls", "view_all_calls"]))
        ):
            pass
    """
    async def capability_dependency(
        resolver: Annotated[PermissionResolver, Depends(get_resolver)],
        current_user: Annotated[User, Depends(get_current_user)]
    ) -> User:
        if not await resolver.has_any_capability(current_user, feature_keys):
            raise PermissionDenied(" or ".join(feature_keys))
        return current_user

    return capability_dependency
