"""
FastAPI dependencies for authentication.

Authorization inside an organization is capability based and lives in
``app.features.permissions``; only the platform-operator gate is here.
"""
from typing import Annotated
from datetime import datetime, timezone
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.users.auth import verify_session
from app.utils import get_logger


log = get_logger(__name__)
security = HTTPBearer()


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Resolve the calling principal from the Bearer token.
    
    This dependency:
    1. Confirms the Appwrite JWT from the Authorization header with Appwrite
    2. Looks up the local user, creating it on first login (no organization yet)
    3. Updates last_login_at timestamp
    
    Usage:
        @router.get("/me")
        async def get_me(user: User = Depends(get_current_user)):
            return user
    """
    account = await verify_session(credentials.credentials)
    appwrite_user_id = account["$id"]
    
    result = await db.execute(
        select(User).where(User.appwrite_id == appwrite_user_id)
    )
    user = result.scalar_one_or_none()
    
    if user is None:
        user = User(
            appwrite_id=appwrite_user_id,
            email=account.get("email", ""),
            name=account.get("name", "Unknown"),
        )
        db.add(user)
        log.info("Created local user for appwrite id %s", appwrite_user_id)
    
    user.last_login_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(user)
    
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )
    
    return user


async def get_platform_operator(
    user: Annotated[User, Depends(get_current_user)]
) -> User:
    """
    Require the platform-operator flag (tenant control plane only).
    
    Usage:
        @router.post("/organizations")
        async def create_org(operator: User = Depends(get_platform_operator)):
            ...
    """
    if not user.is_platform_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Platform operator privileges required",
        )
    return user


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
