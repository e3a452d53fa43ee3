"""
Authentication utilities for Appwrite JWT verification.
"""
import asyncio
import jwt
from fastapi import HTTPException, status
from appwrite.client import Client
from appwrite.services.account import Account
from appwrite.exception import AppwriteException

from app.core import config
from app.utils import get_logger


log = get_logger(__name__)


def session_client(token: str) -> Client:
    """Appwrite client acting as the session that issued ``token``."""
    client = Client()
    client.set_endpoint(config.APPWRITE_ENDPOINT)
    client.set_project(config.APPWRITE_PROJECT_ID)
    client.set_jwt(token)
    return client


def verify_jwt_token(token: str) -> dict:
    """
    Decode an Appwrite session JWT and return its payload.

    Only the shape and expiry are checked here; the signing secret stays with
    Appwrite, so ``verify_session`` confirms the token against it.

    Raises:
        HTTPException: 401 if the token is malformed or expired
    """
    try:
        return jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": True}
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def verify_session(token: str) -> dict:
    """
    Confirm ``token`` with Appwrite and return the account it belongs to.

    The SDK is synchronous, so the lookup runs in a worker thread.

    Raises:
        HTTPException: 401 if the token is malformed, expired, rejected by
        Appwrite or names a different user than its session
    """
    payload = verify_jwt_token(token)
    appwrite_user_id = payload.get("userId")
    if not appwrite_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    try:
        account = await asyncio.to_thread(Account(session_client(token)).get)
    except AppwriteException as e:
        log.warning("Appwrite rejected session for %s: %s", appwrite_user_id, e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Failed to verify user: {str(e)}",
        )

    if account.get("$id") != appwrite_user_id:
        log.warning("Token claims %s but session belongs to %s", appwrite_user_id, account.get("$id"))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )
    return account
