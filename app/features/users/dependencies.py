"""
FastAPI dependencies for authentication.
"""
from typing import Annotated
from datetime import datetime, timezone
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.exceptions import UnauthenticatedError, ForbiddenError
from app.features.audit.recorder import AuditAction, record
from app.features.users.models import User
from app.features.users.auth import verify_jwt_token, get_appwrite_user


security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Get the current authenticated user from JWT token.

    This dependency:
    1. Extracts JWT from Authorization header
    2. Decodes the Appwrite JWT
    3. Looks up or creates user in local database
    4. Updates last_login_at timestamp

    A user created on first sight starts on the fallback role and gets a
    ``create`` audit entry in the same commit.

    Usage:
        @router.get("/me")
        async def get_me(user: User = Depends(get_current_user)):
            return user
    """
    if credentials is None:
        raise UnauthenticatedError("Not authenticated")

    payload = verify_jwt_token(credentials.credentials)
    appwrite_user_id = payload.get("userId")
    if not appwrite_user_id:
        raise UnauthenticatedError("Invalid token payload")

    result = await db.execute(
        select(User).where(User.appwrite_id == appwrite_user_id)
    )
    user = result.scalar_one_or_none()

    # If user doesn't exist locally, fetch from Appwrite and create
    if user is None:
        appwrite_user = await get_appwrite_user(appwrite_user_id)
        user = User(
            appwrite_id=appwrite_user_id,
            email=appwrite_user.get("email", ""),
            name=appwrite_user.get("name", ""),
            last_login_at=datetime.now(timezone.utc),
        )
        db.add(user)
        await db.flush()
        await record(
            db,
            AuditAction.CREATE,
            resource_type="user",
            resource_id=user.id,
            new_data={"email": user.email, "appwrite_id": appwrite_user_id},
            performed_by=user.id,
        )
    else:
        user.last_login_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(user)

    if not user.is_active:
        raise ForbiddenError("User account is deactivated")

    return user


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
