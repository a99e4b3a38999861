from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from invest_backend.core.security import verify_token
from invest_backend.dependencies.get_db import get_db
from invest_backend.database_model.user import User
from invest_backend.core.errors import AuthenticationError, AuthorizationError

# auto_error=False so a missing header maps to our own 401 message
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Get current authenticated user from JWT token.

    Args:
        credentials: HTTP authorization credentials containing JWT token
        db: Database session

    Returns:
        User: Current authenticated user

    Raises:
        AuthenticationError: If the token is missing or the user is gone
        AuthorizationError: If the token is invalid or expired
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Access token required")

    payload = verify_token(credentials.credentials)
    if payload is None:
        raise AuthorizationError("Invalid or expired token")

    subject = payload.get("sub")
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        raise AuthorizationError("Invalid or expired token")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("Account is deactivated")

    return user


async def get_current_admin_user(
    current_user: User = Depends(get_current_user)
) -> User:
    """Get current authenticated admin user.

    The admin flag is read from the stored user, not the token claim, so
    revoking admin rights takes effect immediately.
    """
    if not current_user.is_admin:
        raise AuthorizationError("Admin access required")

    return current_user
