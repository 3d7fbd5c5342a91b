"""FastAPI authentication dependencies for route protection."""

import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from paperhub.auth.jwt import ACCESS, decode_token
from paperhub.database import get_db
from paperhub.models.user import User

# Missing token -> 403 from HTTPBearer itself
_bearer_scheme = HTTPBearer()


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the Bearer access token to a User.

    Raises:
        HTTPException 401: Invalid or expired token, refresh token used as
            access token, or unknown user.
    """
    try:
        payload = decode_token(credentials.credentials)
    except JWTError:
        raise _unauthorized() from None

    if payload.get("type") != ACCESS:
        raise _unauthorized("Invalid token type")

    try:
        user_id = uuid.UUID(payload.get("sub") or "")
    except ValueError:
        raise _unauthorized() from None

    user = await db.get(User, user_id)
    if user is None:
        raise _unauthorized()
    return user


async def get_current_active_user(
    user: User = Depends(get_current_user),
) -> User:
    """Raises 403 if the account has been deactivated."""
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )
    return user


async def get_current_admin_user(
    user: User = Depends(get_current_active_user),
) -> User:
    """Raises 403 unless the user has the admin role."""
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user
