"""JWT access and refresh tokens."""

from datetime import datetime, timedelta, timezone

from jose import jwt

from paperhub.config import settings

ACCESS = "access"
REFRESH = "refresh"


def _encode(claims: dict, token_type: str, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {**claims, "iat": now, "exp": now + lifetime, "type": token_type}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Short-lived token sent as ``Authorization: Bearer``. ``data`` must carry ``sub``."""
    lifetime = expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes)
    return _encode(data, ACCESS, lifetime)


def create_refresh_token(data: dict, expires_delta: timedelta | None = None) -> str:
    lifetime = expires_delta or timedelta(days=settings.jwt_refresh_token_expire_days)
    return _encode(data, REFRESH, lifetime)


def decode_token(token: str) -> dict:
    """Verify and decode a token. Raises ``jose.JWTError`` when invalid or expired."""
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])


def create_token_pair(user_id: str, role: str = "student") -> dict[str, str]:
    """Access and refresh tokens for a user id, with the role as an informational claim."""
    claims = {"sub": user_id, "role": role}
    return {
        "access_token": create_access_token(claims),
        "refresh_token": create_refresh_token({"sub": user_id}),
        "token_type": "bearer",
    }
