"""Password hashing with bcrypt."""

import bcrypt

# bcrypt only looks at the first 72 bytes of its input.
MAX_PASSWORD_BYTES = 72


def _encode(password: str) -> bytes:
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return encoded


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check a login attempt. Over-long input never matches."""
    try:
        candidate = _encode(plain_password)
    except ValueError:
        return False
    return bcrypt.checkpw(candidate, hashed_password.encode("utf-8"))
