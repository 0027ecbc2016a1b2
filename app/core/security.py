"""
Security utilities - JWT token creation and verification.

Accounts are created and authenticated by an external identity provider.
This service only needs to verify the bearer token and read the account id
from its "sub" claim.
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt  # python-jose library for JWT encoding/decoding

from app.core.config import settings


def create_access_token(subject: str, expires_delta: timedelta | None = None) -> str:
    """
    Create a signed JWT access token.

    Used by tests and by internal tooling; production tokens come from the
    identity provider and share the same secret and algorithm.

    Args:
        subject: The account id stored in the "sub" claim
        expires_delta: Optional custom expiration time
                      If None, uses ACCESS_TOKEN_EXPIRE_MINUTES from settings

    Returns:
        A signed JWT string (e.g., "eyJhbGciOiJIUzI1NiIs...")
    """
    expire = datetime.now(timezone.utc) + (
        expires_delta
        if expires_delta
        else timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode = {"sub": subject, "exp": expire}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> str | None:
    """
    Verify a JWT and return its subject.

    Returns:
        The "sub" claim, or None if the token is invalid, expired or has no subject.
        Callers treat every None the same way so the reason never leaks.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    return payload.get("sub")
