"""
Dependencies module - reusable FastAPI dependencies for route handlers.

- get_current_account: validates the bearer JWT and loads the account
- enforce_generate_rate_limit: per-account request budget for /generate
- get_generation_service / get_streaming_transport: service singletons,
  overridable in tests through app.dependency_overrides
"""

import uuid  # For parsing account ID from token

from fastapi import Depends  # FastAPI components
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials  # Auth header extraction
from sqlalchemy.orm import Session  # Database session type

from app.core.errors import ErrorCode, GenerationError
from app.core.security import decode_access_token
from app.db.session import get_db  # Database session dependency
from app.generation.streaming import StreamingTransport, streaming_transport
from app.models.account import Account
from app.services.generation_service import GenerationService, generation_service
from app.services.rate_limiter import RateLimiter, generate_rate_limiter

# ---------------------------------------------------------------------------
# SECURITY SCHEME
# ---------------------------------------------------------------------------
# HTTPBearer: Extracts tokens from the "Authorization: Bearer <token>" header
# - auto_error=False: a missing header reaches us as None, so it gets the same
#   UNAUTHORIZED error body as a bad token
security = HTTPBearer(auto_error=False)


def get_current_account(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> Account:
    """
    Validate JWT token and return the authenticated account.

    Raises:
        GenerationError(UNAUTHORIZED): missing, invalid or expired token, or
            unknown account. Every case gets the same error so the reason
            never leaks.
    """
    if credentials is None:
        raise GenerationError(ErrorCode.UNAUTHORIZED, "missing bearer token")

    # ---------------------------------------------------------------------------
    # STEP 1: Decode and validate the JWT, read the "sub" claim
    # ---------------------------------------------------------------------------
    subject = decode_access_token(credentials.credentials)
    if subject is None:
        raise GenerationError(ErrorCode.UNAUTHORIZED, "invalid token")

    # ---------------------------------------------------------------------------
    # STEP 2: Convert string account ID to UUID
    # ---------------------------------------------------------------------------
    try:
        account_id = uuid.UUID(subject)
    except ValueError:
        raise GenerationError(ErrorCode.UNAUTHORIZED, "malformed subject")

    # ---------------------------------------------------------------------------
    # STEP 3: Look up the account
    # ---------------------------------------------------------------------------
    account = db.get(Account, account_id)
    if account is None:
        raise GenerationError(ErrorCode.UNAUTHORIZED, "unknown account")

    return account


def get_rate_limiter() -> RateLimiter:
    return generate_rate_limiter


def enforce_generate_rate_limit(
    account: Account = Depends(get_current_account),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> Account:
    """
    Count the request against the account's window.

    Raises:
        RateLimitExceeded: RATE_LIMITED, with retry_after_seconds
    """
    limiter.hit(f"generate:{account.id}")
    return account


def get_generation_service() -> GenerationService:
    return generation_service


def get_streaming_transport() -> StreamingTransport:
    return streaming_transport
