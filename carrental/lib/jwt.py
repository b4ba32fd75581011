"""JWT token generation and validation utilities.

Tokens are issued by the platform's auth service; this module verifies them
and extracts the acting principal. ``create_access_token`` exists for local
tooling and tests and produces tokens with the same claim layout:
standard claims (exp, iat, sub) plus custom ``role`` and ``agency_id`` claims.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from jwt.exceptions import InvalidTokenError

from carrental.lib.settings import settings


# Token expiration time (24 hours by default)
TOKEN_EXPIRY_HOURS = 24


def create_access_token(
    user_id: str,
    role: str,
    agency_id: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a JWT access token for a user.

    Args:
        user_id: UUID of the user (stored in 'sub' claim)
        role: User role (customer, agency_owner, agency_staff, admin)
        agency_id: Agency the user belongs to, if any
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    if expires_delta is None:
        expires_delta = timedelta(hours=TOKEN_EXPIRY_HOURS)

    now = datetime.now(timezone.utc)

    payload = {
        "sub": user_id,
        "role": role,
        "iat": now,
        "exp": now + expires_delta,
    }
    if agency_id:
        payload["agency_id"] = agency_id

    return jwt.encode(
        payload,
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


def verify_token(token: str) -> dict:
    """Verify and decode a JWT token.

    Args:
        token: JWT token string to verify

    Returns:
        Decoded token payload with claims

    Raises:
        InvalidTokenError: If token is invalid, expired, or signature doesn't match
    """
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
    )


def get_principal_from_token(token: str) -> tuple[str, str, Optional[str]]:
    """Extract (user_id, role, agency_id) from a token.

    Raises:
        InvalidTokenError: If token is invalid or required claims are missing
    """
    payload = verify_token(token)
    try:
        return payload["sub"], payload["role"], payload.get("agency_id")
    except KeyError as e:
        raise InvalidTokenError(f"Missing claim: {e.args[0]}") from e
