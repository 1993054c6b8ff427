"""Bearer token handling.

Tokens are minted by the identity service that shares ``JWT_SECRET_KEY``;
this service only needs to read the subject back out of them.
"""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from roombook.config import settings
from roombook.core.exceptions import AuthenticationError


def create_access_token(
    user_id: uuid.UUID | str,
    expires_delta: timedelta | None = None,
    **claims: Any,
) -> str:
    """Create a JWT access token for ``user_id``."""
    expire = datetime.now(UTC) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode = {**claims, "sub": str(user_id), "exp": expire, "type": "access"}
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str, token_type: str = "access") -> dict[str, Any]:
    """Verify and decode a JWT token."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        raise AuthenticationError(f"Token validation failed: {e}")
    if payload.get("type") != token_type:
        raise AuthenticationError("Invalid token type")
    return payload


def user_id_from_token(token: str) -> uuid.UUID:
    payload = verify_token(token)
    try:
        return uuid.UUID(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise AuthenticationError("Invalid token payload")
