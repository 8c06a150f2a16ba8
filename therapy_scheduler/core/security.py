"""JWT handling for actor identity.

Tokens are issued by the identity service. The scheduling API only
verifies them; ``create_access_token`` exists for local tooling and tests.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from therapy_scheduler.config import settings


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload data to encode, at least ``sub`` (user ID)
        expires_delta: Optional expiration time delta

    Returns:
        Encoded JWT token
    """
    issued_at = datetime.now(UTC)
    expire = issued_at + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))

    claims = {**data, "exp": expire, "iat": issued_at, "type": "access"}
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """
    Decode and validate a JWT access token.

    Args:
        token: JWT token to decode

    Returns:
        Decoded payload or None if invalid, expired or not an access token
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None

    if payload.get("type") != "access":
        return None
    return payload
