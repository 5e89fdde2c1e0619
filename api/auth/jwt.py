"""
JWT Token Utilities

Issue and verify bearer tokens. Sign-up and login live with the identity
provider; the API only needs to know which user a token belongs to.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError

from config.settings import settings


class TokenError(Exception):
    """Token validation error."""
    pass


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload data (must include 'sub' for the user ID)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token
    """
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))

    to_encode.update({
        "exp": expire,
        "iat": now,
        "type": "access"
    })

    return jwt.encode(
        to_encode,
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm
    )


def verify_token(token: str, token_type: str = "access") -> dict:
    """
    Decode a JWT token and check its type.

    Raises:
        TokenError: If token is invalid, expired, or of the wrong type
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm]
        )
    except JWTError as e:
        raise TokenError(f"Invalid token: {str(e)}")

    if payload.get("type") != token_type:
        raise TokenError(f"Invalid token type. Expected {token_type}")
    if not payload.get("sub"):
        raise TokenError("Invalid token payload")

    return payload
