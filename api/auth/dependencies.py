"""
Request Dependencies

FastAPI dependencies for the authenticated user, the LLM crew and the
scheduled-job secret.
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from database.connection import get_db
from database.models import User
from api.auth.jwt import verify_token, TokenError


bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    Resolve the bearer token to an active user.

    Raises HTTPException 401 for a missing/invalid token or unknown user,
    403 for an inactive account.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required"
        )

    try:
        payload = verify_token(credentials.credentials, "access")
        user_id = uuid.UUID(payload["sub"])
    except (TokenError, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )

    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive"
        )

    # Rate limiting keys on the user
    request.state.user_id = str(user.id)
    return user


def get_crew():
    """LLM collaborator for request-path AI calls."""
    # Imported lazily: crewai is heavy and only needed when an agent runs
    from crew import BidCrew
    return BidCrew()


async def verify_cron_secret(authorization: Optional[str] = Header(default=None)):
    """Guard for scheduled-job triggers: Authorization: Bearer <cron_secret>."""
    if not settings.cron_secret or authorization != f"Bearer {settings.cron_secret}":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )
