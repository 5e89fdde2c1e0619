"""
Authentication Package

Bearer token verification and request dependencies.
"""

from api.auth.jwt import create_access_token, verify_token, TokenError
from api.auth.dependencies import get_current_user, get_crew, verify_cron_secret

__all__ = [
    "create_access_token",
    "verify_token",
    "TokenError",
    "get_current_user",
    "get_crew",
    "verify_cron_secret",
]
