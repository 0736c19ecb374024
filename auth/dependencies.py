"""
FastAPI dependencies for authentication.

``require_admin`` guards every OAuth route: the caller must present a
valid bearer token whose role is ``admin``.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from auth.jwt import TokenClaims, verify_token
from connectors.errors import ErrorCode, OAuthFlowError

_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> TokenClaims:
    """Extract and verify the Bearer token."""
    if credentials is None:
        raise OAuthFlowError(
            ErrorCode.AUTHENTICATION_REQUIRED,
            "Please log in again",
            "A bearer token is required",
        )
    settings = getattr(request.app.state, "settings", None)
    secret = settings.auth_token_secret if settings else None
    return verify_token(credentials.credentials, secret=secret)


async def require_admin(user: TokenClaims = Depends(get_current_user)) -> TokenClaims:
    if user.role != "admin":
        raise OAuthFlowError(
            ErrorCode.ADMIN_REQUIRED,
            "Forbidden - Admin access required",
            "Only event administrators can manage mail connections",
        )
    return user
