"""
Signed bearer tokens for the admin API.

Tokens are base64-encoded JSON payloads signed with HMAC-SHA256 and carry
``user_id``, ``role`` and expiry.  The secret comes from
``config.auth_token_secret`` (env var: ``AUTH_TOKEN_SECRET``) unless one
is passed explicitly.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import b64decode, b64encode
from dataclasses import dataclass
from typing import Optional

from config.settings import config
from connectors.errors import ErrorCode, OAuthFlowError


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    role: str


def _sign(secret: str, raw: bytes) -> str:
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


def create_token(
    user_id: str,
    role: str = "admin",
    *,
    secret: Optional[str] = None,
    expiry_seconds: Optional[int] = None,
) -> str:
    """Create a signed token containing ``user_id``, ``role`` and expiry."""
    secret = secret or config.auth_token_secret
    ttl = expiry_seconds if expiry_seconds is not None else config.auth_token_expiry_seconds
    payload = {"user_id": user_id, "role": role, "exp": int(time.time()) + ttl}
    raw = json.dumps(payload).encode()
    return b64encode(raw).decode() + "." + _sign(secret, raw)


def verify_token(token: str, *, secret: Optional[str] = None) -> TokenClaims:
    """
    Verify token and return its claims.

    Raises ``OAuthFlowError(AUTHENTICATION_REQUIRED)`` on invalid or
    expired tokens.
    """
    secret = secret or config.auth_token_secret
    try:
        parts = token.split(".", 1)
        if len(parts) != 2:
            raise ValueError("bad format")
        raw = b64decode(parts[0])
        if not hmac.compare_digest(parts[1], _sign(secret, raw)):
            raise ValueError("bad signature")
        payload = json.loads(raw)
        if payload.get("exp", 0) < time.time():
            raise ValueError("token expired")
        return TokenClaims(user_id=str(payload["user_id"]), role=str(payload.get("role", "")))
    except (ValueError, KeyError, TypeError) as exc:
        raise OAuthFlowError(
            ErrorCode.AUTHENTICATION_REQUIRED,
            "Please log in again",
            f"Invalid or expired token: {exc}",
        ) from exc
