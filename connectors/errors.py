"""
Error taxonomy for the OAuth flow.

``ErrorCode`` is closed: every code has exactly one HTTP status in
``STATUS_BY_CODE`` and the route layer turns any ``OAuthFlowError`` into
the shared ``{success, message, code, details}`` body.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping, Optional


class ErrorCode(str, Enum):
    # Caller errors
    INVALID_EVENT_ID = "INVALID_EVENT_ID"
    INVALID_PROVIDER = "INVALID_PROVIDER"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    MISSING_CODE = "MISSING_CODE"
    INVALID_STATE = "INVALID_STATE"
    INVALID_REDIRECT_URI = "INVALID_REDIRECT_URI"
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"
    # Configuration errors
    MISSING_CLIENT_ID = "MISSING_CLIENT_ID"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    MISSING_CREDENTIALS = "MISSING_CREDENTIALS"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    # Provider errors
    MISSING_TOKENS = "MISSING_TOKENS"
    MISSING_EMAIL = "MISSING_EMAIL"
    USER_INFO_ERROR = "USER_INFO_ERROR"
    TOKEN_EXCHANGE_ERROR = "TOKEN_EXCHANGE_ERROR"
    REFRESH_FAILED = "REFRESH_FAILED"
    REFRESH_ERROR = "REFRESH_ERROR"
    # Corruption
    DECRYPTION_ERROR = "DECRYPTION_ERROR"
    # Gate
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    ADMIN_REQUIRED = "ADMIN_REQUIRED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


STATUS_BY_CODE: Mapping[ErrorCode, int] = {
    ErrorCode.INVALID_EVENT_ID: 400,
    ErrorCode.INVALID_PROVIDER: 400,
    ErrorCode.EVENT_NOT_FOUND: 404,
    ErrorCode.MISSING_CODE: 400,
    ErrorCode.INVALID_STATE: 400,
    ErrorCode.INVALID_REDIRECT_URI: 400,
    ErrorCode.INVALID_CONFIGURATION: 400,
    ErrorCode.MISSING_CLIENT_ID: 400,
    ErrorCode.INVALID_CREDENTIALS: 500,
    ErrorCode.MISSING_CREDENTIALS: 400,
    ErrorCode.NOT_CONFIGURED: 400,
    ErrorCode.MISSING_TOKENS: 500,
    ErrorCode.MISSING_EMAIL: 500,
    ErrorCode.USER_INFO_ERROR: 500,
    ErrorCode.TOKEN_EXCHANGE_ERROR: 500,
    ErrorCode.REFRESH_FAILED: 500,
    ErrorCode.REFRESH_ERROR: 500,
    ErrorCode.DECRYPTION_ERROR: 500,
    ErrorCode.AUTHENTICATION_REQUIRED: 401,
    ErrorCode.ADMIN_REQUIRED: 403,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.INTERNAL_ERROR: 500,
}


class OAuthFlowError(Exception):
    """An expected failure of the OAuth flow, carrying a stable code."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details if details is not None else message

    @property
    def status_code(self) -> int:
        return STATUS_BY_CODE[self.code]

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": False,
            "message": self.message,
            "code": self.code.value,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"OAuthFlowError({self.code.value}, {self.message!r})"
