"""
OAuth API routes — authorize, callback, status, refresh, client config.

Route prefix: /api/oauth

Every route except the provider callback sits behind ``require_admin``.
The callback is reached by the provider's browser redirect, which carries
no bearer token; the signed, single-use state binds it to the event.
Errors leave as ``{success: false, message, code, details}``.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Union

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from auth.dependencies import require_admin
from connectors.errors import ErrorCode, OAuthFlowError
from connectors.orchestrator import OAuthOrchestrator
from connectors.registry import list_providers as registry_providers

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)

router = APIRouter(prefix="/oauth", tags=["oauth"], dependencies=[Depends(require_admin)])
callback_router = APIRouter(prefix="/oauth", tags=["oauth"])

AUTHORIZE_RATE_LIMIT = "10/minute"
CALLBACK_RATE_LIMIT = "15/minute"


class RefreshRequest(BaseModel):
    eventId: Optional[Union[int, str]] = None


class ClientConfigRequest(BaseModel):
    clientId: Optional[str] = None
    clientSecret: Optional[str] = None
    redirectUri: Optional[str] = None


# ── Helpers ────────────────────────────────────────────────────────────


def get_orchestrator(request: Request) -> OAuthOrchestrator:
    return request.app.state.orchestrator


def parse_event_id(value: Any) -> int:
    try:
        if isinstance(value, bool):
            raise ValueError
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise OAuthFlowError(
            ErrorCode.INVALID_EVENT_ID,
            "Invalid event ID",
            "The event ID provided must be a valid number",
        )


@contextmanager
def unexpected_errors(code: ErrorCode, message: str, details: str) -> Iterator[None]:
    """Turn anything that is not an ``OAuthFlowError`` into *code*."""
    try:
        yield
    except OAuthFlowError:
        raise
    except Exception as exc:
        logger.exception("%s: %s", message, type(exc).__name__)
        raise OAuthFlowError(code, message, details) from exc


async def oauth_error_handler(request: Request, exc: OAuthFlowError) -> JSONResponse:
    return JSONResponse(exc.to_response(), status_code=exc.status_code)


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    error = OAuthFlowError(
        ErrorCode.RATE_LIMIT_EXCEEDED,
        "Too many requests, please try again later",
        f"Rate limit exceeded: {exc.detail}",
    )
    return JSONResponse(error.to_response(), status_code=error.status_code)


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers() -> List[Dict[str, str]]:
    """List the supported mail providers."""
    return registry_providers()


@router.get("/{provider}/authorize")
@limiter.limit(AUTHORIZE_RATE_LIMIT)
async def authorize(
    request: Request,
    provider: str,
    eventId: Optional[str] = Query(None),
    orchestrator: OAuthOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Get the OAuth authorization URL for a provider.

    Frontend should open this URL in a popup window.
    """
    event_id = parse_event_id(eventId)
    with unexpected_errors(
        ErrorCode.INTERNAL_ERROR,
        "Failed to initiate authorization",
        "An unexpected error occurred while setting up authorization",
    ):
        auth_url = await orchestrator.begin_authorization(event_id, provider)
    return {"success": True, "authUrl": auth_url}


@callback_router.get("/{provider}/callback")
@limiter.limit(CALLBACK_RATE_LIMIT)
async def callback(
    request: Request,
    provider: str,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    orchestrator: OAuthOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """OAuth callback — exchange the code and store the connection."""
    with unexpected_errors(
        ErrorCode.TOKEN_EXCHANGE_ERROR,
        "Failed to complete authorization",
        "An unexpected error occurred during authorization",
    ):
        result = await orchestrator.handle_callback(provider, code, state)
    return {
        "success": True,
        "provider": result.provider,
        "email": result.email,
        "message": f"{result.provider.capitalize()} account successfully connected",
    }


@router.get("/status/{provider}")
async def status(
    provider: str,
    eventId: Optional[str] = Query(None),
    orchestrator: OAuthOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Connection status for one event and provider."""
    event_id = parse_event_id(eventId)
    with unexpected_errors(
        ErrorCode.INTERNAL_ERROR,
        f"Failed to check {provider} status",
        "An unexpected error occurred while checking the OAuth status",
    ):
        result = await orchestrator.check_status(event_id, provider)
    return {
        "success": True,
        "provider": provider,
        "isConfigured": result.is_configured,
        "account": result.account,
        "tokenExpired": result.token_expired,
        "needsReauthorization": result.needs_reauthorization,
    }


@router.post("/refresh/{provider}")
async def refresh(
    provider: str,
    payload: Optional[RefreshRequest] = None,
    orchestrator: OAuthOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Refresh the stored access token."""
    event_id = parse_event_id(payload.eventId if payload else None)
    with unexpected_errors(
        ErrorCode.REFRESH_ERROR,
        f"Failed to refresh {provider} token",
        "An error occurred while refreshing the access token",
    ):
        expires_at = await orchestrator.refresh(event_id, provider)
    return {
        "success": True,
        "provider": provider,
        "message": "Access token refreshed successfully",
        "expiresAt": expires_at.isoformat(),
    }


@router.get("/config/{provider}")
async def get_client_config(
    provider: str,
    eventId: Optional[str] = Query(None),
    orchestrator: OAuthOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Whether the event has saved its own client credentials (never the secret)."""
    event_id = parse_event_id(eventId)
    with unexpected_errors(
        ErrorCode.INTERNAL_ERROR,
        "Failed to check OAuth configuration",
        "An unexpected error occurred while reading the OAuth configuration",
    ):
        result = await orchestrator.client_config_status(event_id, provider)
    return {
        "success": True,
        "isConfigured": result.is_configured,
        "clientId": result.client_id,
        "hasClientSecret": result.has_client_secret,
        "redirectUri": result.redirect_uri,
    }


@router.post("/config/{provider}")
async def save_client_config(
    provider: str,
    payload: ClientConfigRequest,
    eventId: Optional[str] = Query(None),
    orchestrator: OAuthOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Save the event's OAuth client ID and secret."""
    event_id = parse_event_id(eventId)
    with unexpected_errors(
        ErrorCode.INTERNAL_ERROR,
        "Failed to save OAuth configuration",
        "An unexpected error occurred while saving the OAuth configuration",
    ):
        await orchestrator.save_client_config(
            event_id, provider, payload.clientId, payload.clientSecret, payload.redirectUri
        )
    return {"success": True, "message": "OAuth configuration saved successfully"}
