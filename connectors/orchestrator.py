"""
OAuth flow orchestrator — authorize, callback, status, refresh.

Ties the provider profiles, state signer, token cipher, HTTP client and
credential store together.  Each public method is one flow; each flow
writes to the store at most once.

Refreshes and reconnects for the same (event, provider) are serialised
with a per-key lock, and a refresh re-reads the stored credential once
the lock is held, so a token pair is never overwritten by an older one.
Different keys never wait on each other.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from config.settings import OAuthConfig
from connectors.base import ProviderProfile
from connectors.encryption import TokenCipher
from connectors.errors import ErrorCode, OAuthFlowError
from connectors.http_client import OAuthHttpClient, OAuthHttpError, redact
from connectors.registry import get_provider
from connectors.security import is_token_expired, validate_redirect_uri
from connectors.state import StateSigner
from connectors.store import CredentialStore, TenantCredential
from utils.log_context import oauth_logger

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ClientCredentials:
    client_id: str
    client_secret: str
    redirect_uri: str


@dataclass(frozen=True)
class CallbackResult:
    provider: str
    email: str


@dataclass(frozen=True)
class ConnectionStatus:
    is_configured: bool
    account: Optional[str]
    token_expired: bool
    needs_reauthorization: bool


@dataclass(frozen=True)
class ClientConfigStatus:
    is_configured: bool
    client_id: Optional[str]
    has_client_secret: bool
    redirect_uri: str


def _expires_in(tokens: Dict[str, Any]) -> int:
    try:
        return int(tokens.get("expires_in", DEFAULT_EXPIRES_IN))
    except (TypeError, ValueError):
        return DEFAULT_EXPIRES_IN


class OAuthOrchestrator:
    """Per-event OAuth lifecycle for the supported mail providers."""

    def __init__(
        self,
        config: OAuthConfig,
        store: CredentialStore,
        http: OAuthHttpClient,
        *,
        cipher: Optional[TokenCipher] = None,
        state_signer: Optional[StateSigner] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._store = store
        self._http = http
        self._cipher = cipher or TokenCipher(config.encryption_key)
        self._states = state_signer or StateSigner(config.state_secret, config.state_ttl_seconds)
        self._clock = clock
        # Dropped once no flow holds or waits on the lock.
        self._flow_locks: "weakref.WeakValueDictionary[Tuple[int, str], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    # ── Lookups ─────────────────────────────────────────────────────────

    def _profile(self, provider: str) -> ProviderProfile:
        profile = get_provider(provider)
        if profile is None:
            raise OAuthFlowError(
                ErrorCode.INVALID_PROVIDER,
                "Invalid provider",
                "Provider must be either 'gmail' or 'outlook'",
            )
        return profile

    async def _require_event(self, event_id: int) -> None:
        if not await self._store.event_exists(event_id):
            raise OAuthFlowError(
                ErrorCode.EVENT_NOT_FOUND,
                "Event not found",
                f"No event exists with ID {event_id}",
            )

    def _resolve_client(
        self, profile: ProviderProfile, credential: Optional[TenantCredential]
    ) -> ClientCredentials:
        """Event-specific values first, then the process-wide defaults."""
        defaults = self._config.defaults_for(profile.name)
        stored_secret = ""
        if credential and credential.client_secret:
            stored_secret = self._cipher.decrypt_secret(credential.client_secret)
        return ClientCredentials(
            client_id=(credential.client_id if credential else None) or defaults.client_id,
            client_secret=stored_secret or defaults.client_secret,
            redirect_uri=(credential.redirect_uri if credential else None) or defaults.redirect_uri,
        )

    def _check_redirect(self, redirect_uri: str) -> None:
        if not validate_redirect_uri(redirect_uri, self._config.allowed_redirect_domains):
            raise OAuthFlowError(
                ErrorCode.INVALID_REDIRECT_URI,
                "Redirect URI is not allowed",
                "The configured redirect URI must use http(s) and point at an allowed domain",
            )

    def _lock_for(self, event_id: int, provider: str) -> asyncio.Lock:
        key = (event_id, provider)
        lock = self._flow_locks.get(key)
        if lock is None:
            lock = self._flow_locks[key] = asyncio.Lock()
        return lock

    def _provider_error(
        self,
        profile: ProviderProfile,
        exc: OAuthHttpError,
        code: ErrorCode,
        fallback_message: str,
        fallback_details: str,
    ) -> OAuthFlowError:
        details: Dict[str, Any] = {
            "status": exc.status_code,
            "providerResponse": redact(exc.body) if exc.body is not None else None,
        }
        if exc.provider_error:
            details["description"] = exc.provider_error_description or profile.console_hint
            return OAuthFlowError(
                code, f"{profile.vendor_name} API error: {exc.provider_error}", details
            )
        details["description"] = fallback_details
        return OAuthFlowError(code, fallback_message, details)

    # ── Authorize ───────────────────────────────────────────────────────

    async def begin_authorization(self, event_id: int, provider: str) -> str:
        """Return the provider URL the tenant admin must visit."""
        profile = self._profile(provider)
        log = oauth_logger(__name__, event_id, profile.name, "authorize")
        await self._require_event(event_id)

        credential = await self._store.get(event_id, profile.name)
        client = self._resolve_client(profile, credential)
        log.debug(
            "Credential check: event_client_id=%s client_id=%s redirect_uri=%s",
            bool(credential and credential.client_id), bool(client.client_id), client.redirect_uri,
        )
        if not client.client_id:
            log.warning("%s client ID not configured", profile.display_name)
            raise OAuthFlowError(
                ErrorCode.MISSING_CLIENT_ID,
                f"{profile.display_name} client ID not configured",
                f"You need to save {profile.display_name} OAuth credentials in your event "
                "settings before configuring the connection. Please enter your Client ID "
                "and Client Secret, then save your changes.",
            )
        self._check_redirect(client.redirect_uri)

        state = self._states.generate_state(profile.name, event_id)
        url = profile.build_authorize_url(client.client_id, client.redirect_uri, state)
        log.info("Generated %s authorization URL", profile.display_name)
        return url

    # ── Callback ────────────────────────────────────────────────────────

    async def handle_callback(
        self, provider: str, code: Optional[str], state: Optional[str]
    ) -> CallbackResult:
        """Exchange the code, look up the mailbox, and store encrypted tokens."""
        profile = self._profile(provider)
        log = oauth_logger(__name__, None, profile.name, "callback")

        if not code:
            log.warning("Missing authorization code in callback")
            raise OAuthFlowError(
                ErrorCode.MISSING_CODE,
                "Missing authorization code",
                f"The authorization code was not received from {profile.vendor_name}",
            )

        verified = self._states.verify_state(state)
        if (
            verified is None
            or verified.provider != profile.name
            or not self._states.consume(verified)
        ):
            log.warning("Invalid or expired OAuth state")
            raise OAuthFlowError(
                ErrorCode.INVALID_STATE,
                "Invalid or expired OAuth state",
                "Your authorization session has expired or is invalid. Please try again.",
            )

        event_id = verified.event_id
        log = oauth_logger(__name__, event_id, profile.name, "callback")
        log.info("Valid state for callback")
        await self._require_event(event_id)

        credential = await self._store.get(event_id, profile.name)
        client = self._resolve_client(profile, credential)
        if not client.client_id or not client.client_secret:
            log.error("OAuth client credentials not configured properly")
            raise OAuthFlowError(
                ErrorCode.INVALID_CREDENTIALS,
                f"{profile.display_name} OAuth credentials not configured properly",
                "Please check your event settings and ensure both Client ID and "
                "Client Secret are provided.",
            )
        self._check_redirect(client.redirect_uri)

        async with self._lock_for(event_id, profile.name):
            email = await self._connect_locked(event_id, profile, client, code, log)
        log.info("%s account %s connected", profile.display_name, email)
        return CallbackResult(provider=profile.name, email=email)

    async def _connect_locked(
        self,
        event_id: int,
        profile: ProviderProfile,
        client: ClientCredentials,
        code: str,
        log: logging.LoggerAdapter,
    ) -> str:
        """Exchange, look up the mailbox and persist. Caller holds the key's lock."""
        log.debug("Exchanging code for tokens")
        try:
            tokens = await self._http.exchange_token(
                profile.token_endpoint,
                profile.code_exchange_form(
                    code, client.client_id, client.client_secret, client.redirect_uri
                ),
            )
        except OAuthHttpError as exc:
            log.error("Error exchanging code for tokens: %s", exc)
            raise self._provider_error(
                profile,
                exc,
                ErrorCode.TOKEN_EXCHANGE_ERROR,
                "Failed to exchange authorization code for tokens",
                "Error occurred while exchanging the authorization code for tokens",
            ) from exc
        received_at = self._clock()

        access_token = tokens.get("access_token")
        refresh_token = tokens.get("refresh_token")
        log.info(
            "Exchanged code for tokens: access_token=%s refresh_token=%s expires_in=%s",
            bool(access_token), bool(refresh_token), tokens.get("expires_in"),
        )
        if not access_token or not refresh_token:
            raise OAuthFlowError(
                ErrorCode.MISSING_TOKENS,
                f"Failed to retrieve necessary tokens from {profile.vendor_name}",
                f"The OAuth response from {profile.vendor_name} did not include the required tokens",
            )

        try:
            user_info = await self._http.get_authenticated(profile.user_info_endpoint, access_token)
        except OAuthHttpError as exc:
            log.error("Error fetching user info: %s", exc)
            raise self._provider_error(
                profile,
                exc,
                ErrorCode.USER_INFO_ERROR,
                f"Failed to retrieve user info from {profile.vendor_name}",
                f"Could not fetch your user profile information from {profile.vendor_name}",
            ) from exc

        email = profile.extract_email(user_info)
        if not email:
            log.error("No email returned from user info endpoint")
            raise OAuthFlowError(
                ErrorCode.MISSING_EMAIL,
                f"Failed to retrieve email from {profile.vendor_name} profile",
                f"Your {profile.vendor_name} account profile did not return an email address",
            )

        await self._store.merge(
            event_id,
            profile.name,
            {
                "access_token": self._cipher.encrypt_secret(access_token),
                "refresh_token": self._cipher.encrypt_secret(refresh_token),
                "token_expiry": received_at + timedelta(seconds=_expires_in(tokens)),
                "account_email": email,
                "enabled": True,
            },
        )
        return email

    # ── Status ──────────────────────────────────────────────────────────

    async def check_status(self, event_id: int, provider: str) -> ConnectionStatus:
        profile = self._profile(provider)
        await self._require_event(event_id)
        credential = await self._store.get(event_id, profile.name)

        is_configured = bool(credential and credential.refresh_token)
        token_expired = is_token_expired(
            credential.token_expiry if credential else None,
            self._config.expiry_buffer_seconds,
            now=self._clock(),
        )
        oauth_logger(__name__, event_id, profile.name, "status-check").info(
            "Status: configured=%s expired=%s", is_configured, token_expired
        )
        return ConnectionStatus(
            is_configured=is_configured,
            account=(credential.account_email if credential else None) or None,
            token_expired=token_expired,
            needs_reauthorization=is_configured and token_expired,
        )

    # ── Refresh ─────────────────────────────────────────────────────────

    def _require_refresh_token(
        self, profile: ProviderProfile, credential: Optional[TenantCredential]
    ) -> str:
        if not credential or not credential.refresh_token:
            raise OAuthFlowError(
                ErrorCode.NOT_CONFIGURED,
                f"{profile.display_name} not configured",
                f"{profile.display_name} OAuth has not been configured for this event",
            )
        refresh_token = self._cipher.decrypt_secret(credential.refresh_token)
        if not refresh_token:
            raise OAuthFlowError(
                ErrorCode.DECRYPTION_ERROR,
                "Failed to decrypt refresh token",
                "Could not decrypt the stored refresh token; re-authorize the account",
            )
        return refresh_token

    async def _refresh_locked(
        self, event_id: int, profile: ProviderProfile, credential: Optional[TenantCredential]
    ) -> Tuple[str, datetime]:
        """Run the refresh grant and persist. Caller holds the key's lock."""
        log = oauth_logger(__name__, event_id, profile.name, "token-refresh")
        refresh_token = self._require_refresh_token(profile, credential)

        client = self._resolve_client(profile, credential)
        if not client.client_id or not client.client_secret:
            log.error("Missing client credentials for token refresh")
            raise OAuthFlowError(
                ErrorCode.MISSING_CREDENTIALS,
                f"Missing {profile.display_name} client credentials",
                "Client ID and Client Secret are required for token refresh",
            )

        log.debug("Refreshing access token")
        try:
            tokens = await self._http.exchange_token(
                profile.token_endpoint,
                profile.refresh_form(refresh_token, client.client_id, client.client_secret),
            )
        except OAuthHttpError as exc:
            log.error("Token refresh error: %s", exc)
            raise self._provider_error(
                profile,
                exc,
                ErrorCode.REFRESH_ERROR,
                f"Failed to refresh {profile.display_name} token",
                f"An error occurred while refreshing the {profile.display_name} access token",
            ) from exc
        received_at = self._clock()

        access_token = tokens.get("access_token")
        if not access_token:
            log.error("No access token in refresh response")
            raise OAuthFlowError(
                ErrorCode.REFRESH_FAILED,
                f"Failed to refresh {profile.display_name} access token",
                "The token refresh response did not include an access token",
            )

        expiry = received_at + timedelta(seconds=_expires_in(tokens))
        fields: Dict[str, Any] = {
            "access_token": self._cipher.encrypt_secret(access_token),
            "token_expiry": expiry,
        }
        new_refresh_token = tokens.get("refresh_token")
        if new_refresh_token:
            fields["refresh_token"] = self._cipher.encrypt_secret(new_refresh_token)
        await self._store.merge(event_id, profile.name, fields)

        log.info(
            "Refreshed access token, expires_at=%s rotated_refresh_token=%s",
            expiry.isoformat(), bool(new_refresh_token),
        )
        return access_token, expiry

    async def refresh(self, event_id: int, provider: str) -> datetime:
        """Refresh the stored access token; returns the new expiry."""
        profile = self._profile(provider)
        await self._require_event(event_id)
        async with self._lock_for(event_id, profile.name):
            credential = await self._store.get(event_id, profile.name)
            _, expiry = await self._refresh_locked(event_id, profile, credential)
        return expiry

    async def get_access_token(self, event_id: int, provider: str) -> str:
        """
        Plaintext access token for sending mail, refreshed first if it is
        inside the expiry buffer.
        """
        profile = self._profile(provider)

        def usable(credential: Optional[TenantCredential]) -> Optional[str]:
            if not credential or not credential.access_token:
                return None
            if is_token_expired(
                credential.token_expiry, self._config.expiry_buffer_seconds, now=self._clock()
            ):
                return None
            return self._cipher.decrypt_secret(credential.access_token) or None

        credential = await self._store.get(event_id, profile.name)
        self._require_refresh_token(profile, credential)
        token = usable(credential)
        if token:
            return token

        async with self._lock_for(event_id, profile.name):
            # Another caller may have refreshed while we waited.
            credential = await self._store.get(event_id, profile.name)
            token = usable(credential)
            if token:
                return token
            token, _ = await self._refresh_locked(event_id, profile, credential)
        return token

    # ── Client configuration ────────────────────────────────────────────

    async def save_client_config(
        self,
        event_id: int,
        provider: str,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: Optional[str] = None,
    ) -> None:
        """Store the event's own OAuth app credentials, secret encrypted."""
        profile = self._profile(provider)
        await self._require_event(event_id)

        problems: List[str] = []
        if not client_id or not client_id.strip():
            problems.append("Client ID is required")
        if not client_secret or not client_secret.strip():
            problems.append("Client Secret is required")
        if problems:
            raise OAuthFlowError(
                ErrorCode.INVALID_CONFIGURATION, "Invalid OAuth configuration", problems
            )

        fields: Dict[str, Any] = {
            "client_id": client_id.strip(),
            "client_secret": self._cipher.encrypt_secret(client_secret.strip()),
        }
        if redirect_uri:
            self._check_redirect(redirect_uri)
            fields["redirect_uri"] = redirect_uri
        await self._store.merge(event_id, profile.name, fields)
        oauth_logger(__name__, event_id, profile.name, "save-config").info(
            "Saved %s OAuth client configuration", profile.display_name
        )

    async def client_config_status(self, event_id: int, provider: str) -> ClientConfigStatus:
        """What the event has saved, without revealing the secret."""
        profile = self._profile(provider)
        await self._require_event(event_id)
        credential = await self._store.get(event_id, profile.name)
        client_id = credential.client_id if credential else None
        has_secret = bool(credential and credential.client_secret)
        return ClientConfigStatus(
            is_configured=bool(client_id) and has_secret,
            client_id=client_id or None,
            has_client_secret=has_secret,
            redirect_uri=self._resolve_client(profile, credential).redirect_uri,
        )
