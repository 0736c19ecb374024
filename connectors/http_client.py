"""
OAuth HTTP client — token exchange and authenticated user-info calls.

Wraps ``httpx.AsyncClient`` with:
  • a fixed per-request timeout
  • exponential-backoff retries on network errors and 5xx responses
    (4xx responses are never retried)
  • secret redaction on everything that reaches the log
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional
from urllib.parse import parse_qsl

import httpx

logger = logging.getLogger(__name__)

REDACTED = "***MASKED***"
SENSITIVE_FIELDS = frozenset(
    {"client_secret", "refresh_token", "access_token", "code", "id_token"}
)
_IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})


def redact(payload: Any) -> Any:
    """Return a copy of *payload* with every sensitive field masked."""
    if isinstance(payload, Mapping):
        return {
            key: REDACTED if key in SENSITIVE_FIELDS else redact(value)
            for key, value in payload.items()
        }
    if isinstance(payload, (list, tuple)):
        return [redact(item) for item in payload]
    return payload


def format_for_log(payload: Any) -> str:
    """
    Serialise a request/response body for logging, secrets masked.

    Raw strings are parsed as JSON or as a form body when possible so
    their fields are masked too.
    """
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError:
            if "=" not in payload:
                return payload[:500]
            payload = dict(parse_qsl(payload, keep_blank_values=True))
    return json.dumps(redact(payload), default=str, sort_keys=True)


class OAuthHttpError(Exception):
    """
    A provider call that failed for good.

    ``status_code`` is None when no response was received; ``body`` is the
    provider's parsed error payload (dict) or raw text.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def provider_error(self) -> Optional[str]:
        if isinstance(self.body, Mapping):
            error = self.body.get("error")
            if isinstance(error, Mapping):
                # Microsoft Graph nests {"error": {"code", "message"}}
                return error.get("code")
            return error
        return None

    @property
    def provider_error_description(self) -> Optional[str]:
        if isinstance(self.body, Mapping):
            error = self.body.get("error")
            if isinstance(error, Mapping):
                return error.get("message")
            return self.body.get("error_description")
        return None


def _parse_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class OAuthHttpClient:
    """Outbound HTTP for the OAuth flow."""

    def __init__(
        self,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_base: float = 0.5,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def exchange_token(self, url: str, form: Dict[str, str]) -> Dict[str, Any]:
        """POST a form-urlencoded grant to a token endpoint."""
        logger.debug("OAuth outgoing request POST %s %s", url, format_for_log(form))
        try:
            return await self._request("POST", url, data=form)
        except OAuthHttpError as exc:
            raise OAuthHttpError(
                f"OAuth token exchange failed: {exc}", exc.status_code, exc.body
            ) from exc

    async def get_authenticated(self, url: str, access_token: str) -> Dict[str, Any]:
        """GET a JSON resource with a bearer token."""
        logger.debug("OAuth outgoing request GET %s", url)
        try:
            return await self._request(
                "GET", url, headers={"Authorization": f"Bearer {access_token}"}
            )
        except OAuthHttpError as exc:
            raise OAuthHttpError(
                f"Authenticated API request failed: {exc}", exc.status_code, exc.body
            ) from exc

    def _backoff(self, attempt: int) -> float:
        return self._backoff_base * (2 ** attempt)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        data: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        attempts = self._max_retries + 1

        for attempt in range(attempts):
            last = attempt == attempts - 1
            try:
                response = await self._client.request(method, url, data=data, headers=headers)
            except httpx.TransportError as exc:
                # A POST that may have reached the server is not replayed:
                # an authorization code is single-use.
                retryable = method in _IDEMPOTENT_METHODS or isinstance(
                    exc, (httpx.ConnectError, httpx.ConnectTimeout)
                )
                if retryable and not last:
                    logger.warning(
                        "Retrying %s %s after network error (attempt %d/%d): %s",
                        method, url, attempt + 1, attempts, exc,
                    )
                    await self._sleep(self._backoff(attempt))
                    continue
                logger.error("OAuth request failed - no response: %s %s: %s", method, url, exc)
                raise OAuthHttpError(f"{method} {url} failed: {exc}") from exc

            body = _parse_body(response)

            if response.status_code >= 500:
                if not last:
                    logger.warning(
                        "Retrying %s %s after %d (attempt %d/%d)",
                        method, url, response.status_code, attempt + 1, attempts,
                    )
                    await self._sleep(self._backoff(attempt))
                    continue
                logger.error(
                    "OAuth server error response %s %s: %d %s",
                    method, url, response.status_code, format_for_log(body),
                )
                raise OAuthHttpError(
                    f"{method} {url} returned {response.status_code} after {attempts} attempts",
                    response.status_code,
                    body,
                )

            if response.status_code >= 400:
                logger.error(
                    "OAuth server error response %s %s: %d %s",
                    method, url, response.status_code, format_for_log(body),
                )
                raise OAuthHttpError(
                    f"{method} {url} returned {response.status_code}",
                    response.status_code,
                    body,
                )

            if not isinstance(body, dict):
                raise OAuthHttpError(
                    f"{method} {url} returned a non-JSON body", response.status_code, body
                )

            logger.debug(
                "OAuth response received %s %s: %d keys=%s body=%s",
                method, url, response.status_code, sorted(body), format_for_log(body),
            )
            return body

        raise OAuthHttpError(f"{method} {url} failed")  # pragma: no cover
