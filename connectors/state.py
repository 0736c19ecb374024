"""
OAuth ``state`` tokens (CSRF protection).

A state is ``base64(nonce:provider:event_id:expires_at:signature)`` where
the signature is HMAC-SHA256 over the first four fields.  The provider and
event id are bound into the signature, so a state minted for one event
cannot be replayed against another.

Verification returns ``None`` for anything that is not a valid, unexpired,
unused state; it never raises.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

NONCE_BYTES = 16
DEFAULT_TTL_SECONDS = 600
_MAX_CONSUMED = 10_000


@dataclass(frozen=True)
class OAuthState:
    nonce: str
    provider: str
    event_id: int
    expires_at: int


class StateSigner:
    """Mints and verifies signed, time-boxed, single-use state strings."""

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("OAuth state secret must not be empty")
        self._secret = secret.encode()
        self._ttl = ttl_seconds
        self._clock = clock
        # nonce -> expires_at
        self._consumed: Dict[str, int] = {}

    def _sign(self, payload: str) -> str:
        return hmac.new(self._secret, payload.encode(), hashlib.sha256).hexdigest()

    def generate_state(
        self, provider: str, event_id: int, ttl_seconds: Optional[int] = None
    ) -> str:
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        nonce = secrets.token_hex(NONCE_BYTES)
        expires_at = int(self._clock()) + ttl
        payload = f"{nonce}:{provider}:{event_id}:{expires_at}"
        raw = f"{payload}:{self._sign(payload)}"
        return base64.urlsafe_b64encode(raw.encode()).decode()

    def verify_state(self, state: Optional[str], *, consume: bool = False) -> Optional[OAuthState]:
        """
        Return the decoded state, or ``None`` if it is invalid.

        With ``consume=True`` a successfully verified state is recorded and
        any later presentation of it is rejected.
        """
        if not state:
            return None
        try:
            raw = base64.urlsafe_b64decode(state.encode("ascii")).decode("utf-8")
        except (binascii.Error, ValueError):
            logger.warning("Rejected OAuth state: not valid base64")
            return None

        fields = raw.split(":")
        if len(fields) != 5:
            logger.warning("Rejected OAuth state: expected 5 fields, got %d", len(fields))
            return None

        nonce, provider, event_id, expires_at, signature = fields
        expected = self._sign(":".join(fields[:4]))
        if not hmac.compare_digest(signature.encode(), expected.encode()):
            logger.warning("Rejected OAuth state: bad signature")
            return None

        try:
            parsed = OAuthState(
                nonce=nonce,
                provider=provider,
                event_id=int(event_id),
                expires_at=int(expires_at),
            )
        except ValueError:
            logger.warning("Rejected OAuth state: non-numeric fields")
            return None

        now = self._clock()
        if parsed.expires_at < now:
            logger.warning("Rejected OAuth state: expired")
            return None

        if parsed.nonce in self._consumed:
            logger.warning("Rejected OAuth state: already used")
            return None

        if consume:
            self.consume(parsed)
        return parsed

    def consume(self, state: OAuthState) -> bool:
        """
        Mark a verified state as used.  Returns False if it already was.
        """
        if state.nonce in self._consumed:
            return False
        self._remember(state, self._clock())
        return True

    def _remember(self, state: OAuthState, now: float) -> None:
        self._consumed = {n: exp for n, exp in self._consumed.items() if exp >= now}
        while len(self._consumed) >= _MAX_CONSUMED:
            self._consumed.pop(next(iter(self._consumed)))
        self._consumed[state.nonce] = state.expires_at
