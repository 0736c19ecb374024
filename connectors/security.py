"""
Small pure checks used throughout the OAuth flow.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = ("http", "https")


def validate_redirect_uri(uri: str, allowed_host_suffixes: Iterable[str]) -> bool:
    """
    Return True if *uri* is an http(s) URL whose host is an allowed domain
    or a subdomain of one.
    """
    try:
        parts = urlsplit(uri)
        host = (parts.hostname or "").lower()
    except (TypeError, ValueError):
        logger.warning("Rejected redirect URI: unparsable")
        return False

    if parts.scheme.lower() not in _ALLOWED_SCHEMES:
        logger.warning("Rejected redirect URI: scheme %r not allowed", parts.scheme)
        return False
    if not host:
        logger.warning("Rejected redirect URI: no host")
        return False

    for suffix in allowed_host_suffixes:
        suffix = suffix.lower().lstrip(".")
        if suffix and (host == suffix or host.endswith("." + suffix)):
            return True

    logger.warning("Rejected redirect URI: host %s not in allow-list", host)
    return False


def is_token_expired(
    expiry: Optional[datetime],
    safety_buffer_seconds: int = 300,
    *,
    now: Optional[datetime] = None,
) -> bool:
    """
    True when there is no expiry, or it falls inside the safety buffer.

    Naive datetimes are treated as UTC.
    """
    if expiry is None:
        return True
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return expiry - timedelta(seconds=safety_buffer_seconds) < now
