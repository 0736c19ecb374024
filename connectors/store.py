"""
Credential store — per-(event, provider) OAuth credential records.

The orchestrator only ever calls ``event_exists``, ``get`` and ``merge``.
``merge`` applies all supplied fields in one transaction.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import EventOAuthCredential, WeddingEvent

logger = logging.getLogger(__name__)

MERGEABLE_FIELDS = frozenset(
    {
        "client_id",
        "client_secret",
        "redirect_uri",
        "access_token",
        "refresh_token",
        "token_expiry",
        "account_email",
        "enabled",
    }
)


@dataclass
class TenantCredential:
    """
    One event's credential for one provider.

    ``client_secret``, ``access_token`` and ``refresh_token`` hold
    ciphertext envelopes, never plaintext.
    """

    event_id: int
    provider: str
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_uri: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expiry: Optional[datetime] = None
    account_email: Optional[str] = None
    enabled: bool = False


def check_fields(fields: Mapping[str, Any]) -> None:
    unknown = set(fields) - MERGEABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown credential fields: {sorted(unknown)}")


class CredentialStore(ABC):
    """Abstract key-value store keyed by (event_id, provider)."""

    @abstractmethod
    async def event_exists(self, event_id: int) -> bool:
        ...

    @abstractmethod
    async def get(self, event_id: int, provider: str) -> Optional[TenantCredential]:
        ...

    @abstractmethod
    async def merge(self, event_id: int, provider: str, fields: Mapping[str, Any]) -> None:
        """Create or update the record, writing all *fields* atomically."""
        ...


def _to_credential(row: EventOAuthCredential) -> TenantCredential:
    return TenantCredential(
        event_id=row.event_id,
        provider=row.provider,
        client_id=row.client_id,
        client_secret=row.client_secret,
        redirect_uri=row.redirect_uri,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        token_expiry=row.token_expiry,
        account_email=row.account_email,
        enabled=bool(row.enabled),
    )


class SqlCredentialStore(CredentialStore):
    """``CredentialStore`` backed by the ``event_oauth_credentials`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def event_exists(self, event_id: int) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(WeddingEvent.id).where(WeddingEvent.id == event_id)
            )
            return result.scalar_one_or_none() is not None

    async def get(self, event_id: int, provider: str) -> Optional[TenantCredential]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(EventOAuthCredential).where(
                    EventOAuthCredential.event_id == event_id,
                    EventOAuthCredential.provider == provider,
                )
            )
            row = result.scalar_one_or_none()
            return _to_credential(row) if row else None

    async def merge(self, event_id: int, provider: str, fields: Mapping[str, Any]) -> None:
        check_fields(fields)
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(EventOAuthCredential)
                    .where(
                        EventOAuthCredential.event_id == event_id,
                        EventOAuthCredential.provider == provider,
                    )
                    .with_for_update()
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = EventOAuthCredential(event_id=event_id, provider=provider)
                    session.add(row)
                    logger.info("Created %s credential record for event %s", provider, event_id)
                for name, value in fields.items():
                    setattr(row, name, value)
        logger.debug(
            "Merged %s credential fields for event %s: %s",
            provider, event_id, sorted(fields),
        )
