"""
Shared fixtures: fixed key and clock, in-memory credential store, and an
httpx mock transport standing in for Google / Microsoft.
"""

import asyncio
from collections import defaultdict, deque
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl

import httpx
import pytest

from config.settings import ClientDefaults, OAuthConfig
from connectors.encryption import TokenCipher
from connectors.http_client import OAuthHttpClient
from connectors.orchestrator import OAuthOrchestrator
from connectors.state import StateSigner
from connectors.store import CredentialStore, TenantCredential, check_fields

TEST_KEY = bytes(range(32))
STATE_SECRET = "test-state-secret"
GMAIL_REDIRECT = "https://rsvp.example.com/api/oauth/gmail/callback"
OUTLOOK_REDIRECT = "https://rsvp.example.com/api/oauth/outlook/callback"


class FakeClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.current = start or datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def time(self) -> float:
        return self.current.timestamp()

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class InMemoryCredentialStore(CredentialStore):
    def __init__(self, event_ids=(7, 8)) -> None:
        self.events = set(event_ids)
        self.records: Dict[Tuple[int, str], TenantCredential] = {}
        self.merge_calls: List[Tuple[int, str, Dict[str, Any]]] = []

    def seed(self, event_id: int, provider: str, **fields: Any) -> TenantCredential:
        record = TenantCredential(event_id=event_id, provider=provider, **fields)
        self.records[(event_id, provider)] = record
        return record

    async def event_exists(self, event_id: int) -> bool:
        return event_id in self.events

    async def get(self, event_id: int, provider: str) -> Optional[TenantCredential]:
        record = self.records.get((event_id, provider))
        return replace(record) if record else None

    async def merge(self, event_id: int, provider: str, fields) -> None:
        check_fields(fields)
        self.merge_calls.append((event_id, provider, dict(fields)))
        record = self.records.get((event_id, provider)) or TenantCredential(event_id, provider)
        record = replace(record, **fields)
        self.records[(event_id, provider)] = record


class ProviderStub:
    """
    Queue of canned responses per URL (query string ignored).

    Queue items are ``(status, json_body)`` tuples or httpx exception
    classes, which are raised instead of answering.  ``hold_next`` parks
    the next request to a URL until the returned event is set.
    """

    def __init__(self) -> None:
        self.queues: Dict[str, Deque[Any]] = defaultdict(deque)
        self.requests: List[httpx.Request] = []
        self.holds: Dict[str, Deque[asyncio.Event]] = defaultdict(deque)

    def add(self, url: str, json: Any = None, status: int = 200) -> None:
        self.queues[url].append((status, json if json is not None else {}))

    def fail(self, url: str, exc_type: type) -> None:
        self.queues[url].append(exc_type)

    def hold_next(self, url: str) -> asyncio.Event:
        release = asyncio.Event()
        self.holds[url].append(release)
        return release

    def requests_to(self, url: str) -> List[httpx.Request]:
        return [r for r in self.requests if str(r.url).split("?")[0] == url]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url).split("?")[0]
        queue = self.queues[url]
        if not queue:
            raise AssertionError(f"Unexpected request to {url}")
        item = queue.popleft()
        if self.holds[url]:
            await self.holds[url].popleft().wait()
        if isinstance(item, type):
            raise item("simulated failure", request=request)
        status, body = item
        return httpx.Response(status, json=body)


def form_of(request: httpx.Request) -> Dict[str, str]:
    return dict(parse_qsl(request.content.decode()))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(TEST_KEY)


@pytest.fixture
def signer(clock) -> StateSigner:
    return StateSigner(STATE_SECRET, ttl_seconds=600, clock=clock.time)


@pytest.fixture
def store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def provider_stub() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def http_client(provider_stub, sleeps) -> OAuthHttpClient:
    async def no_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return OAuthHttpClient(
        timeout=10.0,
        max_retries=3,
        backoff_base=0.5,
        transport=httpx.MockTransport(provider_stub),
        sleep=no_sleep,
    )


@pytest.fixture
def oauth_config() -> OAuthConfig:
    return OAuthConfig(
        encryption_key=TEST_KEY,
        state_secret=STATE_SECRET,
        allowed_redirect_domains=("example.com", "localhost"),
        client_defaults={
            "gmail": ClientDefaults(redirect_uri=GMAIL_REDIRECT),
            "outlook": ClientDefaults(redirect_uri=OUTLOOK_REDIRECT),
        },
    )


@pytest.fixture
def orchestrator(oauth_config, store, http_client, cipher, signer, clock) -> OAuthOrchestrator:
    return OAuthOrchestrator(
        oauth_config,
        store,
        http_client,
        cipher=cipher,
        state_signer=signer,
        clock=clock.now,
    )
