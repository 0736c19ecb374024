"""
Tests for the SQLAlchemy credential store against in-memory SQLite.
"""

from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

from connectors.store import SqlCredentialStore
from database.models import WeddingEvent
from database.session import create_engine, create_session_factory, init_models


@pytest_asyncio.fixture
async def sql_store():
    engine = create_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    await init_models(engine)
    session_factory = create_session_factory(engine)
    async with session_factory() as session:
        session.add(WeddingEvent(id=7, title="Alex & Sam"))
        await session.commit()
    yield SqlCredentialStore(session_factory)
    await engine.dispose()


@pytest.mark.asyncio
async def test_event_exists(sql_store):
    assert await sql_store.event_exists(7) is True
    assert await sql_store.event_exists(8) is False


@pytest.mark.asyncio
async def test_get_missing(sql_store):
    assert await sql_store.get(7, "gmail") is None


@pytest.mark.asyncio
async def test_merge_creates_then_updates(sql_store):
    await sql_store.merge(7, "gmail", {"client_id": "abc", "client_secret": "enc-1"})
    await sql_store.merge(
        7,
        "gmail",
        {
            "access_token": "enc-a",
            "refresh_token": "enc-r",
            "token_expiry": datetime(2026, 6, 1, 13, 0, tzinfo=timezone.utc),
            "account_email": "a@b.com",
            "enabled": True,
        },
    )

    record = await sql_store.get(7, "gmail")
    assert record.client_id == "abc"
    assert record.client_secret == "enc-1"
    assert record.refresh_token == "enc-r"
    assert record.account_email == "a@b.com"
    assert record.enabled is True
    assert record.token_expiry.replace(tzinfo=timezone.utc) == datetime(
        2026, 6, 1, 13, 0, tzinfo=timezone.utc
    )


@pytest.mark.asyncio
async def test_providers_are_separate_records(sql_store):
    await sql_store.merge(7, "gmail", {"client_id": "g"})
    await sql_store.merge(7, "outlook", {"client_id": "o"})
    assert (await sql_store.get(7, "gmail")).client_id == "g"
    assert (await sql_store.get(7, "outlook")).client_id == "o"


@pytest.mark.asyncio
async def test_unknown_field_rejected(sql_store):
    with pytest.raises(ValueError):
        await sql_store.merge(7, "gmail", {"password": "x"})
    assert await sql_store.get(7, "gmail") is None
