"""
Runs the fetch scheduler's candidate queries against a real PostgreSQL.

Needs DATABASE_URL. Rows are written under a collection name unique to the
test run and deleted afterwards, so existing documents are left alone.
"""

import os
import uuid
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from gigsync.db import document_store as document_store_module
from gigsync.db import helpers
from gigsync.db.document_store import (
    MIN_POLL_INTERVAL_QUERY,
    POSSIBLY_RIPE_USERS_QUERY,
    PostgresDocumentStore,
)
from gigsync.db.helpers import fetch_all, fetch_val
from gigsync.db.pool import DatabasePoolManager
from gigsync.models.domain.enums import PlatformConnectionDeleteReason, PlatformIntegrationType
from gigsync.models.domain.user_domain import EmailConnectionInfo, PlatformConnection, User

pytestmark = pytest.mark.skipif(
    not os.getenv("DATABASE_URL"), reason="DATABASE_URL is not set"
)

CUTOFF = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def connection(platform_id: str, poll_interval_seconds: int | None = 3600, **fields) -> PlatformConnection:
    return PlatformConnection(
        platform_id=platform_id,
        platform_name=platform_id,
        external_platform_id=uuid.uuid4(),
        integration_type=PlatformIntegrationType.GIG_DATA_PLATFORM,
        connection_info=EmailConnectionInfo(email="worker@example.com", email_verified=True),
        poll_interval_seconds=poll_interval_seconds,
        **fields,
    )


@pytest_asyncio.fixture
async def store(monkeypatch):
    pool = DatabasePoolManager()
    await pool.initialize()
    monkeypatch.setattr(helpers, "db_pool", pool)
    monkeypatch.setattr(document_store_module, "db_pool", pool)

    store = PostgresDocumentStore()
    await store.ensure_schema()
    yield store
    await pool.close()


@pytest_asyncio.fixture
async def collection(store):
    name = f"users-it-{uuid.uuid4().hex}"
    yield name
    await store.apply_changes(
        [],
        [(name, doc["id"]) for doc in await store.query(name, {})],
    )


async def put_users(store, collection: str, *users: User) -> None:
    await store.apply_changes(
        [(collection, user.id, user.model_dump(mode="json")) for user in users], []
    )


async def possibly_ripe(collection: str, cutoff: datetime) -> list[str]:
    rows = await fetch_all(POSSIBLY_RIPE_USERS_QUERY, (collection, cutoff))
    return [row["id"] for row in rows]


@pytest.mark.asyncio
async def test_min_poll_interval_skips_deleted_and_unpolled(store, collection):
    deleted = connection("gone", poll_interval_seconds=60)
    deleted.mark_deleted(PlatformConnectionDeleteReason.USER_DID_NOT_EXIST)
    await put_users(
        store,
        collection,
        User(id="a", platform_connections=[connection("p1", 7200), connection("p2", None)]),
        User(id="b", platform_connections=[connection("p1", 1800), deleted]),
    )

    assert await fetch_val(MIN_POLL_INTERVAL_QUERY, (collection,)) == 1800


@pytest.mark.asyncio
async def test_min_poll_interval_is_null_without_polled_connections(store, collection):
    await put_users(store, collection, User(id="a", platform_connections=[connection("p1", None)]))

    assert await fetch_val(MIN_POLL_INTERVAL_QUERY, (collection,)) is None


@pytest.mark.asyncio
async def test_possibly_ripe_compares_completion_with_cutoff(store, collection):
    never = connection("p1")
    on_cutoff = connection("p1", last_fetch_attempt_completed=CUTOFF)
    before = connection("p1", last_fetch_attempt_completed=CUTOFF - timedelta(seconds=1))
    after = connection("p1", last_fetch_attempt_completed=CUTOFF + timedelta(seconds=1))
    unpolled = connection("p1", None)
    removed = connection("p1")
    removed.mark_deleted(PlatformConnectionDeleteReason.USER_DID_NOT_EXIST)

    await put_users(
        store,
        collection,
        User(id="never", platform_connections=[never]),
        User(id="on-cutoff", platform_connections=[on_cutoff]),
        User(id="before", platform_connections=[before]),
        User(id="after", platform_connections=[after]),
        User(id="unpolled", platform_connections=[unpolled]),
        User(id="removed", platform_connections=[removed]),
        User(id="mixed", platform_connections=[after, connection("p2")]),
    )

    assert await possibly_ripe(collection, CUTOFF) == ["before", "mixed", "never", "on-cutoff"]


@pytest.mark.asyncio
async def test_possibly_ripe_handles_offset_timestamps(store, collection):
    # Stored with +02:00; 13:30+02:00 is 11:30 UTC, before the cutoff
    user = User(id="offset", platform_connections=[connection("p1")])
    body = user.model_dump(mode="json")
    body["platform_connections"][0]["last_fetch_attempt_completed"] = "2024-05-01T13:30:00+02:00"
    await store.apply_changes([(collection, user.id, body)], [])

    assert await possibly_ripe(collection, CUTOFF) == ["offset"]
