import copy
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from gigsync.config import settings
from gigsync.db.session import DocumentSession
from gigsync.models.domain.catalog_domain import App, Platform
from gigsync.models.domain.enums import (
    PlatformAuthenticationMechanism,
    PlatformIntegrationType,
)
from gigsync.models.domain.user_domain import User
from gigsync.services.messaging.message_bus import MessageBus, MessageEnvelope


class FakeRedis:
    """In-memory stand-in for FastRedisClient's key/value commands."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.fail_writes = False

    async def ping(self) -> bool:
        return True

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        if self.fail_writes:
            return False
        self.store[key] = value
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None


@dataclass
class EnqueuedJob:
    function: str
    payload: Any
    queue_name: str
    defer_by: float | None = None
    expires: float | None = None
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)


class FakeArqRedis:
    """Records enqueue_job calls in place of an arq pool."""

    def __init__(self):
        self.jobs: list[EnqueuedJob] = []
        self.fail_writes = False
        self.closed = False

    async def enqueue_job(
        self,
        function: str,
        *args,
        _queue_name: str | None = None,
        _defer_by: float | None = None,
        _expires: float | None = None,
        **kwargs,
    ) -> EnqueuedJob:
        if self.fail_writes:
            raise RedisConnectionError("simulated outage")
        job = EnqueuedJob(
            function=function,
            payload=args[0],
            queue_name=_queue_name,
            defer_by=_defer_by,
            expires=_expires,
        )
        self.jobs.append(job)
        return job

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self.closed = True


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class InMemoryDocumentStore:
    """Document store over a dict, with the same contract as PostgresDocumentStore."""

    def __init__(self):
        self.documents: dict[tuple[str, str], dict] = {}
        self.fail_next_apply = False
        self.apply_calls = 0

    async def load(self, collection: str, doc_id: str) -> dict | None:
        body = self.documents.get((collection, doc_id))
        return copy.deepcopy(body) if body is not None else None

    async def load_many(self, collection: str, doc_ids: list[str]) -> dict[str, dict]:
        return {
            doc_id: copy.deepcopy(self.documents[(collection, doc_id)])
            for doc_id in doc_ids
            if (collection, doc_id) in self.documents
        }

    async def query(self, collection: str, filters: dict) -> list[dict]:
        results = []
        for (doc_collection, doc_id), body in sorted(self.documents.items()):
            if doc_collection != collection:
                continue
            if all(body.get(key) == value for key, value in filters.items()):
                results.append(copy.deepcopy(body))
        return results

    async def apply_changes(self, upserts, deletes) -> None:
        self.apply_calls += 1
        if self.fail_next_apply:
            self.fail_next_apply = False
            raise RuntimeError("simulated database failure")
        for collection, doc_id, body in upserts:
            # Round-trip through JSON like the JSONB column does
            self.documents[(collection, doc_id)] = json.loads(json.dumps(body))
        for collection, doc_id in deletes:
            self.documents.pop((collection, doc_id), None)

    def _live_polled_connections(self):
        for (collection, doc_id), body in sorted(self.documents.items()):
            if collection != User.__collection__:
                continue
            for connection in body.get("platform_connections", []):
                if connection.get("is_deleted") or connection.get("poll_interval_seconds") is None:
                    continue
                yield doc_id, connection

    async def min_poll_interval_seconds(self) -> int | None:
        intervals = [c["poll_interval_seconds"] for _, c in self._live_polled_connections()]
        return min(intervals) if intervals else None

    async def user_ids_possibly_ripe(self, cutoff: datetime) -> list[str]:
        user_ids = []
        for user_id, connection in self._live_polled_connections():
            completed = _parse_datetime(connection.get("last_fetch_attempt_completed"))
            if (completed is None or completed <= cutoff) and user_id not in user_ids:
                user_ids.append(user_id)
        return user_ids

    def get(self, model_cls, doc_id: str):
        body = self.documents.get((model_cls.__collection__, doc_id))
        return model_cls.model_validate(body) if body is not None else None

    def all(self, model_cls) -> list:
        return [
            model_cls.model_validate(body)
            for (collection, _), body in sorted(self.documents.items())
            if collection == model_cls.__collection__
        ]

    def put(self, entity) -> None:
        self.documents[(entity.__collection__, entity.id)] = entity.model_dump(mode="json")


class World:
    """Wires the in-memory store, fake Redis and a bus together for handler tests."""

    def __init__(self):
        self.redis = FakeRedis()
        self.arq = FakeArqRedis()
        self.store = InMemoryDocumentStore()
        self.bus = MessageBus(pool=self.arq)

    def session(self) -> DocumentSession:
        return DocumentSession(store=self.store, bus=self.bus)

    def add(self, entity):
        self.store.put(entity)
        return entity

    def add_platform(self, **overrides) -> Platform:
        fields = {
            "name": "Gigger",
            "integration_type": PlatformIntegrationType.GIG_DATA_PLATFORM,
            "authentication_mechanism": PlatformAuthenticationMechanism.EMAIL,
            "data_poll_interval_seconds": 3600,
        }
        fields.update(overrides)
        return self.add(Platform(**fields))

    def add_app(self, **overrides) -> App:
        fields = {
            "application_id": "app-application-id",
            "name": "Subscriber",
            "secret_key": "s3cret",
            "notification_endpoint": "https://subscriber.example.com/hook",
        }
        fields.update(overrides)
        return self.add(App(**fields))

    def add_user(self, **overrides) -> User:
        return self.add(User(**overrides))

    def queue(self, queue_name: str) -> list[MessageEnvelope]:
        """Envelopes enqueued on a queue without a delay, oldest first."""
        return [
            MessageEnvelope.model_validate(job.payload)
            for job in self.arq.jobs
            if job.queue_name == settings.queue_key(queue_name) and not job.defer_by
        ]

    def deferred(self) -> list[tuple[MessageEnvelope, float]]:
        """(envelope, delay in seconds) for every delayed job, oldest first."""
        return [
            (MessageEnvelope.model_validate(job.payload), job.defer_by)
            for job in self.arq.jobs
            if job.defer_by
        ]


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def document_store():
    return InMemoryDocumentStore()


@pytest.fixture
def world():
    return World()
