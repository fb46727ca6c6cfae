# gigsync/db/session.py
"""
Unit of work over the document store.

A DocumentSession tracks every aggregate it loads or stores, collects
outgoing messages in an outbox, and writes everything in one transaction on
save_changes(). Messages are published only after the commit succeeds, so a
handler that raises before saving leaves no partial state and sends nothing.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel

from gigsync.db.document_store import document_store
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.services.messaging.message_bus import MessageBus, MessageEnvelope, message_bus

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


class DocumentStore(Protocol):
    async def load(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    async def load_many(self, collection: str, doc_ids: list[str]) -> dict[str, dict[str, Any]]: ...

    async def query(self, collection: str, filters: dict[str, Any]) -> list[dict[str, Any]]: ...

    async def apply_changes(
        self,
        upserts: list[tuple[str, str, dict[str, Any]]],
        deletes: list[tuple[str, str]],
    ) -> None: ...

    async def min_poll_interval_seconds(self) -> int | None: ...

    async def user_ids_possibly_ripe(self, cutoff: datetime) -> list[str]: ...


@dataclass(slots=True)
class OutboxMessage:
    envelope: MessageEnvelope
    delay_seconds: float = 0


@dataclass
class _Tracked:
    entity: BaseModel
    snapshot: str | None = None


@dataclass
class DocumentSession:
    store: DocumentStore
    bus: MessageBus
    _tracked: dict[tuple[str, str], _Tracked] = field(default_factory=dict)
    _deleted: set[tuple[str, str]] = field(default_factory=set)
    _outbox: list[OutboxMessage] = field(default_factory=list)

    @staticmethod
    def _key(model_cls: type[BaseModel], doc_id: str) -> tuple[str, str]:
        return (model_cls.__collection__, doc_id)

    def _track(self, model_cls: type[T], body: dict[str, Any]) -> T:
        entity = model_cls.model_validate(body)
        key = self._key(model_cls, entity.id)
        existing = self._tracked.get(key)
        if existing is not None:
            return existing.entity
        self._tracked[key] = _Tracked(entity=entity, snapshot=entity.model_dump_json())
        return entity

    async def load(self, model_cls: type[T], doc_id: str | None) -> T | None:
        """Load one aggregate by id. Returns None when it does not exist."""
        if not doc_id:
            return None
        key = self._key(model_cls, doc_id)
        if key in self._deleted:
            return None
        if key in self._tracked:
            return self._tracked[key].entity

        body = await self.store.load(model_cls.__collection__, doc_id)
        if body is None:
            return None
        return self._track(model_cls, body)

    async def load_many(self, model_cls: type[T], doc_ids: list[str]) -> list[T]:
        missing = [
            doc_id for doc_id in doc_ids if self._key(model_cls, doc_id) not in self._tracked
        ]
        bodies = await self.store.load_many(model_cls.__collection__, missing) if missing else {}

        entities = []
        for doc_id in doc_ids:
            key = self._key(model_cls, doc_id)
            if key in self._deleted:
                continue
            if key in self._tracked:
                entities.append(self._tracked[key].entity)
            elif doc_id in bodies:
                entities.append(self._track(model_cls, bodies[doc_id]))
        return entities

    async def query(self, model_cls: type[T], **filters: Any) -> list[T]:
        bodies = await self.store.query(model_cls.__collection__, filters)
        return [
            self._track(model_cls, body)
            for body in bodies
            if self._key(model_cls, body["id"]) not in self._deleted
        ]

    async def query_one(self, model_cls: type[T], **filters: Any) -> T | None:
        results = await self.query(model_cls, **filters)
        return results[0] if results else None

    def store_entity(self, entity: BaseModel) -> None:
        key = self._key(type(entity), entity.id)
        self._deleted.discard(key)
        if key not in self._tracked:
            self._tracked[key] = _Tracked(entity=entity)

    def delete(self, entity: BaseModel) -> None:
        key = self._key(type(entity), entity.id)
        self._tracked.pop(key, None)
        self._deleted.add(key)

    def send(self, queue: str, message: BaseModel, headers: dict[str, str] | None = None) -> None:
        """Queue a message for publication after the next successful save."""
        self._outbox.append(OutboxMessage(envelope=MessageEnvelope.wrap(queue, message, headers)))

    def defer(
        self,
        queue: str,
        message: BaseModel,
        delay_seconds: float,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._outbox.append(
            OutboxMessage(
                envelope=MessageEnvelope.wrap(queue, message, headers),
                delay_seconds=delay_seconds,
            )
        )

    @property
    def pending_messages(self) -> list[MessageEnvelope]:
        return [item.envelope for item in self._outbox]

    async def save_changes(self) -> None:
        """Persist every changed aggregate in one transaction, then publish the outbox."""
        upserts = []
        for (collection, doc_id), tracked in self._tracked.items():
            current = tracked.entity.model_dump_json()
            if current != tracked.snapshot:
                upserts.append((collection, doc_id, tracked.entity.model_dump(mode="json")))
        deletes = sorted(self._deleted)

        await self.store.apply_changes(upserts, deletes)

        for collection, doc_id, _ in upserts:
            tracked = self._tracked[(collection, doc_id)]
            tracked.snapshot = tracked.entity.model_dump_json()
        self._deleted.clear()

        outbox, self._outbox = self._outbox, []
        for item in outbox:
            if item.delay_seconds > 0:
                await self.bus.defer_envelope(item.envelope, item.delay_seconds)
            else:
                await self.bus.send_envelope(item.envelope)

        if upserts or deletes or outbox:
            logger.debug(
                "Session changes saved",
                upserts=len(upserts),
                deletes=len(deletes),
                messages=len(outbox),
            )


def open_session(store: DocumentStore | None = None, bus: MessageBus | None = None) -> DocumentSession:
    """Open a session on the global document store and message bus."""
    return DocumentSession(store=store or document_store, bus=bus or message_bus)
