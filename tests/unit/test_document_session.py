"""
Tests for the DocumentSession unit of work and its outbox.
"""

import pytest

from gigsync.models.domain.sync_log_domain import DataSyncLog
from gigsync.models.domain.user_domain import User
from gigsync.models.messages import FETCH_TRIGGER_QUEUE, PlatformDataFetchTriggerMessage


class TestDocumentSession:
    @pytest.mark.asyncio
    async def test_load_returns_same_instance_within_session(self, world):
        user = world.add_user(name="Worker")
        session = world.session()

        first = await session.load(User, user.id)
        second = await session.load(User, user.id)

        assert first is second
        assert await session.load(User, "missing") is None
        assert await session.load(User, None) is None

    @pytest.mark.asyncio
    async def test_only_changed_documents_are_written(self, world):
        unchanged = world.add_user(name="Unchanged")
        changed = world.add_user(name="Before")
        session = world.session()

        await session.load(User, unchanged.id)
        loaded = await session.load(User, changed.id)
        loaded.name = "After"
        await session.save_changes()

        assert world.store.get(User, changed.id).name == "After"
        assert world.store.apply_calls == 1

    @pytest.mark.asyncio
    async def test_messages_are_published_after_commit(self, world):
        session = world.session()
        session.store_entity(DataSyncLog(user_id="user-1", platform_id="platform-1"))
        session.send(FETCH_TRIGGER_QUEUE, PlatformDataFetchTriggerMessage())
        session.defer(FETCH_TRIGGER_QUEUE, PlatformDataFetchTriggerMessage(), 30)

        assert world.queue(FETCH_TRIGGER_QUEUE) == []

        await session.save_changes()

        assert len(world.store.all(DataSyncLog)) == 1
        assert len(world.queue(FETCH_TRIGGER_QUEUE)) == 1
        assert len(world.deferred()) == 1
        assert session.pending_messages == []

    @pytest.mark.asyncio
    async def test_failed_commit_publishes_nothing(self, world):
        session = world.session()
        session.store_entity(DataSyncLog(user_id="user-1", platform_id="platform-1"))
        session.send(FETCH_TRIGGER_QUEUE, PlatformDataFetchTriggerMessage())
        world.store.fail_next_apply = True

        with pytest.raises(RuntimeError):
            await session.save_changes()

        assert world.store.all(DataSyncLog) == []
        assert world.queue(FETCH_TRIGGER_QUEUE) == []

    @pytest.mark.asyncio
    async def test_handler_raising_before_save_leaves_no_trace(self, world):
        user = world.add_user(name="Before")

        async def failing_handler():
            session = world.session()
            loaded = await session.load(User, user.id)
            loaded.name = "After"
            session.send(FETCH_TRIGGER_QUEUE, PlatformDataFetchTriggerMessage())
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await failing_handler()

        assert world.store.get(User, user.id).name == "Before"
        assert world.queue(FETCH_TRIGGER_QUEUE) == []

    @pytest.mark.asyncio
    async def test_delete_removes_document(self, world):
        sync_log = world.add(DataSyncLog(user_id="user-1", platform_id="platform-1"))
        session = world.session()

        loaded = await session.load(DataSyncLog, sync_log.id)
        session.delete(loaded)
        assert await session.load(DataSyncLog, sync_log.id) is None
        await session.save_changes()

        assert world.store.get(DataSyncLog, sync_log.id) is None

    @pytest.mark.asyncio
    async def test_query_one_filters_by_fields(self, world):
        first = world.add(DataSyncLog(user_id="user-1", platform_id="platform-1"))
        world.add(DataSyncLog(user_id="user-2", platform_id="platform-1"))
        session = world.session()

        found = await session.query_one(DataSyncLog, user_id="user-1", platform_id="platform-1")

        assert found.id == first.id
        assert await session.query_one(DataSyncLog, user_id="user-3") is None
