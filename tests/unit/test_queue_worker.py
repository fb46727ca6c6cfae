"""
Tests for the arq job functions: handling, redelivery on failure, dead-lettering.
"""

import pytest
from arq import Retry
from arq.connections import RedisSettings

from gigsync.config import settings
from gigsync.models.messages import FETCH_TRIGGER_QUEUE, PlatformDataFetchTriggerMessage
from gigsync.services.messaging.message_bus import ERROR_REASON_HEADER, MessageEnvelope
from gigsync.services.messaging.queue_worker import build_queue_worker, queue_job


def trigger_payload(**headers) -> dict:
    return MessageEnvelope.wrap(
        FETCH_TRIGGER_QUEUE, PlatformDataFetchTriggerMessage(source="api"), headers=headers
    ).to_payload()


async def run_job(world, handler, payload, job_try: int = 1):
    job = queue_job(FETCH_TRIGGER_QUEUE, handler, bus=world.bus)
    return await job.coroutine({"job_try": job_try}, payload)


class TestQueueJob:
    def test_job_is_registered_under_queue_name(self, world):
        async def handler(message, context):
            return None

        job = queue_job(FETCH_TRIGGER_QUEUE, handler, bus=world.bus)

        assert job.name == FETCH_TRIGGER_QUEUE
        assert job.max_tries == settings.HANDLER_MAX_FAILURES

    @pytest.mark.asyncio
    async def test_handler_receives_decoded_message_and_context(self, world):
        handled = []

        async def handler(message, context):
            handled.append((message, context.message_id, context.attempt))

        payload = trigger_payload()

        assert await run_job(world, handler, payload, job_try=2) == "handled"

        [(message, message_id, attempt)] = handled
        assert message.source == "api"
        assert message_id == payload["id"]
        assert attempt == 2
        assert world.arq.jobs == []

    @pytest.mark.asyncio
    async def test_failing_handler_is_retried_by_arq(self, world):
        async def handler(message, context):
            raise RuntimeError("boom")

        with pytest.raises(Retry) as exc_info:
            await run_job(world, handler, trigger_payload())

        assert exc_info.value.defer_score == settings.FAILED_MESSAGE_DEFER_SECONDS * 1000
        assert world.queue(settings.ERROR_QUEUE_NAME) == []

    @pytest.mark.asyncio
    async def test_message_dead_lettered_on_last_try(self, world):
        async def handler(message, context):
            raise RuntimeError("boom")

        outcome = await run_job(
            world, handler, trigger_payload(), job_try=settings.HANDLER_MAX_FAILURES
        )

        assert outcome == "dead_lettered"
        [dead] = world.queue(settings.ERROR_QUEUE_NAME)
        assert "RuntimeError: boom" in dead.headers[ERROR_REASON_HEADER]
        assert world.deferred() == []

    @pytest.mark.asyncio
    async def test_unknown_message_type_goes_to_error_queue(self, world):
        async def handler(message, context):
            raise AssertionError("should not be called")

        envelope = MessageEnvelope(type="Mystery", queue=FETCH_TRIGGER_QUEUE, body={})

        assert await run_job(world, handler, envelope.to_payload()) == "undecodable"

        [dead] = world.queue(settings.ERROR_QUEUE_NAME)
        assert dead.id == envelope.id

    @pytest.mark.asyncio
    async def test_unreadable_payload_goes_to_error_queue(self, world):
        async def handler(message, context):
            raise AssertionError("should not be called")

        assert await run_job(world, handler, {"not": "an envelope"}) == "unreadable"

        [dead] = world.queue(settings.ERROR_QUEUE_NAME)
        assert dead.type == "Unreadable"
        assert "not" in dead.body["raw"]


@pytest.mark.asyncio
async def test_queue_worker_runs_one_job_at_a_time_on_its_queue(world):
    async def handler(message, context):
        return None

    worker = build_queue_worker(FETCH_TRIGGER_QUEUE, handler, RedisSettings(), bus=world.bus)

    assert worker.queue_name == settings.queue_key(FETCH_TRIGGER_QUEUE)
    assert list(worker.functions) == [FETCH_TRIGGER_QUEUE]
    assert worker.max_jobs == 1
