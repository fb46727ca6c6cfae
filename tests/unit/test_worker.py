import asyncio
from contextlib import asynccontextmanager

import pytest
from arq.connections import RedisSettings

from gigsync.config import settings
from gigsync.handlers.registry import QUEUE_HANDLERS
from gigsync.jobs import worker
from gigsync.jobs.fetch_trigger_job import send_fetch_trigger
from gigsync.jobs.message_pump import build_workers
from gigsync.models.messages import (
    CONNECTION_REMOVED_QUEUE,
    CONNECTION_UPDATE_NOTIFY_QUEUE,
    EMAIL_VERIFICATION_NOTIFY_QUEUE,
    FETCH_COMPLETE_QUEUE,
    FETCH_TRIGGER_QUEUE,
    GIG_PLATFORM_CALLBACK_QUEUE,
    PLATFORM_FETCH_REQUEST_QUEUE,
)


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_normalizes_job_name(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("  DUMMY ")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError):
        await worker.run_worker("missing")


def test_registry_has_timer_pump_and_combined_job():
    assert set(worker.JOB_REGISTRY) == {"fetch_trigger", "message_pump", "all"}


def test_job_name_comes_from_argv_then_environment(monkeypatch):
    monkeypatch.setenv("WORKER_JOB", "fetch_trigger")

    assert worker._requested_job(["gigsync-worker", "all"]) == "all"
    assert worker._requested_job(["gigsync-worker"]) == "fetch_trigger"


@pytest.mark.asyncio
async def test_send_fetch_trigger_queues_message(world):
    message_id = await send_fetch_trigger(bus=world.bus, source="api")

    [envelope] = world.queue(FETCH_TRIGGER_QUEUE)
    assert envelope.id == message_id
    assert envelope.decode().source == "api"


@pytest.mark.asyncio
async def test_every_pumped_queue_has_a_worker():
    workers = build_workers(redis_settings=RedisSettings())

    assert [w.queue_name for w in workers] == [settings.queue_key(q) for q in QUEUE_HANDLERS]
    assert set(QUEUE_HANDLERS) == {
        FETCH_TRIGGER_QUEUE,
        PLATFORM_FETCH_REQUEST_QUEUE,
        FETCH_COMPLETE_QUEUE,
        CONNECTION_REMOVED_QUEUE,
        CONNECTION_UPDATE_NOTIFY_QUEUE,
        GIG_PLATFORM_CALLBACK_QUEUE,
        EMAIL_VERIFICATION_NOTIFY_QUEUE,
    }


@pytest.mark.asyncio
async def test_run_all_jobs_shares_one_set_of_connections(monkeypatch):
    events = []

    @asynccontextmanager
    async def resources():
        events.append("open")
        yield
        events.append("close")

    async def trigger_loop():
        events.append("trigger")

    async def pump():
        events.append("pump")

    monkeypatch.setattr(worker, "pump_resources", resources)
    monkeypatch.setattr(worker, "run_fetch_trigger_loop", trigger_loop)
    monkeypatch.setattr(worker, "run_message_pump", pump)

    await worker.run_all_jobs()

    assert events[0] == "open"
    assert sorted(events[1:3]) == ["pump", "trigger"]
    assert events[3:] == ["close"]


@pytest.mark.asyncio
async def test_run_all_jobs_stops_the_pump_when_the_timer_fails(monkeypatch):
    closed = []

    @asynccontextmanager
    async def resources():
        try:
            yield
        finally:
            closed.append(True)

    async def trigger_loop():
        raise RuntimeError("timer broke")

    pump_cancelled = []

    async def pump():
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            pump_cancelled.append(True)
            raise

    monkeypatch.setattr(worker, "pump_resources", resources)
    monkeypatch.setattr(worker, "run_fetch_trigger_loop", trigger_loop)
    monkeypatch.setattr(worker, "run_message_pump", pump)

    with pytest.raises(ExceptionGroup):
        await worker.run_all_jobs()

    assert pump_cancelled == [True]
    assert closed == [True]
