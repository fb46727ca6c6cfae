"""
Tests for health check and internal endpoints.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from gigsync.main import app
from gigsync.models.messages import GIG_PLATFORM_CALLBACK_QUEUE
from gigsync.services.messaging.message_bus import MessageBusError

client = TestClient(app)

HEALTHY_DB = {"healthy": True, "pool_stats": {"pool_size": 2}}


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "gigsync"}


def test_readyz_endpoint_all_services_healthy():
    """Test readiness endpoint when all services are healthy."""
    with (
        patch("gigsync.routes.health.redis_ping", new=AsyncMock(return_value=True)),
        patch("gigsync.routes.health.db_health_check", new=AsyncMock(return_value=HEALTHY_DB)),
        patch("gigsync.routes.health.settings.DATABASE_URL", "postgresql://localhost/gigsync"),
        patch("gigsync.routes.health.settings.REDIS_URL", "redis://localhost:6379"),
        patch("gigsync.routes.health.settings.GIG_PLATFORM_API_URL", "https://gigdata.example.com/"),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    checks = data["checks"]
    assert checks["redis"]["ok"] is True
    assert checks["database"]["ok"] is True
    assert checks["database"]["pool_size"] == 2
    assert checks["configuration"]["ok"] is True
    assert isinstance(checks["redis"]["latency_ms"], (int, float))


def test_readyz_endpoint_redis_unhealthy():
    """Test readiness endpoint when Redis is down."""
    with (
        patch("gigsync.routes.health.redis_ping", new=AsyncMock(side_effect=ConnectionError("down"))),
        patch("gigsync.routes.health.db_health_check", new=AsyncMock(return_value=HEALTHY_DB)),
    ):
        response = client.get("/readyz")

    # Should still return 200, but overall_ok should be False
    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["redis"]["ok"] is False
    assert "ConnectionError" in data["checks"]["redis"]["error"]


def test_readyz_endpoint_database_unhealthy():
    """Test readiness endpoint when the database pool is unhealthy."""
    with (
        patch("gigsync.routes.health.redis_ping", new=AsyncMock(return_value=True)),
        patch(
            "gigsync.routes.health.db_health_check",
            new=AsyncMock(return_value={"healthy": False, "error": "Connection failed"}),
        ),
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["ok"] is False
    assert data["checks"]["database"]["error"] == "Connection failed"


def test_readyz_endpoint_missing_gig_platform_url():
    """Test readiness endpoint when the gig data platform is not configured."""
    with (
        patch("gigsync.routes.health.redis_ping", new=AsyncMock(return_value=True)),
        patch("gigsync.routes.health.db_health_check", new=AsyncMock(return_value=HEALTHY_DB)),
        patch("gigsync.routes.health.settings.GIG_PLATFORM_API_URL", None),
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert "GIG_PLATFORM_API_URL not set" in data["checks"]["configuration"]["issues"]


def test_fetch_trigger_endpoint_queues_trigger():
    send = AsyncMock(return_value="message-1")
    with patch("gigsync.routes.internal.send_fetch_trigger", new=send):
        response = client.post("/internal/fetch-trigger")

    assert response.status_code == 202
    assert response.json() == {"queued": True, "message_id": "message-1"}
    send.assert_awaited_once_with(source="api")


def test_fetch_trigger_endpoint_reports_queue_outage():
    send = AsyncMock(side_effect=MessageBusError("push failed", operation="send", recoverable=True))
    with patch("gigsync.routes.internal.send_fetch_trigger", new=send):
        response = client.post("/internal/fetch-trigger")

    assert response.status_code == 503


def test_gig_platform_callback_is_queued(world):
    payload = {
        "requestId": "request-1",
        "resultType": "Success",
        "platformData": {"interactions": [], "achievements": []},
    }
    with patch("gigsync.routes.internal.message_bus", new=world.bus):
        response = client.post("/internal/gig-platform/callback", json=payload)

    assert response.status_code == 202
    [envelope] = world.queue(GIG_PLATFORM_CALLBACK_QUEUE)
    assert response.json()["message_id"] == envelope.id
    assert envelope.decode().request_id == "request-1"


def test_gig_platform_callback_rejects_invalid_payload():
    response = client.post("/internal/gig-platform/callback", json={"resultType": "Success"})

    assert response.status_code == 422
