"""
Health check endpoints with database pool and Redis monitoring.
"""

import time

from fastapi import APIRouter

from gigsync.config import settings
from gigsync.db.pool import db_health_check
from gigsync.infrastructure.observability.logging import log_health_check
from gigsync.services.fetch_correlation_store import fetch_correlation_store
from gigsync.services.fetch_scheduler import fetch_scheduler
from gigsync.services.redis_client import fast_redis

router = APIRouter()


async def redis_ping() -> bool:
    return await fast_redis.ping()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "gigsync"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check with all dependencies including database pool.
    """
    checks = {}
    overall_ok = True

    # 1) Redis health check
    t0 = time.time()
    try:
        redis_ok = await redis_ping()
        checks["redis"] = {
            "ok": bool(redis_ok),
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = overall_ok and bool(redis_ok)
    except Exception as e:
        checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Database pool health check
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)

        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            checks["database"].update(db_health["pool_stats"])
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")

        overall_ok = overall_ok and is_healthy

    except Exception as e:
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = False

    # 3) Configuration checks
    config_issues = []
    if not settings.DATABASE_URL:
        config_issues.append("DATABASE_URL not set")
    if not settings.REDIS_URL and not settings.UPSTASH_REDIS_REST_URL:
        config_issues.append("REDIS_URL not set")
    if not settings.GIG_PLATFORM_API_URL:
        config_issues.append("GIG_PLATFORM_API_URL not set")

    config_ok = not config_issues
    checks["configuration"] = {
        "ok": config_ok,
        "issues": config_issues if config_issues else None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and config_ok

    for service in ("redis", "database"):
        check = checks[service]
        if not check["ok"]:
            log_health_check(
                service, False, check.get("latency_ms", 0.0), check.get("error", "unhealthy")
            )

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()


@router.get("/health/fetch-correlations")
async def fetch_correlation_health():
    return await fetch_correlation_store.health_check()


@router.get("/health/fetch-scheduler")
async def fetch_scheduler_status():
    return fetch_scheduler.get_status()
