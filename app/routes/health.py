"""
Health check endpoints: liveness, readiness (database, cache backend,
notification worker) and detailed cache/database views.
"""

import time

from fastapi import APIRouter, Request

from app.config import settings
from app.db.pool import db_health_check
from app.infrastructure.observability.logging import log_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "school-core"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check across dependencies.

    The cache backend being down does not fail readiness; the service
    keeps serving from the in-process store.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)

        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            checks["database"]["pool_stats"] = db_health["pool_stats"]
        if "warnings" in db_health:
            checks["database"]["warnings"] = db_health["warnings"]
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")

        log_health_check(
            "database",
            is_healthy,
            checks["database"]["latency_ms"],
            checks["database"].get("error"),
        )

        overall_ok = overall_ok and is_healthy

    except Exception as e:
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = False

    # 2) Cache
    cache = getattr(request.app.state, "cache", None)
    if cache is None:
        checks["cache"] = {"ok": False, "error": "Cache service not started"}
        overall_ok = False
    else:
        stats = cache.get_stats()
        checks["cache"] = {"ok": True, "degraded": not stats["healthy"], **stats}

    # 3) Notification worker
    notifications = getattr(request.app.state, "notifications", None)
    if notifications is None:
        checks["notification_worker"] = {"ok": False, "error": "Worker not started"}
        overall_ok = False
    else:
        worker_health = notifications.worker.health_check()
        checks["notification_worker"] = {"ok": worker_health["healthy"], **worker_health}
        overall_ok = overall_ok and worker_health["healthy"]

    checks["configuration"] = {
        "environment": settings.environment,
        "email_configured": settings.smtp_configured(),
        "sms_configured": settings.sms_configured(),
        "push_configured": settings.push_configured(),
    }

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/cache")
async def cache_health(request: Request):
    """Cache backend and in-process store statistics."""
    cache = getattr(request.app.state, "cache", None)
    if cache is None:
        return {"error": "Cache service not started"}
    return cache.get_stats()


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()
