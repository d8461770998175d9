"""
Application entrypoint with service lifecycle management.

Services are built and started in the lifespan, exposed on app.state,
and stopped in reverse order on shutdown.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import db_pool
from app.features.notifications import build_notification_components, notifications_router
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.routes import health
from app.services.cache.cache_service import CacheService
from app.services.cache.cache_utils import CacheUtils

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


async def _shutdown_services(app: FastAPI, started: list[str]) -> list[str]:
    """Stop whatever was started, newest first. Returns error descriptions."""
    errors = []

    if "notification_worker" in started:
        try:
            logger.info("Stopping notification worker")
            await app.state.notifications.shutdown()
        except Exception as e:
            logger.error("Error stopping notification worker", error=str(e))
            errors.append(f"Notification worker: {e}")

    if "cache" in started:
        try:
            logger.info("Stopping cache service")
            await app.state.cache.stop()
        except Exception as e:
            logger.error("Error stopping cache service", error=str(e))
            errors.append(f"Cache: {e}")

    if "database_pool" in started:
        try:
            logger.info("Closing database pool")
            await db_pool.close()
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))
            errors.append(f"Database: {e}")

    return errors


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        # Cache falls back to memory if Redis is unreachable; start() never raises for that
        logger.info("Starting cache service", redis_host=settings.redis_host())
        cache = CacheService.from_settings(settings)
        await cache.start()
        app.state.cache = cache
        app.state.cache_utils = CacheUtils(cache)
        startup_tasks.append("cache")

        logger.info("Starting notification worker")
        notifications = build_notification_components(settings)
        notifications.worker.start()
        app.state.notifications = notifications
        startup_tasks.append("notification_worker")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)
        await _shutdown_services(app, startup_tasks)
        raise

    yield

    logger.info("Application shutting down")
    shutdown_errors = await _shutdown_services(app, startup_tasks)

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="School Core Services",
    description="Cache and notification delivery services for the school platform",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(notifications_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
