"""
Standalone notification worker runner.

Runs the delivery worker in its own process (e.g. a worker container)
without the HTTP app. Several runners may poll the same queue; claims
are conditional updates so each job is delivered once.
"""

import asyncio

from app.config import settings
from app.db.pool import db_pool
from app.features.notifications.container import build_notification_components
from app.infrastructure.observability.logging import get_logger, setup_logging

logger = get_logger(__name__)


async def start_notification_worker() -> None:
    """Initialize the database pool, run the worker until cancelled."""
    setup_logging()
    await db_pool.initialize()

    components = build_notification_components(settings)
    components.worker.start()
    logger.info("Notification worker process started", environment=settings.environment)

    try:
        while True:
            await asyncio.sleep(settings.NOTIFICATION_POLL_INTERVAL_SECONDS)
            health = components.worker.health_check()
            logger.debug(
                "Notification worker heartbeat",
                healthy=health["healthy"],
                sweep_count=health["sweep_count"],
            )
    except asyncio.CancelledError:
        logger.info("Notification worker process stopping")
        raise
    finally:
        await components.shutdown()
        await db_pool.close()


if __name__ == "__main__":
    asyncio.run(start_notification_worker())
