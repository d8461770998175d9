# app/services/cache/redis_backend.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RedisCacheBackend:
    """
    Pooled Redis connection used as the durable cache tier.

    Unlike a plain client wrapper this class lets every Redis error
    propagate: CacheService decides when to fall back to process memory.
    """

    def __init__(self, redis_url: str, max_connections: int = 20):
        self.redis_url = redis_url
        self.max_connections = max_connections
        self.pool: ConnectionPool | None = None
        self.client: redis.Redis | None = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Create the connection pool and verify it with a PING."""
        if self._initialized:
            return

        await self._reset()

        try:
            self.pool = ConnectionPool.from_url(
                self.redis_url,
                max_connections=self.max_connections,
                retry_on_timeout=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                health_check_interval=30,
                decode_responses=True,
            )
            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info("Redis cache backend initialized", max_connections=self.max_connections)

        except Exception as e:
            logger.error("Failed to initialize Redis cache backend", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def _reset(self) -> None:
        """Drop any half-open pool left behind by a failed attempt."""
        if self.client is not None:
            try:
                await self.client.aclose()
            except Exception as e:
                logger.debug("Ignoring error while discarding Redis client", error=str(e))
        if self.pool is not None:
            try:
                await self.pool.disconnect()
            except Exception as e:
                logger.debug("Ignoring error while discarding Redis pool", error=str(e))
        self.client = None
        self.pool = None

    async def close(self) -> None:
        """Clean shutdown"""
        try:
            await self._reset()
            logger.info("Redis cache backend closed")
        finally:
            self._initialized = False

    def _require_client(self) -> redis.Redis:
        if not self._initialized or self.client is None:
            raise ConnectionError("Redis client not available")
        return self.client

    async def ping(self) -> bool:
        return bool(await self._require_client().ping())

    async def get(self, key: str) -> str | None:
        return await self._require_client().get(key)

    async def setex(self, key: str, ttl_s: int, value: str) -> None:
        await self._require_client().setex(key, ttl_s, value)

    async def delete(self, key: str) -> int:
        return await self._require_client().delete(key)

    async def exists(self, key: str) -> bool:
        return await self._require_client().exists(key) > 0

    async def flushdb(self) -> None:
        await self._require_client().flushdb()
