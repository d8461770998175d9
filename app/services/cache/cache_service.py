"""
Two-tier cache: Redis when it is healthy, process memory otherwise.

Callers never see Redis availability. Any Redis error flips the service
to memory mode and schedules a single reconnect attempt; a successful
reconnect flips it back. A cache miss caused by an outage looks exactly
like a normal miss.
"""

import asyncio
import json
import math
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from app.config import Settings
from app.infrastructure.observability.logging import get_logger
from app.services.cache.memory_store import MemoryCacheStore
from app.services.cache.redis_backend import RedisCacheBackend

logger = get_logger(__name__)

T = TypeVar("T")

TAG_KEY_PREFIX = "tag:"


class CacheService:
    def __init__(
        self,
        backend: RedisCacheBackend | None = None,
        *,
        default_ttl: float = 300.0,
        max_memory_size: int = 1000,
        retry_delay: float = 5.0,
        sweep_interval: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.default_ttl = default_ttl
        self.retry_delay = retry_delay
        self.sweep_interval = sweep_interval
        self.memory = MemoryCacheStore(max_size=max_memory_size, clock=clock)
        self._clock = clock
        self._healthy = False
        self._retry_task: asyncio.Task | None = None
        self._sweep_task: asyncio.Task | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheService":
        backend = RedisCacheBackend(settings.REDIS_URL) if settings.REDIS_URL else None
        return cls(
            backend,
            default_ttl=settings.CACHE_DEFAULT_TTL_SECONDS,
            max_memory_size=settings.CACHE_MAX_MEMORY_ENTRIES,
            retry_delay=settings.CACHE_RETRY_DELAY_SECONDS,
            sweep_interval=settings.CACHE_SWEEP_INTERVAL_SECONDS,
        )

    @property
    def backend_healthy(self) -> bool:
        return self.backend is not None and self._healthy

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect to Redis (if configured) and start the memory sweep loop."""
        if self.backend is None:
            logger.info("Redis URL not configured, using in-memory cache only")
        else:
            try:
                await self.backend.initialize()
                self._healthy = True
                logger.info("Redis cache service initialized")
            except Exception as e:
                self._mark_unhealthy("initialize", e)

        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Cancel background tasks and close the Redis pool."""
        for task in (self._sweep_task, self._retry_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._sweep_task = None
        self._retry_task = None

        if self.backend is not None:
            try:
                await self.backend.close()
            except Exception as e:
                logger.error("Error closing Redis cache backend", error=str(e))
        self._healthy = False

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep_memory()

    def sweep_memory(self) -> int:
        return self.memory.sweep()

    # ------------------------------------------------------------------
    # Health tracking
    # ------------------------------------------------------------------

    def _mark_unhealthy(self, operation: str, error: Exception) -> None:
        logger.error(
            "Redis cache operation failed, falling back to memory",
            operation=operation,
            error=str(error),
            error_type=type(error).__name__,
        )
        self._healthy = False
        self._schedule_retry()

    def _schedule_retry(self) -> None:
        if self.backend is None:
            return
        if self._retry_task is not None and not self._retry_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._retry_task = loop.create_task(self._retry_backend())

    async def _retry_backend(self) -> None:
        await asyncio.sleep(self.retry_delay)
        logger.info("Retrying Redis connection")
        try:
            if not self.backend.initialized:
                await self.backend.initialize()
            await self.backend.ping()
        except Exception as e:
            logger.warning("Redis reconnect failed", error=str(e))
            self._retry_task = None
            self._schedule_retry()
            return

        self._retry_task = None
        self._healthy = True
        logger.info("Redis connection restored")

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def _serialize(self, value: Any) -> str:
        # TypeError here is a caller bug and must surface
        return json.dumps({"data": value, "timestamp": self._clock()})

    def _memory_get(self, key: str) -> Any:
        # Both tiers hold the JSON form, so every read returns a fresh copy
        raw = self.memory.get(key)
        return None if raw is None else json.loads(raw)["data"]

    async def set(
        self,
        key: str,
        value: Any,
        ttl: float | None = None,
        tags: list[str] | None = None,
    ) -> None:
        if tags:
            await self.set_with_tags(key, value, tags, ttl=ttl)
            return

        ttl = self.default_ttl if ttl is None else ttl
        serialized = self._serialize(value)

        if self.backend_healthy:
            try:
                await self.backend.setex(key, max(1, math.ceil(ttl)), serialized)
                return
            except Exception as e:
                self._mark_unhealthy("set", e)

        self.memory.set(key, serialized, ttl)

    async def get(self, key: str) -> Any:
        if self.backend_healthy:
            try:
                raw = await self.backend.get(key)
                if raw is not None:
                    return json.loads(raw)["data"]
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("Discarding undecodable cache entry", key=key[:30], error=str(e))
            except Exception as e:
                self._mark_unhealthy("get", e)

        return self._memory_get(key)

    async def has(self, key: str) -> bool:
        if self.backend_healthy:
            try:
                if await self.backend.exists(key):
                    return True
            except Exception as e:
                self._mark_unhealthy("exists", e)

        return key in self.memory

    async def delete(self, key: str) -> None:
        if self.backend_healthy:
            try:
                await self.backend.delete(key)
            except Exception as e:
                self._mark_unhealthy("delete", e)

        self.memory.delete(key)

    async def clear(self) -> None:
        if self.backend_healthy:
            try:
                await self.backend.flushdb()
            except Exception as e:
                self._mark_unhealthy("clear", e)

        self.memory.clear()

    async def get_or_set(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl: float | None = None,
    ) -> T:
        """
        Return the cached value, or await producer, cache and return its result.

        Two concurrent misses may both run producer; the last write wins.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        value = await producer()
        await self.set(key, value, ttl=ttl)
        return value

    # ------------------------------------------------------------------
    # Tag index
    # ------------------------------------------------------------------

    async def set_with_tags(
        self, key: str, value: Any, tags: list[str], ttl: float | None = None
    ) -> None:
        """
        Store a value and record its key under each tag.

        A tag index maps key -> expiry time and is rewritten on every call,
        so it lives as long as its longest-lived member.
        """
        ttl = self.default_ttl if ttl is None else ttl
        await self.set(key, value, ttl=ttl)

        now = self._clock()
        for tag in tags:
            tag_key = f"{TAG_KEY_PREFIX}{tag}"
            members = {
                member: expires_at
                for member, expires_at in (await self._tag_members(tag_key)).items()
                if expires_at > now
            }
            members[key] = now + ttl
            await self.set(tag_key, members, ttl=max(members.values()) - now)

    async def _tag_members(self, tag_key: str) -> dict[str, float]:
        members = await self.get(tag_key)
        return members if isinstance(members, dict) else {}

    async def invalidate_by_tags(self, tags: list[str]) -> None:
        for tag in tags:
            tag_key = f"{TAG_KEY_PREFIX}{tag}"
            tagged_keys = list(await self._tag_members(tag_key))

            for key in tagged_keys:
                await self.delete(key)

            await self.delete(tag_key)
            logger.debug("Invalidated cache tag", tag=tag, keys=len(tagged_keys))

    def get_stats(self) -> dict[str, Any]:
        return {
            "backend": "redis" if self.backend_healthy else "memory",
            "healthy": self.backend_healthy,
            "memory_cache_size": len(self.memory),
            "max_memory_cache_size": self.memory.max_size,
        }
