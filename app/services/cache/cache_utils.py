"""Key conventions for dashboard and per-user caching."""

from collections.abc import Awaitable, Callable
from typing import Any

from app.services.cache.cache_service import CacheService

DASHBOARD_TTL_SECONDS = 5 * 60
USER_DATA_TTL_SECONDS = 10 * 60


class CacheUtils:
    def __init__(self, cache_service: CacheService):
        self.cache_service = cache_service

    async def cache_api_response(
        self,
        key: str,
        producer: Callable[[], Awaitable[Any]],
        ttl: float = DASHBOARD_TTL_SECONDS,
    ) -> Any:
        return await self.cache_service.get_or_set(key, producer, ttl=ttl)

    async def cache_user_data(
        self, user_id: str, data_type: str, data: Any, ttl: float = USER_DATA_TTL_SECONDS
    ) -> None:
        await self.cache_service.set(f"user:{user_id}:{data_type}", data, ttl=ttl)

    async def get_user_data(self, user_id: str, data_type: str) -> Any:
        return await self.cache_service.get(f"user:{user_id}:{data_type}")

    async def cache_dashboard_data(
        self, role: str, user_id: str, data: Any, ttl: float = DASHBOARD_TTL_SECONDS
    ) -> None:
        """Cache a dashboard payload so it can be dropped per role or per user."""
        key = f"dashboard:{role}:{user_id}"
        await self.cache_service.set_with_tags(
            key, data, [f"dashboard:{role}", f"user:{user_id}"], ttl=ttl
        )

    async def get_dashboard_data(self, role: str, user_id: str) -> Any:
        return await self.cache_service.get(f"dashboard:{role}:{user_id}")

    async def invalidate_dashboard_by_role(self, role: str) -> None:
        await self.cache_service.invalidate_by_tags([f"dashboard:{role}"])

    async def invalidate_user_cache(self, user_id: str) -> None:
        await self.cache_service.invalidate_by_tags([f"user:{user_id}"])

    def get_stats(self) -> dict[str, Any]:
        return self.cache_service.get_stats()
