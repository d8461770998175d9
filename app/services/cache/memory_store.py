"""In-process fallback store used when Redis is unavailable."""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class CacheEntry:
    """A single cached value with its creation time and lifetime (seconds)."""

    key: str
    value: Any
    timestamp: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp >= self.ttl


class MemoryCacheStore:
    """
    Bounded dict of CacheEntry objects.

    Dict order is insertion order: re-setting a key moves it to the end,
    so the first key is always the oldest write.
    """

    def __init__(self, max_size: int = 1000, clock: Callable[[], float] = time.time):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self._live_entry(key) is not None

    def _live_entry(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    def get(self, key: str) -> Any:
        entry = self._live_entry(key)
        return entry.value if entry else None

    def set(self, key: str, value: Any, ttl: float) -> None:
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(key=key, value=value, timestamp=self._clock(), ttl=ttl)

        while len(self._entries) > self.max_size:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            logger.debug("Evicted oldest memory cache entry", key=oldest[:30])

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        """
        Drop expired entries, then evict oldest-by-timestamp entries
        until the store is back under max_size.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]

        cleaned = len(expired)
        excess = len(self._entries) - self.max_size
        if excess > 0:
            by_age = sorted(self._entries.values(), key=lambda entry: entry.timestamp)
            for entry in by_age[:excess]:
                del self._entries[entry.key]
            cleaned += excess

        if cleaned:
            logger.info("Cleaned up expired/excess memory cache entries", cleaned=cleaned)
        return cleaned
