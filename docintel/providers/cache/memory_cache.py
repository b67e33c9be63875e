"""In-memory cache provider using cachetools.TTLCache.

Bounded in size and evicting by age, so the embedding memo cannot grow
without limit in a long-running worker.
"""

from __future__ import annotations

from typing import Any

import structlog
from cachetools import TTLCache

from docintel.interfaces.cache_provider import ICacheProvider

logger = structlog.get_logger(logger_name=__name__)


class MemoryCacheProvider(ICacheProvider):
    """In-memory TTL cache backed by ``cachetools.TTLCache``.

    Parameters
    ----------
    max_size:
        Maximum number of entries; the least-recently-used entry is evicted
        once the cache is full.
    ttl:
        Time-to-live in seconds for every entry.
    """

    def __init__(self, max_size: int = 10_000, ttl: int = 3600) -> None:
        self._default_ttl = ttl
        self._cache: TTLCache[str, Any] = TTLCache(maxsize=max_size, ttl=ttl)

    # ------------------------------------------------------------------
    # ICacheProvider implementation
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        """Return the value cached under *key*; ``None`` once it is missing or stale."""
        value = self._cache.get(key)
        logger.debug("cache_hit" if value is not None else "cache_miss", key=key)
        return value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store *value* under *key*.

        ``TTLCache`` applies one TTL to every entry, so a per-item *ttl* is
        ignored.
        """
        self._cache[key] = value

    async def delete(self, key: str) -> None:
        """Drop *key*; unknown keys are ignored."""
        self._cache.pop(key, None)

    async def exists(self, key: str) -> bool:
        """Return ``True`` while *key* holds an unexpired value."""
        return key in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    @property
    def max_size(self) -> int:
        """Capacity the cache was built with."""
        return int(self._cache.maxsize)
