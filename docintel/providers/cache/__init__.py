"""Cache providers."""

from docintel.providers.cache.memory_cache import MemoryCacheProvider

__all__ = ["MemoryCacheProvider"]
