"""Abstract base class for cache service providers.

Used by the embedding client to memoise vectors by content hash.  The
in-memory implementation is bounded in size and evicts by TTL; a
network-backed store can be swapped in without touching callers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class ICacheProvider(ABC):
    """Contract for key-value cache services.

    All operations are async to allow for network-backed stores without
    blocking the event loop.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the value stored under *key*, or ``None`` if absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store *value* under *key*.

        Parameters
        ----------
        key:
            The cache key.
        value:
            The value to store.
        ttl:
            Time-to-live in seconds.  ``None`` uses the provider default.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the entry stored under *key*; no-op when missing."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return ``True`` if *key* is present in the cache and not expired."""
