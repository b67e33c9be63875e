"""Embedding client: batching and memoisation over an embedding provider.

The client is the only path from the pipeline to an
:class:`~docintel.interfaces.embedding_provider.IEmbeddingProvider`.  It

1. de-duplicates identical texts within one call,
2. answers texts it has seen before from a bounded cache keyed by the
   SHA-256 of ``provider name + text``,
3. sends the remaining texts in batches of at most ``batch_size``, with at
   most ``max_concurrency`` batches in flight,
4. checks every returned batch for count and dimension before caching it.

When a batch fails, the batches that succeeded are already cached, so the
caller's retry only pays for the failed part.  The error itself is raised
unchanged; retrying is the caller's job.
"""

from __future__ import annotations

import asyncio
import hashlib
from typing import TYPE_CHECKING

import structlog

from docintel.utils.concurrency import throttled_gather
from docintel.utils.errors import EmbeddingError

if TYPE_CHECKING:
    from docintel.interfaces.cache_provider import ICacheProvider
    from docintel.interfaces.embedding_provider import IEmbeddingProvider

logger = structlog.get_logger(logger_name=__name__)


class EmbeddingClient:
    """Batches and memoises embedding requests.

    Parameters
    ----------
    provider:
        The embedding backend.
    cache:
        Optional memo of previously computed vectors.  Should be bounded
        (e.g. :class:`~docintel.providers.cache.memory_cache.MemoryCacheProvider`).
    batch_size:
        Maximum texts per provider call.
    max_concurrency:
        Maximum provider calls in flight for one :meth:`embed` call.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        cache: ICacheProvider | None = None,
        batch_size: int = 64,
        max_concurrency: int = 4,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self._provider = provider
        self._cache = cache
        self._batch_size = batch_size
        self._max_concurrency = max(1, max_concurrency)

    @property
    def dimension(self) -> int:
        return self._provider.get_dimension()

    @property
    def provider_name(self) -> str:
        return self._provider.get_provider_name()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Return one vector per text, in input order.

        Raises
        ------
        docintel.utils.errors.TransientError
            When the provider times out, is rate limited or unreachable.
        EmbeddingError
            When the provider rejects the input or returns malformed vectors.
        """
        if not texts:
            return []

        keys = [self._cache_key(t) for t in texts]
        resolved: dict[str, list[float]] = {}
        pending: dict[str, str] = {}  # cache key -> text, first occurrence wins

        for key, text in zip(keys, texts):
            if key in resolved or key in pending:
                continue
            cached = await self._cache.get(key) if self._cache is not None else None
            if cached is not None:
                resolved[key] = cached
            else:
                pending[key] = text

        if pending:
            pending_keys = list(pending)
            batches = [
                pending_keys[i : i + self._batch_size]
                for i in range(0, len(pending_keys), self._batch_size)
            ]
            results = await throttled_gather(
                [self._embed_batch(batch, pending) for batch in batches],
                semaphore=asyncio.Semaphore(self._max_concurrency),
            )
            first_error: BaseException | None = None
            for batch, result in zip(batches, results):
                if isinstance(result, BaseException):
                    first_error = first_error or result
                    continue
                resolved.update(zip(batch, result))
            if first_error is not None:
                logger.warning(
                    "embedding_batch_failed",
                    provider=self.provider_name,
                    batches=len(batches),
                    error=str(first_error),
                )
                raise first_error

        logger.debug(
            "embedding_complete",
            provider=self.provider_name,
            requested=len(texts),
            unique=len(resolved),
            computed=len(pending),
        )
        return [resolved[key] for key in keys]

    async def embed_one(self, text: str) -> list[float]:
        """Return the vector for a single text."""
        vectors = await self.embed([text])
        return vectors[0]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _embed_batch(self, batch: list[str], pending: dict[str, str]) -> list[list[float]]:
        vectors = await self._provider.embed([pending[key] for key in batch])
        self._check_batch(len(batch), vectors)
        if self._cache is not None:
            for key, vector in zip(batch, vectors):
                await self._cache.set(key, vector)
        return vectors

    def _check_batch(self, expected: int, vectors: list[list[float]]) -> None:
        if len(vectors) != expected:
            raise EmbeddingError(
                message=f"Provider returned {len(vectors)} vectors for {expected} texts",
                provider_name=self.provider_name,
            )
        dimension = self.dimension
        for vector in vectors:
            if len(vector) != dimension:
                raise EmbeddingError(
                    message=f"Expected {dimension}-dim vectors, got {len(vector)}",
                    provider_name=self.provider_name,
                )

    def _cache_key(self, text: str) -> str:
        digest = hashlib.sha256(f"{self.provider_name}\x00{text}".encode("utf-8")).hexdigest()
        return f"embedding:{digest}"
