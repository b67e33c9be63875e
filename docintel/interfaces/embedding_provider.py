"""Abstract base class for text-embedding service providers.

Implementations wrap an OpenAI-compatible embeddings API or a local ONNX
model.  The pipeline only talks to providers through
:class:`~docintel.services.embedding_client.EmbeddingClient`, which adds
batching and memoisation on top of this contract.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAIEmbeddingProvider     : text-embedding-3-small or any compatible API
#   FastEmbedEmbeddingProvider  : local ONNX model, no API key
# Located in: docintel/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.

        Returns
        -------
        list[list[float]]
            Embedding vectors corresponding positionally to *texts*.  Each
            inner list has length equal to :meth:`get_dimension`.

        Raises
        ------
        docintel.utils.errors.TransientError
            On timeouts, rate limits or an unreachable service.
        docintel.utils.errors.EmbeddingError
            If the provider rejects the input.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        This value must remain constant for the lifetime of the provider
        instance and must match the vectors already stored in the index.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return an identifier for this provider and model.

        Used as part of the embedding cache key, so two models never share
        cached vectors.
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured."""
