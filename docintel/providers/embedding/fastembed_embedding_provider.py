"""Local ONNX-based embedding provider using fastembed.

Runs on CPU through ONNX Runtime with no API key, which makes it the
fallback when no OpenAI-compatible endpoint is configured.  The model is
loaded lazily on first use and inference runs in a worker thread.
"""

from __future__ import annotations

import asyncio

import structlog

from docintel.interfaces.embedding_provider import IEmbeddingProvider
from docintel.utils.errors import EmbeddingError, ProviderUnavailableError

logger = structlog.get_logger(logger_name=__name__)

_MODEL_DIMENSIONS: dict[str, int] = {
    "intfloat/multilingual-e5-large": 1024,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-small-en-v1.5": 384,
    "sentence-transformers/all-MiniLM-L6-v2": 384,
}

_DEFAULT_MODEL = "BAAI/bge-small-en-v1.5"
_BATCH_LIMIT = 64


class FastEmbedEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by fastembed (ONNX Runtime)."""

    def __init__(self, model_name: str | None = None) -> None:
        self._model_name = model_name or _DEFAULT_MODEL
        self._dimension = _MODEL_DIMENSIONS.get(self._model_name, 384)
        self._model = None

    def _load_model(self) -> None:
        if self._model is not None:
            return
        try:
            from fastembed import TextEmbedding

            logger.info("loading_fastembed_model", model=self._model_name)
            self._model = TextEmbedding(model_name=self._model_name)
            logger.info(
                "fastembed_model_loaded",
                model=self._model_name,
                dimension=self._dimension,
            )
        except ImportError as exc:
            raise ProviderUnavailableError(
                message="fastembed is not installed",
                provider_name=self.get_provider_name(),
            ) from exc
        except Exception as exc:
            raise ProviderUnavailableError(
                message=f"Failed to load fastembed model '{self._model_name}': {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def _embed_sync(self, texts: list[str]) -> list[list[float]]:
        self._load_model()
        all_embeddings: list[list[float]] = []
        for start in range(0, len(texts), _BATCH_LIMIT):
            batch = texts[start : start + _BATCH_LIMIT]
            # fastembed yields numpy arrays
            all_embeddings.extend(v.tolist() for v in self._model.embed(batch))
        return all_embeddings

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            return await asyncio.to_thread(self._embed_sync, texts)
        except ProviderUnavailableError:
            raise
        except Exception as exc:
            raise EmbeddingError(
                message=f"Fastembed embedding error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def embed_single(self, text: str) -> list[float]:
        result = await self.embed([text])
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return f"fastembed_{self._model_name.split('/')[-1]}"

    def is_available(self) -> bool:
        """Return ``True`` if fastembed is installed."""
        try:
            import fastembed  # noqa: F401

            return True
        except ImportError:
            return False
