"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Supports real OpenAI and OpenAI-compatible services (TogetherAI, vLLM,
Fireworks) via ``openai_base_url`` and ``openai_embedding_model``.
"""

from __future__ import annotations

import openai
import structlog

from docintel.config.settings import Settings
from docintel.interfaces.embedding_provider import IEmbeddingProvider
from docintel.providers.error_mapping import map_sdk_error
from docintel.utils.errors import EmbeddingError

logger = structlog.get_logger(logger_name=__name__)

_OPENAI_BATCH_LIMIT = 2048

_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
    "intfloat/multilingual-e5-large-instruct": 1024,
}


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Uses ``text-embedding-3-small`` (1536 dims) by default.  Requests larger
    than the per-call limit are split automatically.
    """

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key

        client_kwargs: dict = {
            "api_key": self._api_key,
            "timeout": openai.Timeout(settings.embedding_timeout, connect=5.0),
            "max_retries": 0,  # retries belong to the job queue
        }
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = settings.openai_embedding_model or "text-embedding-3-small"
        self._dimension = _MODEL_DIMENSIONS.get(self._model, 768)
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        try:
            all_embeddings: list[list[float]] = []
            for start in range(0, len(texts), _OPENAI_BATCH_LIMIT):
                batch = texts[start : start + _OPENAI_BATCH_LIMIT]
                response = await self._client.embeddings.create(
                    input=batch,
                    model=self._model,
                )
                ordered = sorted(response.data, key=lambda item: item.index)
                all_embeddings.extend(item.embedding for item in ordered)
                logger.info(
                    "openai_embedding_batch",
                    model=self._model,
                    provider=self._provider_label,
                    batch_size=len(batch),
                    tokens=response.usage.total_tokens if response.usage else None,
                )
            return all_embeddings
        except openai.APIError as exc:
            raise map_sdk_error(
                openai, exc, self.get_provider_name(), EmbeddingError
            ) from exc

    async def embed_single(self, text: str) -> list[float]:
        result = await self.embed([text])
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return f"{self._provider_label}:{self._model}"

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)
