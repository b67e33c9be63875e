"""Ollama LLM provider adapter.

Ollama exposes an OpenAI-compatible ``/v1`` API, so this adapter reuses the
``openai.AsyncOpenAI`` client pointed at the local server.  Answers can
then be generated fully offline.
"""

from __future__ import annotations

import httpx
import openai
import structlog

from docintel.config.settings import Settings
from docintel.interfaces.llm_provider import ILLMProvider
from docintel.providers.error_mapping import map_sdk_error
from docintel.utils.errors import LLMError

logger = structlog.get_logger(logger_name=__name__)


class OllamaLLMProvider(ILLMProvider):
    """LLM provider backed by a local Ollama server."""

    def __init__(self, settings: Settings) -> None:
        self._base_url = settings.ollama_base_url
        self._client = openai.AsyncOpenAI(
            base_url=f"{self._base_url.rstrip('/')}/v1",
            api_key="ollama",
            timeout=openai.Timeout(settings.generation_timeout, connect=5.0),
        )
        self._text_model = settings.ollama_model

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
        max_tokens: int = 1000,
    ) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self._text_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.APIError as exc:
            raise map_sdk_error(openai, exc, self.get_provider_name(), LLMError) from exc

        content = response.choices[0].message.content
        if content is None:
            raise LLMError(
                message="Ollama returned empty response",
                provider_name=self.get_provider_name(),
            )
        logger.info("ollama_completion", model=self._text_model)
        return content

    def is_available(self) -> bool:
        return bool(self._base_url)

    async def validate_credentials(self) -> bool:
        """Check that the Ollama server answers on its native ``/api/tags`` endpoint."""
        if not self.is_available():
            return False
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(f"{self._base_url.rstrip('/')}/api/tags")
                return response.status_code == 200
        except httpx.HTTPError:
            return False

    def get_provider_name(self) -> str:
        return "ollama"
