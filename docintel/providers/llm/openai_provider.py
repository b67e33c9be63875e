"""OpenAI-compatible LLM provider adapter.

Wraps the ``openai`` async client to implement :class:`ILLMProvider`.
When ``openai_base_url`` is configured (TogetherAI, Groq, vLLM, ...) the
client points at that URL instead of the default OpenAI endpoint.
"""

from __future__ import annotations

import openai
import structlog

from docintel.config.settings import Settings
from docintel.interfaces.llm_provider import ILLMProvider
from docintel.providers.error_mapping import map_sdk_error
from docintel.utils.errors import LLMError

logger = structlog.get_logger(logger_name=__name__)


class OpenAILLMProvider(ILLMProvider):
    """LLM provider backed by an OpenAI-compatible chat completions API."""

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key

        client_kwargs: dict = {
            "api_key": self._api_key,
            "timeout": openai.Timeout(settings.generation_timeout, connect=5.0),
        }
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._text_model = settings.openai_text_model or "gpt-4o-mini"
        self._provider_label = "openai-compatible" if settings.openai_base_url else "openai"

    # ------------------------------------------------------------------
    # ILLMProvider implementation
    # ------------------------------------------------------------------

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
                message=f"{self._provider_label} returned empty response",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "openai_completion",
            model=self._text_model,
            provider=self._provider_label,
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return content

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured (doesn't verify it works)."""
        return bool(self._api_key)

    async def validate_credentials(self) -> bool:
        """List models to verify the API key without incurring inference cost."""
        if not self.is_available():
            return False
        try:
            await self._client.models.list()
            return True
        except openai.APIError:
            return False

    def get_provider_name(self) -> str:
        return self._provider_label
