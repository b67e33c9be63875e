"""Anthropic LLM provider adapter.

Wraps the ``anthropic`` async client to implement :class:`ILLMProvider`.
Unlike the chat completions API, the system prompt is a top-level
parameter and the response is a list of content blocks; text blocks are
joined.
"""

from __future__ import annotations

import anthropic
import structlog

from docintel.config.settings import Settings
from docintel.interfaces.llm_provider import ILLMProvider
from docintel.providers.error_mapping import map_sdk_error
from docintel.utils.errors import LLMError

logger = structlog.get_logger(logger_name=__name__)


class AnthropicLLMProvider(ILLMProvider):
    """LLM provider backed by the Anthropic Messages API."""

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.anthropic_api_key
        self._client = anthropic.AsyncAnthropic(
            api_key=self._api_key,
            timeout=settings.generation_timeout,
        )
        self._model = settings.anthropic_model

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
        max_tokens: int = 1000,
    ) -> str:
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
                temperature=temperature,
            )
        except anthropic.APIError as exc:
            raise map_sdk_error(anthropic, exc, self.get_provider_name(), LLMError) from exc

        text_blocks = [block.text for block in response.content if block.type == "text"]
        if not text_blocks:
            raise LLMError(
                message="Anthropic returned no text content",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "anthropic_completion",
            model=self._model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return "\n".join(text_blocks)

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def validate_credentials(self) -> bool:
        """Send a minimal completion to verify the API key works."""
        if not self.is_available():
            return False
        try:
            await self._client.messages.create(
                model=self._model,
                max_tokens=10,
                messages=[{"role": "user", "content": "hi"}],
            )
            return True
        except anthropic.APIError:
            return False

    def get_provider_name(self) -> str:
        return "anthropic"
