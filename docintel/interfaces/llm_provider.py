"""Abstract base class for answer-generation (LLM) providers.

Implementations wrap the OpenAI API (or any OpenAI-compatible server),
the Anthropic API, or a local Ollama instance.  The QA service only sees
this contract, so any provider can ground answers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations: OpenAILLMProvider, AnthropicLLMProvider, OllamaLLMProvider
# Located in: docintel/providers/llm/
class ILLMProvider(ABC):
    """Contract for text-generation services."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
        max_tokens: int = 1000,
    ) -> str:
        """Generate a text completion from the model.

        Parameters
        ----------
        system_prompt:
            The system/instruction message that sets the model's behaviour.
        user_prompt:
            The user-facing prompt containing the question and context.
        temperature:
            Sampling temperature (0.0 = deterministic).
        max_tokens:
            Upper bound on the number of tokens in the response.

        Returns
        -------
        str
            The model's text response.

        Raises
        ------
        docintel.utils.errors.TransientError
            On timeouts, rate limits or an unreachable service.
        docintel.utils.errors.LLMError
            If the API call fails for any other reason.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return an identifier for this LLM provider, e.g. ``"openai"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured.

        Implementations check credentials without making an inference call.
        """

    @abstractmethod
    async def validate_credentials(self) -> bool:
        """Perform a lightweight API call to confirm credentials are valid."""
