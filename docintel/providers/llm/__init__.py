"""Answer-generation provider adapters."""

from docintel.providers.llm.anthropic_provider import AnthropicLLMProvider
from docintel.providers.llm.ollama_provider import OllamaLLMProvider
from docintel.providers.llm.openai_provider import OpenAILLMProvider

__all__ = ["AnthropicLLMProvider", "OllamaLLMProvider", "OpenAILLMProvider"]
