"""Embedding provider adapters."""

from docintel.providers.embedding.fastembed_embedding_provider import FastEmbedEmbeddingProvider
from docintel.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["FastEmbedEmbeddingProvider", "OpenAIEmbeddingProvider"]
