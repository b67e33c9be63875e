"""Application settings loaded from environment variables via pydantic-settings.

Values come from, in priority order:

  1. Environment variables, e.g. ``OPENAI_API_KEY=sk-abc123``
  2. ``config/config.yaml`` when loaded through
     :func:`docintel.config.loader.load_settings`
  3. The ``.env`` file in the working directory
  4. The defaults below

Field ``openai_api_key`` maps to env var ``OPENAI_API_KEY``; matching is
case-insensitive.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

from docintel.models.jobs import JobStage, RetryPolicy


class Settings(BaseSettings):
    """docintel application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Providers ===
    # Empty key = "not configured"; main.py falls through to the next provider.
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible APIs (TogetherAI, vLLM, ...)
    openai_text_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.1"
    embedding_provider: str = "auto"  # auto | openai | fastembed
    llm_provider: str = "auto"  # auto | openai | anthropic | ollama

    # === Embedding ===
    embedding_batch_size: int = 64
    embedding_max_concurrency: int = 4
    embedding_cache_size: int = 10_000
    embedding_cache_ttl: int = 3600

    # === Storage ===
    data_dir: str = "./data"
    sqlite_db_path: str = "data/docintel.db"
    blob_root: str = "data/blobs"
    chromadb_persist_dir: str = "./data/chromadb"
    chromadb_collection: str = "docintel_chunks"

    # === Ingestion ===
    chunk_max_size: int = 1000
    chunk_overlap: int = 200
    max_upload_bytes: int = 50 * 1024 * 1024
    default_language: str = "en"

    # === Per-call timeouts (seconds) ===
    extraction_timeout: float = 120.0
    embedding_timeout: float = 30.0
    index_timeout: float = 60.0
    generation_timeout: float = 60.0

    # === Queue & workers ===
    visibility_timeout: float = 300.0
    worker_poll_interval: float = 1.0
    ingest_concurrency: int = 3
    embed_concurrency: int = 10
    index_concurrency: int = 2
    ingest_max_attempts: int = 3
    ingest_retry_base_delay: float = 2.0
    embed_max_attempts: int = 5
    embed_retry_base_delay: float = 1.0
    index_max_attempts: int = 3
    index_retry_base_delay: float = 3.0
    retry_max_delay: float = 60.0

    # === Retrieval QA ===
    qa_top_k: int = 5
    qa_max_context_chars: int = 12_000
    qa_max_answer_tokens: int = 800
    qa_snippet_chars: int = 240

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"

    def retry_policy(self, stage: JobStage) -> RetryPolicy:
        """Return the retry policy configured for *stage*."""
        attempts, base = {
            JobStage.INGEST: (self.ingest_max_attempts, self.ingest_retry_base_delay),
            JobStage.EMBED_CHUNK: (self.embed_max_attempts, self.embed_retry_base_delay),
            JobStage.INDEX: (self.index_max_attempts, self.index_retry_base_delay),
        }[stage]
        return RetryPolicy(max_attempts=attempts, base_delay=base, max_delay=self.retry_max_delay)

    def stage_concurrency(self, stage: JobStage) -> int:
        """Return how many workers the runner starts for *stage*."""
        return {
            JobStage.INGEST: self.ingest_concurrency,
            JobStage.EMBED_CHUNK: self.embed_concurrency,
            JobStage.INDEX: self.index_concurrency,
        }[stage]

    def get_available_llm_providers(self) -> list[str]:
        """Return LLM provider names that have credentials or a URL configured."""
        providers: list[str] = []
        if self.openai_api_key:
            providers.append("openai")
        if self.anthropic_api_key:
            providers.append("anthropic")
        if self.ollama_base_url:
            providers.append("ollama")
        return providers
