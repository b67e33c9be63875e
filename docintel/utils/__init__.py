"""Utility modules for docintel.

- **errors** -- Exception hierarchy rooted at DocIntelError, split into
  validation, transient and permanent failures so the worker can decide
  between retry and dead-letter.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **concurrency** -- semaphore-throttled gather used for embedding batches.
- **highlight** -- query-term highlighting for search snippets.
- **text** -- byte decoding and whitespace normalisation for extractors.
"""

# -- Error hierarchy -----------------------------------------------------------
from docintel.utils.errors import (
    ConfigurationError,
    DocIntelError,
    PermanentError,
    ServiceUnavailableError,
    TransientError,
    ValidationError,
    is_transient,
)

# -- Structured logging -----------------------------------------------------------
from docintel.utils.logging import configure_logging, get_logger

__all__ = [
    "ConfigurationError",
    "DocIntelError",
    "PermanentError",
    "ServiceUnavailableError",
    "TransientError",
    "ValidationError",
    "configure_logging",
    "get_logger",
    "is_transient",
]
