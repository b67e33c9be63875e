"""Custom exception hierarchy for docintel.

All application exceptions inherit from :class:`DocIntelError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "chromadb", "sqlite") caused the failure.

The hierarchy is organized by how the pipeline reacts to the failure:

    DocIntelError  (base -- catch-all for any docintel error)
    +-- ValidationError            (bad upload, rejected synchronously)
    |   +-- UnsupportedMediaTypeError
    |   +-- FileTooLargeError
    |   +-- EmptyUploadError
    +-- TransientError             (retried with exponential backoff)
    |   +-- ProviderTimeoutError
    |   +-- RateLimitError
    |   +-- ProviderUnavailableError
    |   +-- IndexUnavailableError
    |       +-- PartialIndexError
    +-- PermanentError             (dead-lettered without retry)
    |   +-- ExtractionError
    |   +-- EmbeddingError
    |   +-- LLMError
    |   +-- DocumentNotFoundError
    |   +-- InvalidStatusTransitionError
    |   +-- PipelineError
    +-- DuplicateDocumentError     (unique (tenant, checksum) violated)
    +-- BlobNotFoundError
    +-- ServiceUnavailableError    (query time: the index could not be searched)
    +-- ConfigurationError         (startup / missing config)

Queue workers call :func:`is_transient` to decide between retrying a job
and dead-lettering it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from docintel.models.search import UpsertResult


class DocIntelError(Exception):
    """Base exception for all docintel errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  ``__str__`` prefixes the provider name in brackets, e.g.
    ``[openai] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Upload validation
# ---------------------------------------------------------------------------

class ValidationError(DocIntelError):
    """Raised when an upload is rejected before any record is created."""

    def __init__(
        self,
        message: str = "Invalid upload",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class UnsupportedMediaTypeError(ValidationError):
    """Raised when no text extractor is registered for a media type."""

    def __init__(
        self,
        message: str = "Unsupported media type",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class FileTooLargeError(ValidationError):
    """Raised when an upload exceeds the configured size limit."""

    def __init__(
        self,
        message: str = "File exceeds the maximum upload size",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmptyUploadError(ValidationError):
    """Raised when an upload carries no bytes."""

    def __init__(
        self,
        message: str = "Uploaded file is empty",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Transient failures (retried)
# ---------------------------------------------------------------------------

class TransientError(DocIntelError):
    """Raised for failures that may succeed when the job is retried."""

    def __init__(
        self,
        message: str = "Transient failure",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProviderTimeoutError(TransientError):
    """Raised when a call to an external provider exceeds its timeout."""

    def __init__(
        self,
        message: str = "Provider call timed out",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RateLimitError(TransientError):
    """Raised when an API rate limit is exceeded."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProviderUnavailableError(TransientError):
    """Raised when an external service or provider is unreachable."""

    def __init__(
        self,
        message: str = "External service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class IndexUnavailableError(TransientError):
    """Raised when the search index rejects or cannot accept a write."""

    def __init__(
        self,
        message: str = "Search index is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class PartialIndexError(IndexUnavailableError):
    """Raised when only some search entries of a document were written.

    The :class:`~docintel.models.search.UpsertResult` describing which
    entries failed is available as ``result``.
    """

    def __init__(
        self,
        result: UpsertResult,
        message: str = "Search index accepted only part of the batch",
        provider_name: str | None = None,
    ) -> None:
        self._result = result
        super().__init__(message=message, provider_name=provider_name)

    @property
    def result(self) -> UpsertResult:
        return self._result


# ---------------------------------------------------------------------------
# Permanent failures (dead-lettered immediately)
# ---------------------------------------------------------------------------

class PermanentError(DocIntelError):
    """Raised for failures that retrying cannot fix."""

    def __init__(
        self,
        message: str = "Permanent failure",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ExtractionError(PermanentError):
    """Raised when a document's bytes cannot be turned into text."""

    def __init__(
        self,
        message: str = "Text extraction failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingError(PermanentError):
    """Raised when an embedding provider rejects input or returns bad vectors."""

    def __init__(
        self,
        message: str = "Embedding request failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class LLMError(PermanentError):
    """Raised when an LLM API call fails or returns an unusable response."""

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class DocumentNotFoundError(PermanentError):
    """Raised when a document does not exist for the requesting tenant."""

    def __init__(
        self,
        message: str = "Document not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class InvalidStatusTransitionError(PermanentError):
    """Raised when a document status change is not allowed."""

    def __init__(
        self,
        message: str = "Invalid document status transition",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class PipelineError(PermanentError):
    """Raised when pipeline orchestration hits an unrecoverable state."""

    def __init__(
        self,
        message: str = "Pipeline orchestration failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Storage / query-time / configuration errors
# ---------------------------------------------------------------------------

class DuplicateDocumentError(DocIntelError):
    """Raised when a (tenant_id, checksum) pair already exists in the store."""

    def __init__(
        self,
        message: str = "Document with the same checksum already exists",
        provider_name: str | None = None,
        existing_id: str | None = None,
    ) -> None:
        self._existing_id = existing_id
        super().__init__(message=message, provider_name=provider_name)

    @property
    def existing_id(self) -> str | None:
        return self._existing_id


class BlobNotFoundError(DocIntelError):
    """Raised when a stored blob cannot be found."""

    def __init__(
        self,
        message: str = "Blob not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ServiceUnavailableError(DocIntelError):
    """Raised at query time when search or generation cannot be reached.

    Distinct from an empty result: callers report "could not search"
    instead of "nothing found".
    """

    def __init__(
        self,
        message: str = "Search service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(DocIntelError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


def is_transient(exc: BaseException) -> bool:
    """Return True when a failed job should be retried.

    Validation and permanent errors are never retried.  Timeouts, transient
    provider errors and unclassified exceptions are.
    """
    if isinstance(exc, (ValidationError, PermanentError)):
        return False
    if isinstance(exc, DocIntelError):
        return isinstance(exc, TransientError)
    return True
