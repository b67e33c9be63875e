"""Translate SDK exceptions into the docintel error taxonomy.

The openai and anthropic SDKs share the same exception shapes, so one
mapping covers both.  Timeouts, 429s, connection failures and 5xx replies
become transient errors; anything else becomes the caller's permanent
error class.
"""

from __future__ import annotations

from typing import Any

from docintel.utils.errors import (
    DocIntelError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitError,
)


def map_sdk_error(
    sdk: Any,
    exc: Exception,
    provider_name: str,
    permanent_cls: type[DocIntelError],
) -> DocIntelError:
    """Return the docintel error for an ``openai``/``anthropic`` SDK exception.

    Parameters
    ----------
    sdk:
        The SDK module (``openai`` or ``anthropic``) that raised *exc*.
    exc:
        The exception raised by the SDK.
    provider_name:
        Name recorded on the returned error.
    permanent_cls:
        Error class used for non-retryable failures.
    """
    if isinstance(exc, sdk.APITimeoutError):
        return ProviderTimeoutError(message=f"Request timed out: {exc}", provider_name=provider_name)
    if isinstance(exc, sdk.RateLimitError):
        return RateLimitError(message=f"Rate limited: {exc}", provider_name=provider_name)
    if isinstance(exc, sdk.APIConnectionError):
        return ProviderUnavailableError(
            message=f"Connection failed: {exc}", provider_name=provider_name
        )
    if isinstance(exc, sdk.APIStatusError) and exc.status_code >= 500:
        return ProviderUnavailableError(
            message=f"Server error {exc.status_code}: {exc}", provider_name=provider_name
        )
    return permanent_cls(message=f"API error: {exc}", provider_name=provider_name)
