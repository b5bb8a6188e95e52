"""
Error taxonomy for generation requests.

Business-rule rejections (moderation, quota) are kept distinct from
infrastructure failures (providers, storage, persistence) so callers can
explain the former to users and alert on the latter.
"""

from datetime import datetime
from typing import List, Optional


class GenerationError(Exception):
    """Base class for every error raised by the generation pipeline."""


class ContentRejected(GenerationError):
    """Raised when moderation flags the request content."""

    def __init__(self, reason: str, categories: Optional[List[str]] = None):
        super().__init__(f"Content flagged for review: {reason}")
        self.reason = reason
        self.categories = list(categories or [])


class QuotaExceeded(GenerationError):
    """Raised when a monthly, daily or cost ceiling has been reached."""

    def __init__(self, reason: str, reset_at: datetime):
        super().__init__(f"{reason} (resets {reset_at.isoformat()})")
        self.reason = reason
        self.reset_at = reset_at


class RateLimitExceeded(QuotaExceeded):
    """Raised when an account sends too many requests in a short window."""


class ProviderError(GenerationError):
    """Failure reported by a provider adapter.

    ``retryable`` marks transient failures (rate limits, timeouts, network
    and service outages) that justify trying the next provider.
    """

    def __init__(
        self,
        message: str,
        provider: str,
        retryable: bool = False,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.retryable = retryable
        self.code = code
        self.status_code = status_code


class UnsupportedRequestError(ProviderError):
    """The adapter was handed a request shape from another feature family."""

    def __init__(self, message: str, provider: str):
        super().__init__(message, provider, retryable=False, code="unsupported_request")


class InvalidRequestError(ProviderError):
    """The request is malformed for every provider, not just this one."""

    def __init__(self, message: str, provider: str):
        super().__init__(message, provider, retryable=False, code="invalid_request")


class AllProvidersFailed(GenerationError):
    """Raised once the provider list is exhausted or fallback is aborted."""

    def __init__(self, feature: str, last_error: Optional[ProviderError] = None):
        detail = str(last_error) if last_error else "no provider attempted"
        super().__init__(f"All providers failed for {feature}: {detail}")
        self.feature = feature
        self.last_error = last_error


class StorageError(GenerationError):
    """Blob storage upload or delete failed."""


class PersistenceError(GenerationError):
    """The relational store rejected or failed an operation."""
