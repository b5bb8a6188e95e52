"""
Provider adapter contract and shared failure mapping.

Every adapter normalises its provider's failures into ``ProviderError`` with
a retryability flag, so the orchestrator can decide on fallback without
knowing anything provider-specific.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, FrozenSet, Optional

import httpx

from ai_gen_guard.core.errors import ProviderError, UnsupportedRequestError
from ai_gen_guard.core.features import Feature, GenerationOptions, GenerationResult, RequestPayload

logger = logging.getLogger(__name__)


def limit_text_for_duration(text: str, max_duration: float, words_per_second: float) -> str:
    """Truncate ``text`` to what can be spoken in ``max_duration`` seconds.

    Truncated text gets a trailing ellipsis.
    """
    max_words = max(1, int(max_duration * words_per_second))
    words = text.split(" ")
    if len(words) <= max_words:
        return text
    return " ".join(words[:max_words]) + "..."


def error_from_status(provider: str, status_code: int, detail: str = "") -> ProviderError:
    """Map an HTTP error status to a ProviderError.

    429, 408 and 5xx are transient and retryable. Anything else in 4xx is a
    problem with this request or these credentials and is not.
    """
    message = f"{provider} API error {status_code}"
    if detail:
        message = f"{message}: {detail}"

    if status_code == 429:
        return ProviderError(message, provider, retryable=True, code="rate_limit_exceeded", status_code=status_code)
    if status_code == 408 or 500 <= status_code < 600:
        return ProviderError(message, provider, retryable=True, code="service_unavailable", status_code=status_code)
    if status_code in (401, 403):
        return ProviderError(message, provider, retryable=False, code="authentication_failed", status_code=status_code)
    return ProviderError(message, provider, retryable=False, code="client_error", status_code=status_code)


def wrap_transport_error(provider: str, exc: httpx.HTTPError) -> ProviderError:
    """Map an httpx transport failure to a retryable ProviderError."""
    if isinstance(exc, httpx.TimeoutException):
        return ProviderError(f"{provider} request timed out", provider, retryable=True, code="timeout")
    return ProviderError(f"{provider} network error: {exc}", provider, retryable=True, code="network_error")


class ProviderAdapter(ABC):
    """Stateless wrapper around one external generation provider."""

    name: str = ""
    features: FrozenSet[Feature] = frozenset()

    def supports(self, feature: Feature) -> bool:
        return feature in self.features

    def _unsupported(self, request: Any) -> UnsupportedRequestError:
        return UnsupportedRequestError(
            f"{self.name} cannot handle {type(request).__name__}", self.name
        )

    @abstractmethod
    def generate(self, request: RequestPayload, options: GenerationOptions) -> GenerationResult:
        """Run one generation.

        Raises:
            UnsupportedRequestError: If the request belongs to a feature this adapter lacks
            ProviderError: On any provider or transport failure
            StorageError: If the generated artifact cannot be stored
        """

    @abstractmethod
    def estimate_cost(self, request: RequestPayload) -> int:
        """Estimated cost of ``generate`` in whole cents."""

    @abstractmethod
    def is_available(self) -> bool:
        """Cheap liveness probe. Never raises."""


class HttpProviderAdapter(ProviderAdapter):
    """Base for adapters that talk to a JSON/HTTP API through ``httpx``."""

    base_url: str = ""

    def __init__(self, headers: Dict[str, str], transport: Optional[httpx.BaseTransport] = None):
        self.client = httpx.Client(base_url=self.base_url, headers=headers, transport=transport, timeout=30.0)

    def _request(
        self,
        method: str,
        path: str,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue a request, translating every failure into ProviderError."""
        request_kwargs = dict(kwargs)
        if timeout is not None:
            request_kwargs["timeout"] = timeout
        try:
            response = self.client.request(method, path, **request_kwargs)
        except httpx.HTTPError as e:
            raise wrap_transport_error(self.name, e) from e

        if response.status_code >= 400:
            raise error_from_status(self.name, response.status_code, _error_detail(response))
        return response

    def _json(self, response: httpx.Response) -> Dict[str, Any]:
        """Decode a successful response body, which must be a JSON object."""
        try:
            body = response.json()
        except ValueError as e:
            raise self._malformed(f"non-JSON body: {response.text[:200]}") from e
        if not isinstance(body, dict):
            raise self._malformed(f"expected a JSON object, got {type(body).__name__}")
        return body

    def _malformed(self, detail: str) -> ProviderError:
        return ProviderError(
            f"{self.name} returned a malformed response: {detail}",
            self.name,
            retryable=True,
            code="malformed_response",
        )

    def _probe(self, path: str) -> bool:
        try:
            response = self.client.get(path, timeout=10.0)
        except httpx.HTTPError as e:
            logger.debug("%s availability probe failed: %s", self.name, e)
            return False
        return response.is_success


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("message") or body.get("description") or body
        if isinstance(detail, dict):
            detail = detail.get("message", detail)
        return str(detail)[:200]
    return str(body)[:200]
