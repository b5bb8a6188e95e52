"""
Generation orchestrator.

Runs every request through the same pipeline, strictly in order:
1. Moderate - Flagged content is rejected before anything else happens
2. Cache lookup - Identical requests replay the stored result for free;
   edits are never cached since their source image can change in place
3. Background decision - Resource-intensive requests become queued jobs
4. Quota and rate limit - Denials carry the reason and reset time
5. Provider loop - Configured providers in fixed order, with fallback

A successful generation is written through to the cache, counted against
the account's usage and recorded in the audit trail and telemetry.
"""

import dataclasses
import hashlib
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from .cache import ResultCache
from .errors import (
    AllProvidersFailed,
    ContentRejected,
    GenerationError,
    InvalidRequestError,
    PersistenceError,
    ProviderError,
    QuotaExceeded,
    StorageError,
)
from .features import (
    EditRequest,
    Feature,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    ImageRequest,
    JobHandle,
    RequestPayload,
    VideoRequest,
    VoiceRequest,
    payload_from_dict,
    payload_to_dict,
)
from .jobs import JobQueue
from .moderation import ContentModerator
from .quota import QuotaGate, UsageStats, next_month_start
from .telemetry import NullTelemetry, TelemetrySink
from ai_gen_guard.providers.base import ProviderAdapter
from ai_gen_guard.storage.db import DEFAULT_DB_PATH
from ai_gen_guard.storage.models import BackgroundJob, GenerationAudit
from ai_gen_guard.storage.repository import GenerationRepository

logger = logging.getLogger(__name__)

CONTENT_MODERATION_JOB = "content_moderation"
CACHED_CONTENT_TYPE = "text/uri-list"


def normalize(value: Any) -> Any:
    """Canonical form used for hashing.

    Enum members become their values, strings have runs of whitespace
    collapsed, mappings are key-sorted with None values dropped.
    """
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, str):
        return " ".join(value.split())
    if isinstance(value, dict):
        return {key: normalize(value[key]) for key in sorted(value) if value[key] is not None}
    if isinstance(value, (list, tuple)):
        return [normalize(item) for item in value]
    return value


def cache_key(feature: Feature, request: Union[RequestPayload, Dict[str, Any]]) -> str:
    """Deterministic cache key for a request.

    Field order never matters; a dict is parsed into the feature's payload
    type first so defaults are applied the same way either way.
    """
    if isinstance(request, dict):
        request = payload_from_dict(feature, request)
    canonical = json.dumps(
        {"feature": feature.value, "request": normalize(payload_to_dict(request))},
        sort_keys=True,
        separators=(",", ":"),
    )
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{feature.value}_{digest}"


DEFAULT_TIMEOUTS = {
    Feature.IMAGE_GENERATION: 30.0,
    Feature.VOICE_SYNTHESIS: 45.0,
    Feature.VIDEO_GENERATION: 120.0,
    Feature.ADVANCED_EDITING: 30.0,
}


@dataclass(frozen=True)
class DispatchSettings:
    """Tunables for the dispatch pipeline. Timeouts are in seconds."""
    timeouts: Dict[Feature, float] = field(default_factory=lambda: dict(DEFAULT_TIMEOUTS))
    image_pixel_threshold: int = 1024 * 1024
    voice_char_threshold: int = 500
    fallback_on_non_retryable: bool = True

    def timeout_for(self, feature: Feature) -> float:
        return self.timeouts.get(feature, DEFAULT_TIMEOUTS[Feature.IMAGE_GENERATION])


def is_cacheable(feature: Feature) -> bool:
    """Whether results for ``feature`` are a function of the request alone.

    Edits reference a source image by location, and the bytes at that
    location can change between requests.
    """
    return feature is not Feature.ADVANCED_EDITING


def is_resource_intensive(request: RequestPayload, settings: DispatchSettings) -> bool:
    """Whether a request should run as a background job."""
    if isinstance(request, ImageRequest):
        return request.dimensions.pixel_count > settings.image_pixel_threshold
    if isinstance(request, VoiceRequest):
        return len(request.text) > settings.voice_char_threshold
    if isinstance(request, VideoRequest):
        return True
    if isinstance(request, EditRequest):
        return False
    return False


class Orchestrator:
    """Entry point for generation requests."""

    def __init__(
        self,
        providers: Dict[Feature, List[ProviderAdapter]],
        moderator: ContentModerator,
        cache: ResultCache,
        quota: QuotaGate,
        queue: JobQueue,
        telemetry: Optional[TelemetrySink] = None,
        settings: Optional[DispatchSettings] = None,
        db_path: str = DEFAULT_DB_PATH,
        clock: Callable[[], datetime] = datetime.now,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.providers = providers
        self.moderator = moderator
        self.cache = cache
        self.quota = quota
        self.queue = queue
        self.telemetry = telemetry or NullTelemetry()
        self.settings = settings or DispatchSettings()
        self.generations = GenerationRepository(db_path)
        self.clock = clock
        self.monotonic = monotonic

        for feature in Feature:
            queue.register_handler(feature.value, self.process_deferred)
        queue.register_handler(CONTENT_MODERATION_JOB, self._moderate_job)

    def dispatch(
        self,
        feature: Feature,
        request: Union[RequestPayload, Dict[str, Any]],
        account_id: str,
        options: Optional[GenerationOptions] = None,
    ) -> Union[GenerationResult, JobHandle]:
        """Run a generation request through the pipeline.

        Args:
            feature: Requested feature
            request: Payload for the feature, or a dict of its fields
            account_id: Account the request is billed to
            options: Per-call options

        Returns:
            GenerationResult, or JobHandle when the request was deferred

        Raises:
            ValueError: If the request does not match the feature
            ContentRejected: If moderation flagged the content
            QuotaExceeded: If a quota, cost or rate ceiling is reached
            AllProvidersFailed: If no provider produced a result
        """
        options = options or GenerationOptions()
        payload = self._coerce(feature, request)
        request_id = str(uuid.uuid4())

        self._moderate(payload, request_id, account_id)

        key = None
        if is_cacheable(feature):
            key = cache_key(feature, payload)
            cached = self._cached_result(key)
            if cached is not None:
                logger.info("Cache hit for %s (%s)", feature.value, key)
                return cached

        if options.allow_background and is_resource_intensive(payload, self.settings):
            generation_request = GenerationRequest(payload, account_id, options.priority)
            job_id = self.queue.enqueue(
                feature.value,
                generation_request.to_dict(),
                account_id=account_id,
                priority=options.priority,
            )
            return JobHandle(job_id=job_id, feature=feature)

        return self._generate(feature, payload, account_id, key, options)

    def process_deferred(self, job: BackgroundJob) -> Dict[str, Any]:
        """Job handler for deferred generations.

        Re-enters the pipeline for the stored request: moderation, cache,
        quota, then providers. Never defers again.
        """
        request = GenerationRequest.from_dict(job.payload)
        feature = request.feature
        self._moderate(request.payload, job.id, request.requester_id)

        key = None
        if is_cacheable(feature):
            key = cache_key(feature, request.payload)
            cached = self._cached_result(key)
            if cached is not None:
                return cached.to_dict()

        options = GenerationOptions(priority=request.priority, allow_background=False)
        result = self._generate(feature, request.payload, request.requester_id, key, options)
        return result.to_dict()

    def get_job_status(self, job_id: str) -> Optional[BackgroundJob]:
        return self.queue.get_status(job_id)

    def get_usage_stats(self, account_id: str, feature: Feature) -> UsageStats:
        return self.quota.get_usage_stats(account_id, feature)

    def _coerce(self, feature: Feature, request: Union[RequestPayload, Dict[str, Any]]) -> RequestPayload:
        if isinstance(request, dict):
            return payload_from_dict(feature, request)
        if request.feature != feature:
            raise ValueError(
                f"{type(request).__name__} is a {request.feature.value} request, not {feature.value}"
            )
        return request

    def _moderate(self, payload: RequestPayload, request_id: str, account_id: Optional[str]) -> None:
        result = self.moderator.moderate(payload.moderation_text, "text")
        self.moderator.log_result(request_id, account_id, result)
        if result.flagged:
            logger.info("Rejected request %s: %s", request_id, result.reason)
            raise ContentRejected(result.reason or "Content flagged", result.categories)

    def _cached_result(self, key: str) -> Optional[GenerationResult]:
        entry = self.cache.get(key)
        if entry is None:
            return None
        stored = entry.metadata
        metadata = dict(stored.get("result_metadata", {}))
        metadata.update({"cached": True, "cache_key": key, "hit_count": entry.hit_count})
        return GenerationResult(
            result_location=stored.get("source_location", entry.result_location),
            provider=stored.get("provider", "cache"),
            cost_cents=0,
            metadata=metadata,
        )

    def _generate(
        self,
        feature: Feature,
        payload: RequestPayload,
        account_id: str,
        key: Optional[str],
        options: GenerationOptions,
    ) -> GenerationResult:
        self.quota.enforce(account_id, feature)

        providers = self.providers.get(feature, [])
        if options.timeout is None:
            options = dataclasses.replace(options, timeout=self.settings.timeout_for(feature))

        last_error: Optional[ProviderError] = None
        over_budget = 0
        for provider in providers:
            try:
                estimate = provider.estimate_cost(payload)
            except ProviderError as e:
                logger.warning("Skipping %s for %s: %s", provider.name, feature.value, e)
                last_error = e
                continue

            if not self.quota.within_budget(account_id, feature, estimate):
                logger.info(
                    "Skipping %s for %s: estimate of %d cents exceeds remaining budget",
                    provider.name, feature.value, estimate,
                )
                over_budget += 1
                continue

            audit_id = self._start_audit(account_id, feature, provider, payload)
            started = self.monotonic()
            try:
                result = provider.generate(payload, options)
            except ProviderError as e:
                elapsed_ms = self._elapsed_ms(started)
                self.generations.fail(audit_id, str(e), elapsed_ms, self.clock())
                self._record_telemetry(provider, feature, elapsed_ms, False, 0)
                last_error = e
                if self._should_fall_back(e):
                    logger.warning(
                        "Provider %s failed for %s (%s), trying next provider",
                        provider.name, feature.value, e.code or "error",
                    )
                    continue
                raise AllProvidersFailed(feature.value, e) from e
            except GenerationError as e:
                self.generations.fail(audit_id, str(e), self._elapsed_ms(started), self.clock())
                raise
            except Exception as e:
                elapsed_ms = self._elapsed_ms(started)
                self.generations.fail(audit_id, str(e), elapsed_ms, self.clock())
                self._record_telemetry(provider, feature, elapsed_ms, False, 0)
                logger.exception("Provider %s raised an unexpected error for %s", provider.name, feature.value)
                last_error = ProviderError(
                    f"{provider.name} failed unexpectedly: {e}", provider.name, code="unexpected_error"
                )
                if self._should_fall_back(last_error):
                    continue
                raise AllProvidersFailed(feature.value, last_error) from e

            elapsed_ms = self._elapsed_ms(started)
            result = dataclasses.replace(result, metadata={**result.metadata, "cached": False})
            self.generations.complete(audit_id, result.result_location, result.cost_cents, elapsed_ms, self.clock())
            if key is not None:
                self._write_through(key, result)
            self.quota.track_usage(account_id, feature, result.cost_cents)
            self._record_telemetry(provider, feature, elapsed_ms, True, result.cost_cents)
            return result

        if last_error is None and over_budget:
            raise QuotaExceeded("Monthly cost limit exceeded", next_month_start(self.clock()))
        raise AllProvidersFailed(feature.value, last_error)

    def _should_fall_back(self, error: ProviderError) -> bool:
        if isinstance(error, InvalidRequestError):
            return False
        if error.retryable:
            return True
        return self.settings.fallback_on_non_retryable

    def _start_audit(
        self,
        account_id: str,
        feature: Feature,
        provider: ProviderAdapter,
        payload: RequestPayload,
    ) -> str:
        audit_id = str(uuid.uuid4())
        self.generations.start(GenerationAudit(
            id=audit_id,
            account_id=account_id,
            feature=feature.value,
            provider=provider.name,
            prompt=payload.moderation_text,
            status="processing",
            created_at=self.clock(),
        ))
        return audit_id

    def _elapsed_ms(self, started: float) -> int:
        return int((self.monotonic() - started) * 1000)

    def _write_through(self, key: str, result: GenerationResult) -> None:
        try:
            self.cache.put(
                key,
                result.result_location.encode("utf-8"),
                CACHED_CONTENT_TYPE,
                metadata={
                    "source_location": result.result_location,
                    "provider": result.provider,
                    "cost_cents": result.cost_cents,
                    "result_metadata": {k: v for k, v in result.metadata.items() if k != "cached"},
                },
            )
        except (StorageError, PersistenceError) as e:
            logger.warning("Cache write failed for %s: %s", key, e)

    def _record_telemetry(
        self,
        provider: ProviderAdapter,
        feature: Feature,
        elapsed_ms: int,
        success: bool,
        cost_cents: int,
    ) -> None:
        tags = {"provider": provider.name, "feature": feature.value}
        try:
            self.telemetry.record("response_time", elapsed_ms, "ms", tags)
            self.telemetry.record("success", 1.0 if success else 0.0, "boolean", tags)
            if success:
                self.telemetry.record("cost", cost_cents, "cents", tags)
        except Exception as e:
            logger.warning("Telemetry recording failed: %s", e)

    def _moderate_job(self, job: BackgroundJob) -> Dict[str, Any]:
        """Job handler that moderates stored content and logs the verdict."""
        result = self.moderator.moderate(
            job.payload["content"], job.payload.get("content_type", "text")
        )
        self.moderator.log_result(job.payload.get("request_id", job.id), job.account_id, result)
        return dataclasses.asdict(result)
