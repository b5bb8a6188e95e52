"""
Service wiring.

Builds the orchestrator and its collaborators from an ``AppConfig`` and the
provider credentials found in the environment.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from openai import OpenAI

from .cache import ResultCache
from .features import Feature
from .jobs import JobPoller, JobQueue
from .moderation import ContentModerator
from .orchestrator import DispatchSettings, Orchestrator
from .quota import QuotaGate
from .telemetry import SqliteTelemetry
from ai_gen_guard.config.loader import AppConfig, ProviderCredentials
from ai_gen_guard.providers import (
    DIDProvider,
    ElevenLabsProvider,
    OpenAIProvider,
    ProviderAdapter,
    StabilityProvider,
)
from ai_gen_guard.providers.elevenlabs_provider import DEFAULT_VOICE_ID
from ai_gen_guard.storage.blobs import BlobStorage, LocalBlobStorage

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a caller needs to dispatch and process generations."""
    config: AppConfig
    blobs: BlobStorage
    moderator: ContentModerator
    cache: ResultCache
    quota: QuotaGate
    queue: JobQueue
    orchestrator: Orchestrator
    providers: Dict[str, ProviderAdapter]

    def poller(self) -> JobPoller:
        return JobPoller(self.queue, poll_interval=self.config.queue.poll_interval_seconds)


def build_providers(
    credentials: ProviderCredentials,
    blobs: BlobStorage,
    openai_client: Optional[OpenAI] = None,
) -> Dict[str, ProviderAdapter]:
    """Instantiate every provider that has credentials, keyed by name."""
    providers: Dict[str, ProviderAdapter] = {}
    if openai_client is not None:
        providers["openai"] = OpenAIProvider(blobs, client=openai_client)
    if credentials.has_credentials("elevenlabs"):
        providers["elevenlabs"] = ElevenLabsProvider(
            credentials.elevenlabs_api_key,
            blobs,
            voice_id=credentials.elevenlabs_voice_id or DEFAULT_VOICE_ID,
        )
    if credentials.has_credentials("stability"):
        providers["stability"] = StabilityProvider(credentials.stability_api_key, blobs)
    if credentials.has_credentials("d-id"):
        providers["d-id"] = DIDProvider(credentials.did_api_key)
    return providers


def provider_chains(
    config: AppConfig,
    available: Dict[str, ProviderAdapter],
) -> Dict[Feature, List[ProviderAdapter]]:
    """Resolve the configured provider order per feature.

    Providers without credentials are left out with a warning.
    """
    chains: Dict[Feature, List[ProviderAdapter]] = {}
    for feature, names in config.providers.items():
        chain = []
        for name in names:
            if name not in available:
                logger.warning("Provider %s configured for %s has no credentials, skipping", name, feature.value)
                continue
            chain.append(available[name])
        chains[feature] = chain
    return chains


def build_services(
    config: AppConfig,
    credentials: Optional[ProviderCredentials] = None,
    providers: Optional[Dict[str, ProviderAdapter]] = None,
    openai_client: Optional[OpenAI] = None,
    blobs: Optional[BlobStorage] = None,
    clock: Callable[[], datetime] = datetime.now,
) -> Services:
    """Wire up the full generation stack.

    Args:
        config: Application configuration
        credentials: Provider secrets; read from the environment if omitted
        providers: Prebuilt adapters by name, replacing the credential-based ones
        openai_client: Client shared by moderation and the OpenAI adapter
        blobs: Blob storage; a local store under ``config.storage.root`` if omitted
        clock: Time source for every component

    Returns:
        Services with the job handlers already registered on the queue
    """
    credentials = credentials or ProviderCredentials.from_env()
    db_path = config.database.path
    blobs = blobs or LocalBlobStorage(config.storage.root, config.storage.base_url)

    if openai_client is None and credentials.has_credentials("openai"):
        openai_client = OpenAI(api_key=credentials.openai_api_key)
    if providers is None:
        providers = build_providers(credentials, blobs, openai_client)

    moderator = ContentModerator(client=openai_client, db_path=db_path, clock=clock)
    cache = ResultCache(
        blobs,
        db_path=db_path,
        ttl=timedelta(days=config.cache.ttl_days),
        max_size_bytes=config.cache.max_size_bytes,
        eviction_fraction=config.cache.eviction_fraction,
        clock=clock,
    )
    quota = QuotaGate(
        db_path=db_path,
        tier_limits=config.tiers,
        rate_limit_per_minute=config.rate_limit_per_minute,
        clock=clock,
    )
    queue = JobQueue(db_path=db_path, max_concurrent=config.queue.max_concurrent, clock=clock)
    settings = DispatchSettings(
        timeouts=dict(config.timeouts),
        image_pixel_threshold=config.background.image_pixel_threshold,
        voice_char_threshold=config.background.voice_char_threshold,
        fallback_on_non_retryable=config.fallback_on_non_retryable,
    )
    orchestrator = Orchestrator(
        providers=provider_chains(config, providers),
        moderator=moderator,
        cache=cache,
        quota=quota,
        queue=queue,
        telemetry=SqliteTelemetry(db_path, clock=clock),
        settings=settings,
        db_path=db_path,
        clock=clock,
    )
    return Services(
        config=config,
        blobs=blobs,
        moderator=moderator,
        cache=cache,
        quota=quota,
        queue=queue,
        orchestrator=orchestrator,
        providers=providers,
    )
