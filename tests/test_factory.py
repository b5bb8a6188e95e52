"""
Tests for service wiring and demo data seeding.
"""

import os
import tempfile
from dataclasses import replace
from unittest.mock import Mock

from ai_gen_guard.config.loader import DatabaseConfig, ProviderCredentials, StorageConfig, default_config
from ai_gen_guard.core.factory import build_providers, build_services, provider_chains
from ai_gen_guard.core.features import Feature, SubscriptionTier
from ai_gen_guard.demo.seed_demo_data import DEMO_ACCOUNTS, seed
from ai_gen_guard.providers import DIDProvider, ElevenLabsProvider, OpenAIProvider, StabilityProvider
from ai_gen_guard.storage.blobs import LocalBlobStorage
from ai_gen_guard.storage.repository import initialize_schema


class TestFactory:
    """Test building the service graph."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        self.config = replace(
            default_config(),
            database=DatabaseConfig(path=self.db_path),
            storage=StorageConfig(root=os.path.join(self.temp_dir, "generated")),
        )
        self.blobs = LocalBlobStorage(self.config.storage.root)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_build_providers_from_credentials(self):
        credentials = ProviderCredentials(
            elevenlabs_api_key="el",
            stability_api_key="st",
            did_api_key="did",
        )

        providers = build_providers(credentials, self.blobs, openai_client=Mock())

        assert isinstance(providers["openai"], OpenAIProvider)
        assert isinstance(providers["elevenlabs"], ElevenLabsProvider)
        assert isinstance(providers["stability"], StabilityProvider)
        assert isinstance(providers["d-id"], DIDProvider)

    def test_providers_without_credentials_are_left_out(self):
        providers = build_providers(ProviderCredentials(stability_api_key="st"), self.blobs)

        assert list(providers) == ["stability"]

        chains = provider_chains(self.config, providers)
        assert [p.name for p in chains[Feature.IMAGE_GENERATION]] == ["stability"]
        assert chains[Feature.VOICE_SYNTHESIS] == []

    def test_build_services(self):
        initialize_schema(self.db_path)
        client = Mock()
        services = build_services(
            self.config,
            credentials=ProviderCredentials(did_api_key="did"),
            openai_client=client,
        )

        assert set(services.providers) == {"openai", "d-id"}
        assert services.moderator.client is client
        assert services.quota.rate_limit_per_minute == 10
        assert services.queue.max_concurrent == 3
        assert [p.name for p in services.orchestrator.providers[Feature.IMAGE_GENERATION]] == ["openai"]
        assert services.poller().poll_interval == 5.0


class TestSeedDemoData:
    """Test demo data seeding."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_seed(self):
        from ai_gen_guard.core.quota import QuotaGate

        seed(self.db_path)

        quota = QuotaGate(self.db_path)
        for account_id, tier in DEMO_ACCOUNTS.items():
            assert quota.get_account_tier(account_id) == tier
        stats = quota.get_usage_stats("demo-creator", Feature.IMAGE_GENERATION)
        assert stats.used == 8
        assert stats.cost_used_cents == 64
        assert quota.get_account_tier("demo-studio") == SubscriptionTier.TIER_2

    def test_seed_twice(self):
        from ai_gen_guard.core.quota import QuotaGate

        seed(self.db_path)
        seed(self.db_path)

        stats = QuotaGate(self.db_path).get_usage_stats("demo-creator", Feature.IMAGE_GENERATION)
        assert stats.used == 16
