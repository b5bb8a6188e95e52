# test_imports.py
import importlib

import pytest


@pytest.mark.parametrize("module", [
    "ai_gen_guard.cli.main",
    "ai_gen_guard.config.loader",
    "ai_gen_guard.core.orchestrator",
    "ai_gen_guard.core.factory",
    "ai_gen_guard.providers",
    "ai_gen_guard.storage.repository",
    "ai_gen_guard.demo.seed_demo_data",
])
def test_module_imports(module):
    assert importlib.import_module(module) is not None


def test_provider_exports():
    from ai_gen_guard.providers import DIDProvider, ElevenLabsProvider, OpenAIProvider, ProviderAdapter, StabilityProvider

    for adapter in (DIDProvider, ElevenLabsProvider, OpenAIProvider, StabilityProvider):
        assert issubclass(adapter, ProviderAdapter)
