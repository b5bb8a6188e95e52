"""
Provider adapters for AI Gen Guard.

Each adapter wraps one external generation API behind a common contract.
"""

from .base import ProviderAdapter
from .did_provider import DIDProvider
from .elevenlabs_provider import ElevenLabsProvider
from .openai_provider import OpenAIProvider
from .stability_provider import StabilityProvider

__all__ = [
    "DIDProvider",
    "ElevenLabsProvider",
    "OpenAIProvider",
    "ProviderAdapter",
    "StabilityProvider",
]
