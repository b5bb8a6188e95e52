"""
Stability AI text-to-image adapter.

Used as the image fallback. Images come back base64-encoded and are stored
as PNG in blob storage.
"""

import base64
import binascii
import uuid
from typing import Optional, Tuple

import httpx

from .base import HttpProviderAdapter
from .openai_provider import enhance_image_prompt
from ai_gen_guard.core.errors import ProviderError
from ai_gen_guard.core.features import (
    Dimensions,
    Feature,
    GenerationOptions,
    GenerationResult,
    ImageRequest,
    RequestPayload,
)
from ai_gen_guard.core.pricing import calculate_cost
from ai_gen_guard.storage.blobs import BlobStorage

# Sizes SDXL accepts, as (width, height)
SDXL_SIZES = [
    (1024, 1024),
    (1152, 896),
    (896, 1152),
    (1216, 832),
    (832, 1216),
    (1344, 768),
    (768, 1344),
    (1536, 640),
    (640, 1536),
]


def map_sdxl_size(dimensions: Dimensions) -> Tuple[int, int]:
    """Closest supported size by aspect ratio."""
    ratio = dimensions.width / dimensions.height
    return min(SDXL_SIZES, key=lambda size: abs(size[0] / size[1] - ratio))


class StabilityProvider(HttpProviderAdapter):
    """Adapter for Stable Diffusion XL."""

    name = "stability"
    features = frozenset({Feature.IMAGE_GENERATION})
    base_url = "https://api.stability.ai"

    def __init__(
        self,
        api_key: str,
        blobs: BlobStorage,
        engine: str = "stable-diffusion-xl-1024-v1-0",
        transport: Optional[httpx.BaseTransport] = None,
    ):
        super().__init__({"Authorization": f"Bearer {api_key}"}, transport)
        self.blobs = blobs
        self.engine = engine

    def generate(self, request: RequestPayload, options: GenerationOptions) -> GenerationResult:
        if not isinstance(request, ImageRequest):
            raise self._unsupported(request)

        prompt = enhance_image_prompt(request)
        width, height = map_sdxl_size(request.dimensions)
        response = self._request(
            "POST",
            f"/v1/generation/{self.engine}/text-to-image",
            timeout=options.timeout,
            json={
                "text_prompts": [{"text": prompt, "weight": 1}],
                "cfg_scale": 7,
                "width": width,
                "height": height,
                "samples": 1,
                "steps": 30,
            },
            headers={"Accept": "application/json"},
        )

        artifacts = self._json(response).get("artifacts") or []
        if not artifacts:
            raise ProviderError("stability returned no image", self.name, retryable=True, code="service_unavailable")
        artifact = artifacts[0]
        if not isinstance(artifact, dict):
            raise self._malformed("artifact is not an object")
        if artifact.get("finishReason") == "CONTENT_FILTERED":
            raise ProviderError("stability filtered the generated image", self.name, code="content_filtered")

        try:
            image = base64.b64decode(artifact["base64"])
        except (KeyError, TypeError, binascii.Error) as e:
            raise ProviderError(f"stability returned a malformed image: {e}", self.name, code="malformed_response") from e

        location = self.blobs.upload(f"generated-images/image_{uuid.uuid4().hex}.png", image, "image/png")
        return GenerationResult(
            result_location=location,
            provider=self.name,
            cost_cents=self.estimate_cost(request),
            metadata={
                "model": self.engine,
                "prompt": prompt,
                "size": f"{width}x{height}",
                "seed": artifact.get("seed"),
            },
        )

    def estimate_cost(self, request: RequestPayload) -> int:
        if not isinstance(request, ImageRequest):
            raise self._unsupported(request)
        return calculate_cost(self.engine)

    def is_available(self) -> bool:
        return self._probe("/v1/engines/list")
