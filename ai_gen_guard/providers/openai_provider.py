"""
OpenAI provider adapter.

Covers image generation (DALL-E), text-to-speech and prompt-guided image
edits through the official ``openai`` SDK.
"""

import logging
import uuid
from typing import Any, Dict, Optional

import openai
from openai import OpenAI

from .base import ProviderAdapter, error_from_status, limit_text_for_duration
from ai_gen_guard.core.errors import InvalidRequestError, ProviderError
from ai_gen_guard.core.features import (
    Dimensions,
    EditRequest,
    Feature,
    GenerationOptions,
    GenerationResult,
    ImageFormat,
    ImageRequest,
    ImageStyle,
    RequestPayload,
    VoiceRequest,
)
from ai_gen_guard.core.pricing import calculate_cost
from ai_gen_guard.storage.blobs import BlobStorage

logger = logging.getLogger(__name__)

WORDS_PER_SECOND = 2.5

OPENAI_VOICES = frozenset({"alloy", "echo", "fable", "onyx", "nova", "shimmer"})

STYLE_MODIFIERS = {
    ImageStyle.PROFESSIONAL: ", professional, clean, corporate style",
    ImageStyle.CREATIVE: ", creative, artistic, vibrant",
    ImageStyle.MINIMAL: ", minimal, simple, clean lines",
    ImageStyle.BOLD: ", bold, striking, high contrast",
}

FORMAT_MODIFIERS = {
    ImageFormat.LOGO: ", logo design, vector style, transparent background",
    ImageFormat.AVATAR: ", portrait, professional headshot",
    ImageFormat.BACKGROUND: ", background pattern, seamless",
    ImageFormat.ICON: ", icon design, simple, recognizable",
}


def enhance_image_prompt(request: ImageRequest) -> str:
    """Append style, format and colour palette hints to the user's prompt."""
    enhanced = request.prompt
    enhanced += STYLE_MODIFIERS.get(request.style, "")
    enhanced += FORMAT_MODIFIERS.get(request.format, "")
    if request.color_palette:
        enhanced += f", color palette: {', '.join(request.color_palette)}"
    return enhanced


def map_image_size(dimensions: Dimensions) -> str:
    """Nearest DALL-E 3 size by orientation."""
    if dimensions.width == dimensions.height:
        return "1024x1024"
    if dimensions.width > dimensions.height:
        return "1792x1024"
    return "1024x1792"


def map_edit_size(dimensions: Dimensions) -> str:
    """DALL-E 2 edits only produce squares."""
    side = max(dimensions.width, dimensions.height)
    if side <= 256:
        return "256x256"
    if side <= 512:
        return "512x512"
    return "1024x1024"


def translate_openai_error(exc: openai.APIError) -> ProviderError:
    """Map an SDK exception to a ProviderError with retryability."""
    if isinstance(exc, openai.APITimeoutError):
        return ProviderError("openai request timed out", "openai", retryable=True, code="timeout")
    if isinstance(exc, openai.APIConnectionError):
        return ProviderError(f"openai network error: {exc}", "openai", retryable=True, code="network_error")
    if isinstance(exc, openai.APIStatusError):
        if exc.code == "content_policy_violation":
            return InvalidRequestError(f"openai rejected the prompt: {exc.message}", "openai")
        return error_from_status("openai", exc.status_code, exc.message)
    return ProviderError(f"openai error: {exc}", "openai", retryable=False)


class OpenAIProvider(ProviderAdapter):
    """Adapter for DALL-E images, TTS voice and image edits."""

    name = "openai"
    features = frozenset({
        Feature.IMAGE_GENERATION,
        Feature.VOICE_SYNTHESIS,
        Feature.ADVANCED_EDITING,
    })

    def __init__(
        self,
        blobs: BlobStorage,
        client: Optional[OpenAI] = None,
        image_model: str = "dall-e-3",
        tts_model: str = "tts-1",
        edit_model: str = "dall-e-2",
    ):
        self.blobs = blobs
        self.client = client or OpenAI()
        self.image_model = image_model
        self.tts_model = tts_model
        self.edit_model = edit_model

    def generate(self, request: RequestPayload, options: GenerationOptions) -> GenerationResult:
        call_kwargs: Dict[str, Any] = {}
        if options.timeout is not None:
            call_kwargs["timeout"] = options.timeout

        try:
            if isinstance(request, ImageRequest):
                return self._generate_image(request, call_kwargs)
            if isinstance(request, VoiceRequest):
                return self._generate_voice(request, call_kwargs)
            if isinstance(request, EditRequest):
                return self._edit_image(request, call_kwargs)
        except openai.APIError as e:
            raise translate_openai_error(e) from e
        raise self._unsupported(request)

    def _generate_image(self, request: ImageRequest, call_kwargs: Dict[str, Any]) -> GenerationResult:
        prompt = enhance_image_prompt(request)
        params: Dict[str, Any] = {
            "model": self.image_model,
            "prompt": prompt,
            "n": 1,
            "size": map_image_size(request.dimensions),
        }
        if self.image_model == "dall-e-3":
            params["quality"] = request.quality
            params["style"] = "vivid" if request.style == ImageStyle.CREATIVE else "natural"

        response = self.client.images.generate(**params, **call_kwargs)
        if not response.data:
            raise ProviderError("openai returned no image", self.name, retryable=True, code="service_unavailable")

        return GenerationResult(
            result_location=response.data[0].url,
            provider=self.name,
            cost_cents=self.estimate_cost(request),
            metadata={
                "model": self.image_model,
                "prompt": prompt,
                "size": params["size"],
                "style": request.style.value,
            },
        )

    def _generate_voice(self, request: VoiceRequest, call_kwargs: Dict[str, Any]) -> GenerationResult:
        text = limit_text_for_duration(request.text, request.max_duration, WORDS_PER_SECOND)
        voice = request.voice if request.voice in OPENAI_VOICES else "alloy"
        speed = min(max(request.speed, 0.25), 4.0)

        response = self.client.audio.speech.create(
            model=self.tts_model,
            voice=voice,
            input=text,
            speed=speed,
            **call_kwargs,
        )
        location = self.blobs.upload(
            f"generated-audio/audio_{uuid.uuid4().hex}.mp3", response.content, "audio/mpeg"
        )

        return GenerationResult(
            result_location=location,
            provider=self.name,
            cost_cents=calculate_cost(self.tts_model, requests=0, characters=len(text)),
            metadata={
                "model": self.tts_model,
                "voice": voice,
                "speed": speed,
                "duration": request.max_duration,
                "text_length": len(text),
            },
        )

    def _edit_image(self, request: EditRequest, call_kwargs: Dict[str, Any]) -> GenerationResult:
        size = map_edit_size(request.dimensions)
        try:
            with open(request.source_image, "rb") as image:
                response = self.client.images.edit(
                    model=self.edit_model,
                    image=image,
                    prompt=request.prompt,
                    n=1,
                    size=size,
                    **call_kwargs,
                )
        except OSError as e:
            raise InvalidRequestError(f"Cannot read source image: {e}", self.name) from e

        if not response.data:
            raise ProviderError("openai returned no image", self.name, retryable=True, code="service_unavailable")

        return GenerationResult(
            result_location=response.data[0].url,
            provider=self.name,
            cost_cents=self.estimate_cost(request),
            metadata={"model": self.edit_model, "size": size},
        )

    def estimate_cost(self, request: RequestPayload) -> int:
        if isinstance(request, ImageRequest):
            return calculate_cost(self.image_model)
        if isinstance(request, VoiceRequest):
            text = limit_text_for_duration(request.text, request.max_duration, WORDS_PER_SECOND)
            return calculate_cost(self.tts_model, requests=0, characters=len(text))
        if isinstance(request, EditRequest):
            return calculate_cost(self.edit_model)
        raise self._unsupported(request)

    def is_available(self) -> bool:
        try:
            self.client.models.list()
        except Exception as e:
            logger.debug("openai availability probe failed: %s", e)
            return False
        return True
