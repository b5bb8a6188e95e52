"""
ElevenLabs text-to-speech adapter.
"""

import uuid
from typing import Optional

import httpx

from .base import HttpProviderAdapter, limit_text_for_duration
from ai_gen_guard.core.features import (
    Feature,
    GenerationOptions,
    GenerationResult,
    RequestPayload,
    VoiceEmotion,
    VoiceRequest,
)
from ai_gen_guard.core.pricing import calculate_cost
from ai_gen_guard.storage.blobs import BlobStorage

WORDS_PER_SECOND = 2.8

DEFAULT_VOICE_ID = "21m00Tcm4TlvDq8ikWAM"

# emotion -> (stability, style)
EMOTION_SETTINGS = {
    VoiceEmotion.ENERGETIC: (0.3, 0.8),
    VoiceEmotion.PROFESSIONAL: (0.8, 0.2),
    VoiceEmotion.FRIENDLY: (0.6, 0.6),
    VoiceEmotion.NEUTRAL: (0.5, 0.4),
}


class ElevenLabsProvider(HttpProviderAdapter):
    """Adapter for ElevenLabs voices. Audio is stored as MP3 in blob storage."""

    name = "elevenlabs"
    features = frozenset({Feature.VOICE_SYNTHESIS})
    base_url = "https://api.elevenlabs.io/v1"

    def __init__(
        self,
        api_key: str,
        blobs: BlobStorage,
        voice_id: str = DEFAULT_VOICE_ID,
        model: str = "eleven_monolingual_v1",
        transport: Optional[httpx.BaseTransport] = None,
    ):
        super().__init__({"xi-api-key": api_key}, transport)
        self.blobs = blobs
        self.voice_id = voice_id
        self.model = model

    def generate(self, request: RequestPayload, options: GenerationOptions) -> GenerationResult:
        if not isinstance(request, VoiceRequest):
            raise self._unsupported(request)

        text = limit_text_for_duration(request.text, request.max_duration, WORDS_PER_SECOND)
        stability, style = EMOTION_SETTINGS[request.emotion]
        body = {
            "text": text,
            "model_id": self.model,
            "voice_settings": {
                "stability": stability,
                "similarity_boost": 0.75,
                "style": style,
                "use_speaker_boost": True,
            },
        }

        response = self._request(
            "POST",
            f"/text-to-speech/{self.voice_id}",
            timeout=options.timeout,
            json=body,
            headers={"Accept": "audio/mpeg"},
        )
        location = self.blobs.upload(
            f"generated-audio/voice_{uuid.uuid4().hex}.mp3", response.content, "audio/mpeg"
        )

        return GenerationResult(
            result_location=location,
            provider=self.name,
            cost_cents=calculate_cost(self.model, requests=0, characters=len(text)),
            metadata={
                "model": self.model,
                "voice": request.voice,
                "voice_id": self.voice_id,
                "duration": request.max_duration,
                "text_length": len(text),
                "emotion": request.emotion.value,
            },
        )

    def estimate_cost(self, request: RequestPayload) -> int:
        if not isinstance(request, VoiceRequest):
            raise self._unsupported(request)
        text = limit_text_for_duration(request.text, request.max_duration, WORDS_PER_SECOND)
        return calculate_cost(self.model, requests=0, characters=len(text))

    def is_available(self) -> bool:
        return self._probe("/voices")
