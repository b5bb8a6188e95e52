"""
Generation features, request variants and result types.

Each feature family has its own request dataclass. The orchestrator and the
provider adapters branch on the request type, never on which optional fields
happen to be present.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple, Union


class Feature(Enum):
    """Generation capability families."""
    IMAGE_GENERATION = "image_generation"
    VOICE_SYNTHESIS = "voice_synthesis"
    VIDEO_GENERATION = "video_generation"
    ADVANCED_EDITING = "advanced_editing"


class SubscriptionTier(Enum):
    """Subscription tiers that carry a quota table."""
    FREE = "free"
    TIER_1 = "tier_1"
    TIER_2 = "tier_2"


class ImageStyle(Enum):
    PROFESSIONAL = "professional"
    CREATIVE = "creative"
    MINIMAL = "minimal"
    BOLD = "bold"
    ARTISTIC = "artistic"
    CORPORATE = "corporate"


class ImageFormat(Enum):
    LOGO = "logo"
    AVATAR = "avatar"
    BACKGROUND = "background"
    ICON = "icon"
    BANNER = "banner"
    SOCIAL = "social"


class VoiceEmotion(Enum):
    NEUTRAL = "neutral"
    ENERGETIC = "energetic"
    PROFESSIONAL = "professional"
    FRIENDLY = "friendly"


@dataclass(frozen=True)
class Dimensions:
    """Output size in pixels."""
    width: int
    height: int

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError("dimensions must be positive")

    @property
    def pixel_count(self) -> int:
        return self.width * self.height


def _require_text(value: str, name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} is required and cannot be empty")


@dataclass(frozen=True)
class ImageRequest:
    """Text-to-image request."""
    feature: ClassVar[Feature] = Feature.IMAGE_GENERATION

    prompt: str
    style: ImageStyle = ImageStyle.PROFESSIONAL
    dimensions: Dimensions = Dimensions(1024, 1024)
    format: ImageFormat = ImageFormat.SOCIAL
    color_palette: Tuple[str, ...] = ()
    quality: str = "standard"

    def __post_init__(self):
        _require_text(self.prompt, "prompt")
        if self.quality not in ("standard", "hd"):
            raise ValueError("quality must be 'standard' or 'hd'")

    @property
    def moderation_text(self) -> str:
        return self.prompt


@dataclass(frozen=True)
class VoiceRequest:
    """Text-to-speech request. ``max_duration`` is in seconds."""
    feature: ClassVar[Feature] = Feature.VOICE_SYNTHESIS

    text: str
    voice: str = "alloy"
    speed: float = 1.0
    pitch: float = 0.0
    emotion: VoiceEmotion = VoiceEmotion.NEUTRAL
    max_duration: int = 10

    def __post_init__(self):
        _require_text(self.text, "text")
        if self.speed <= 0:
            raise ValueError("speed must be > 0")
        if self.max_duration <= 0:
            raise ValueError("max_duration must be > 0")

    @property
    def moderation_text(self) -> str:
        return self.text


@dataclass(frozen=True)
class VideoRequest:
    """Avatar video request driven by a short script."""
    feature: ClassVar[Feature] = Feature.VIDEO_GENERATION

    script: str
    avatar_id: str = "professional-female"
    avatar_description: str = ""
    background_color: str = "#ffffff"
    background_url: Optional[str] = None
    duration: int = 10

    def __post_init__(self):
        _require_text(self.script, "script")
        if self.duration <= 0:
            raise ValueError("duration must be > 0")

    @property
    def moderation_text(self) -> str:
        return self.script


@dataclass(frozen=True)
class EditRequest:
    """Prompt-guided edit of an existing image (local path)."""
    feature: ClassVar[Feature] = Feature.ADVANCED_EDITING

    prompt: str
    source_image: str
    dimensions: Dimensions = Dimensions(1024, 1024)

    def __post_init__(self):
        _require_text(self.prompt, "prompt")
        _require_text(self.source_image, "source_image")

    @property
    def moderation_text(self) -> str:
        return self.prompt


RequestPayload = Union[ImageRequest, VoiceRequest, VideoRequest, EditRequest]

PAYLOAD_TYPES: Dict[Feature, type] = {
    Feature.IMAGE_GENERATION: ImageRequest,
    Feature.VOICE_SYNTHESIS: VoiceRequest,
    Feature.VIDEO_GENERATION: VideoRequest,
    Feature.ADVANCED_EDITING: EditRequest,
}


def payload_to_dict(payload: RequestPayload) -> Dict[str, Any]:
    """Flatten a request payload into JSON-compatible primitives."""
    data: Dict[str, Any] = {}
    for f in fields(payload):
        value = getattr(payload, f.name)
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, Dimensions):
            value = {"width": value.width, "height": value.height}
        elif isinstance(value, tuple):
            value = list(value)
        data[f.name] = value
    return data


def payload_from_dict(feature: Feature, data: Dict[str, Any]) -> RequestPayload:
    """Rebuild a request payload for ``feature`` from a plain dict.

    Raises:
        ValueError: If a key is unknown or a value is invalid
    """
    payload_type = PAYLOAD_TYPES[feature]
    known = {f.name for f in fields(payload_type)}
    unknown = set(data.keys()) - known
    if unknown:
        raise ValueError(f"Unknown {feature.value} request keys: {unknown}")

    kwargs = dict(data)
    if "dimensions" in kwargs and isinstance(kwargs["dimensions"], dict):
        kwargs["dimensions"] = Dimensions(**kwargs["dimensions"])
    if "style" in kwargs:
        kwargs["style"] = ImageStyle(kwargs["style"])
    if "format" in kwargs:
        kwargs["format"] = ImageFormat(kwargs["format"])
    if "emotion" in kwargs:
        kwargs["emotion"] = VoiceEmotion(kwargs["emotion"])
    if "color_palette" in kwargs:
        kwargs["color_palette"] = tuple(kwargs["color_palette"])
    return payload_type(**kwargs)


@dataclass(frozen=True)
class GenerationRequest:
    """A unit of generation work."""
    payload: RequestPayload
    requester_id: str
    priority: int = 0

    @property
    def feature(self) -> Feature:
        return self.payload.feature

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature": self.feature.value,
            "payload": payload_to_dict(self.payload),
            "requester_id": self.requester_id,
            "priority": self.priority,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationRequest":
        feature = Feature(data["feature"])
        return cls(
            payload=payload_from_dict(feature, data["payload"]),
            requester_id=data["requester_id"],
            priority=data.get("priority", 0),
        )


@dataclass(frozen=True)
class GenerationOptions:
    """Per-call dispatch options. ``timeout`` is in seconds."""
    timeout: Optional[float] = None
    priority: int = 0
    allow_background: bool = True


@dataclass(frozen=True)
class GenerationResult:
    """Normalised provider output.

    Fresh and cached results share this shape; only ``metadata["cached"]``
    tells them apart.
    """
    result_location: str
    provider: str
    cost_cents: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def cached(self) -> bool:
        return bool(self.metadata.get("cached", False))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result_location": self.result_location,
            "provider": self.provider,
            "cost_cents": self.cost_cents,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class JobHandle:
    """Returned by dispatch when a request is deferred to the job queue."""
    job_id: str
    feature: Feature
    status: str = "pending"
