"""
Content moderation with a fail-closed policy.

Text is classified by the OpenAI moderation endpoint and images by a
vision-capable chat model. If the moderator cannot be reached or answers
with something unusable, the content is treated as flagged: generation is
blocked rather than silently allowed.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from openai import OpenAI

from ai_gen_guard.storage.db import DEFAULT_DB_PATH
from ai_gen_guard.storage.models import ModerationLog
from ai_gen_guard.storage.repository import ModerationRepository

logger = logging.getLogger(__name__)

FAIL_CLOSED_REASON = "Moderation service error - requires manual review"

VISION_PROMPT = (
    "Analyze this image for inappropriate content including violence, adult "
    "content, hate symbols, or other harmful material. Respond with JSON only: "
    '{"flagged": boolean, "categories": [string], "confidence": number, "reason": string}'
)


@dataclass(frozen=True)
class ModerationResult:
    """Verdict for one piece of content. ``confidence`` is in [0, 1]."""
    flagged: bool
    categories: List[str] = field(default_factory=list)
    confidence: float = 0.0
    reason: Optional[str] = None


def fail_closed() -> ModerationResult:
    return ModerationResult(
        flagged=True,
        categories=["error"],
        confidence=1.0,
        reason=FAIL_CLOSED_REASON,
    )


def _as_dict(value: Any) -> Dict[str, Any]:
    """Plain dict view of an SDK model or mapping."""
    if isinstance(value, dict):
        return value
    if hasattr(value, "model_dump"):
        return value.model_dump(by_alias=True)
    return dict(vars(value))


class ContentModerator:
    """Classifies request content before any provider or cache work."""

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        db_path: str = DEFAULT_DB_PATH,
        vision_model: str = "gpt-4o-mini",
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._client = client
        self.vision_model = vision_model
        self.clock = clock
        self.logs = ModerationRepository(db_path)

    @property
    def client(self) -> OpenAI:
        # Created on first use so a missing API key fails closed at moderation time.
        if self._client is None:
            self._client = OpenAI()
        return self._client

    def moderate(self, content: str, content_type: str = "text") -> ModerationResult:
        """Classify content, failing closed on any error.

        Args:
            content: Text to classify, or an image URL for ``content_type="image"``
            content_type: One of ``text``, ``image``, ``audio``, ``video``

        Returns:
            ModerationResult; flagged with category ``error`` if the moderator failed
        """
        try:
            if content_type == "text":
                return self._moderate_text(content)
            if content_type == "image":
                return self._moderate_image(content)
            # No transcription step for audio or video.
            return ModerationResult(flagged=False)
        except Exception as e:
            logger.warning("Moderation failed for %s content, failing closed: %s", content_type, e)
            return fail_closed()

    def _moderate_text(self, text: str) -> ModerationResult:
        response = self.client.moderations.create(input=text)
        result = response.results[0]

        categories = [name for name, hit in _as_dict(result.categories).items() if hit]
        scores = [
            score for score in _as_dict(result.category_scores).values()
            if isinstance(score, (int, float))
        ]
        confidence = float(max(scores, default=0.0))

        reason = None
        if result.flagged:
            reason = f"Content flagged for: {', '.join(categories)}"
        return ModerationResult(
            flagged=bool(result.flagged),
            categories=categories,
            confidence=confidence,
            reason=reason,
        )

    def _moderate_image(self, image_url: str) -> ModerationResult:
        response = self.client.chat.completions.create(
            model=self.vision_model,
            messages=[{
                "role": "user",
                "content": [
                    {"type": "text", "text": VISION_PROMPT},
                    {"type": "image_url", "image_url": {"url": image_url}},
                ],
            }],
            max_tokens=300,
        )
        answer = response.choices[0].message.content or ""
        try:
            verdict = json.loads(answer)
            return ModerationResult(
                flagged=bool(verdict.get("flagged", False)),
                categories=list(verdict.get("categories", [])),
                confidence=float(verdict.get("confidence", 0.0)),
                reason=verdict.get("reason"),
            )
        except (ValueError, TypeError, AttributeError):
            return ModerationResult(
                flagged=True,
                categories=["parsing_error"],
                confidence=1.0,
                reason="Unable to parse moderation response",
            )

    def log_result(self, request_id: str, account_id: Optional[str], result: ModerationResult) -> None:
        """Persist a verdict for later review."""
        self.logs.insert(ModerationLog(
            request_id=request_id,
            account_id=account_id,
            flagged=result.flagged,
            categories=list(result.categories),
            confidence=result.confidence,
            created_at=self.clock(),
            reason=result.reason,
        ))

    def get_flagged(self, limit: int = 50) -> List[ModerationLog]:
        return self.logs.list_flagged(limit)
