"""
Unit tests for content moderation.

Tests text and image classification and the fail-closed policy.
"""

import json
import os
import tempfile
from unittest.mock import Mock, patch

from ai_gen_guard.core.moderation import FAIL_CLOSED_REASON, ContentModerator, ModerationResult
from ai_gen_guard.storage.repository import initialize_schema


def _text_response(flagged: bool, categories: dict, scores: dict) -> Mock:
    result = Mock(flagged=flagged, categories=categories, category_scores=scores)
    return Mock(results=[result])


def _chat_response(content: str) -> Mock:
    return Mock(choices=[Mock(message=Mock(content=content))])


class TestContentModerator:
    """Test moderation verdicts."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.client = Mock()
        self.moderator = ContentModerator(client=self.client, db_path=self.db_path)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_clean_text(self):
        self.client.moderations.create.return_value = _text_response(
            False, {"violence": False, "hate": False}, {"violence": 0.01, "hate": 0.002}
        )

        result = self.moderator.moderate("a watercolor of a lighthouse")

        assert result == ModerationResult(flagged=False, categories=[], confidence=0.01, reason=None)
        self.client.moderations.create.assert_called_once_with(input="a watercolor of a lighthouse")

    def test_flagged_text(self):
        self.client.moderations.create.return_value = _text_response(
            True,
            {"violence": True, "violence/graphic": True, "hate": False},
            {"violence": 0.91, "violence/graphic": 0.7, "hate": 0.02},
        )

        result = self.moderator.moderate("something violent")

        assert result.flagged
        assert result.categories == ["violence", "violence/graphic"]
        assert result.confidence == 0.91
        assert result.reason == "Content flagged for: violence, violence/graphic"

    def test_sdk_model_categories(self):
        """Categories given as SDK models are read through model_dump."""
        categories = Mock()
        categories.model_dump.return_value = {"harassment": True}
        scores = Mock()
        scores.model_dump.return_value = {"harassment": 0.8}
        self.client.moderations.create.return_value = _text_response(True, categories, scores)

        result = self.moderator.moderate("text")

        assert result.categories == ["harassment"]
        categories.model_dump.assert_called_once_with(by_alias=True)

    def test_text_moderation_error_fails_closed(self):
        self.client.moderations.create.side_effect = RuntimeError("connection reset")

        result = self.moderator.moderate("anything")

        assert result.flagged
        assert result.categories == ["error"]
        assert result.confidence == 1.0
        assert result.reason == FAIL_CLOSED_REASON

    def test_missing_client_fails_closed(self):
        with patch("ai_gen_guard.core.moderation.OpenAI", side_effect=Exception("api_key must be set")):
            moderator = ContentModerator(db_path=self.db_path)
            result = moderator.moderate("anything")

        assert result.flagged
        assert result.reason == FAIL_CLOSED_REASON

    def test_image_verdict(self):
        verdict = {"flagged": True, "categories": ["violence"], "confidence": 0.8, "reason": "weapon"}
        self.client.chat.completions.create.return_value = _chat_response(json.dumps(verdict))

        result = self.moderator.moderate("https://example.com/a.png", content_type="image")

        assert result == ModerationResult(True, ["violence"], 0.8, "weapon")
        kwargs = self.client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"][0]["content"][1]["image_url"]["url"] == "https://example.com/a.png"

    def test_unparseable_image_verdict(self):
        self.client.chat.completions.create.return_value = _chat_response("I think it is fine")

        result = self.moderator.moderate("https://example.com/a.png", content_type="image")

        assert result.flagged
        assert result.categories == ["parsing_error"]
        assert result.confidence == 1.0
        assert result.reason == "Unable to parse moderation response"

    def test_image_moderation_error_fails_closed(self):
        self.client.chat.completions.create.side_effect = TimeoutError()

        result = self.moderator.moderate("https://example.com/a.png", content_type="image")

        assert result.categories == ["error"]

    def test_audio_and_video_pass_through(self):
        assert not self.moderator.moderate("clip.mp3", content_type="audio").flagged
        assert not self.moderator.moderate("clip.mp4", content_type="video").flagged
        self.client.moderations.create.assert_not_called()

    def test_log_and_list_flagged(self):
        self.moderator.log_result("req-1", "acct", ModerationResult(True, ["hate"], 0.9, "Content flagged for: hate"))
        self.moderator.log_result("req-2", "acct", ModerationResult(False))

        flagged = self.moderator.get_flagged()
        assert len(flagged) == 1
        assert flagged[0].request_id == "req-1"
        assert flagged[0].categories == ["hate"]
        assert flagged[0].reason == "Content flagged for: hate"
