"""Tests for reply parsing, digest validation and the analysis invoker."""
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from feedpipe.errors import DigestValidationError, MalformedResponseError
from feedpipe.models.digest import (
    DiscussionDigest,
    PostDigest,
    RepositoryDigest,
    VideoDigest,
    digest_model_for,
    validate_digest,
)
from feedpipe.models.types import ExtractedContent, TranscriptSegment
from feedpipe.processors.analysis import AnalysisInvoker, build_prompt
from feedpipe.processors.reasoning import ReasoningClient, extract_json_object
from tests.conftest import FakeReasoningClient


def _payload(**overrides):
    payload = {
        "summary_oneline": "요약",
        "content_ko": "본문",
        "content_en": "Body",
        "categories": ["llm"],
        "recommendScore": 7,
        "recommendReason": "좋음",
    }
    payload.update(overrides)
    return payload


class TestExtractJsonObject:
    def test_plain_object(self):
        assert extract_json_object('{"a": 1}') == {"a": 1}

    def test_fenced_object_with_prose(self):
        text = 'Sure! Here you go:\n```json\n{"a": {"b": [1, 2]}}\n```\nAnything else?'
        assert extract_json_object(text) == {"a": {"b": [1, 2]}}

    def test_unfenced_object_inside_prose(self):
        text = 'The result is {"score": 4, "note": "has } brace"} as requested.'
        assert extract_json_object(text) == {"score": 4, "note": "has } brace"}

    def test_skips_invalid_leading_brace(self):
        assert extract_json_object('{not json} then {"ok": true}') == {"ok": True}

    @pytest.mark.parametrize("text", ["", "no json here", "[1, 2, 3]", '{"unterminated": '])
    def test_raises_when_no_object(self, text):
        with pytest.raises(MalformedResponseError):
            extract_json_object(text)


class TestValidateDigest:
    def test_platform_variants(self):
        assert digest_model_for("x") is PostDigest
        assert digest_model_for("reddit") is DiscussionDigest
        assert digest_model_for("youtube") is VideoDigest
        assert digest_model_for("trendshift") is RepositoryDigest
        assert digest_model_for("mastodon") is PostDigest

    def test_valid_payload(self):
        digest = validate_digest("reddit", _payload(subreddit="r/LocalLLaMA"))
        assert isinstance(digest, DiscussionDigest)
        assert digest.kind == "discussion"
        assert digest.recommend_score == 7
        assert digest.subreddit == "r/LocalLLaMA"

    def test_record_dict_uses_camel_case_scores(self):
        data = validate_digest("github", _payload(tech_stack=["Python"])).to_record_dict()
        assert data["kind"] == "repository"
        assert data["recommendScore"] == 7
        assert data["recommendReason"] == "좋음"
        assert data["tech_stack"] == ["Python"]

    def test_payload_kind_cannot_override_variant(self):
        digest = validate_digest("x", _payload(kind="video"))
        assert digest.kind == "post"

    @pytest.mark.parametrize("overrides", [
        {"recommendScore": 0},
        {"recommendScore": 11},
        {"recommendScore": "8"},
        {"recommendScore": 7.5},
        {"recommendScore": True},
        {"categories": []},
        {"categories": ["a", "b", "c", "d", "e", "f"]},
        {"summary_oneline": ""},
    ])
    def test_rejects_invalid_fields(self, overrides):
        with pytest.raises(DigestValidationError):
            validate_digest("x", _payload(**overrides))

    def test_rejects_missing_field(self):
        payload = _payload()
        del payload["content_en"]
        with pytest.raises(DigestValidationError, match="content_en"):
            validate_digest("x", payload)

    def test_rejects_non_object(self):
        with pytest.raises(DigestValidationError):
            validate_digest("x", ["not", "an", "object"])


class TestBuildPrompt:
    def test_post_prompt_mentions_author_and_body(self):
        prompt = build_prompt("threads", ExtractedContent(body="Hello world", author="@sam"))
        assert "threads post" in prompt
        assert "Author: @sam" in prompt
        assert "Hello world" in prompt
        assert '"subreddit"' not in prompt

    def test_video_prompt_uses_timestamped_transcript(self):
        content = ExtractedContent(
            title="Intro to RAG",
            body="hello there",
            transcript=[TranscriptSegment("hello", 0), TranscriptSegment("there", 75_000)],
        )
        prompt = build_prompt("youtube", content)
        assert "YouTube video" in prompt
        assert "[0:00] hello" in prompt
        assert "[1:15] there" in prompt
        assert '"key_points"' in prompt


class TestAnalysisInvoker:
    def test_returns_validated_digest(self, retry, analysis_reply):
        reasoning = FakeReasoningClient([analysis_reply(score=9)])
        digest = AnalysisInvoker(reasoning, retry).analyze("x", ExtractedContent(body="text"))
        assert digest.recommend_score == 9
        assert reasoning.calls[0]["image"] is None

    def test_retries_transient_failures(self, retry, sleeps, analysis_reply):
        reasoning = FakeReasoningClient([ConnectionError("reset"), analysis_reply()])
        digest = AnalysisInvoker(reasoning, retry).analyze("x", ExtractedContent(body="text"))
        assert digest.recommend_score == 8
        assert sleeps == [5.0]

    def test_malformed_reply_is_not_retried(self, retry, sleeps):
        reasoning = FakeReasoningClient(["I cannot help with that."])
        with pytest.raises(MalformedResponseError):
            AnalysisInvoker(reasoning, retry).analyze("x", ExtractedContent(body="text"))
        assert len(reasoning.calls) == 1
        assert sleeps == []

    def test_out_of_range_score_raises(self, retry, analysis_reply):
        reasoning = FakeReasoningClient([analysis_reply(score=12)])
        with pytest.raises(DigestValidationError):
            AnalysisInvoker(reasoning, retry).analyze("x", ExtractedContent(body="text"))


class TestReasoningClient:
    def test_generate_sends_prompt_and_image(self):
        client = MagicMock()
        client.models.generate_content.return_value = SimpleNamespace(text="  {\"a\": 1}  ")

        with patch("feedpipe.processors.reasoning.types") as mock_types:
            mock_types.Part.from_bytes.return_value = "IMAGE"
            reply = ReasoningClient(model="gemini-test", client=client).generate(
                "describe", image=b"png-bytes", mime_type="image/jpeg"
            )

        assert reply == '{"a": 1}'
        mock_types.Part.from_bytes.assert_called_once_with(data=b"png-bytes", mime_type="image/jpeg")
        client.models.generate_content.assert_called_once_with(
            model="gemini-test", contents=["IMAGE", "describe"]
        )

    def test_empty_reply_is_malformed(self):
        client = MagicMock()
        client.models.generate_content.return_value = SimpleNamespace(text="")
        with pytest.raises(MalformedResponseError):
            ReasoningClient(client=client).generate("prompt")
