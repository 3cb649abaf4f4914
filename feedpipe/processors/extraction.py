from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from feedpipe.errors import TranscriptNotAvailable
from feedpipe.fetchers.utils import load_screenshot
from feedpipe.models.digest import PostDigest, digest_model_for
from feedpipe.models.types import (
    VIDEO_PLATFORMS,
    ExtractedContent,
    IngestionRecord,
    TranscriptSegment,
)
from feedpipe.processors.reasoning import ReasoningClient, extract_json_object
from feedpipe.utils.retry import RetryController
from feedpipe.utils.timeparse import parse_relative_time

logger = logging.getLogger(__name__)

TITLE_KEYS = ("title",)
BODY_KEYS = ("content", "text", "selftext", "description")
AUTHOR_KEYS = ("author", "author_name", "author_handle")

_POST_VISION_PROMPT = """Analyze this {platform} post screenshot and extract information in JSON format:

{{
  "content": "The full text of the main post only (no UI elements)",
  "author": "@handle or display name",
  "published_at": "relative time shown (e.g., 2h, 1d, 3w)",
  "metrics": {{
    "likes": number (convert K to thousands, M to millions),
    "replies": number,
    "reposts": number,
    "views": number
  }}
}}

If several posts are visible, extract only the main/focused post.
Return ONLY valid JSON, no markdown."""

_DISCUSSION_VISION_PROMPT = """Analyze this Reddit post screenshot and extract information in JSON format:

{
  "title": "Post title",
  "content": "Post body text (if any)",
  "author": "u/username",
  "subreddit": "r/subreddit_name",
  "published_at": "relative time shown (e.g., 2h, 1d, etc.)",
  "metrics": {
    "upvotes": number (convert K to thousands, M to millions),
    "comments": number
  }
}

Return ONLY valid JSON, no markdown."""


def _first_text(data: dict[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _parse_timestamp(value: Any, now: datetime) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return parse_relative_time(value, now=now)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _numeric_metrics(metrics: Any) -> dict[str, Any]:
    if not isinstance(metrics, dict):
        return {}
    return {
        key: value
        for key, value in metrics.items()
        if isinstance(value, (int, float)) and not isinstance(value, bool)
    }


def format_transcript(segments: list[TranscriptSegment]) -> str:
    """Render segments as ``[m:ss] text`` lines for the analysis prompt."""
    lines = []
    for seg in segments:
        total_sec = seg.offset_ms // 1000
        lines.append(f"[{total_sec // 60}:{total_sec % 60:02d}] {seg.text}")
    return "\n".join(lines)


class ExtractionChain:
    """Recovers ``(title, body, author, metrics, published_at)`` for a record,
    trying the cheapest source first:

    1. structured ``raw_data`` fields,
    2. vision extraction from the screenshot,
    3. video transcripts (preferred language, fallback language, any track).

    Returns ``None`` when nothing usable was found; the caller leaves the
    record for a later pass.
    """

    def __init__(
        self,
        reasoning: ReasoningClient,
        retry: RetryController,
        transcripts: Any = None,
        screenshot_root: str = "public",
        transcript_languages: list[str] | tuple[str, ...] = ("ko", "en"),
        screenshot_loader: Callable[..., tuple[bytes, str] | None] = load_screenshot,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._reasoning = reasoning
        self._retry = retry
        self._transcripts = transcripts
        self._screenshot_root = screenshot_root
        self._languages: list[str | None] = [*transcript_languages, None]
        self._load_screenshot = screenshot_loader
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    def extract(self, record: IngestionRecord) -> ExtractedContent | None:
        content = self._from_structured(record)
        if self._is_complete(record.platform, content):
            return content

        if record.screenshot_url:
            recovered = self._from_screenshot(record)
            if recovered is not None:
                had = (content.title, content.body)
                self._merge_missing(content, recovered)
                if (content.title, content.body) != had:
                    content.source = "screenshot"

        if not content.body and record.platform in VIDEO_PLATFORMS:
            segments = self._from_transcript(record)
            if segments:
                content.body = " ".join(seg.text for seg in segments)
                content.transcript = segments
                content.source = "transcript"

        if not content.usable:
            logger.info("Record %s: no usable title or body found", record.id)
            return None
        return content

    @staticmethod
    def _is_complete(platform: str, content: ExtractedContent) -> bool:
        # short posts have no title of their own; the body is the whole post
        if digest_model_for(platform) is PostDigest:
            return bool(content.body)
        return bool(content.title and content.body)

    def _from_structured(self, record: IngestionRecord) -> ExtractedContent:
        raw = record.raw_data or {}
        now = self._clock()
        extra: dict[str, Any] = {}
        subreddit = raw.get("subreddit")
        if isinstance(subreddit, str) and subreddit:
            extra["subreddit"] = subreddit

        return ExtractedContent(
            title=_first_text(raw, TITLE_KEYS) or record.title.strip(),
            body=_first_text(raw, BODY_KEYS) or record.content_text.strip(),
            author=_first_text(raw, AUTHOR_KEYS) or record.author_name.strip(),
            metrics=_numeric_metrics(raw.get("metrics")),
            published_at=_parse_timestamp(raw.get("published_at"), now),
            source="structured",
            extra=extra,
        )

    def _from_screenshot(self, record: IngestionRecord) -> ExtractedContent | None:
        image = self._load_screenshot(record.screenshot_url, root=self._screenshot_root)
        if image is None:
            logger.info("Record %s: screenshot unavailable, skipping vision step", record.id)
            return None

        data, mime_type = image
        if record.platform == "reddit":
            prompt = _DISCUSSION_VISION_PROMPT
        else:
            prompt = _POST_VISION_PROMPT.format(platform=record.platform)

        try:
            reply = self._retry.call(self._reasoning.generate, prompt, data, mime_type)
            parsed = extract_json_object(reply)
        except Exception as exc:
            if self._retry.classifier(exc):
                logger.warning(
                    "Record %s: vision extraction gave up after repeated rate limiting: %s",
                    record.id, exc,
                )
                return None
            logger.warning("Record %s: vision extraction failed: %s", record.id, exc)
            return None

        extra = {}
        if isinstance(parsed.get("subreddit"), str) and parsed["subreddit"]:
            extra["subreddit"] = parsed["subreddit"]

        return ExtractedContent(
            title=_first_text(parsed, TITLE_KEYS),
            body=_first_text(parsed, BODY_KEYS),
            author=_first_text(parsed, AUTHOR_KEYS),
            metrics=_numeric_metrics(parsed.get("metrics")),
            published_at=parse_relative_time(parsed.get("published_at"), now=self._clock()),
            source="screenshot",
            extra=extra,
        )

    @staticmethod
    def _merge_missing(content: ExtractedContent, recovered: ExtractedContent) -> None:
        content.title = content.title or recovered.title
        content.body = content.body or recovered.body
        content.author = content.author or recovered.author
        content.metrics = {**recovered.metrics, **content.metrics}
        content.published_at = content.published_at or recovered.published_at
        content.extra = {**recovered.extra, **content.extra}

    def _from_transcript(self, record: IngestionRecord) -> list[TranscriptSegment]:
        if self._transcripts is None:
            return []

        video_id = record.transcript_source_id or record.platform_id
        for language in self._languages:
            try:
                segments = self._transcripts.fetch(video_id, language)
            except TranscriptNotAvailable:
                logger.debug("No %s transcript for %s", language or "default", video_id)
                continue
            except Exception as exc:
                logger.warning("Transcript fetch failed for %s: %s", video_id, str(exc)[:200])
                return []
            logger.info(
                "Record %s: using %s transcript (%d segments)",
                record.id, language or "default", len(segments),
            )
            return segments
        return []
