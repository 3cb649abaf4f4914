from __future__ import annotations

import logging

from feedpipe.models.digest import DigestBase, digest_model_for, validate_digest
from feedpipe.models.types import ExtractedContent
from feedpipe.processors.extraction import format_transcript
from feedpipe.processors.reasoning import ReasoningClient, extract_json_object
from feedpipe.utils.retry import RetryController

logger = logging.getLogger(__name__)

CATEGORIES = (
    "llm", "ai-tools", "open-source", "research-papers", "industry-trends",
    "ai-basics", "claude-code", "image-generation", "ai-monetization",
)

_COMMON_FIELDS = (
    '  "summary_oneline": "한 줄 요약 (한국어, 40자 이내)",\n'
    '  "content_ko": "한국어 번역 (원문이 한국어면 그대로)",\n'
    '  "content_en": "영어 버전 (원문이 영어면 그대로)",\n'
    '  "categories": ["1-5 values from: {categories}"],\n'
    '  "recommendScore": 1-10 (integer, relevance to AI/Tech professionals, '
    "information value, engagement potential),\n"
    '  "recommendReason": "추천 이유 (한국어)"'
)

_EXTRA_FIELDS = {
    "post": "",
    "discussion": ',\n  "subreddit": "r/subreddit_name"',
    "video": ',\n  "key_points": ["3-5 key takeaways with [m:ss] timestamps when available"]',
    "repository": ',\n  "tech_stack": ["main languages and frameworks"]',
}

_KIND_LABELS = {
    "post": "{platform} post",
    "discussion": "Reddit post",
    "video": "YouTube video",
    "repository": "GitHub repository",
}


def build_prompt(platform: str, content: ExtractedContent) -> str:
    kind = digest_model_for(platform).model_fields["kind"].default
    label = _KIND_LABELS[kind].format(platform=platform)

    if content.transcript:
        body = format_transcript(content.transcript)[:30000]
    else:
        body = content.body[:10000] or "(no body text)"

    context_lines = [f"Author: {content.author or 'Unknown'}"]
    if content.extra.get("subreddit"):
        context_lines.append(f"Subreddit: {content.extra['subreddit']}")
    if content.title:
        context_lines.append(f"Title: {content.title}")

    fields = _COMMON_FIELDS.format(categories=", ".join(CATEGORIES)) + _EXTRA_FIELDS[kind]
    return (
        f"Analyze this {label} and provide a structured analysis.\n\n"
        + "\n".join(context_lines)
        + f"\nContent:\n{body}\n\n"
        + "Respond in JSON format:\n{\n"
        + fields
        + "\n}\n\nReturn ONLY valid JSON, no markdown."
    )


class AnalysisInvoker:
    """Sends extracted content to the reasoning service and returns a
    validated digest. Anything short of a fully valid payload raises, so a
    partial digest is never handed back.
    """

    def __init__(self, reasoning: ReasoningClient, retry: RetryController) -> None:
        self._reasoning = reasoning
        self._retry = retry

    def analyze(self, platform: str, content: ExtractedContent) -> DigestBase:
        prompt = build_prompt(platform, content)
        reply = self._retry.call(self._reasoning.generate, prompt)
        payload = extract_json_object(reply)
        digest = validate_digest(platform, payload)
        logger.info(
            "Analysis complete: score %d/10, categories %s",
            digest.recommend_score, ", ".join(digest.categories),
        )
        return digest
