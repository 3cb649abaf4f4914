from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class RecordStatus(str, Enum):
    PENDING_ANALYSIS = "pending_analysis"
    PROCESSING = "processing"
    ANALYSIS_FAILED = "analysis_failed"
    READY_TO_PUBLISH = "ready_to_publish"
    PUBLISHED = "published"


VIDEO_PLATFORMS = frozenset({"youtube"})


@dataclass
class IngestionRecord:
    """One crawled post pending or undergoing analysis.

    ``(platform, platform_id)`` is the natural key. ``raw_data`` is whatever
    the platform crawler managed to capture and is treated as untyped input.
    """

    id: str
    platform: str
    platform_id: str
    status: RecordStatus = RecordStatus.PENDING_ANALYSIS
    url: str = ""
    title: str = ""
    content_text: str = ""
    description: str = ""
    author_name: str = ""
    author_url: str = ""
    author_avatar: str = ""
    thumbnail_url: str = ""
    raw_data: dict[str, Any] = field(default_factory=dict)
    screenshot_url: str | None = None
    transcript_source_id: str | None = None
    digest_result: dict[str, Any] | None = None
    translated_title: str | None = None
    translated_content: str | None = None
    error_note: str | None = None
    crawled_at: datetime | None = None
    published_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class TranscriptSegment:
    text: str
    offset_ms: int
    duration_ms: int = 0


@dataclass
class ExtractedContent:
    """Normalised fields recovered from an ingestion record."""

    title: str = ""
    body: str = ""
    author: str = ""
    metrics: dict[str, Any] = field(default_factory=dict)
    published_at: datetime | None = None
    source: str = "structured"
    extra: dict[str, Any] = field(default_factory=dict)
    transcript: list[TranscriptSegment] = field(default_factory=list)

    @property
    def usable(self) -> bool:
        return bool(self.title.strip() or self.body.strip())


@dataclass
class ContentItem:
    """A published editorial entry derived from an analysed ingestion record."""

    id: str
    slug: str
    title: str
    type: str
    platform: str
    platform_id: str
    body: str = ""
    title_en: str | None = None
    body_en: str | None = None
    description: str = ""
    description_en: str | None = None
    category: str = "ai-tools"
    tags: list[str] = field(default_factory=list)
    external_url: str = ""
    thumbnail_url: str = ""
    author_info: dict[str, Any] = field(default_factory=dict)
    social_metadata: dict[str, Any] = field(default_factory=dict)
    status: str = "published"
    published_at: datetime | None = None


@dataclass
class DailyRank:
    date: str
    rank: int


@dataclass
class RankingRecord:
    """Cumulative ranking of one content item.

    ``languages`` holds per-language sub-records of the same shape; those
    sub-records never carry languages of their own.
    """

    daily_history: list[DailyRank] = field(default_factory=list)
    weekly: int | None = None
    monthly: int | None = None
    languages: dict[str, RankingRecord] = field(default_factory=dict)


@dataclass(frozen=True)
class MetricsSnapshot:
    content_id: str
    recorded_at: datetime
    metrics: dict[str, Any]
    id: str | None = None
