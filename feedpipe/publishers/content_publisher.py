from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from feedpipe.errors import StoreError
from feedpipe.models.types import ContentItem, IngestionRecord, RecordStatus
from feedpipe.pipeline.state_machine import check_transition
from feedpipe.storage.database import Database

logger = logging.getLogger(__name__)

PLATFORM_TO_TYPE: dict[str, str] = {
    "youtube": "video",
    "github": "open-source",
    "trendshift": "open-source",
    "reddit": "reddit",
    "x": "x-thread",
    "threads": "threads",
    "linkedin": "linkedin",
}
DEFAULT_TYPE = "article"
DEFAULT_CATEGORY = "ai-tools"
UNTITLED = "(제목 없음)"
SLUG_MAX_LENGTH = 50

_SLUG_SEPARATOR = re.compile(r"[^a-z0-9가-힣]+")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def _slug_base(text: str) -> str:
    return _SLUG_SEPARATOR.sub("-", text.lower()).strip("-")[:SLUG_MAX_LENGTH].strip("-")


def generate_slug(title: str | None, platform_id: str, timestamp_ms: int) -> str:
    base = _slug_base(title or "") or _slug_base(platform_id) or "item"
    return f"{base}-{_to_base36(timestamp_ms)}"


def content_type_for(platform: str) -> str:
    return PLATFORM_TO_TYPE.get(platform, DEFAULT_TYPE)


@dataclass
class PublishSummary:
    published: int = 0
    skipped: int = 0
    failed: int = 0
    content_ids: list[str] = field(default_factory=list)


class ContentPublisher:
    """Turns ``ready_to_publish`` ingestion records into content items.

    The content item is written first; the ingestion record is deleted only
    after that write succeeded, so a failed publish can simply be retried.
    """

    def __init__(
        self,
        database: Database,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = database
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._last_ms = 0

    def _next_timestamp_ms(self, now: datetime) -> int:
        # strictly increasing so slugs stay unique within one process
        self._last_ms = max(int(now.timestamp() * 1000), self._last_ms + 1)
        return self._last_ms

    def build_content_item(self, record: IngestionRecord, now: datetime) -> ContentItem:
        digest = record.digest_result or {}
        categories = list(digest.get("categories") or [])
        translated = bool(record.translated_content)

        return ContentItem(
            id=str(uuid.uuid4()),
            slug=generate_slug(record.title, record.platform_id, self._next_timestamp_ms(now)),
            title=record.translated_title or record.title or UNTITLED,
            title_en=record.title if record.translated_title else None,
            description=(record.translated_content or "")[:500] or record.description,
            description_en=record.description if translated else None,
            body=record.translated_content or record.content_text,
            body_en=record.content_text if translated else None,
            type=content_type_for(record.platform),
            category=categories[0] if categories else DEFAULT_CATEGORY,
            tags=categories,
            platform=record.platform,
            platform_id=record.platform_id,
            external_url=record.url,
            thumbnail_url=record.thumbnail_url,
            author_info={
                "name": record.author_name,
                "url": record.author_url,
                "avatar": record.author_avatar,
            },
            social_metadata={
                **record.raw_data,
                "platform": record.platform,
                "translatedTitle": record.translated_title,
                "translatedContent": record.translated_content,
                "digest_result": record.digest_result,
            },
            status="published",
            published_at=now,
        )

    def publish_record(self, record: IngestionRecord, dry_run: bool = False) -> ContentItem | None:
        if record.status != RecordStatus.READY_TO_PUBLISH or record.digest_result is None:
            logger.warning(
                "Record %s is %s, not ready_to_publish; skipping", record.id, record.status.value
            )
            return None
        check_transition(record.id, record.status, RecordStatus.PUBLISHED)

        existing = self._db.find_content_item(record.platform, record.platform_id)
        if existing is not None:
            logger.warning(
                "Content for %s/%s already published as %s; retiring record %s",
                record.platform, record.platform_id, existing.slug, record.id,
            )
            if not dry_run:
                self._db.delete_ingestion_record(record.id)
            return existing

        item = self.build_content_item(record, self._clock())
        if dry_run:
            logger.info("[dry-run] would publish %s as %s (%s)", record.id, item.slug, item.type)
            return item

        self._db.insert_content_item(item)
        self._db.delete_ingestion_record(record.id)
        logger.info("Published: [%s] %s -> %s", record.platform, item.title, item.slug)
        return item

    def _publish_all(self, records: list[IngestionRecord], dry_run: bool) -> PublishSummary:
        summary = PublishSummary()
        for record in records:
            try:
                item = self.publish_record(record, dry_run=dry_run)
            except StoreError as exc:
                logger.error("Failed to publish item %s: %s", record.id, exc)
                summary.failed += 1
                continue
            if item is None:
                summary.skipped += 1
            else:
                summary.published += 1
                summary.content_ids.append(item.id)

        logger.info("=== Publish complete: %d/%d ===", summary.published, len(records))
        return summary

    def publish(self, record_ids: list[str], dry_run: bool = False) -> PublishSummary:
        records = self._db.get_ingestion_records(record_ids)
        found = {record.id for record in records}
        for missing in [rid for rid in record_ids if rid not in found]:
            logger.warning("Record %s not found", missing)
        logger.info("Found %d items to publish", len(records))
        summary = self._publish_all(records, dry_run)
        summary.skipped += len(record_ids) - len(found)
        return summary

    def publish_ready(
        self,
        platform: str | None = None,
        min_score: int | None = None,
        dry_run: bool = False,
    ) -> PublishSummary:
        records = self._db.select_ingestion_records(
            status=RecordStatus.READY_TO_PUBLISH, platform=platform
        )
        if min_score is not None:
            records = [
                r for r in records
                if (r.digest_result or {}).get("recommendScore", 0) >= min_score
            ]
        logger.info("Found %d ready records to auto-publish", len(records))
        return self._publish_all(records, dry_run)
