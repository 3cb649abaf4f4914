from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from dateutil import parser as date_parser

from feedpipe.models.types import IngestionRecord, RecordStatus
from feedpipe.storage.database import Database

logger = logging.getLogger(__name__)

# crawler field name -> IngestionRecord attribute
FIELD_ALIASES: dict[str, str] = {
    "platformId": "platform_id",
    "contentText": "content_text",
    "authorName": "author_name",
    "authorUrl": "author_url",
    "authorAvatar": "author_avatar",
    "thumbnailUrl": "thumbnail_url",
    "rawData": "raw_data",
    "screenshotUrl": "screenshot_url",
    "transcriptSourceId": "transcript_source_id",
    "crawledAt": "crawled_at",
}

_TEXT_FIELDS = (
    "url", "title", "content_text", "description", "author_name",
    "author_url", "author_avatar", "thumbnail_url",
)


@dataclass
class IngestSummary:
    inserted: int = 0
    duplicates: int = 0
    invalid: int = 0


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = date_parser.parse(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def record_from_crawler(data: dict[str, Any]) -> IngestionRecord:
    """Build a fresh ``pending_analysis`` record from one crawler payload.

    Raises ``ValueError`` when the natural key is missing.
    """
    values = {FIELD_ALIASES.get(key, key): value for key, value in data.items()}
    platform = str(values.get("platform") or "").strip().lower()
    platform_id = str(values.get("platform_id") or "").strip()
    if not platform or not platform_id:
        raise ValueError("crawler record needs both platform and platformId")

    raw_data = values.get("raw_data") or {}
    if not isinstance(raw_data, dict):
        raise ValueError("rawData must be an object")

    record = IngestionRecord(
        id=str(values.get("id") or uuid.uuid4()),
        platform=platform,
        platform_id=platform_id,
        status=RecordStatus.PENDING_ANALYSIS,
        raw_data=raw_data,
        screenshot_url=values.get("screenshot_url") or None,
        transcript_source_id=values.get("transcript_source_id") or None,
        crawled_at=_parse_datetime(values.get("crawled_at")),
    )
    for name in _TEXT_FIELDS:
        setattr(record, name, str(values.get(name) or ""))
    return record


def ingest_records(
    database: Database, payloads: list[dict[str, Any]], dry_run: bool = False
) -> IngestSummary:
    summary = IngestSummary()
    for payload in payloads:
        try:
            record = record_from_crawler(payload)
        except (ValueError, TypeError, OverflowError) as exc:
            logger.warning("Skipping invalid crawler record: %s", exc)
            summary.invalid += 1
            continue

        if database.find_ingestion_record(record.platform, record.platform_id) is not None:
            logger.debug("Already ingested %s/%s", record.platform, record.platform_id)
            summary.duplicates += 1
            continue

        if dry_run:
            logger.info("[dry-run] would ingest %s/%s", record.platform, record.platform_id)
            summary.inserted += 1
        elif database.insert_ingestion_record(record):
            summary.inserted += 1
        else:
            summary.duplicates += 1

    logger.info(
        "Ingest complete: %d inserted, %d duplicates, %d invalid",
        summary.inserted, summary.duplicates, summary.invalid,
    )
    return summary


def load_crawler_file(path: str | Path) -> list[dict[str, Any]]:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("records", [data])
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON list of records")
    return data
