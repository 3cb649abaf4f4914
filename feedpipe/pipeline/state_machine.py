from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

from feedpipe.errors import InvalidTransitionError
from feedpipe.models.digest import DigestBase
from feedpipe.models.types import ExtractedContent, IngestionRecord, RecordStatus
from feedpipe.processors.analysis import AnalysisInvoker
from feedpipe.processors.extraction import ExtractionChain
from feedpipe.storage.database import Database

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[RecordStatus, frozenset[RecordStatus]] = {
    RecordStatus.PENDING_ANALYSIS: frozenset(
        {RecordStatus.PROCESSING, RecordStatus.READY_TO_PUBLISH}
    ),
    RecordStatus.PROCESSING: frozenset(
        {RecordStatus.PENDING_ANALYSIS, RecordStatus.READY_TO_PUBLISH}
    ),
    RecordStatus.ANALYSIS_FAILED: frozenset({RecordStatus.PENDING_ANALYSIS}),
    RecordStatus.READY_TO_PUBLISH: frozenset({RecordStatus.PUBLISHED}),
    RecordStatus.PUBLISHED: frozenset(),
}


def check_transition(record_id: str, current: RecordStatus, target: RecordStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[RecordStatus(current)]:
        raise InvalidTransitionError(record_id, RecordStatus(current).value, target.value)


class ItemOutcome(str, Enum):
    ANALYZED = "analyzed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class PassSummary:
    analyzed: int = 0
    skipped: int = 0
    failed: int = 0
    scores: list[int] = field(default_factory=list)

    @property
    def average_score(self) -> float:
        return round(sum(self.scores) / len(self.scores), 2) if self.scores else 0.0

    def add(self, outcome: ItemOutcome, score: int | None = None) -> None:
        if outcome is ItemOutcome.ANALYZED:
            self.analyzed += 1
            if score is not None:
                self.scores.append(score)
        elif outcome is ItemOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1


def format_title(
    record: IngestionRecord, content: ExtractedContent, digest: DigestBase
) -> str:
    summary = digest.summary_oneline
    if digest.kind == "post":
        author = content.author.lstrip("@") or record.author_name.lstrip("@") or "Unknown"
        return f"{author} - {summary}"
    if digest.kind == "discussion":
        subreddit = getattr(digest, "subreddit", "") or content.extra.get("subreddit") or "r/Unknown"
        return f"{subreddit} - {summary}"
    return content.title or record.title or summary


class StatusStateMachine:
    """Drives ingestion records from ``pending_analysis`` to
    ``ready_to_publish`` one at a time.

    A failed attempt always returns the record to ``pending_analysis`` with
    an error note; a record with nothing extractable is put back untouched.
    """

    def __init__(
        self,
        database: Database,
        extraction: ExtractionChain,
        analysis: AnalysisInvoker,
        inter_item_delay: float = 5.0,
        sleep: Callable[[float], Any] = time.sleep,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = database
        self._extraction = extraction
        self._analysis = analysis
        self._inter_item_delay = inter_item_delay
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    def transition(
        self,
        record: IngestionRecord,
        target: RecordStatus,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        """Validate and persist ``record.status -> target`` with *fields* in
        one update. Returns ``False`` if the stored status moved underneath us.
        """
        check_transition(record.id, record.status, target)
        changed = self._db.update_ingestion_record(
            record.id, {**(fields or {}), "status": target}, expected_status=record.status
        )
        if changed:
            record.status = target
            for key, value in (fields or {}).items():
                setattr(record, key, value)
        return changed

    def process_record(self, record: IngestionRecord, dry_run: bool = False) -> tuple[ItemOutcome, DigestBase | None]:
        if record.status != RecordStatus.PENDING_ANALYSIS:
            logger.warning("Record %s is %s, not pending_analysis; skipping", record.id, record.status.value)
            return ItemOutcome.SKIPPED, None

        logger.info("--- Processing %s/%s (%s) ---", record.platform, record.platform_id, record.id)

        try:
            if not dry_run and not self.transition(record, RecordStatus.PROCESSING):
                logger.warning("Record %s changed status concurrently; skipping", record.id)
                return ItemOutcome.SKIPPED, None

            content = self._extraction.extract(record)
            if content is None:
                logger.info("Could not extract content for %s, leaving it pending", record.id)
                if not dry_run:
                    self.transition(record, RecordStatus.PENDING_ANALYSIS)
                return ItemOutcome.SKIPPED, None

            digest = self._analysis.analyze(record.platform, content)
            fields = self._build_update(record, content, digest)

            if dry_run:
                logger.info(
                    "[dry-run] would set %s -> ready_to_publish, title=%r, score=%d",
                    record.id, fields["title"], digest.recommend_score,
                )
                return ItemOutcome.ANALYZED, digest

            if not self.transition(record, RecordStatus.READY_TO_PUBLISH, fields):
                logger.warning("Record %s changed status during analysis; result discarded", record.id)
                return ItemOutcome.SKIPPED, None
            logger.info("Record %s ready to publish: %s", record.id, fields["title"])
            return ItemOutcome.ANALYZED, digest

        except KeyboardInterrupt:
            if not dry_run:
                self._roll_back(record, "Interrupted during processing")
            raise
        except Exception as exc:
            logger.error("Processing failed for %s: %s", record.id, exc)
            if not dry_run:
                self._roll_back(record, f"{type(exc).__name__}: {exc}")
            return ItemOutcome.FAILED, None

    def _roll_back(self, record: IngestionRecord, note: str) -> None:
        if record.status != RecordStatus.PROCESSING:
            return
        try:
            self.transition(record, RecordStatus.PENDING_ANALYSIS, {"error_note": note[:500]})
        except Exception:
            logger.exception("Could not return %s to pending_analysis", record.id)

    def _build_update(
        self, record: IngestionRecord, content: ExtractedContent, digest: DigestBase
    ) -> dict[str, Any]:
        digest_result = digest.to_record_dict()
        digest_result.update(
            {
                "author_handle": content.author or None,
                "metrics": content.metrics,
                "original_title": content.title or None,
                "extraction_source": content.source,
                "processedAt": self._clock().isoformat(),
            }
        )
        if digest.kind == "discussion" and not digest_result.get("subreddit"):
            digest_result["subreddit"] = content.extra.get("subreddit", "")

        fields: dict[str, Any] = {
            "title": format_title(record, content, digest),
            "content_text": digest.content_en,
            "translated_content": digest.content_ko,
            "digest_result": digest_result,
            "error_note": None,
        }
        if digest.kind in ("video", "repository"):
            fields["translated_title"] = digest.summary_oneline
        if content.published_at is not None:
            fields["published_at"] = content.published_at
        return fields

    def run_pass(
        self,
        platform: str | None = None,
        limit: int | None = None,
        dry_run: bool = False,
    ) -> PassSummary:
        records = self._db.select_ingestion_records(
            status=RecordStatus.PENDING_ANALYSIS, platform=platform, limit=limit
        )
        logger.info(
            "Found %d pending_analysis records%s",
            len(records), f" for {platform}" if platform else "",
        )

        summary = PassSummary()
        for index, record in enumerate(records):
            outcome, digest = self.process_record(record, dry_run=dry_run)
            summary.add(outcome, digest.recommend_score if digest else None)
            if index < len(records) - 1 and self._inter_item_delay > 0:
                self._sleep(self._inter_item_delay)

        logger.info(
            "Analysis pass complete: %d analyzed, %d skipped, %d failed, average score %.2f/10",
            summary.analyzed, summary.skipped, summary.failed, summary.average_score,
        )
        return summary

    def requeue_failed(self, platform: str | None = None, dry_run: bool = False) -> int:
        records = self._db.select_ingestion_records(
            status=RecordStatus.ANALYSIS_FAILED, platform=platform
        )
        requeued = 0
        for record in records:
            if dry_run:
                logger.info("[dry-run] would requeue %s", record.id)
                requeued += 1
            elif self.transition(record, RecordStatus.PENDING_ANALYSIS):
                requeued += 1
        logger.info("Requeued %d analysis_failed records", requeued)
        return requeued

    def recover_stuck(self, older_than: timedelta, dry_run: bool = False) -> int:
        cutoff = self._clock() - older_than
        records = self._db.select_ingestion_records(
            status=RecordStatus.PROCESSING, updated_before=cutoff
        )
        recovered = 0
        for record in records:
            note = f"Recovered after being stuck in processing since {record.updated_at}"
            if dry_run:
                logger.info("[dry-run] would recover %s", record.id)
                recovered += 1
            elif self.transition(record, RecordStatus.PENDING_ANALYSIS, {"error_note": note}):
                recovered += 1
        logger.info("Recovered %d stuck records", recovered)
        return recovered
