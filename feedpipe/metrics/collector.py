from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from feedpipe.fetchers.utils import fetch_reddit_metrics
from feedpipe.fetchers.youtube_fetcher import YouTubeStatsFetcher
from feedpipe.metrics.history import MetricsHistory
from feedpipe.models.types import ContentItem
from feedpipe.storage.database import Database

logger = logging.getLogger(__name__)


@dataclass
class CollectionSummary:
    collected: int = 0
    missing: int = 0
    errors: int = 0


def stored_metrics(item: ContentItem) -> dict[str, Any] | None:
    """Metrics captured at crawl/extraction time for platforms we cannot poll."""
    meta = item.social_metadata or {}
    metrics = meta.get("metrics") or (meta.get("digest_result") or {}).get("metrics")
    if metrics:
        return dict(metrics)
    legacy = {key: meta[key] for key in ("likes", "retweets", "replies") if key in meta}
    return legacy or None


class MetricsCollector:
    """Polls current engagement for recently published items and appends a
    snapshot for each one."""

    def __init__(
        self,
        database: Database,
        history: MetricsHistory,
        platforms: list[str],
        days: int = 7,
        youtube: YouTubeStatsFetcher | None = None,
        reddit_fetch: Callable[[str], dict[str, Any] | None] = fetch_reddit_metrics,
        delay: float = 0.5,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self._db = database
        self._history = history
        self._platforms = platforms
        self._days = days
        self._youtube = youtube
        self._reddit_fetch = reddit_fetch
        self._delay = delay
        self._sleep = sleep

    def _current_metrics(self, item: ContentItem) -> dict[str, Any] | None:
        if item.platform == "reddit":
            return self._reddit_fetch(item.platform_id)
        if item.platform == "youtube" and self._youtube is not None:
            return self._youtube.fetch(item.platform_id) or stored_metrics(item)
        return stored_metrics(item)

    def collect(self, dry_run: bool = False) -> CollectionSummary:
        since = datetime.now(tz=timezone.utc) - timedelta(days=self._days)
        items = self._db.list_published_content(self._platforms, since)
        logger.info("Found %d content items to collect metrics for", len(items))

        summary = CollectionSummary()
        for index, item in enumerate(items):
            try:
                metrics = self._current_metrics(item)
                if not metrics:
                    logger.info("No metrics available for %s/%s", item.platform, item.platform_id)
                    summary.missing += 1
                elif dry_run:
                    logger.info("[dry-run] would record metrics for %s: %s", item.id, metrics)
                    summary.collected += 1
                else:
                    self._history.record_snapshot(item.id, metrics)
                    logger.info("Collected metrics for %s/%s", item.platform, item.platform_id)
                    summary.collected += 1
            except Exception as exc:
                logger.error("Error collecting metrics for %s/%s: %s", item.platform, item.platform_id, exc)
                summary.errors += 1

            if index < len(items) - 1 and self._delay > 0:
                self._sleep(self._delay)

        logger.info(
            "Metrics collection complete. Success: %d, Missing: %d, Errors: %d",
            summary.collected, summary.missing, summary.errors,
        )
        return summary
