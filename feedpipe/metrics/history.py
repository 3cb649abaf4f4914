from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from feedpipe.models.types import MetricsSnapshot
from feedpipe.storage.database import Database

logger = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def compute_stats(history: list[MetricsSnapshot]) -> dict[str, dict[str, float]]:
    """Trend statistics per metric over *history* (oldest first).

    The metric names are taken from the first snapshot only; names that
    appear later in the window are ignored.
    """
    if not history:
        return {}

    stats: dict[str, dict[str, float]] = {}
    for key in history[0].metrics:
        values = [s.metrics[key] for s in history if _is_number(s.metrics.get(key))]
        if not values:
            continue

        first = values[0]
        last = values[-1]
        change = last - first
        change_percent = (change / first) * 100 if first != 0 else 0
        stats[key] = {
            "first": first,
            "last": last,
            "min": min(values),
            "max": max(values),
            "avg": round(sum(values) / len(values), 2),
            "change": change,
            "changePercent": round(change_percent, 2),
        }
    return stats


class MetricsHistory:
    """Append-only engagement log. Windowing happens when reading."""

    def __init__(
        self,
        database: Database,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = database
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    def record_snapshot(self, content_id: str, metrics: dict[str, Any]) -> MetricsSnapshot:
        snapshot = MetricsSnapshot(
            content_id=content_id,
            recorded_at=self._clock(),
            metrics=dict(metrics),
        )
        snapshot_id = self._db.insert_metrics_snapshot(snapshot)
        return MetricsSnapshot(
            id=snapshot_id,
            content_id=snapshot.content_id,
            recorded_at=snapshot.recorded_at,
            metrics=snapshot.metrics,
        )

    def query(self, content_id: str, days: int = 7, limit: int = 100) -> list[MetricsSnapshot]:
        since = self._clock() - timedelta(days=days)
        return self._db.get_metrics_history(content_id, since=since, limit=limit)

    def history_report(self, content_id: str, days: int = 7, limit: int = 100) -> dict[str, Any]:
        end = self._clock()
        start = end - timedelta(days=days)
        history = self._db.get_metrics_history(content_id, since=start, limit=limit)
        return {
            "contentId": content_id,
            "history": [
                {"recorded_at": s.recorded_at.isoformat(), **s.metrics} for s in history
            ],
            "stats": compute_stats(history),
            "meta": {
                "days": days,
                "count": len(history),
                "startDate": start.isoformat(),
                "endDate": end.isoformat(),
            },
        }
