from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date
from typing import Any

from feedpipe.models.types import RankingRecord
from feedpipe.ranking.merger import merge_ranking, ranking_from_dict, ranking_to_dict
from feedpipe.storage.database import Database

logger = logging.getLogger(__name__)


class RankingService:
    def __init__(self, database: Database) -> None:
        self._db = database

    def get(self, content_id: str) -> RankingRecord:
        return ranking_from_dict(self._db.get_ranking(content_id))

    def apply(
        self,
        content_id: str,
        observation: Mapping[str, Any],
        today: date | str | None = None,
        dry_run: bool = False,
    ) -> RankingRecord:
        """Merge *observation* into the stored ranking of *content_id*."""
        merged = merge_ranking(self.get(content_id), observation, today)
        payload = ranking_to_dict(merged)
        if dry_run:
            logger.info("[dry-run] would save ranking for %s: %s", content_id, payload)
        else:
            self._db.save_ranking(content_id, payload)
            logger.info("Ranking updated for %s with %s", content_id, dict(observation))
        return merged
