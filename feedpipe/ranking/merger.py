"""Folding ranking observations into an item's cumulative ranking record.

An observation is a partial mapping such as ``{"daily": 3}``,
``{"weekly": 5, "monthly": 2}`` or ``{"python": {"daily": 1}}``. Fields it
does not mention are never touched.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date, datetime, timezone
from typing import Any

from feedpipe.errors import RankingPayloadError
from feedpipe.models.types import DailyRank, RankingRecord

logger = logging.getLogger(__name__)

MAX_DAILY_HISTORY = 365
SCALAR_FIELDS = ("weekly", "monthly")
HISTORY_KEYS = ("daily_history", "dailyHistory")


def _as_date(today: date | str | None) -> str:
    if today is None:
        return datetime.now(tz=timezone.utc).date().isoformat()
    if isinstance(today, datetime):
        return today.date().isoformat()
    if isinstance(today, date):
        return today.isoformat()
    return str(today)


def _check_rank(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise RankingPayloadError(f"'{key}' must be a positive integer rank, got {value!r}")
    return value


def copy_ranking(record: RankingRecord) -> RankingRecord:
    return RankingRecord(
        daily_history=[DailyRank(date=e.date, rank=e.rank) for e in record.daily_history],
        weekly=record.weekly,
        monthly=record.monthly,
        languages={lang: copy_ranking(sub) for lang, sub in record.languages.items()},
    )


def add_to_history(history: list[DailyRank], rank: int, on: date | str) -> list[DailyRank]:
    """Record *rank* for the day *on*.

    An existing entry for that date is overwritten in place, otherwise a new
    entry is appended. Only the newest ``MAX_DAILY_HISTORY`` entries are kept.
    """
    day = _as_date(on)
    entries = [DailyRank(date=e.date, rank=e.rank) for e in history]
    for entry in entries:
        if entry.date == day:
            entry.rank = rank
            break
    else:
        entries.append(DailyRank(date=day, rank=rank))
    return entries[-MAX_DAILY_HISTORY:]


def merge_ranking(
    existing: RankingRecord | None,
    incoming: Mapping[str, Any],
    today: date | str | None = None,
) -> RankingRecord:
    """Return a new record with *incoming* folded into *existing*."""
    if not isinstance(incoming, Mapping):
        raise RankingPayloadError(f"Ranking observation must be an object, got {incoming!r}")
    return _merge(existing or RankingRecord(), incoming, _as_date(today), nested=False)


def _merge(
    existing: RankingRecord, incoming: Mapping[str, Any], today: str, nested: bool
) -> RankingRecord:
    merged = copy_ranking(existing)

    for key, value in incoming.items():
        if key == "daily":
            merged.daily_history = add_to_history(
                merged.daily_history, _check_rank(key, value), today
            )
        elif key in HISTORY_KEYS:
            logger.debug("Ignoring '%s' in ranking observation; it is derived from 'daily'", key)
        elif key in SCALAR_FIELDS:
            setattr(merged, key, _check_rank(key, value))
        elif isinstance(value, Mapping):
            if nested:
                raise RankingPayloadError(
                    f"Language ranking cannot contain another language ('{key}')"
                )
            merged.languages[key] = _merge(
                merged.languages.get(key) or RankingRecord(), value, today, nested=True
            )
        else:
            raise RankingPayloadError(f"Unknown ranking field '{key}'")

    return merged


def ranking_to_dict(record: RankingRecord) -> dict[str, Any]:
    data: dict[str, Any] = {}
    if record.weekly is not None:
        data["weekly"] = record.weekly
    if record.monthly is not None:
        data["monthly"] = record.monthly
    if record.daily_history:
        data["daily_history"] = [
            {"rank": e.rank, "date": e.date} for e in record.daily_history
        ]
    for lang, sub in record.languages.items():
        data[lang] = ranking_to_dict(RankingRecord(
            daily_history=sub.daily_history, weekly=sub.weekly, monthly=sub.monthly
        ))
    return data


def ranking_from_dict(data: Mapping[str, Any] | None, nested: bool = False) -> RankingRecord:
    record = RankingRecord()
    if not data:
        return record

    for key, value in data.items():
        if key in HISTORY_KEYS:
            record.daily_history = [
                DailyRank(date=str(entry["date"]), rank=int(entry["rank"]))
                for entry in value or []
            ][-MAX_DAILY_HISTORY:]
        elif key in SCALAR_FIELDS:
            setattr(record, key, value)
        elif isinstance(value, Mapping) and not nested:
            record.languages[key] = ranking_from_dict(value, nested=True)
        else:
            logger.debug("Dropping unexpected stored ranking field '%s'", key)
    return record
