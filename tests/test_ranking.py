"""Tests for feedpipe.ranking (history bound, merge rules, persistence)."""
from __future__ import annotations

from datetime import date, timedelta

import pytest

from feedpipe.errors import RankingPayloadError
from feedpipe.models.types import DailyRank, RankingRecord
from feedpipe.ranking.merger import (
    MAX_DAILY_HISTORY,
    add_to_history,
    merge_ranking,
    ranking_from_dict,
    ranking_to_dict,
)
from feedpipe.ranking.service import RankingService


class TestAddToHistory:
    def test_same_day_twice_keeps_one_entry(self):
        history = add_to_history([], 5, "2026-01-14")
        history = add_to_history(history, 5, "2026-01-14")
        assert history == [DailyRank(date="2026-01-14", rank=5)]

    def test_same_day_overwrites_rank_in_place(self):
        history = [DailyRank("2026-01-13", 4), DailyRank("2026-01-14", 9)]
        updated = add_to_history(history, 2, "2026-01-13")
        assert [(e.date, e.rank) for e in updated] == [("2026-01-13", 2), ("2026-01-14", 9)]

    def test_does_not_mutate_input(self):
        history = [DailyRank("2026-01-13", 4)]
        add_to_history(history, 1, "2026-01-13")
        add_to_history(history, 1, "2026-01-14")
        assert history == [DailyRank("2026-01-13", 4)]

    def test_bounded_to_newest_365_entries(self):
        start = date(2025, 1, 1)
        history: list[DailyRank] = []
        days = [start + timedelta(days=i) for i in range(400)]
        for day in days:
            history = add_to_history(history, 1, day)

        assert len(history) == MAX_DAILY_HISTORY == 365
        assert [e.date for e in history] == [d.isoformat() for d in days[-365:]]


class TestMergeRanking:
    def test_untouched_fields_survive(self):
        existing = RankingRecord(
            weekly=5, daily_history=[DailyRank(date="2026-01-14", rank=2)]
        )
        merged = merge_ranking(existing, {"monthly": 3})

        assert merged.weekly == 5
        assert merged.monthly == 3
        assert merged.daily_history == [DailyRank(date="2026-01-14", rank=2)]

    def test_existing_record_is_not_mutated(self):
        existing = RankingRecord(weekly=5)
        merge_ranking(existing, {"weekly": 1, "daily": 3}, today="2026-01-15")
        assert existing.weekly == 5
        assert existing.daily_history == []

    def test_daily_goes_to_history_under_today(self):
        merged = merge_ranking(None, {"daily": 7}, today=date(2026, 1, 15))
        assert merged.daily_history == [DailyRank(date="2026-01-15", rank=7)]

    def test_nested_language_path(self):
        first = merge_ranking(RankingRecord(), {"python": {"weekly": 3}}, today="2026-01-15")
        second = merge_ranking(first, {"python": {"daily": 1}}, today="2026-01-15")

        python = second.languages["python"]
        assert python.weekly == 3
        assert python.daily_history == [DailyRank(date="2026-01-15", rank=1)]
        assert second.weekly is None

    def test_incoming_daily_history_is_ignored(self):
        merged = merge_ranking(
            RankingRecord(), {"dailyHistory": [{"rank": 1, "date": "2020-01-01"}], "weekly": 2}
        )
        assert merged.daily_history == []
        assert merged.weekly == 2

    @pytest.mark.parametrize("payload", [
        {"weekly": 0},
        {"monthly": -2},
        {"daily": "3"},
        {"daily": True},
        {"yearly": 4},
        {"python": {"rust": {"daily": 1}}},
    ])
    def test_malformed_payloads_are_rejected(self, payload):
        with pytest.raises(RankingPayloadError):
            merge_ranking(RankingRecord(), payload)

    def test_non_mapping_observation(self):
        with pytest.raises(ValueError):
            merge_ranking(RankingRecord(), [("weekly", 1)])


class TestRankingSerialization:
    def test_dict_shape(self):
        record = merge_ranking(
            RankingRecord(), {"weekly": 4, "daily": 2, "python": {"monthly": 9}}, today="2026-01-15"
        )
        assert ranking_to_dict(record) == {
            "weekly": 4,
            "daily_history": [{"rank": 2, "date": "2026-01-15"}],
            "python": {"monthly": 9},
        }

    def test_reads_camel_case_history(self):
        record = ranking_from_dict({
            "weekly": 1,
            "dailyHistory": [{"rank": 3, "date": "2026-01-10"}],
            "ko": {"daily_history": [{"rank": 8, "date": "2026-01-10"}]},
        })
        assert record.daily_history == [DailyRank("2026-01-10", 3)]
        assert record.languages["ko"].daily_history == [DailyRank("2026-01-10", 8)]

    def test_empty_input(self):
        assert ranking_from_dict(None) == RankingRecord()


class TestRankingService:
    def test_apply_persists_merged_record(self, temp_database):
        service = RankingService(temp_database)
        service.apply("content-1", {"weekly": 3}, today="2026-01-15")
        service.apply("content-1", {"daily": 1, "python": {"daily": 2}}, today="2026-01-16")

        stored = temp_database.get_ranking("content-1")
        assert stored == {
            "weekly": 3,
            "daily_history": [{"rank": 1, "date": "2026-01-16"}],
            "python": {"daily_history": [{"rank": 2, "date": "2026-01-16"}]},
        }

    def test_dry_run_does_not_write(self, temp_database):
        service = RankingService(temp_database)
        merged = service.apply("content-2", {"monthly": 6}, dry_run=True)
        assert merged.monthly == 6
        assert temp_database.get_ranking("content-2") is None

    def test_bad_payload_leaves_store_untouched(self, temp_database):
        service = RankingService(temp_database)
        service.apply("content-3", {"weekly": 2})
        with pytest.raises(RankingPayloadError):
            service.apply("content-3", {"weekly": 0})
        assert temp_database.get_ranking("content-3") == {"weekly": 2}
