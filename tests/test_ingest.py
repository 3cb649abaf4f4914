"""Tests for feedpipe.pipeline.ingest."""
from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from feedpipe.models.types import RecordStatus
from feedpipe.pipeline.ingest import ingest_records, load_crawler_file, record_from_crawler


class TestRecordFromCrawler:
    def test_accepts_camel_case_fields(self):
        record = record_from_crawler({
            "platform": "X",
            "platformId": "123",
            "authorName": "karpathy",
            "rawData": {"content": ""},
            "screenshotUrl": "/screenshots/x/123.png",
            "crawledAt": "2026-01-14T08:00:00Z",
            "status": "ready_to_publish",
        })
        assert record.platform == "x"
        assert record.platform_id == "123"
        assert record.author_name == "karpathy"
        assert record.screenshot_url == "/screenshots/x/123.png"
        assert record.crawled_at == datetime(2026, 1, 14, 8, 0, tzinfo=timezone.utc)
        assert record.status == RecordStatus.PENDING_ANALYSIS

    @pytest.mark.parametrize("payload", [
        {"platform": "x"},
        {"platformId": "1"},
        {"platform": "x", "platformId": "1", "rawData": ["not", "a", "dict"]},
    ])
    def test_rejects_incomplete_records(self, payload):
        with pytest.raises(ValueError):
            record_from_crawler(payload)


class TestIngestRecords:
    def test_dedups_on_natural_key(self, temp_database):
        payloads = [
            {"platform": "reddit", "platformId": "abc", "title": "first"},
            {"platform": "reddit", "platformId": "abc", "title": "again"},
            {"platform": "reddit", "platformId": "def"},
            {"platform": "reddit"},
        ]
        summary = ingest_records(temp_database, payloads)

        assert (summary.inserted, summary.duplicates, summary.invalid) == (2, 1, 1)
        assert temp_database.find_ingestion_record("reddit", "abc").title == "first"

    def test_dry_run(self, temp_database):
        summary = ingest_records(temp_database, [{"platform": "x", "platformId": "1"}], dry_run=True)
        assert summary.inserted == 1
        assert temp_database.find_ingestion_record("x", "1") is None


class TestLoadCrawlerFile:
    def test_list_and_wrapped_forms(self, tmp_path):
        plain = tmp_path / "plain.json"
        plain.write_text(json.dumps([{"platform": "x", "platformId": "1"}]), encoding="utf-8")
        wrapped = tmp_path / "wrapped.json"
        wrapped.write_text(json.dumps({"records": [{"platform": "x", "platformId": "2"}]}), encoding="utf-8")

        assert load_crawler_file(plain)[0]["platformId"] == "1"
        assert load_crawler_file(wrapped)[0]["platformId"] == "2"

    def test_rejects_scalars(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("42", encoding="utf-8")
        with pytest.raises(ValueError):
            load_crawler_file(path)
