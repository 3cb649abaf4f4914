from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any

import pytest

from feedpipe.config.settings import Settings
from feedpipe.errors import TranscriptNotAvailable
from feedpipe.models.types import IngestionRecord, RecordStatus, TranscriptSegment
from feedpipe.storage.database import Database
from feedpipe.utils.retry import RetryController

FIXED_NOW = datetime(2026, 1, 20, 9, 0, 0, tzinfo=timezone.utc)


class FakeReasoningClient:
    """Stands in for the Gemini client; replays queued replies in order.

    A queued exception instance is raised instead of returned.
    """

    def __init__(self, replies: list[Any] | None = None) -> None:
        self.replies = list(replies or [])
        self.calls: list[dict[str, Any]] = []

    def generate(self, prompt: str, image: bytes | None = None, mime_type: str = "image/png") -> str:
        self.calls.append({"prompt": prompt, "image": image, "mime_type": mime_type})
        if not self.replies:
            raise RuntimeError("no reply queued")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


class FakeTranscripts:
    """Transcript source keyed by language (``None`` = default track)."""

    def __init__(self, tracks: dict[str | None, Any] | None = None) -> None:
        self.tracks = tracks or {}
        self.requests: list[tuple[str, str | None]] = []

    def fetch(self, video_id: str, language: str | None) -> list[TranscriptSegment]:
        self.requests.append((video_id, language))
        track = self.tracks.get(language)
        if track is None:
            raise TranscriptNotAvailable(f"no {language} track")
        if isinstance(track, BaseException):
            raise track
        return track


@pytest.fixture
def temp_database(tmp_path):
    """A Database backed by a temporary SQLite file, cleaned up after the test."""
    db_file = str(tmp_path / "test_feedpipe.db")
    db = Database(db_path=db_file)
    yield db
    db.close()
    if os.path.exists(db_file):
        os.remove(db_file)


@pytest.fixture
def sample_settings(tmp_path) -> Settings:
    return Settings(
        gemini_api_key="test-key",
        database_path=str(tmp_path / "settings.db"),
        screenshot_root=str(tmp_path),
        metrics_platforms=["x", "threads", "reddit", "youtube"],
        metrics_collect_times=["08:00", "20:00"],
    )


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def retry(sleeps) -> RetryController:
    """A retry controller that records its waits instead of sleeping."""
    return RetryController(max_attempts=3, base_delay=5.0, rate_limit_delay=60.0, sleep=sleeps.append)


@pytest.fixture
def make_record():
    """Factory for pending ingestion records with sensible defaults."""

    def _make(**overrides: Any) -> IngestionRecord:
        values: dict[str, Any] = {
            "id": "rec-1",
            "platform": "x",
            "platform_id": "1880000000000000001",
            "status": RecordStatus.PENDING_ANALYSIS,
            "url": "https://x.com/karpathy/status/1880000000000000001",
            "author_name": "karpathy",
            "raw_data": {},
            "crawled_at": FIXED_NOW,
        }
        values.update(overrides)
        return IngestionRecord(**values)

    return _make


@pytest.fixture
def analysis_reply():
    """Factory for a fenced, well-formed analysis reply."""

    def _reply(score: int = 8, **extra: Any) -> str:
        payload = {
            "summary_oneline": "LLM 학습 팁 공유",
            "content_ko": "대규모 언어 모델 학습에 관한 팁입니다.",
            "content_en": "Tips on training large language models.",
            "categories": ["llm", "research-papers"],
            "recommendScore": score,
            "recommendReason": "실무에 바로 쓸 수 있는 내용",
            **extra,
        }
        return "Here is the analysis:\n```json\n" + json.dumps(payload, ensure_ascii=False) + "\n```"

    return _reply
