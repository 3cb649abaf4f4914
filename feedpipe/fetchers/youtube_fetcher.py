from __future__ import annotations

import logging
from typing import Any

from googleapiclient.discovery import build
from youtube_transcript_api import NoTranscriptFound, YouTubeTranscriptApi

from feedpipe.errors import TranscriptNotAvailable
from feedpipe.models.types import TranscriptSegment

logger = logging.getLogger(__name__)


class TranscriptFetcher:
    """Fetches YouTube caption tracks.

    ``fetch(video_id, None)`` takes whichever track the video lists first,
    which covers unlabelled and auto-generated captions.
    """

    def __init__(self, api: Any = None) -> None:
        self._api = api if api is not None else YouTubeTranscriptApi()

    def fetch(self, video_id: str, language: str | None) -> list[TranscriptSegment]:
        try:
            if language is None:
                transcript_list = self._api.list(video_id)
                track = next(iter(transcript_list), None)
                if track is None:
                    raise TranscriptNotAvailable(f"No caption tracks for {video_id}")
                fetched = track.fetch()
            else:
                fetched = self._api.fetch(video_id, languages=[language])
        except NoTranscriptFound as exc:
            raise TranscriptNotAvailable(
                f"No '{language}' transcript for {video_id}"
            ) from exc

        segments = [
            TranscriptSegment(
                text=snippet.text,
                offset_ms=int(float(snippet.start) * 1000),
                duration_ms=int(float(snippet.duration) * 1000),
            )
            for snippet in fetched
        ]
        if not segments:
            raise TranscriptNotAvailable(f"Empty '{language}' transcript for {video_id}")
        return segments


class YouTubeStatsFetcher:
    """Current view/like/comment counts through the YouTube Data API."""

    def __init__(self, api_key: str, service: Any = None) -> None:
        self._youtube = service if service is not None else build(
            "youtube", "v3", developerKey=api_key
        )

    def fetch(self, video_id: str) -> dict[str, int] | None:
        response = self._youtube.videos().list(part="statistics", id=video_id).execute()
        items = response.get("items", [])
        if not items:
            logger.warning("No video found for ID %s", video_id)
            return None

        stats = items[0].get("statistics", {})
        return {
            "views": int(stats.get("viewCount", 0)),
            "likes": int(stats.get("likeCount", 0)),
            "comments": int(stats.get("commentCount", 0)),
        }
