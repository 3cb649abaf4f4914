from __future__ import annotations


class FeedpipeError(Exception):
    """Base class for every error raised by the pipeline."""


class RateLimitedError(FeedpipeError):
    """The external service refused the call because of a quota or rate limit."""


class MalformedResponseError(FeedpipeError):
    """A reasoning-service reply did not contain a parsable JSON object."""


class DigestValidationError(FeedpipeError):
    """A parsed analysis payload failed schema or range validation."""


class TranscriptNotAvailable(FeedpipeError):
    """No transcript track exists for the requested language."""


class InvalidTransitionError(FeedpipeError):
    def __init__(self, record_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Record {record_id}: transition {current} -> {target} is not allowed"
        )
        self.record_id = record_id
        self.current = current
        self.target = target


class StoreError(FeedpipeError):
    """The persistent store rejected a read or write."""


class RankingPayloadError(FeedpipeError, ValueError):
    """An incoming ranking observation does not match the ranking shape."""
