from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt

from feedpipe.errors import RateLimitedError

if TYPE_CHECKING:
    from feedpipe.config.settings import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RATE_LIMIT_MARKERS = ("429", "quota", "resource_exhausted", "rate limit", "too many requests")


def is_rate_limited(exc: BaseException) -> bool:
    """Return ``True`` when *exc* looks like a quota / HTTP 429 refusal."""
    if isinstance(exc, RateLimitedError):
        return True

    for attr in ("code", "status_code"):
        if getattr(exc, attr, None) == 429:
            return True

    response = getattr(exc, "response", None)
    if response is not None and getattr(response, "status_code", None) == 429:
        return True

    message = str(exc).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


class RetryController:
    """Runs one fallible external call with bounded attempts.

    A generic failure on attempt ``k`` waits ``base_delay * k`` seconds
    before the next attempt; a rate-limited failure always waits
    ``rate_limit_delay``. After ``max_attempts`` failures the last error is
    re-raised unchanged. The controller never touches any record.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 5.0,
        rate_limit_delay: float = 60.0,
        classifier: Callable[[BaseException], bool] = is_rate_limited,
        sleep: Callable[[float], Any] = time.sleep,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.rate_limit_delay = rate_limit_delay
        self.classifier = classifier
        self.retry_on = retry_on
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> RetryController:
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            rate_limit_delay=settings.rate_limit_delay,
            **kwargs,
        )

    def delay_for(self, attempt: int, exc: BaseException | None) -> float:
        """Seconds to wait after failed attempt number *attempt* (1-based)."""
        if exc is not None and self.classifier(exc):
            return self.rate_limit_delay
        return self.base_delay * attempt

    def _wait(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        return self.delay_for(retry_state.attempt_number, exc)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        kind = "Rate limit hit" if exc is not None and self.classifier(exc) else "Error"
        logger.warning(
            "%s: %s. Retrying in %.1fs (%d/%d)",
            kind,
            str(exc)[:200],
            delay,
            retry_state.attempt_number + 1,
            self.max_attempts,
        )

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(self.retry_on),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        return retrying(fn, *args, **kwargs)
