"""Tests for feedpipe.utils.retry."""
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from feedpipe.errors import RateLimitedError
from feedpipe.utils.retry import RetryController, is_rate_limited


class TestIsRateLimited:
    def test_explicit_rate_limit_error(self):
        assert is_rate_limited(RateLimitedError("slow down")) is True

    def test_status_code_attribute(self):
        exc = RuntimeError("boom")
        exc.code = 429
        assert is_rate_limited(exc) is True

    def test_response_status_code(self):
        exc = RuntimeError("http error")
        exc.response = SimpleNamespace(status_code=429)
        assert is_rate_limited(exc) is True

    @pytest.mark.parametrize("message", [
        "429 RESOURCE_EXHAUSTED",
        "You exceeded your current quota",
        "Too Many Requests",
    ])
    def test_message_markers(self, message):
        assert is_rate_limited(RuntimeError(message)) is True

    def test_generic_error_is_not_rate_limited(self):
        assert is_rate_limited(ValueError("connection reset")) is False


class TestRetryController:
    def test_returns_first_success_without_waiting(self, retry, sleeps):
        fn = MagicMock(return_value="ok")
        assert retry.call(fn, "a", key="b") == "ok"
        fn.assert_called_once_with("a", key="b")
        assert sleeps == []

    def test_generic_failures_wait_linearly(self, retry, sleeps):
        fn = MagicMock(side_effect=[ConnectionError("reset"), ConnectionError("reset"), "done"])
        assert retry.call(fn) == "done"
        assert fn.call_count == 3
        assert sleeps == [5.0, 10.0]

    def test_rate_limit_uses_fixed_delay(self, retry, sleeps):
        fn = MagicMock(side_effect=[ConnectionError("reset"), RateLimitedError("quota"), "done"])
        assert retry.call(fn) == "done"
        assert sleeps == [5.0, 60.0]

    def test_rate_limit_delay_ignores_attempt_index(self, sleeps):
        controller = RetryController(max_attempts=4, base_delay=5.0, rate_limit_delay=60.0, sleep=sleeps.append)
        fn = MagicMock(side_effect=[RuntimeError("429"), RuntimeError("429"), RuntimeError("429"), "ok"])
        assert controller.call(fn) == "ok"
        assert sleeps == [60.0, 60.0, 60.0]

    def test_reraises_last_error_after_max_attempts(self, retry, sleeps):
        fn = MagicMock(side_effect=[ConnectionError("one"), ConnectionError("two"), ConnectionError("three")])
        with pytest.raises(ConnectionError, match="three"):
            retry.call(fn)
        assert fn.call_count == 3
        assert sleeps == [5.0, 10.0]

    def test_custom_classifier(self, sleeps):
        controller = RetryController(
            max_attempts=2, base_delay=1.0, rate_limit_delay=30.0,
            classifier=lambda exc: isinstance(exc, KeyError), sleep=sleeps.append,
        )
        fn = MagicMock(side_effect=[KeyError("x"), "ok"])
        assert controller.call(fn) == "ok"
        assert sleeps == [30.0]

    def test_from_settings(self, sample_settings):
        controller = RetryController.from_settings(sample_settings)
        assert controller.max_attempts == 3
        assert controller.delay_for(2, ValueError("x")) == 10.0
        assert controller.delay_for(1, RateLimitedError()) == 60.0

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryController(max_attempts=0)
