"""
Tests for retry with exponential backoff.
"""

import logging

import pytest

from timeblocker.resilience import RetryConfig, retry_with_backoff


class Flaky:
    """Fails with the given exceptions, then returns 'ok'."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


class TestRetryConfig:
    def test_defaults(self):
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.base_delay == 1.0
        assert config.max_delay == 30.0

    def test_exponential_delay_with_jitter(self):
        config = RetryConfig(base_delay=1.0, max_delay=30.0)
        for attempt, base in enumerate([1.0, 2.0, 4.0, 8.0]):
            delay = config.delay_for(attempt)
            assert base <= delay <= base * 1.1

    def test_delay_capped(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0)
        assert 5.0 <= config.delay_for(10) <= 5.5

    def test_from_config(self):
        config = RetryConfig.from_config()
        assert config.max_retries >= 0
        assert config.base_delay > 0


class TestRetryWithBackoff:
    def test_success_first_try(self):
        func = Flaky()
        sleeps = []
        assert retry_with_backoff(func, RetryConfig(), sleep=sleeps.append) == "ok"
        assert func.calls == 1
        assert sleeps == []

    def test_retries_then_succeeds(self):
        func = Flaky(OSError("reset"), OSError("reset"))
        sleeps = []

        result = retry_with_backoff(func, RetryConfig(max_retries=3), sleep=sleeps.append)

        assert result == "ok"
        assert func.calls == 3
        assert len(sleeps) == 2

    def test_raises_after_max_retries(self):
        func = Flaky(*[OSError("down")] * 5)

        with pytest.raises(OSError, match="down"):
            retry_with_backoff(func, RetryConfig(max_retries=2), sleep=lambda s: None)

        assert func.calls == 3

    def test_zero_retries(self):
        func = Flaky(OSError("down"))
        with pytest.raises(OSError):
            retry_with_backoff(func, RetryConfig(max_retries=0), sleep=lambda s: None)
        assert func.calls == 1

    def test_other_exceptions_propagate_immediately(self):
        func = Flaky(KeyError("bad"))
        with pytest.raises(KeyError):
            retry_with_backoff(func, RetryConfig(), retry_on=(OSError,), sleep=lambda s: None)
        assert func.calls == 1

    def test_logs_attempts(self, caplog):
        func = Flaky(OSError("blip"))
        log = logging.getLogger("test.retry")

        with caplog.at_level(logging.WARNING, logger="test.retry"):
            retry_with_backoff(func, RetryConfig(), log, sleep=lambda s: None)

        assert "Attempt 1 failed: blip" in caplog.text
