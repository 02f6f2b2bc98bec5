"""Tests for the in-process with_retry loop."""

import pytest

from payroll_errors.retry import JITTER_MS, retry_delay_ms, with_retry


class Flaky:
    def __init__(self, failures, exc_type=ConnectionError):
        self.failures = failures
        self.exc_type = exc_type
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc_type(f"attempt {self.calls} failed")
        return "ok"


class TestRetryDelay:
    @pytest.mark.parametrize("attempt, expected", [(0, 1000), (1, 2000), (3, 8000), (10, 30000)])
    def test_schedule(self, attempt, expected):
        assert retry_delay_ms(attempt, rng=lambda: 0.0) == expected

    def test_jitter_is_absolute(self):
        assert retry_delay_ms(0, rng=lambda: 0.5) == 1000 + 0.5 * JITTER_MS


class TestWithRetry:
    def test_first_call_succeeds(self):
        sleeps = []
        assert with_retry(lambda: 42, sleep=sleeps.append) == 42
        assert sleeps == []

    def test_recovers_after_failures(self):
        operation = Flaky(failures=2)
        sleeps = []
        retries = []

        result = with_retry(
            operation,
            max_retries=3,
            on_retry=lambda attempt, exc: retries.append((attempt, str(exc))),
            sleep=sleeps.append,
            rng=lambda: 0.0,
        )

        assert result == "ok"
        assert operation.calls == 3
        assert retries == [(1, "attempt 1 failed"), (2, "attempt 2 failed")]
        assert sleeps == [1.0, 2.0]

    def test_reraises_last_error_when_exhausted(self):
        operation = Flaky(failures=10)

        with pytest.raises(ConnectionError, match="attempt 3 failed"):
            with_retry(operation, max_retries=2, sleep=lambda s: None)
        assert operation.calls == 3

    def test_zero_retries_calls_once(self):
        operation = Flaky(failures=1)
        with pytest.raises(ConnectionError):
            with_retry(operation, max_retries=0, sleep=lambda s: None)
        assert operation.calls == 1

    def test_non_matching_errors_propagate_immediately(self):
        operation = Flaky(failures=1, exc_type=KeyError)

        with pytest.raises(KeyError):
            with_retry(
                operation, retry_on=(ConnectionError,), sleep=lambda s: None,
            )
        assert operation.calls == 1

    def test_rejects_negative_max_retries(self):
        with pytest.raises(ValueError):
            with_retry(lambda: None, max_retries=-1)
