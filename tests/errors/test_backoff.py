"""
Tests for payroll_errors.domain.backoff -- delay schedule and transient
error classification.
"""

from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given
from hypothesis import strategies as st

from payroll_errors.domain.backoff import (
    BackoffPolicy,
    calculate_delay_ms,
    calculate_next_retry_time,
    is_transient_error,
)

NO_JITTER = BackoffPolicy(jitter_factor=0.0)


class TestBackoffPolicy:
    def test_defaults(self):
        policy = BackoffPolicy()
        assert policy.base_delay_ms == 60_000
        assert policy.max_delay_ms == 86_400_000
        assert policy.jitter_factor == 0.1

    @pytest.mark.parametrize("kwargs", [
        {"base_delay_ms": 0},
        {"max_delay_ms": -1},
        {"jitter_factor": 1.01},
        {"jitter_factor": -0.5},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            BackoffPolicy(**kwargs)


class TestCalculateDelay:
    @pytest.mark.parametrize("retry_count, expected", [
        (0, 60_000),
        (1, 120_000),
        (3, 480_000),
        (10, 61_440_000),
        (11, 86_400_000),
        (61, 86_400_000),
        (10_000, 86_400_000),
    ])
    def test_schedule_without_jitter(self, retry_count, expected):
        assert calculate_delay_ms(retry_count, NO_JITTER) == expected

    def test_jitter_scales_with_exponential(self):
        assert calculate_delay_ms(0, BackoffPolicy(), rng=lambda: 0.5) == 63_000
        assert calculate_delay_ms(2, BackoffPolicy(), rng=lambda: 0.5) == 252_000

    def test_negative_retry_count(self):
        with pytest.raises(ValueError):
            calculate_delay_ms(-1)

    @given(
        retry_count=st.integers(min_value=0, max_value=80),
        draw=st.floats(min_value=0.0, max_value=0.999999),
        jitter=st.floats(min_value=0.0, max_value=1.0),
    )
    def test_delay_bounds(self, retry_count, draw, jitter):
        policy = BackoffPolicy(jitter_factor=jitter)
        delay = calculate_delay_ms(retry_count, policy, rng=lambda: draw)

        floor = min(2 ** min(retry_count, 61) * policy.base_delay_ms, policy.max_delay_ms)
        assert floor <= delay <= policy.max_delay_ms
        # Same inputs, same schedule.
        assert delay == calculate_delay_ms(retry_count, policy, rng=lambda: draw)

    @given(
        retry_count=st.integers(min_value=0, max_value=70),
        draw=st.floats(min_value=0.0, max_value=0.999999),
    )
    def test_non_decreasing_in_retry_count(self, retry_count, draw):
        rng = lambda: draw  # noqa: E731
        assert calculate_delay_ms(retry_count, BackoffPolicy(), rng) <= calculate_delay_ms(
            retry_count + 1, BackoffPolicy(), rng,
        )


class TestNextRetryTime:
    def test_adds_delay_to_reference_instant(self):
        now = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
        assert calculate_next_retry_time(2, now, NO_JITTER) == now + timedelta(minutes=4)


class TestTransientClassifier:
    @pytest.mark.parametrize("message", [
        "Connection timeout after 30s",
        "connect ECONNREFUSED 10.0.0.1:443",
        "ETIMEDOUT",
        "Network is unreachable",
        "Rate limit exceeded",
        "429 Too Many Requests",
        "Upstream returned 502 Bad Gateway",
        "HTTP 503",
        "504",
    ])
    def test_transient(self, message):
        assert is_transient_error(message) is True

    @pytest.mark.parametrize("message", [
        "Invalid SSN",
        "Plan 5030 not found",
        "401 Unauthorized",
        "",
        None,
    ])
    def test_not_transient(self, message):
        assert is_transient_error(message) is False
