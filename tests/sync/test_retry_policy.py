"""
Tests for retry backoff.
"""

import pytest

from trackproof.config import SyncSettings
from trackproof.sync.retry import RetryPolicy


def no_jitter() -> float:
    return 0.0


class TestRetryPolicy:
    def test_exponential_delays(self):
        policy = RetryPolicy(base_seconds=2, factor=2, max_seconds=30, rng=no_jitter)
        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [2, 4, 8, 16]

    def test_delay_is_capped(self):
        policy = RetryPolicy(base_seconds=2, factor=2, max_seconds=30, rng=no_jitter)
        assert policy.delay_for(5) == 30
        assert policy.delay_for(10) == 30

    def test_jitter_is_added(self):
        policy = RetryPolicy(
            base_seconds=2, factor=2, max_seconds=30, jitter_seconds=1.0, rng=lambda: 0.5
        )
        assert policy.delay_for(1) == pytest.approx(2.5)

    def test_retry_bound(self):
        policy = RetryPolicy(max_attempts=3)
        assert policy.should_retry(1)
        assert policy.should_retry(2)
        assert not policy.should_retry(3)

    def test_retry_number_starts_at_one(self):
        with pytest.raises(ValueError):
            RetryPolicy().delay_for(0)

    def test_from_settings(self):
        settings = SyncSettings(
            max_attempts=5,
            backoff_base_seconds=1,
            backoff_factor=3,
            backoff_max_seconds=10,
            backoff_jitter_seconds=0,
        )
        policy = RetryPolicy.from_settings(settings)

        assert policy.max_attempts == 5
        assert policy.delay_for(1) == 1
        assert policy.delay_for(2) == 3
        assert policy.delay_for(3) == 9
        assert policy.delay_for(4) == 10
