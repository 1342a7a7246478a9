"""Tests for BackoffPolicy."""

import random
from datetime import timedelta

import pytest

from channelflow.services.backoff import BackoffPolicy


class TestNominalDelay:
    def test_doubles_per_attempt(self):
        policy = BackoffPolicy(base_seconds=60, cap_seconds=86400, jitter=0)

        assert [policy.nominal_seconds(a) for a in (1, 2, 3, 4)] == [60, 120, 240, 480]

    def test_capped(self):
        policy = BackoffPolicy(base_seconds=60, cap_seconds=300, jitter=0)

        assert policy.nominal_seconds(10) == 300

    def test_huge_attempt_does_not_overflow(self):
        policy = BackoffPolicy(base_seconds=60, cap_seconds=86400, jitter=0)

        assert policy.nominal_seconds(10_000) == 86400

    def test_attempt_is_one_indexed(self):
        with pytest.raises(ValueError):
            BackoffPolicy().nominal_seconds(0)


class TestJitter:
    def test_no_jitter_is_exact(self):
        policy = BackoffPolicy(base_seconds=60, cap_seconds=86400, jitter=0)

        assert policy.delay(2) == timedelta(seconds=120)

    def test_jitter_stays_within_bounds(self):
        policy = BackoffPolicy(base_seconds=100, cap_seconds=86400, jitter=0.2, rng=random.Random(7))

        for _ in range(200):
            seconds = policy.delay(1).total_seconds()
            assert 80 <= seconds <= 120

    def test_jitter_applies_after_cap(self):
        policy = BackoffPolicy(base_seconds=100, cap_seconds=100, jitter=0.5, rng=random.Random(1))

        delays = {policy.delay(5).total_seconds() for _ in range(50)}

        assert all(50 <= d <= 150 for d in delays)
        assert len(delays) > 1

    def test_seeded_rng_is_deterministic(self):
        first = BackoffPolicy(jitter=0.2, rng=random.Random(42))
        second = BackoffPolicy(jitter=0.2, rng=random.Random(42))

        assert [first.delay(a) for a in (1, 2, 3)] == [second.delay(a) for a in (1, 2, 3)]


class TestFromSettings:
    def test_reads_retry_settings(self, settings_factory):
        settings = settings_factory(RETRY_BASE_SECONDS=5, RETRY_CAP_SECONDS=50, RETRY_JITTER=0.1)

        policy = BackoffPolicy.from_settings(settings)

        assert policy.base_seconds == 5
        assert policy.cap_seconds == 50
        assert policy.jitter == 0.1
