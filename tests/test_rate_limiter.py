"""Tests for the per-family token bucket."""

from __future__ import annotations

import asyncio
import time

import pytest

from adapters.rate_limiter import ApiFamily, RateLimiterRegistry, TokenBucket


@pytest.mark.slow
class TestTokenBucket:
    @pytest.mark.asyncio
    async def test_burst_of_five_times_rate_takes_at_least_four_seconds(self):
        rate = 5
        bucket = TokenBucket(rate)
        start = time.monotonic()

        await asyncio.gather(*(bucket.acquire() for _ in range(5 * rate)))

        assert time.monotonic() - start >= 4.0 - 0.05

    @pytest.mark.asyncio
    async def test_initial_burst_up_to_capacity_is_immediate(self):
        bucket = TokenBucket(10)
        start = time.monotonic()

        await asyncio.gather(*(bucket.acquire() for _ in range(10)))

        assert time.monotonic() - start < 0.5


@pytest.mark.unit
class TestTokenBucketWithFakeClock:
    @pytest.mark.asyncio
    async def test_refill_is_capped_at_capacity(self):
        now = [0.0]
        bucket = TokenBucket(2, clock=lambda: now[0])
        await bucket.acquire()
        await bucket.acquire()

        now[0] = 100.0
        bucket._refill()

        assert bucket._tokens == pytest.approx(2.0)

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            TokenBucket(0)


@pytest.mark.unit
class TestRateLimiterRegistry:
    def test_families_from_settings(self, settings):
        registry = RateLimiterRegistry.from_settings(settings)

        assert registry.bucket(ApiFamily.INTEGRATIONS).rate == settings.integrations_rate_per_second
        assert registry.bucket(ApiFamily.CONNECTORS).rate == settings.connectors_rate_per_second
        assert registry.bucket(ApiFamily.NONE) is None

    @pytest.mark.asyncio
    async def test_unlimited_family_never_waits(self):
        registry = RateLimiterRegistry({ApiFamily.CONNECTORS: 1})
        start = time.monotonic()

        for _ in range(50):
            await registry.wait(ApiFamily.NONE)

        assert time.monotonic() - start < 0.5
