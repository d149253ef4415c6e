"""
Tests for per-service call spacing.

Tests cover:
- First call never waits
- A call inside the interval sleeps for the remainder
- Keys are spaced independently
- ``throttle(None)`` is a no-op
"""
import pytest

from ticketchat.core.rate_limit import RateConfig, RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(clock=clock, sleep=clock.sleep)


@pytest.mark.asyncio
async def test_first_call_does_not_wait(limiter, clock):
    assert await limiter.wait("openai", 1.0) == 0.0
    assert clock.sleeps == []
    assert limiter.last_call("openai") == 100.0


@pytest.mark.asyncio
async def test_call_inside_interval_waits_remainder(limiter, clock):
    await limiter.wait("openai", 1.0)
    clock.now += 0.25

    waited = await limiter.wait("openai", 1.0)

    assert waited == pytest.approx(0.75)
    assert clock.sleeps == [pytest.approx(0.75)]
    # timestamp is taken after the sleep
    assert limiter.last_call("openai") == pytest.approx(101.0)


@pytest.mark.asyncio
async def test_call_after_interval_does_not_wait(limiter, clock):
    await limiter.wait("openai", 1.0)
    clock.now += 2.0
    assert await limiter.wait("openai", 1.0) == 0.0


@pytest.mark.asyncio
async def test_keys_are_independent(limiter, clock):
    await limiter.wait("freshservice:svc-1", 1.0)
    assert await limiter.wait("freshservice:svc-2", 1.0) == 0.0
    assert await limiter.wait("gemini", 1.0) == 0.0
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_zero_interval_never_waits(limiter, clock):
    await limiter.wait("openai", 0)
    assert await limiter.wait("openai", 0) == 0.0


@pytest.mark.asyncio
async def test_throttle_accepts_config_or_none(limiter, clock):
    assert await limiter.throttle(None) == 0.0

    config = RateConfig.from_delay_ms("freshservice:svc-1", 500)
    assert config.min_interval_seconds == 0.5
    await limiter.throttle(config)
    assert await limiter.throttle(config) == pytest.approx(0.5)


def test_negative_or_missing_delay_means_no_spacing():
    assert RateConfig.from_delay_ms("k", None).min_interval_seconds == 0.0
    assert RateConfig.from_delay_ms("k", -10).min_interval_seconds == 0.0
