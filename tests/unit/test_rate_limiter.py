"""Unit tests for the token bucket rate limiters."""

import pytest

from sessionward.common.rate_limiter import ClientRateLimiter, RateLimiter


class FakeMonotonic:
    """Monotonic clock advanced by hand."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def ticks() -> FakeMonotonic:
    return FakeMonotonic()


class TestRateLimiter:
    """Tests for RateLimiter class."""

    def test_requires_a_rate(self):
        with pytest.raises(ValueError):
            RateLimiter()

    def test_rates_combine(self, ticks: FakeMonotonic):
        limiter = RateLimiter(requests_per_second=1, requests_per_minute=60, clock=ticks)
        assert limiter.rate == pytest.approx(2.0)

    def test_default_burst_is_one_minute(self, ticks: FakeMonotonic):
        limiter = RateLimiter(requests_per_minute=30, clock=ticks)
        assert limiter.burst_size == 30
        assert limiter.is_full() is True

    @pytest.mark.asyncio
    async def test_burst_then_refuse(self, ticks: FakeMonotonic):
        limiter = RateLimiter(requests_per_minute=60, burst_size=3, clock=ticks)

        for _ in range(3):
            assert await limiter.try_acquire() is True
        assert await limiter.try_acquire() is False
        assert limiter.get_retry_after() == 1

    @pytest.mark.asyncio
    async def test_refill_over_time(self, ticks: FakeMonotonic):
        # One token every 2 seconds
        limiter = RateLimiter(requests_per_minute=30, burst_size=2, clock=ticks)
        await limiter.try_acquire()
        await limiter.try_acquire()

        assert limiter.get_retry_after() == 2
        ticks.advance(1)
        assert await limiter.try_acquire() is False
        assert limiter.get_retry_after() == 1

        ticks.advance(1)
        assert await limiter.try_acquire() is True

    @pytest.mark.asyncio
    async def test_refill_caps_at_burst(self, ticks: FakeMonotonic):
        limiter = RateLimiter(requests_per_second=1, burst_size=2, clock=ticks)
        await limiter.try_acquire()

        ticks.advance(3600)

        assert limiter.get_available_tokens() == 2
        assert limiter.get_retry_after() == 0


@pytest.mark.asyncio
class TestClientRateLimiter:
    """Per-client buckets."""

    async def test_remaining_counts_down(self, ticks: FakeMonotonic):
        limiter = ClientRateLimiter(requests_per_minute=60, burst_size=3, clock=ticks)

        decisions = [await limiter.check("203.0.113.5") for _ in range(4)]

        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert [d.remaining for d in decisions] == [2, 1, 0, 0]
        assert decisions[-1].retry_after == 1

    async def test_clients_are_independent(self, ticks: FakeMonotonic):
        limiter = ClientRateLimiter(requests_per_minute=1, burst_size=1, clock=ticks)

        assert (await limiter.check("a")).allowed is True
        assert (await limiter.check("a")).allowed is False
        assert (await limiter.check("b")).allowed is True

    async def test_refused_client_recovers(self, ticks: FakeMonotonic):
        limiter = ClientRateLimiter(requests_per_minute=30, burst_size=1, clock=ticks)
        await limiter.check("a")

        refused = await limiter.check("a")
        assert refused.allowed is False
        assert refused.retry_after == 2

        ticks.advance(2)
        assert (await limiter.check("a")).allowed is True

    async def test_idle_buckets_pruned(self, ticks: FakeMonotonic):
        limiter = ClientRateLimiter(
            requests_per_minute=60, burst_size=5, clock=ticks, max_clients=2
        )
        await limiter.check("a")
        await limiter.check("b")

        ticks.advance(60)
        await limiter.check("c")

        assert set(limiter._buckets) == {"c"}
