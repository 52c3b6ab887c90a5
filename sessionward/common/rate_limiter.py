"""Token bucket rate limiting for request admission, one bucket per client."""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class RateLimiter:
    """
    Token bucket rate limiter.

    The bucket refills at ``rate`` tokens per second up to ``burst_size``.
    Each admitted request consumes one token; a request that finds the bucket
    empty is refused instead of waiting.

    Example:
        >>> limiter = RateLimiter(requests_per_minute=30)
        >>> if not await limiter.try_acquire():
        ...     retry_after = limiter.get_retry_after()

    Attributes:
        rate: Number of tokens added per second
        burst_size: Maximum number of tokens that can accumulate
        tokens: Current number of available tokens
    """

    def __init__(
        self,
        requests_per_minute: Optional[int] = None,
        requests_per_second: Optional[int] = None,
        requests_per_hour: Optional[int] = None,
        burst_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the rate limiter.

        Args:
            requests_per_minute: Maximum requests per minute
            requests_per_second: Maximum requests per second
            requests_per_hour: Maximum requests per hour
            burst_size: Maximum burst size (defaults to one minute's worth)
            clock: Monotonic time source in seconds
        """
        rate = 0.0
        if requests_per_second:
            rate += requests_per_second
        if requests_per_minute:
            rate += requests_per_minute / 60.0
        if requests_per_hour:
            rate += requests_per_hour / 3600.0

        if rate == 0:
            raise ValueError(
                "At least one rate limit must be specified "
                "(requests_per_second, requests_per_minute, or requests_per_hour)"
            )

        self.rate = rate
        self.burst_size = burst_size if burst_size is not None else max(1, int(rate * 60))
        self.tokens = float(self.burst_size)
        self._clock = clock
        self.last_update = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self.last_update
        self.tokens = min(self.burst_size, self.tokens + elapsed * self.rate)
        self.last_update = now

    async def try_acquire(self, tokens: int = 1) -> bool:
        """
        Try to acquire tokens without waiting.

        Returns:
            True if tokens were acquired, False otherwise
        """
        async with self._lock:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return True
            return False

    def get_available_tokens(self) -> float:
        """Current number of available tokens (non-blocking, does not consume)."""
        elapsed = self._clock() - self.last_update
        return min(self.burst_size, self.tokens + elapsed * self.rate)

    def get_retry_after(self, tokens: int = 1) -> int:
        """Whole seconds until ``tokens`` are available, at least 1 when short."""
        missing = tokens - self.get_available_tokens()
        if missing <= 0:
            return 0
        return max(1, math.ceil(missing / self.rate))

    def is_full(self) -> bool:
        return self.get_available_tokens() >= self.burst_size


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of admitting one request.

    Attributes:
        allowed: Whether the request may proceed
        remaining: Whole tokens left in the client's bucket
        retry_after: Seconds until the next request would be admitted (0 if allowed)
    """

    allowed: bool
    remaining: int
    retry_after: int = 0


class ClientRateLimiter:
    """
    One token bucket per client key (normally the network address).

    Buckets that have refilled completely carry no state worth keeping and
    are dropped once more than ``max_clients`` keys are tracked.

    Example:
        >>> limiter = ClientRateLimiter(requests_per_minute=30)
        >>> decision = await limiter.check("203.0.113.5")
        >>> decision.allowed, decision.remaining
        (True, 29)
    """

    def __init__(
        self,
        requests_per_minute: int,
        burst_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        max_clients: int = 10000,
    ):
        self.requests_per_minute = requests_per_minute
        self.burst_size = burst_size
        self.max_clients = max_clients
        self._clock = clock
        self._buckets: Dict[str, RateLimiter] = {}

        logger.debug(
            "client_rate_limiter_initialized",
            requests_per_minute=requests_per_minute,
            burst_size=burst_size,
        )

    def _bucket(self, key: str) -> RateLimiter:
        bucket = self._buckets.get(key)
        if bucket is None:
            if len(self._buckets) >= self.max_clients:
                self._prune()
            bucket = RateLimiter(
                requests_per_minute=self.requests_per_minute,
                burst_size=self.burst_size,
                clock=self._clock,
            )
            self._buckets[key] = bucket
        return bucket

    def _prune(self) -> None:
        idle = [key for key, bucket in self._buckets.items() if bucket.is_full()]
        for key in idle:
            del self._buckets[key]
        logger.debug("rate_limit_buckets_pruned", count=len(idle), tracked=len(self._buckets))

    async def check(self, key: str) -> RateLimitDecision:
        """Consume one token from ``key``'s bucket if one is available."""
        bucket = self._bucket(key)
        if await bucket.try_acquire():
            return RateLimitDecision(allowed=True, remaining=int(bucket.get_available_tokens()))

        retry_after = bucket.get_retry_after()
        logger.warning("rate_limit_exceeded", client=key, retry_after=retry_after)
        return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after)
