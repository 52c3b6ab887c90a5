"""In-memory brute-force login throttling per network address."""

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from threading import Lock
from typing import Dict, List, Optional

import structlog

from ..common.clock import Clock, SystemClock

logger = structlog.get_logger(__name__)


@dataclass
class AttemptRecord:
    """Failed login instants for one network address."""

    timestamps: List[datetime] = field(default_factory=list)


class LoginThrottle:
    """
    Sliding-window limiter for failed logins.

    Tracks failed attempts per address and blocks the address once
    ``max_attempts`` failures fall inside the last ``window_seconds``. It runs
    before the account lookup, independently of per-account lockout.

    Example:
        >>> throttle = LoginThrottle(max_attempts=10, window_seconds=60)
        >>> if throttle.is_blocked("192.168.1.1"):
        ...     raise TooManyAttempts(throttle.get_retry_after("192.168.1.1"))
        >>> throttle.record_failure("192.168.1.1")
    """

    def __init__(
        self,
        max_attempts: int = 10,
        window_seconds: int = 60,
        clock: Optional[Clock] = None,
    ):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock or SystemClock()
        self._attempts: Dict[str, AttemptRecord] = defaultdict(AttemptRecord)
        self._lock = Lock()

    def _cleanup_old_attempts(self, record: AttemptRecord, now: datetime) -> None:
        cutoff = now - timedelta(seconds=self.window_seconds)
        record.timestamps = [ts for ts in record.timestamps if ts > cutoff]

    def is_blocked(self, ip_address: str) -> bool:
        with self._lock:
            record = self._attempts[ip_address]
            self._cleanup_old_attempts(record, self._clock.now())
            is_blocked = len(record.timestamps) >= self.max_attempts

            if is_blocked:
                logger.warning(
                    "login_throttled",
                    ip_address=ip_address,
                    attempt_count=len(record.timestamps),
                    window_seconds=self.window_seconds,
                )
            elif not record.timestamps:
                del self._attempts[ip_address]

            return is_blocked

    def record_failure(self, ip_address: str) -> int:
        """
        Record a failed login attempt for an address.

        Returns:
            Current number of failed attempts in the window
        """
        with self._lock:
            now = self._clock.now()
            record = self._attempts[ip_address]
            self._cleanup_old_attempts(record, now)
            record.timestamps.append(now)

            attempt_count = len(record.timestamps)
            logger.info(
                "login_attempt_failed",
                ip_address=ip_address,
                attempt_count=attempt_count,
                max_attempts=self.max_attempts,
            )
            return attempt_count

    def clear(self, ip_address: str) -> None:
        """Forget an address's failures (after a successful login)."""
        with self._lock:
            if ip_address in self._attempts:
                del self._attempts[ip_address]
                logger.debug("login_attempts_cleared", ip_address=ip_address)

    def get_retry_after(self, ip_address: str) -> int:
        """
        Seconds until the oldest attempt leaves the window (for Retry-After).

        Returns:
            Seconds until an attempt slot opens, or 0 if not blocked
        """
        with self._lock:
            now = self._clock.now()
            record = self._attempts[ip_address]
            self._cleanup_old_attempts(record, now)

            if len(record.timestamps) < self.max_attempts:
                return 0

            oldest = min(record.timestamps)
            remaining = (oldest + timedelta(seconds=self.window_seconds) - now).total_seconds()
            return max(1, math.ceil(remaining))
