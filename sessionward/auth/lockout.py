"""Account lockout state machine.

An account is OPEN until ``max_failed_attempts`` consecutive password failures
lock it. A lock lasts ``lock_duration``; after that the next login attempt
unlocks it lazily (counter reset) before the password is checked. A
successful login always resets the counter.

The guard only decides. Counter increments and lock transitions are applied
by the credential store in single conditional updates.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

import structlog

from ..core.models import LockoutState

logger = structlog.get_logger(__name__)

DEFAULT_MAX_FAILED_ATTEMPTS = 5
DEFAULT_LOCK_DURATION = timedelta(hours=24)


class LockoutStatus(str, Enum):
    OPEN = "open"
    LOCKED = "locked"


@dataclass(frozen=True)
class LockoutDecision:
    """Result of evaluating an account's lockout state at a point in time.

    Attributes:
        status: OPEN if a password check may proceed, LOCKED otherwise
        state: Effective state after any lazy unlock
        unlocked: True if the lock window elapsed and the state was reset
        retry_after: Whole seconds until the lock ends (0 when OPEN)
    """

    status: LockoutStatus
    state: LockoutState
    unlocked: bool = False
    retry_after: int = 0

    @property
    def is_locked(self) -> bool:
        return self.status == LockoutStatus.LOCKED


class LockoutGuard:
    def __init__(
        self,
        max_failed_attempts: int = DEFAULT_MAX_FAILED_ATTEMPTS,
        lock_duration: timedelta = DEFAULT_LOCK_DURATION,
    ):
        if max_failed_attempts < 1:
            raise ValueError("max_failed_attempts must be at least 1")
        self.max_failed_attempts = max_failed_attempts
        self.lock_duration = lock_duration

    def evaluate(self, state: LockoutState, now: datetime) -> LockoutDecision:
        """Decide whether a login attempt may proceed to password verification."""
        if state.locked_since is None:
            return LockoutDecision(status=LockoutStatus.OPEN, state=state)

        unlock_at = state.locked_since + self.lock_duration
        if now >= unlock_at:
            logger.info(
                "account_lock_expired",
                locked_since=state.locked_since.isoformat(),
                attempt_count=state.failed_attempts,
            )
            return LockoutDecision(
                status=LockoutStatus.OPEN,
                state=LockoutState(failed_attempts=0, locked_since=None),
                unlocked=True,
            )

        return LockoutDecision(
            status=LockoutStatus.LOCKED,
            state=state,
            retry_after=self.retry_after(state, now),
        )

    def retry_after(self, state: LockoutState, now: datetime) -> int:
        """Seconds until a locked account opens again, rounded up."""
        if state.locked_since is None:
            return 0
        remaining = (state.locked_since + self.lock_duration - now).total_seconds()
        return max(0, math.ceil(remaining))
