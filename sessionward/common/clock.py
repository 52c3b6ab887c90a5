"""Injectable time source.

Every component that compares against "now" (token expiry, session expiry,
lock windows, throttle windows) takes a Clock instead of reading the wall
clock directly, so tests can move time forward deterministically.
"""

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Source of the current instant (timezone-aware UTC)."""

    def now(self) -> datetime: ...


class SystemClock:
    """Clock backed by the system wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def utc_now() -> datetime:
    """Timezone-aware UTC helper to avoid naive datetime usage."""
    return datetime.now(timezone.utc)
