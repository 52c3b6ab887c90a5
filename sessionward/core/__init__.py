"""Domain records and persistence for sessionward."""

from .models import Account, AuthProvider, LockoutState, SessionRecord

__all__ = [
    "Account",
    "AuthProvider",
    "LockoutState",
    "SessionRecord",
]
