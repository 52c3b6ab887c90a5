"""Domain records shared by the storage layer and the auth engine."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def format_timestamp(value: datetime) -> str:
    """Render an aware datetime as a fixed-width UTC string.

    Fixed width keeps SQL string comparisons (``expires_at > ?``) in
    chronological order.
    """
    if value.tzinfo is None:
        raise ValueError("naive datetime values are not accepted")
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class AuthProvider(str, Enum):
    """Where an account's identity comes from."""

    LOCAL = "local"
    GOOGLE = "google"
    FACEBOOK = "facebook"
    GITHUB = "github"
    TWITTER = "twitter"


@dataclass(frozen=True)
class LockoutState:
    """Consecutive failed-attempt counter and lock timestamp of an account."""

    failed_attempts: int = 0
    locked_since: Optional[datetime] = None

    @property
    def is_locked(self) -> bool:
        return self.locked_since is not None


@dataclass
class Account:
    """A registered principal."""

    id: int
    email: str
    name: str
    provider: AuthProvider
    password_hash: Optional[str] = None
    image_url: Optional[str] = None
    provider_id: Optional[str] = None
    email_verified: bool = False
    enabled: bool = True
    failed_attempts: int = 0
    locked_since: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    @property
    def lockout(self) -> LockoutState:
        return LockoutState(
            failed_attempts=self.failed_attempts,
            locked_since=self.locked_since,
        )

    @property
    def is_local(self) -> bool:
        return self.provider == AuthProvider.LOCAL

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Account":
        return cls(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            provider=AuthProvider(row["provider"]),
            password_hash=row["password_hash"],
            image_url=row["image_url"],
            provider_id=row["provider_id"],
            email_verified=bool(row["email_verified"]),
            enabled=bool(row["enabled"]),
            failed_attempts=row["failed_attempts"],
            locked_since=parse_timestamp(row["locked_since"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            last_login_at=parse_timestamp(row["last_login_at"]),
        )


@dataclass(frozen=True)
class SessionRecord:
    """One device's long-lived refresh session."""

    token: str
    account_id: int
    expires_at: datetime
    device_info: Optional[str] = None
    ip_address: Optional[str] = None
    revoked: bool = False
    created_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SessionRecord":
        return cls(
            token=row["token"],
            account_id=row["account_id"],
            expires_at=parse_timestamp(row["expires_at"]),
            device_info=row["device_info"],
            ip_address=row["ip_address"],
            revoked=bool(row["revoked"]),
            created_at=parse_timestamp(row["created_at"]),
        )


@dataclass(frozen=True)
class VerificationToken:
    """Single-use token proving control of a local account's email address."""

    token: str
    account_id: int
    expires_at: datetime
    verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def is_used(self) -> bool:
        return self.verified_at is not None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "VerificationToken":
        return cls(
            token=row["token"],
            account_id=row["account_id"],
            expires_at=parse_timestamp(row["expires_at"]),
            verified_at=parse_timestamp(row["verified_at"]),
            created_at=parse_timestamp(row["created_at"]),
        )
