"""Storage contracts consumed by the auth engine.

``AuthRepository`` implements both protocols against SQLite; tests and
alternative backends only need to satisfy the methods listed here.
"""

from datetime import datetime
from typing import List, Optional, Protocol

from ..models import Account, AuthProvider, LockoutState, SessionRecord, VerificationToken


class CredentialStore(Protocol):
    """Account persistence with atomic lockout transitions."""

    async def find_account_by_email(self, email: str) -> Optional[Account]: ...

    async def email_exists(self, email: str) -> bool: ...

    async def create_account(
        self,
        email: str,
        name: str,
        provider: AuthProvider,
        password_hash: Optional[str] = None,
        image_url: Optional[str] = None,
        provider_id: Optional[str] = None,
        email_verified: bool = False,
        now: Optional[datetime] = None,
    ) -> Account: ...

    async def get_account_by_id(self, account_id: int) -> Account: ...

    async def record_failed_attempt(
        self, account_id: int, threshold: int, now: datetime
    ) -> LockoutState:
        """Increment the counter and lock at ``threshold`` in one conditional update."""
        ...

    async def clear_expired_lock(
        self, account_id: int, observed_locked_since: datetime, now: datetime
    ) -> bool:
        """Reset the lock only if it is still the one the caller observed."""
        ...

    async def record_successful_login(self, account_id: int, now: datetime) -> bool:
        """Reset the counter and stamp the login unless the account is locked."""
        ...

    async def update_account_profile(
        self,
        account_id: int,
        name: Optional[str] = None,
        image_url: Optional[str] = None,
        provider_id: Optional[str] = None,
    ) -> Account: ...

    async def touch_last_login(self, account_id: int, now: datetime) -> None: ...

    async def unlock_account(self, account_id: int) -> None: ...

    async def delete_account(self, account_id: int) -> None: ...

    async def delete_unverified_accounts(self, now: datetime) -> int:
        """Delete unverified local accounts whose verification token expired unused."""
        ...

    async def replace_verification_token(
        self, account_id: int, token: str, expires_at: datetime, now: datetime
    ) -> VerificationToken: ...

    async def find_verification_token(self, token: str) -> Optional[VerificationToken]: ...

    async def consume_verification_token(self, token: str, now: datetime) -> bool:
        """Use a token and mark its account verified in one transaction."""
        ...

    async def list_accounts(self) -> List[Account]: ...


class SessionRepository(Protocol):
    """Refresh-session persistence."""

    async def create_session(self, record: SessionRecord) -> SessionRecord: ...

    async def find_session_by_token(self, token: str) -> Optional[SessionRecord]: ...

    async def delete_session(self, token: str) -> None: ...

    async def revoke_session(self, token: str) -> bool: ...

    async def revoke_all_sessions(self, account_id: int) -> int: ...

    async def delete_all_sessions(self, account_id: int) -> int: ...

    async def list_sessions(self, account_id: int, now: datetime) -> List[SessionRecord]: ...

    async def delete_expired_sessions(self, now: datetime) -> int: ...

    async def account_exists(self, account_id: int) -> bool: ...
