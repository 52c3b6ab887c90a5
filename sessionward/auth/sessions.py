"""Opaque refresh sessions, one per device login."""

import secrets
from datetime import timedelta
from typing import List, Optional

import structlog

from ..common.clock import Clock, SystemClock
from ..core.db.exceptions import AccountNotFoundError
from ..core.db.stores import SessionRepository
from ..core.models import SessionRecord
from .exceptions import AccountNotFound, SessionExpired, SessionRevoked

logger = structlog.get_logger(__name__)

TOKEN_BYTES = 32


def token_prefix(token: str) -> str:
    return token[:8]


class SessionStore:
    """Lifecycle of refresh sessions on top of a SessionRepository.

    A session is valid while it is not revoked and ``now < expires_at``.
    Revocation only flips the flag; expired sessions are deleted the first
    time they are presented, or by ``sweep_expired``.
    """

    def __init__(
        self,
        repository: SessionRepository,
        refresh_ttl: timedelta = timedelta(days=7),
        clock: Optional[Clock] = None,
    ):
        self._repository = repository
        self._refresh_ttl = refresh_ttl
        self._clock = clock or SystemClock()

    async def create(
        self,
        account_id: int,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> SessionRecord:
        """
        Start a new session for one device.

        Raises:
            AccountNotFound: If the account does not exist
        """
        if not await self._repository.account_exists(account_id):
            raise AccountNotFound(account_id)

        now = self._clock.now()
        record = SessionRecord(
            token=secrets.token_urlsafe(TOKEN_BYTES),
            account_id=account_id,
            expires_at=now + self._refresh_ttl,
            device_info=device_info,
            ip_address=ip_address,
            revoked=False,
            created_at=now,
        )
        try:
            stored = await self._repository.create_session(record)
        except AccountNotFoundError as e:
            raise AccountNotFound(account_id) from e

        logger.info(
            "session_created",
            account_id=account_id,
            token_prefix=token_prefix(stored.token),
            ip_address=ip_address,
            expires_at=stored.expires_at.isoformat(),
        )
        return stored

    async def find_by_token(self, token: str) -> Optional[SessionRecord]:
        if not token:
            return None
        return await self._repository.find_session_by_token(token)

    async def verify(self, record: SessionRecord) -> SessionRecord:
        """
        Check a session found by token.

        Raises:
            SessionRevoked: The session was revoked (checked first)
            SessionExpired: The session ran out; it is deleted before raising
        """
        if record.revoked:
            logger.info(
                "session_revoked_presented",
                account_id=record.account_id,
                token_prefix=token_prefix(record.token),
            )
            raise SessionRevoked()

        if record.is_expired(self._clock.now()):
            await self._repository.delete_session(record.token)
            logger.info(
                "session_expired_deleted",
                account_id=record.account_id,
                token_prefix=token_prefix(record.token),
            )
            raise SessionExpired()

        return record

    async def revoke(self, token: str) -> None:
        """Revoke one session. Unknown or already revoked tokens are ignored."""
        if not token:
            return
        revoked = await self._repository.revoke_session(token)
        logger.info("session_revoked", token_prefix=token_prefix(token), changed=revoked)

    async def revoke_all(self, account_id: int) -> int:
        count = await self._repository.revoke_all_sessions(account_id)
        logger.info("sessions_revoked", account_id=account_id, count=count)
        return count

    async def delete_all(self, account_id: int) -> int:
        count = await self._repository.delete_all_sessions(account_id)
        logger.info("sessions_deleted", account_id=account_id, count=count)
        return count

    async def list_active(self, account_id: int) -> List[SessionRecord]:
        """
        Sessions of an account that are neither revoked nor expired.

        Raises:
            AccountNotFound: If the account does not exist
        """
        if not await self._repository.account_exists(account_id):
            raise AccountNotFound(account_id)
        return await self._repository.list_sessions(account_id, self._clock.now())

    async def sweep_expired(self) -> int:
        """Delete every expired session regardless of account."""
        count = await self._repository.delete_expired_sessions(self._clock.now())
        logger.info("expired_sessions_swept", count=count)
        return count
