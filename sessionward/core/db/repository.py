"""Account and session repository backed by SQLite."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Sequence

import aiosqlite
import structlog

from ...common.clock import utc_now
from ..models import (
    Account,
    AuthProvider,
    LockoutState,
    SessionRecord,
    VerificationToken,
    format_timestamp,
    parse_timestamp,
)
from .connection import DatabaseConnection
from .exceptions import (
    AccountNotFoundError,
    DuplicateRecordError,
    QueryError,
    TransactionError,
)
from .migrator import Migrator

logger = structlog.get_logger(__name__)


class AuthRepository:
    """Repository for accounts and refresh sessions.

    Satisfies both ``CredentialStore`` and ``SessionRepository``. Lockout
    transitions are single conditional UPDATE statements so concurrent login
    attempts against one account never lose an increment.

    All coroutines share one connection, and therefore one transaction.
    Every write that commits takes ``_write_lock``; ``transaction()`` holds it
    for its whole block so no other commit can land between its statements.
    """

    def __init__(
        self,
        db_path: Path,
        enable_wal: bool = True,
        timeout: int = 30,
    ):
        """
        Initialize repository.

        Args:
            db_path: Absolute path to SQLite database file
            enable_wal: Enable Write-Ahead Logging mode
            timeout: Connection timeout in seconds
        """
        self.db_path = db_path
        self._db_connection = DatabaseConnection(db_path, enable_wal, timeout)
        self._enable_wal = enable_wal
        self._connection: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    @classmethod
    async def from_config(cls, config: Any) -> "AuthRepository":
        """
        Create, connect and migrate a repository from the root Config.

        Args:
            config: sessionward Config instance (paths already resolved)

        Returns:
            Connected AuthRepository with an up-to-date schema
        """
        db_path = config.get_database_path()
        repo = cls(
            db_path=db_path,
            enable_wal=config.database.enable_wal_mode,
            timeout=config.database.connection_timeout,
        )
        await repo.connect()
        await repo.migrate()

        logger.info("repository_initialized", db_path=str(db_path))
        return repo

    async def connect(self) -> None:
        if self._connection is None:
            self._connection = await self._db_connection.connect()

    async def migrate(self) -> int:
        """Apply pending schema migrations through the open connection."""
        conn = self._require_connection()
        migrator = Migrator(self.db_path, enable_wal=self._enable_wal)
        return await migrator.run_migrations(connection=conn)

    async def ping(self) -> bool:
        """True if the database connection is open and answering."""
        return await self._db_connection.ping()

    async def close(self) -> None:
        if self._connection is not None:
            await self._db_connection.close()
            self._connection = None

    async def __aenter__(self) -> "AuthRepository":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @asynccontextmanager
    async def transaction(self) -> Any:
        """
        Explicit transaction context manager.

        Statements issued inside the block are committed together or rolled
        back together. The write lock is held until commit or rollback, so
        repository methods that write must not be called inside the block
        (they would wait on the lock forever); use the yielded connection.

        Example:
            async with repository.transaction() as conn:
                await conn.execute("DELETE FROM sessions WHERE account_id = ?", (1,))
                await conn.execute("DELETE FROM accounts WHERE id = ?", (1,))
        """
        if self._connection is None:
            raise TransactionError("No active connection", operation="begin")

        async with self._write_lock:
            try:
                await self._connection.execute("BEGIN")
                logger.debug("transaction_started")
                yield self._connection
                await self._connection.commit()
                logger.debug("transaction_committed")
            except Exception as e:
                await self._connection.rollback()
                logger.error("transaction_rolled_back", error=str(e))
                raise TransactionError(f"Transaction failed: {e}", operation="rollback") from e

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise QueryError("No active connection")
        return self._connection

    async def _write(self, sql: str, params: Sequence[Any], event: str, **context: Any) -> int:
        """Execute one DML statement, commit, and return the affected row count."""
        conn = self._require_connection()
        async with self._write_lock:
            try:
                cursor = await conn.execute(sql, params)
                await conn.commit()
                return cursor.rowcount
            except Exception as e:
                await conn.rollback()
                logger.error(event, error=str(e), **context)
                raise QueryError(f"{event}: {e}", query=sql, params=tuple(params)) from e

    # ==================== Account Methods ====================

    async def find_account_by_email(self, email: str) -> Optional[Account]:
        conn = self._require_connection()
        cursor = await conn.execute("SELECT * FROM accounts WHERE email = ?", (email,))
        row = await cursor.fetchone()
        return Account.from_row(row) if row else None

    async def email_exists(self, email: str) -> bool:
        conn = self._require_connection()
        cursor = await conn.execute("SELECT 1 FROM accounts WHERE email = ?", (email,))
        return await cursor.fetchone() is not None

    async def account_exists(self, account_id: int) -> bool:
        conn = self._require_connection()
        cursor = await conn.execute("SELECT 1 FROM accounts WHERE id = ?", (account_id,))
        return await cursor.fetchone() is not None

    async def get_account_by_id(self, account_id: int) -> Account:
        """
        Get account by ID.

        Raises:
            AccountNotFoundError: If no account has this id
        """
        conn = self._require_connection()
        cursor = await conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,))
        row = await cursor.fetchone()
        if not row:
            raise AccountNotFoundError(f"Account not found: {account_id}", account_id=account_id)
        return Account.from_row(row)

    async def list_accounts(self) -> List[Account]:
        conn = self._require_connection()
        cursor = await conn.execute("SELECT * FROM accounts ORDER BY id")
        rows = await cursor.fetchall()
        return [Account.from_row(row) for row in rows]

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
    ) -> Account:
        """
        Create a new account record.

        Args:
            email: Normalised email address (unique)
            name: Display name
            provider: Identity origin
            password_hash: bcrypt hash, required for local accounts
            image_url: Profile image URL
            provider_id: Subject identifier at the external provider
            email_verified: Whether the address is already verified
            now: Creation instant (defaults to the current UTC time)

        Returns:
            The stored account

        Raises:
            DuplicateRecordError: If the email is already registered
            QueryError: If the insert fails for any other reason
        """
        conn = self._require_connection()
        stamp = format_timestamp(now or utc_now())

        async with self._write_lock:
            try:
                cursor = await conn.execute(
                    """
                    INSERT INTO accounts (
                        email, password_hash, name, image_url, email_verified, enabled,
                        failed_attempts, locked_since, provider, provider_id,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, 1, 0, NULL, ?, ?, ?, ?)
                    """,
                    (
                        email,
                        password_hash,
                        name,
                        image_url,
                        int(email_verified),
                        AuthProvider(provider).value,
                        provider_id,
                        stamp,
                        stamp,
                    ),
                )
                await conn.commit()
            except aiosqlite.IntegrityError as e:
                await conn.rollback()
                logger.warning("account_duplicate_email", provider=AuthProvider(provider).value)
                raise DuplicateRecordError(
                    f"Account already exists: {email}",
                    table="accounts",
                    key="email",
                    value=email,
                ) from e
            except Exception as e:
                await conn.rollback()
                logger.error("account_creation_failed", error=str(e))
                raise QueryError(f"Failed to create account: {e}") from e

        account_id = cursor.lastrowid
        logger.info("account_created", account_id=account_id, provider=AuthProvider(provider).value)
        return await self.get_account_by_id(account_id)

    async def update_account_profile(
        self,
        account_id: int,
        name: Optional[str] = None,
        image_url: Optional[str] = None,
        provider_id: Optional[str] = None,
    ) -> Account:
        """Update the non-None profile fields and return the fresh account."""
        updates = {
            key: value
            for key, value in (("name", name), ("image_url", image_url), ("provider_id", provider_id))
            if value is not None
        }
        if updates:
            set_clause = ", ".join(f"{column} = ?" for column in updates)
            params = [*updates.values(), format_timestamp(utc_now()), account_id]
            affected = await self._write(
                f"UPDATE accounts SET {set_clause}, updated_at = ? WHERE id = ?",
                params,
                "account_update_failed",
                account_id=account_id,
            )
            if affected == 0:
                raise AccountNotFoundError(
                    f"Account not found: {account_id}", account_id=account_id
                )
            logger.debug("account_profile_updated", account_id=account_id, fields=list(updates))
        return await self.get_account_by_id(account_id)

    async def set_account_enabled(self, account_id: int, enabled: bool) -> None:
        affected = await self._write(
            "UPDATE accounts SET enabled = ?, updated_at = ? WHERE id = ?",
            (int(enabled), format_timestamp(utc_now()), account_id),
            "account_update_failed",
            account_id=account_id,
        )
        if affected == 0:
            raise AccountNotFoundError(f"Account not found: {account_id}", account_id=account_id)
        logger.info("account_enabled_changed", account_id=account_id, enabled=enabled)

    async def touch_last_login(self, account_id: int, now: datetime) -> None:
        stamp = format_timestamp(now)
        await self._write(
            "UPDATE accounts SET last_login_at = ?, updated_at = ? WHERE id = ?",
            (stamp, stamp, account_id),
            "account_touch_failed",
            account_id=account_id,
        )

    async def delete_account(self, account_id: int) -> None:
        """
        Delete an account together with all of its sessions.

        Raises:
            AccountNotFoundError: If no account has this id
        """
        async with self.transaction() as conn:
            await conn.execute("DELETE FROM sessions WHERE account_id = ?", (account_id,))
            cursor = await conn.execute("DELETE FROM accounts WHERE id = ?", (account_id,))
            deleted = cursor.rowcount

        if deleted == 0:
            raise AccountNotFoundError(f"Account not found: {account_id}", account_id=account_id)
        logger.info("account_deleted", account_id=account_id)

    async def delete_unverified_accounts(self, now: datetime) -> int:
        """
        Delete unverified local accounts whose verification token expired unused.

        Accounts without a token, and accounts holding a token that is still
        valid, are kept. Expired unused tokens are removed as well.

        Returns:
            Number of accounts deleted
        """
        stamp = format_timestamp(now)
        async with self.transaction() as conn:
            cursor = await conn.execute(
                """
                DELETE FROM accounts
                WHERE email_verified = 0 AND provider = ? AND id IN (
                    SELECT account_id FROM verification_tokens
                    WHERE verified_at IS NULL AND expires_at <= ?
                )
                """,
                (AuthProvider.LOCAL.value, stamp),
            )
            deleted = cursor.rowcount
            cursor = await conn.execute(
                "DELETE FROM verification_tokens WHERE verified_at IS NULL AND expires_at <= ?",
                (stamp,),
            )
            expired_tokens = cursor.rowcount

        logger.info("unverified_accounts_purged", count=deleted, expired_tokens=expired_tokens)
        return deleted

    # ==================== Verification Methods ====================

    async def replace_verification_token(
        self, account_id: int, token: str, expires_at: datetime, now: datetime
    ) -> VerificationToken:
        """
        Store a verification token, discarding any earlier one of the account.

        Raises:
            AccountNotFoundError: If the account does not exist
        """
        try:
            async with self.transaction() as conn:
                await conn.execute(
                    "DELETE FROM verification_tokens WHERE account_id = ?", (account_id,)
                )
                await conn.execute(
                    """
                    INSERT INTO verification_tokens (
                        token, account_id, expires_at, verified_at, created_at
                    ) VALUES (?, ?, ?, NULL, ?)
                    """,
                    (token, account_id, format_timestamp(expires_at), format_timestamp(now)),
                )
        except TransactionError as e:
            if isinstance(e.__cause__, aiosqlite.IntegrityError) and "FOREIGN KEY" in str(
                e.__cause__
            ).upper():
                raise AccountNotFoundError(
                    f"Account not found: {account_id}", account_id=account_id
                ) from e
            raise

        logger.debug("verification_token_stored", account_id=account_id)
        stored = await self.find_verification_token(token)
        if stored is None:
            raise QueryError("Verification token vanished after insert")
        return stored

    async def find_verification_token(self, token: str) -> Optional[VerificationToken]:
        conn = self._require_connection()
        cursor = await conn.execute(
            "SELECT * FROM verification_tokens WHERE token = ?", (token,)
        )
        row = await cursor.fetchone()
        return VerificationToken.from_row(row) if row else None

    async def consume_verification_token(self, token: str, now: datetime) -> bool:
        """
        Mark an unused, unexpired token as used and verify its account's email.

        Both updates commit together. Returns False (and changes nothing) if
        the token is unknown, already used or expired.
        """
        stamp = format_timestamp(now)
        async with self.transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE verification_tokens SET verified_at = ?
                WHERE token = ? AND verified_at IS NULL AND expires_at > ?
                """,
                (stamp, token, stamp),
            )
            consumed = cursor.rowcount > 0
            if consumed:
                await conn.execute(
                    """
                    UPDATE accounts SET email_verified = 1, updated_at = ?
                    WHERE id = (SELECT account_id FROM verification_tokens WHERE token = ?)
                    """,
                    (stamp, token),
                )
        return consumed

    # ==================== Lockout Methods ====================

    async def get_lockout_state(self, account_id: int) -> LockoutState:
        conn = self._require_connection()
        cursor = await conn.execute(
            "SELECT failed_attempts, locked_since FROM accounts WHERE id = ?",
            (account_id,),
        )
        row = await cursor.fetchone()
        if not row:
            raise AccountNotFoundError(f"Account not found: {account_id}", account_id=account_id)
        return LockoutState(
            failed_attempts=row["failed_attempts"],
            locked_since=parse_timestamp(row["locked_since"]),
        )

    async def record_failed_attempt(
        self, account_id: int, threshold: int, now: datetime
    ) -> LockoutState:
        """
        Count one failed password attempt.

        The counter increment and the lock transition happen in one statement.
        Attempts against an already locked account change nothing.

        Args:
            account_id: Account that failed verification
            threshold: Counter value at which the account locks
            now: Instant recorded as ``locked_since`` when the lock engages

        Returns:
            Lockout state after the update
        """
        conn = self._require_connection()
        stamp = format_timestamp(now)
        sql = """
            UPDATE accounts
            SET failed_attempts = failed_attempts + 1,
                locked_since = CASE WHEN failed_attempts + 1 >= ? THEN ? ELSE NULL END,
                updated_at = ?
            WHERE id = ? AND locked_since IS NULL
            RETURNING failed_attempts, locked_since
        """
        async with self._write_lock:
            try:
                rows = await conn.execute_fetchall(sql, (threshold, stamp, stamp, account_id))
                await conn.commit()
            except Exception as e:
                await conn.rollback()
                logger.error("failed_attempt_update_failed", account_id=account_id, error=str(e))
                raise QueryError(f"Failed to record failed attempt: {e}") from e

        rows = list(rows)
        if not rows:
            return await self.get_lockout_state(account_id)

        state = LockoutState(
            failed_attempts=rows[0]["failed_attempts"],
            locked_since=parse_timestamp(rows[0]["locked_since"]),
        )
        logger.debug(
            "failed_attempt_recorded",
            account_id=account_id,
            attempt_count=state.failed_attempts,
            locked=state.is_locked,
        )
        return state

    async def clear_expired_lock(
        self, account_id: int, observed_locked_since: datetime, now: datetime
    ) -> bool:
        """Reset the counter and lock if ``locked_since`` still equals the observed value."""
        affected = await self._write(
            """
            UPDATE accounts
            SET failed_attempts = 0, locked_since = NULL, updated_at = ?
            WHERE id = ? AND locked_since = ?
            """,
            (format_timestamp(now), account_id, format_timestamp(observed_locked_since)),
            "lock_clear_failed",
            account_id=account_id,
        )
        return affected > 0

    async def record_successful_login(self, account_id: int, now: datetime) -> bool:
        """
        Reset the counter and stamp ``last_login_at``.

        Returns:
            False if the account was locked concurrently and nothing changed
        """
        stamp = format_timestamp(now)
        affected = await self._write(
            """
            UPDATE accounts
            SET failed_attempts = 0, locked_since = NULL, last_login_at = ?, updated_at = ?
            WHERE id = ? AND locked_since IS NULL
            """,
            (stamp, stamp, account_id),
            "login_record_failed",
            account_id=account_id,
        )
        return affected > 0

    async def unlock_account(self, account_id: int) -> None:
        """Administrative unlock: clear the lock and counter unconditionally."""
        affected = await self._write(
            """
            UPDATE accounts
            SET failed_attempts = 0, locked_since = NULL, updated_at = ?
            WHERE id = ?
            """,
            (format_timestamp(utc_now()), account_id),
            "account_unlock_failed",
            account_id=account_id,
        )
        if affected == 0:
            raise AccountNotFoundError(f"Account not found: {account_id}", account_id=account_id)
        logger.info("account_unlocked", account_id=account_id)

    # ==================== Session Methods ====================

    async def create_session(self, record: SessionRecord) -> SessionRecord:
        """
        Store a new refresh session.

        Raises:
            AccountNotFoundError: If the owning account does not exist
            DuplicateRecordError: If the token is already stored
        """
        conn = self._require_connection()
        created_at = record.created_at or utc_now()
        async with self._write_lock:
            try:
                await conn.execute(
                    """
                    INSERT INTO sessions (
                        token, account_id, expires_at, device_info, ip_address, revoked, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.token,
                        record.account_id,
                        format_timestamp(record.expires_at),
                        record.device_info,
                        record.ip_address,
                        int(record.revoked),
                        format_timestamp(created_at),
                    ),
                )
                await conn.commit()
            except aiosqlite.IntegrityError as e:
                await conn.rollback()
                if "FOREIGN KEY" in str(e).upper():
                    raise AccountNotFoundError(
                        f"Account not found: {record.account_id}",
                        account_id=record.account_id,
                    ) from e
                raise DuplicateRecordError(
                    "Session token already exists", table="sessions", key="token"
                ) from e
            except Exception as e:
                await conn.rollback()
                logger.error("session_creation_failed", account_id=record.account_id, error=str(e))
                raise QueryError(f"Failed to create session: {e}") from e

        stored = await self.find_session_by_token(record.token)
        if stored is None:
            raise QueryError("Session vanished after insert")
        return stored

    async def find_session_by_token(self, token: str) -> Optional[SessionRecord]:
        conn = self._require_connection()
        cursor = await conn.execute("SELECT * FROM sessions WHERE token = ?", (token,))
        row = await cursor.fetchone()
        return SessionRecord.from_row(row) if row else None

    async def delete_session(self, token: str) -> None:
        await self._write(
            "DELETE FROM sessions WHERE token = ?",
            (token,),
            "session_delete_failed",
        )

    async def revoke_session(self, token: str) -> bool:
        affected = await self._write(
            "UPDATE sessions SET revoked = 1 WHERE token = ? AND revoked = 0",
            (token,),
            "session_revoke_failed",
        )
        return affected > 0

    async def revoke_all_sessions(self, account_id: int) -> int:
        return await self._write(
            "UPDATE sessions SET revoked = 1 WHERE account_id = ? AND revoked = 0",
            (account_id,),
            "session_revoke_failed",
            account_id=account_id,
        )

    async def delete_all_sessions(self, account_id: int) -> int:
        return await self._write(
            "DELETE FROM sessions WHERE account_id = ?",
            (account_id,),
            "session_delete_failed",
            account_id=account_id,
        )

    async def list_sessions(self, account_id: int, now: datetime) -> List[SessionRecord]:
        """Sessions that are neither revoked nor expired, newest first."""
        conn = self._require_connection()
        cursor = await conn.execute(
            """
            SELECT * FROM sessions
            WHERE account_id = ? AND revoked = 0 AND expires_at > ?
            ORDER BY created_at DESC, id DESC
            """,
            (account_id, format_timestamp(now)),
        )
        rows = await cursor.fetchall()
        return [SessionRecord.from_row(row) for row in rows]

    async def delete_expired_sessions(self, now: datetime) -> int:
        return await self._write(
            "DELETE FROM sessions WHERE expires_at <= ?",
            (format_timestamp(now),),
            "session_sweep_failed",
        )
