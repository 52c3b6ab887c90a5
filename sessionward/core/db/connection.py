"""SQLite connection management for the credential database."""

from pathlib import Path
from typing import Any, List, Optional

import aiosqlite
import structlog

from .exceptions import DatabaseConnectionError

logger = structlog.get_logger(__name__)


class DatabaseConnection:
    """Owns a single aiosqlite connection; usable as an async context manager.

    Every statement of the process goes through this one connection, so
    aiosqlite's worker thread serialises them. Lockout counters rely on that
    plus single-statement conditional updates.
    """

    def __init__(
        self,
        db_path: Path,
        enable_wal: bool = True,
        timeout: int = 30,
    ):
        """
        Args:
            db_path: Path to SQLite database file
            enable_wal: Enable Write-Ahead Logging mode
            timeout: Seconds to wait on a locked database before failing
        """
        self.db_path = db_path
        self.enable_wal = enable_wal
        self.timeout = timeout
        self._connection: Optional[aiosqlite.Connection] = None

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    def _pragmas(self) -> List[str]:
        # Sessions cascade on account deletion
        pragmas = ["PRAGMA foreign_keys = ON"]
        if self.enable_wal:
            pragmas += ["PRAGMA journal_mode = WAL", "PRAGMA synchronous = NORMAL"]
        return pragmas

    async def connect(self) -> aiosqlite.Connection:
        """
        Open the connection if needed and apply connection pragmas.

        Raises:
            DatabaseConnectionError: If the database cannot be opened
        """
        if self._connection is not None:
            return self._connection

        connection: Optional[aiosqlite.Connection] = None
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            connection = await aiosqlite.connect(str(self.db_path), timeout=self.timeout)
            connection.row_factory = aiosqlite.Row
            for pragma in self._pragmas():
                await connection.execute(pragma)
        except Exception as e:
            if connection is not None:
                await connection.close()
            logger.error("database_connection_failed", db_path=str(self.db_path), error=str(e))
            raise DatabaseConnectionError(
                f"Failed to open credential database: {e}",
                path=self.db_path,
            ) from e

        self._connection = connection
        logger.info("database_connected", db_path=str(self.db_path), wal_mode=self.enable_wal)
        return connection

    async def ping(self) -> bool:
        """True if the open connection answers a trivial query."""
        if self._connection is None:
            return False
        try:
            cursor = await self._connection.execute("SELECT 1")
            return await cursor.fetchone() is not None
        except aiosqlite.Error as e:
            logger.warning("database_ping_failed", db_path=str(self.db_path), error=str(e))
            return False

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("database_closed", db_path=str(self.db_path))

    async def __aenter__(self) -> aiosqlite.Connection:
        return await self.connect()

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
