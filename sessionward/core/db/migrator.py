"""Schema migration runner for the credential database."""

import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import aiosqlite
import structlog

from .exceptions import MigrationError

logger = structlog.get_logger(__name__)

DEFAULT_MIGRATIONS_DIR = Path(__file__).parent / "migrations"

_SCHEMA_MIGRATIONS_DDL = """
    CREATE TABLE IF NOT EXISTS schema_migrations (
        version INTEGER PRIMARY KEY,
        filename TEXT NOT NULL,
        checksum TEXT NOT NULL,
        applied_at TEXT NOT NULL
    )
"""


class Migrator:
    """Applies numbered ``NNN_description.sql`` files in order, once each.

    Applied versions are recorded in ``schema_migrations`` together with a
    SHA-256 checksum of the file. A migration file that changed after it was
    applied is reported with a warning; it is never re-run.
    """

    def __init__(
        self,
        db_path: Path,
        migrations_dir: Path = DEFAULT_MIGRATIONS_DIR,
        enable_wal: bool = True,
    ):
        self.db_path = db_path
        self.migrations_dir = migrations_dir
        self.enable_wal = enable_wal

    async def run_migrations(self, connection: Optional[aiosqlite.Connection] = None) -> int:
        """
        Run all pending migrations.

        Args:
            connection: Existing connection to migrate through. When omitted a
                standalone connection is opened for the run.

        Returns:
            Number of migrations applied

        Raises:
            MigrationError: If a migration file cannot be read or fails to apply
        """
        if connection is not None:
            return await self._run_with_connection(connection)

        async with aiosqlite.connect(str(self.db_path)) as db:
            await db.execute("PRAGMA foreign_keys = ON")
            if self.enable_wal:
                await db.execute("PRAGMA journal_mode = WAL")
            return await self._run_with_connection(db)

    async def _run_with_connection(self, db: aiosqlite.Connection) -> int:
        await db.execute(_SCHEMA_MIGRATIONS_DDL)
        await db.commit()

        applied = await self._get_applied_checksums(db)
        available = self._load_migration_files()

        pending = []
        for version, filename, sql, checksum in available:
            if version not in applied:
                pending.append((version, filename, sql, checksum))
            elif applied[version] != checksum:
                logger.warning(
                    "migration_checksum_mismatch",
                    version=version,
                    filename=filename,
                )

        if not pending:
            logger.info("no_pending_migrations", db_path=str(self.db_path))
            return 0

        logger.info("migrations_pending", count=len(pending), db_path=str(self.db_path))

        for version, filename, sql, checksum in pending:
            try:
                logger.info("migration_applying", version=version, filename=filename)
                await db.executescript(sql)
                await db.execute(
                    """
                    INSERT INTO schema_migrations (version, filename, checksum, applied_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (version, filename, checksum, datetime.now(timezone.utc).isoformat()),
                )
                await db.commit()
                logger.info("migration_applied", version=version, filename=filename)

            except Exception as e:
                await db.rollback()
                logger.error(
                    "migration_failed",
                    version=version,
                    filename=filename,
                    error=str(e),
                )
                raise MigrationError(
                    f"Migration {filename} failed: {e}",
                    version=version,
                    filename=filename,
                ) from e

        logger.info("migrations_complete", applied=len(pending), db_path=str(self.db_path))
        return len(pending)

    async def _get_applied_checksums(self, db: aiosqlite.Connection) -> Dict[int, str]:
        cursor = await db.execute("SELECT version, checksum FROM schema_migrations")
        rows = await cursor.fetchall()
        return {row[0]: row[1] for row in rows}

    def _load_migration_files(self) -> List[Tuple[int, str, str, str]]:
        """
        Read every migration file from the migrations directory.

        Returns:
            Sorted list of (version, filename, sql, checksum)
        """
        if not self.migrations_dir.exists():
            logger.warning("migrations_dir_not_found", path=str(self.migrations_dir))
            return []

        migrations = []
        for sql_file in sorted(self.migrations_dir.glob("*.sql")):
            # "001_initial_schema.sql" -> 1
            try:
                version = int(sql_file.stem.split("_")[0])
            except ValueError:
                logger.warning("migration_filename_invalid", filename=sql_file.name)
                continue

            try:
                sql = sql_file.read_text(encoding="utf-8")
            except OSError as e:
                logger.error("migration_read_failed", filename=sql_file.name, error=str(e))
                raise MigrationError(
                    f"Failed to read migration {sql_file.name}: {e}",
                    version=version,
                    filename=sql_file.name,
                ) from e

            migrations.append((version, sql_file.name, sql, self._calculate_checksum(sql)))

        migrations.sort(key=lambda m: m[0])
        return migrations

    @staticmethod
    def _calculate_checksum(content: str) -> str:
        return hashlib.sha256(content.encode()).hexdigest()
