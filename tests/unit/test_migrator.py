"""Tests for the schema migration runner."""

from pathlib import Path

import aiosqlite
import pytest

from sessionward.core.db import MigrationError, Migrator


@pytest.mark.asyncio
class TestMigrator:
    async def test_applies_bundled_schema_once(self, tmp_path: Path):
        migrator = Migrator(tmp_path / "auth.db", enable_wal=False)

        assert await migrator.run_migrations() == 2
        assert await migrator.run_migrations() == 0

        async with aiosqlite.connect(str(tmp_path / "auth.db")) as db:
            cursor = await db.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
            )
            tables = {row[0] for row in await cursor.fetchall()}
        assert {"accounts", "sessions", "verification_tokens", "schema_migrations"} <= tables

    async def test_applies_in_version_order(self, tmp_path: Path):
        migrations = tmp_path / "migrations"
        migrations.mkdir()
        (migrations / "002_add_column.sql").write_text("ALTER TABLE t ADD COLUMN b TEXT;")
        (migrations / "001_create.sql").write_text("CREATE TABLE t (a TEXT);")
        (migrations / "notes.sql").write_text("-- ignored, no version prefix")

        migrator = Migrator(tmp_path / "x.db", migrations_dir=migrations, enable_wal=False)

        assert await migrator.run_migrations() == 2

    async def test_failed_migration_raises(self, tmp_path: Path):
        migrations = tmp_path / "migrations"
        migrations.mkdir()
        (migrations / "001_broken.sql").write_text("CREATE TABLE oops (")

        migrator = Migrator(tmp_path / "x.db", migrations_dir=migrations, enable_wal=False)

        with pytest.raises(MigrationError) as exc_info:
            await migrator.run_migrations()
        assert exc_info.value.version == 1
        assert exc_info.value.filename == "001_broken.sql"

    async def test_changed_file_is_not_rerun(self, tmp_path: Path):
        migrations = tmp_path / "migrations"
        migrations.mkdir()
        script = migrations / "001_create.sql"
        script.write_text("CREATE TABLE t (a TEXT);")
        migrator = Migrator(tmp_path / "x.db", migrations_dir=migrations, enable_wal=False)
        await migrator.run_migrations()

        script.write_text("CREATE TABLE t (a TEXT, b TEXT);")

        assert await migrator.run_migrations() == 0

    async def test_missing_directory(self, tmp_path: Path):
        migrator = Migrator(tmp_path / "x.db", migrations_dir=tmp_path / "none", enable_wal=False)
        assert await migrator.run_migrations() == 0
