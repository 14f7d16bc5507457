"""
Migrations — Ordered SQL migration runner.

Migration files live in supabase/migrations and are named
<version>_<description>.sql, e.g. 00001_initial_schema.sql. Versions
sort lexically, so they are zero-padded.

Each pending file is executed inside its own transaction together with
the insert into schema_version that records it. A failed file rolls back
completely and stops the run. Re-running is a no-op once everything is
applied. Concurrent runners (several Cloud Run instances starting at the
same time) serialize on a Postgres advisory lock.

Usage:
    python -m app.db.migrations              # apply pending migrations
    python -m app.db.migrations --dry-run    # list what would run
    python -m app.db.migrations --dir PATH   # use another directory
"""

import argparse
import asyncio
import logging
import re
import sys
from dataclasses import dataclass
from pathlib import Path

import asyncpg

from app.core.config import DATABASE_URL, LOG_LEVEL, MIGRATIONS_DIR, validate_database_url

logger = logging.getLogger(__name__)

_FILENAME_RE = re.compile(r"^(?P<version>\d+)_(?P<description>[\w\-]+)\.sql$")

# Arbitrary constant shared by every runner instance.
_ADVISORY_LOCK_KEY = 724_118_003

SCHEMA_VERSION_DDL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version TEXT PRIMARY KEY,
    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    description TEXT
)
"""


@dataclass(frozen=True)
class Migration:
    version: str
    description: str
    path: Path

    def read_sql(self) -> str:
        return self.path.read_text(encoding="utf-8")


def discover_migrations(directory: Path | str = MIGRATIONS_DIR) -> list[Migration]:
    """
    List migration files in version order.

    Files that do not match <version>_<description>.sql are ignored with
    a warning. Two files sharing a version is an error.

    Raises:
        FileNotFoundError: if the directory does not exist.
        ValueError: on duplicate versions.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Migrations directory not found: {directory}")

    migrations: dict[str, Migration] = {}
    for path in sorted(directory.glob("*.sql")):
        match = _FILENAME_RE.match(path.name)
        if not match:
            logger.warning("Skipping migration file with unexpected name: %s", path.name)
            continue
        version = match.group("version")
        if version in migrations:
            raise ValueError(
                f"Duplicate migration version {version}: "
                f"{migrations[version].path.name} and {path.name}"
            )
        migrations[version] = Migration(
            version=version,
            description=match.group("description").replace("_", " "),
            path=path,
        )

    return [migrations[v] for v in sorted(migrations)]


class MigrationRunner:
    """Applies pending migrations over a single asyncpg connection."""

    def __init__(self, database_url: str, directory: Path | str = MIGRATIONS_DIR):
        self.database_url = database_url
        self.directory = Path(directory)
        self._conn: asyncpg.Connection | None = None

    async def __aenter__(self) -> "MigrationRunner":
        self._conn = await asyncpg.connect(self.database_url)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> asyncpg.Connection:
        if self._conn is None:
            raise RuntimeError("MigrationRunner is not connected; use 'async with'")
        return self._conn

    async def ensure_schema_version_table(self) -> None:
        await self.conn.execute(SCHEMA_VERSION_DDL)

    async def applied_versions(self) -> set[str]:
        rows = await self.conn.fetch("SELECT version FROM schema_version")
        return {row["version"] for row in rows}

    async def pending(self) -> list[Migration]:
        applied = await self.applied_versions()
        return [m for m in discover_migrations(self.directory) if m.version not in applied]

    async def apply(self, migration: Migration) -> None:
        """Run one migration and record it, atomically."""
        sql = migration.read_sql()
        async with self.conn.transaction():
            await self.conn.execute(sql)
            await self.conn.execute(
                "INSERT INTO schema_version (version, description) VALUES ($1, $2) "
                "ON CONFLICT (version) DO NOTHING",
                migration.version,
                migration.description,
            )
        logger.info("Applied migration %s (%s)", migration.version, migration.description)

    async def run(self, dry_run: bool = False) -> list[str]:
        """
        Apply every pending migration in order.

        Returns:
            The versions applied (or, with dry_run, that would be applied).
        """
        await self.conn.execute("SELECT pg_advisory_lock($1)", _ADVISORY_LOCK_KEY)
        try:
            await self.ensure_schema_version_table()
            pending = await self.pending()
            if not pending:
                logger.info("Database schema is up to date")
                return []

            if dry_run:
                for migration in pending:
                    logger.info("Pending: %s (%s)", migration.version, migration.description)
                return [m.version for m in pending]

            applied = []
            for migration in pending:
                try:
                    await self.apply(migration)
                except Exception:
                    logger.error("Migration %s failed; stopping", migration.version)
                    raise
                applied.append(migration.version)
            return applied
        finally:
            await self.conn.execute("SELECT pg_advisory_unlock($1)", _ADVISORY_LOCK_KEY)


async def run_migrations(
    database_url: str | None = None,
    directory: Path | str | None = None,
    dry_run: bool = False,
) -> list[str]:
    """Connect, apply pending migrations and disconnect."""
    if database_url is None:
        validate_database_url()
        database_url = DATABASE_URL

    async with MigrationRunner(database_url, directory or MIGRATIONS_DIR) as runner:
        return await runner.run(dry_run=dry_run)


def main(argv: list[str] | None = None) -> int:
    from app.core.logging import configure_logging

    parser = argparse.ArgumentParser(description="Apply pending database migrations.")
    parser.add_argument("--dry-run", action="store_true", help="List pending migrations only")
    parser.add_argument("--dir", type=Path, default=MIGRATIONS_DIR, help="Migrations directory")
    parser.add_argument("--database-url", default=None, help="Overrides DATABASE_URL")
    args = parser.parse_args(argv)

    configure_logging(LOG_LEVEL)

    try:
        versions = asyncio.run(
            run_migrations(args.database_url, args.dir, dry_run=args.dry_run)
        )
    except Exception as exc:
        logger.error("Migration run failed: %s", exc)
        return 1

    verb = "Would apply" if args.dry_run else "Applied"
    print(f"{verb} {len(versions)} migration(s): {', '.join(versions) or 'none'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
