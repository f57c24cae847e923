"""Ordered SQL migrations, recorded in the database they change.

Each file runs inside one transaction owned by the runner. Top-level
``BEGIN`` and ``COMMIT``/``END`` statements in a file are dropped since the
runner already wraps it; ``ROLLBACK``, ``SAVEPOINT`` and ``RELEASE`` are
rejected with MigrationError.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from pathlib import Path

from poladcyclet.storage.database import Database, StorageError, split_statements

logger = logging.getLogger(__name__)

_LINE_COMMENT = re.compile(r"--[^\n]*")
_TRANSACTION_START_OR_END = re.compile(
    r"^(BEGIN(\s+(DEFERRED|IMMEDIATE|EXCLUSIVE))?|COMMIT|END)(\s+TRANSACTION)?\s*;?$",
    re.IGNORECASE,
)
_TRANSACTION_ABORT = re.compile(r"^(ROLLBACK|SAVEPOINT|RELEASE)\b", re.IGNORECASE)

_MIGRATIONS_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS schema_migrations (
    version     TEXT PRIMARY KEY,
    applied_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
)
"""


class MigrationError(StorageError):
    """Raised when a migration script fails to apply."""


def _strip_transaction_control(name: str, script: str) -> str:
    """Drop top-level BEGIN/COMMIT/END and reject statements that abort or nest."""
    kept: list[str] = []
    for statement in split_statements(script):
        bare = _LINE_COMMENT.sub("", statement).strip()
        if _TRANSACTION_START_OR_END.match(bare):
            continue
        if _TRANSACTION_ABORT.match(bare):
            raise MigrationError(
                f"Migration {name} uses {bare.split()[0].upper()}; "
                "migrations already run in a single transaction"
            )
        kept.append(statement)
    return "\n".join(kept)


def list_tables(db: Database) -> set[str]:
    rows = db.prepare(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
    ).all()
    return {row["name"] for row in rows}


def applied_versions(db: Database) -> set[str]:
    if "schema_migrations" not in list_tables(db):
        return set()
    return {row["version"] for row in db.prepare("SELECT version FROM schema_migrations").all()}


def apply_migrations(db: Database, migrations_dir: str | Path) -> list[str]:
    """Apply pending *.sql files from *migrations_dir* in lexical order.

    Each script and its schema_migrations row go through one batch, so a
    failing script leaves neither the database nor the backing file
    changed. Returns the file names applied by this call.
    """
    directory = Path(migrations_dir)
    if not directory.is_dir():
        raise MigrationError(f"Migrations directory not found: {directory}")

    if "schema_migrations" not in list_tables(db):
        db.prepare(_MIGRATIONS_TABLE_SQL).run()
    done = applied_versions(db)

    applied: list[str] = []
    for migration in sorted(directory.glob("*.sql")):
        if migration.name in done:
            continue
        script = _strip_transaction_control(migration.name, migration.read_text(encoding="utf-8"))
        try:
            with db.batch():
                db.exec_script(script)
                db.prepare("INSERT INTO schema_migrations (version) VALUES (?)").run(migration.name)
        except sqlite3.Error as exc:
            raise MigrationError(f"Migration {migration.name} failed: {exc}") from exc
        logger.info("Applied migration %s", migration.name)
        applied.append(migration.name)

    if not applied:
        logger.debug("No pending migrations in %s", directory)
    return applied
