"""Storage layer: in-memory SQLite persisted to a single backing file."""

from poladcyclet.storage.database import (
    Database,
    DatabaseAlreadyOpenError,
    DatabaseClosedError,
    RunResult,
    Statement,
    StorageError,
    close_all_databases,
    get_database,
    init_database,
    save_database,
)
from poladcyclet.storage.migrations import MigrationError, apply_migrations, list_tables

__all__ = [
    "Database",
    "DatabaseAlreadyOpenError",
    "DatabaseClosedError",
    "MigrationError",
    "RunResult",
    "Statement",
    "StorageError",
    "apply_migrations",
    "close_all_databases",
    "get_database",
    "init_database",
    "list_tables",
    "save_database",
]
