"""In-memory SQLite database persisted as a whole-file image.

The database lives entirely in memory. Its backing file holds the bytes of
``sqlite3.Connection.serialize()`` and is rewritten in full after every
successful mutation, so a ``run`` that returns normally is already on disk.

Assumes a single process and a single writer. Nothing here locks: two
handles on the same file would race on the write, and the follow-up
``last_insert_rowid()`` query in ``run`` is only correct while no other
statement can slip in between.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from contextlib import closing, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

from poladcyclet.config import default_database_path

logger = logging.getLogger(__name__)

_LINE_COMMENT = re.compile(r"--[^\n]*")

# Resolved backing path -> open handle.
_open_databases: dict[str, Database] = {}


class StorageError(RuntimeError):
    """Base class for errors raised by the storage layer itself."""


class DatabaseAlreadyOpenError(StorageError):
    """Raised when a backing file already has an open handle in this process."""


class DatabaseClosedError(StorageError):
    """Raised when a statement is issued against a closed handle."""


@dataclass(frozen=True)
class RunResult:
    changes: int
    last_insert_rowid: int


class Statement:
    """One SQL text bound to a database handle.

    Each call acquires its own cursor and releases it before returning,
    including when the engine raises.
    """

    def __init__(self, database: Database, sql: str) -> None:
        self._database = database
        self.sql = sql

    def run(self, *params: Any) -> RunResult:
        """Execute, save the whole database, then report changes and last rowid.

        The save is unconditional, even when no row changed. Inside a
        ``batch()`` block it is deferred to the end of the block.
        """
        conn = self._database._connection()
        with closing(conn.cursor()) as cur:
            cur.execute(self.sql, params)
        self._database._after_write()
        with closing(conn.cursor()) as cur:
            changes, last_id = cur.execute("SELECT changes(), last_insert_rowid()").fetchone()
        return RunResult(changes=changes, last_insert_rowid=last_id)

    def get(self, *params: Any) -> dict[str, Any] | None:
        """Return the first row as a dict, or None when there is none."""
        conn = self._database._connection()
        with closing(conn.cursor()) as cur:
            cur.execute(self.sql, params)
            row = cur.fetchone()
        if row is None:
            return None
        return dict(row)

    def all(self, *params: Any) -> list[dict[str, Any]]:
        """Return every row, in the order the engine yields them."""
        conn = self._database._connection()
        with closing(conn.cursor()) as cur:
            if params:
                cur.execute(self.sql, params)
            else:
                cur.execute(self.sql)
            return [dict(row) for row in cur]

    def __repr__(self) -> str:
        return f"Statement({self.sql!r})"


class Database:
    """Handle on one in-memory database and the file it is saved to.

    Obtain one with :func:`init_database` and pass it to whatever needs
    it. ``close()`` saves a final time and releases the backing file so
    it can be initialized again.
    """

    def __init__(self, path: Path, conn: sqlite3.Connection) -> None:
        self.path = path
        self._conn: sqlite3.Connection | None = conn
        self._batch_depth = 0

    @property
    def closed(self) -> bool:
        return self._conn is None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise DatabaseClosedError(f"Database at {self.path} is closed")
        return self._conn

    def _after_write(self) -> None:
        if not self._batch_depth:
            self.save()

    def prepare(self, sql: str) -> Statement:
        return Statement(self, sql)

    def exec_script(self, script: str) -> None:
        """Run a multi-statement SQL script as one unit, saving once.

        Statements are split with ``sqlite3.complete_statement`` so that
        semicolons inside string literals and trigger bodies are kept.
        """
        conn = self._connection()
        with self.batch():
            for sql in split_statements(script):
                with closing(conn.cursor()) as cur:
                    cur.execute(sql)

    def save(self) -> None:
        """Serialize the whole database and overwrite the backing file.

        The write is not atomic; a crash mid-write can leave a truncated file.
        Inside an open transaction the save is skipped: the batch that owns
        the transaction saves once it commits. A database with no pages is
        written as an empty file, which ``init_database`` loads as empty.
        """
        if self._conn is None:
            logger.debug("Skipping save of closed database %s", self.path)
            return
        if self._batch_depth or self._conn.in_transaction:
            logger.debug("Deferring save of %s until the open transaction ends", self.path)
            return
        with closing(self._conn.cursor()) as cur:
            (page_count,) = cur.execute("PRAGMA page_count").fetchone()
        image = self._conn.serialize() if page_count else b""
        self.path.write_bytes(image)
        logger.debug("Saved %d bytes to %s", len(image), self.path)

    @contextmanager
    def batch(self) -> Iterator[Database]:
        """Group writes into one transaction with a single save at the end.

        ``run`` calls inside the block do not save. On clean exit the
        transaction commits and the file is written once; on exception it
        rolls back and the file is left as it was. Nested blocks join the
        outermost one.
        """
        conn = self._connection()
        if self._batch_depth:
            self._batch_depth += 1
            try:
                yield self
            finally:
                self._batch_depth = max(self._batch_depth - 1, 0)
            return

        conn.execute("BEGIN")
        self._batch_depth = 1
        try:
            yield self
        except BaseException:
            self._batch_depth = 0
            if self._conn is conn and conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        self._batch_depth = 0
        if self._conn is not conn:
            # Closed inside the block; close() already rolled back.
            return
        try:
            conn.execute("COMMIT")
        except sqlite3.Error:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        self.save()

    def close(self) -> None:
        """Save a final time, close the engine, and unregister the handle.

        An unfinished batch is rolled back first, so only committed state
        reaches the file.
        """
        if self._conn is None:
            return
        try:
            if self._conn.in_transaction:
                logger.warning("Rolling back unfinished batch on close of %s", self.path)
                self._conn.execute("ROLLBACK")
            self._batch_depth = 0
            self.save()
        finally:
            self._conn.close()
            self._conn = None
            key = _registry_key(self.path)
            if _open_databases.get(key) is self:
                del _open_databases[key]
            logger.info("Database closed: %s", self.path)

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<Database {self.path} ({state})>"


def split_statements(script: str) -> list[str]:
    """Split a SQL script into complete statements, dropping empty ones."""
    statements: list[str] = []
    buffer = ""
    for chunk in script.split(";"):
        buffer += chunk + ";"
        if sqlite3.complete_statement(buffer):
            if _LINE_COMMENT.sub("", buffer).strip(" \t\r\n;"):
                statements.append(buffer.strip())
            buffer = ""
    # Whatever is left never completed; let the engine reject it.
    leftover = buffer[:-1]
    if _LINE_COMMENT.sub("", leftover).strip():
        statements.append(leftover.strip())
    return statements


def _registry_key(path: Path) -> str:
    return str(path.expanduser().resolve())


def init_database(database_path: str | Path) -> Database:
    """Open the database for *database_path*, restoring it from disk if present.

    Creates the parent directory chain when missing. A missing or empty
    backing file yields an empty database. Restored bytes are checked
    right away so a corrupt file fails here instead of on first use.

    Raises DatabaseAlreadyOpenError if the file already has an open handle
    in this process; ``close()`` that one first. Filesystem and engine
    errors propagate unchanged.
    """
    path = Path(database_path)
    key = _registry_key(path)
    if key in _open_databases:
        raise DatabaseAlreadyOpenError(
            f"Database at {path} is already open; close it before initializing again"
        )

    path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(":memory:", isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        image = path.read_bytes() if path.exists() else b""
        if image:
            conn.deserialize(image)
            conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
    except BaseException:
        conn.close()
        raise

    database = Database(path, conn)
    _open_databases[key] = database
    if image:
        logger.info("Database restored from %s (%d bytes)", path, len(image))
    else:
        logger.info("Database created for %s", path)
    return database


def get_database(database_path: str | Path | None = None) -> Database | None:
    """Return the open handle for *database_path*, or None.

    Without a path, looks up the configured backing file (DB_PATH, else
    the APP_ENV default).
    """
    if database_path is None:
        database_path = default_database_path()
    return _open_databases.get(_registry_key(Path(database_path)))


def save_database(database_path: str | Path | None = None) -> None:
    """Save the open handle for *database_path*; no-op when there is none.

    Without a path, saves the handle on the configured backing file.
    """
    database = get_database(database_path)
    if database is not None:
        database.save()


def close_all_databases() -> None:
    """Close every open handle, saving each one."""
    for database in list(_open_databases.values()):
        database.close()
