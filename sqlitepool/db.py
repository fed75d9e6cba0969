"""SQLite client with a multi-connection read pool and a single-connection write pool."""

from __future__ import annotations

import difflib
import os
import re
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator
from urllib.parse import parse_qsl, quote, urlencode

READ_MAX_CONNECTIONS = 8
WRITE_MAX_CONNECTIONS = 1
DEFAULT_DB_PATH = "app.db"
DEFAULT_DRIVER = "sqlite"
DEFAULT_PRAGMAS = (
    "journal_mode(WAL)",
    "busy_timeout(5000)",
    "foreign_keys(ON)",
    "cache_size(64)",
    "temp_store(MEMORY)",
    "mmap_size(268435456)",
)
WRITER_PRAGMAS = DEFAULT_PRAGMAS + ("synchronous(NORMAL)",)

_SUPPORTED_DRIVERS = frozenset({"sqlite", "sqlite3"})
_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_CREATE_MIGRATIONS_TABLE = """
    CREATE TABLE IF NOT EXISTS migrations (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        query BLOB NOT NULL,
        created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TRIGGER IF NOT EXISTS update_mig_updated_at
    AFTER UPDATE ON migrations
    BEGIN
        UPDATE migrations SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
    END;
"""


class MigrationError(Exception):
    """Raised when a migration file is invalid or has changed after being applied."""


@dataclass
class Config:
    """Settings for opening a database.

    ``r_dsn`` and ``w_dsn`` are used verbatim when both are given; otherwise
    ``db_path`` is opened with the default pragmas.
    """

    db_path: str = ""
    driver: str = ""
    r_dsn: str = ""
    w_dsn: str = ""


def _split_statements(sql: str) -> list[str]:
    statements: list[str] = []
    buffer = ""
    parts = sql.split(";")
    for index, part in enumerate(parts):
        buffer += part
        if index < len(parts) - 1:
            buffer += ";"
        if sqlite3.complete_statement(buffer):
            if buffer.strip(" \t\r\n;"):
                statements.append(buffer)
            buffer = ""
    if buffer.strip(" \t\r\n;"):
        statements.append(buffer)
    return statements


def _run(conn: sqlite3.Connection, sql: str, args: tuple) -> sqlite3.Cursor:
    statements = _split_statements(sql)
    if len(statements) <= 1:
        return conn.execute(sql, args)
    if args:
        raise sqlite3.ProgrammingError(
            "arguments are not supported when executing multiple statements"
        )
    cursor = None
    for statement in statements:
        cursor = conn.execute(statement)
    return cursor


def _connect(dsn: str) -> sqlite3.Connection:
    pragmas: list[str] = []
    target = dsn
    uri = False
    if dsn.startswith("file:"):
        uri = True
        base, _, query = dsn.partition("?")
        params = []
        for key, value in parse_qsl(query, keep_blank_values=True):
            if key == "_pragma":
                pragmas.append(value)
            elif not key.startswith("_"):
                params.append((key, value))
        target = base + ("?" + urlencode(params) if params else "")
    conn = sqlite3.connect(
        target, uri=uri, check_same_thread=False, isolation_level=None
    )
    try:
        for pragma in pragmas:
            conn.execute(f"PRAGMA {pragma}").fetchall()
    except BaseException:
        conn.close()
        raise
    return conn


def _build_dsn(db_path: str, mode: str, pragmas: tuple[str, ...]) -> str:
    params = [("_pragma", p) for p in pragmas] + [("mode", mode)]
    return "file:" + quote(db_path, safe="/:\\") + "?" + urlencode(params)


class _Pool:
    """A bounded pool of connections created on demand."""

    def __init__(self, factory: Callable[[], sqlite3.Connection], max_size: int):
        self._factory = factory
        self._max_size = max_size
        self._idle: list[sqlite3.Connection] = []
        self._size = 0
        self._closed = False
        self._cond = threading.Condition()

    def acquire(self) -> sqlite3.Connection:
        with self._cond:
            while True:
                if self._closed:
                    raise sqlite3.ProgrammingError("sql: database is closed")
                if self._idle:
                    return self._idle.pop()
                if self._size < self._max_size:
                    self._size += 1
                    break
                self._cond.wait()
        try:
            return self._factory()
        except BaseException:
            with self._cond:
                self._size -= 1
                self._cond.notify()
            raise

    def release(self, conn: sqlite3.Connection) -> None:
        with self._cond:
            if self._closed:
                self._size -= 1
                conn.close()
            else:
                self._idle.append(conn)
            self._cond.notify()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    def close(self) -> None:
        with self._cond:
            self._closed = True
            for conn in self._idle:
                conn.close()
            self._size -= len(self._idle)
            self._idle.clear()
            self._cond.notify_all()


class Transaction:
    """A transaction holding the write connection until committed or rolled back."""

    def __init__(self, pool: _Pool):
        self._pool = pool
        self._conn = pool.acquire()
        try:
            self._conn.execute("BEGIN")
        except BaseException:
            pool.release(self._conn)
            raise
        self._done = False

    def _active(self) -> sqlite3.Connection:
        if self._done:
            raise sqlite3.ProgrammingError(
                "sql: transaction has already been committed or rolled back"
            )
        return self._conn

    def _finish(self) -> None:
        self._done = True
        self._pool.release(self._conn)

    def execute(self, sql: str, *args: Any) -> sqlite3.Cursor:
        """Execute a statement inside the transaction."""
        return _run(self._active(), sql, args)

    def commit(self) -> None:
        """Commit the transaction."""
        conn = self._active()
        try:
            conn.execute("COMMIT")
        except BaseException:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error:
                pass
            raise
        finally:
            self._finish()

    def rollback(self) -> None:
        """Abort the transaction."""
        conn = self._active()
        try:
            conn.execute("ROLLBACK")
        finally:
            self._finish()

    def __enter__(self) -> Transaction:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if not self._done:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        return False


class Statement:
    """A statement bound to the pool chosen when it was prepared."""

    def __init__(self, pool: _Pool, sql: str):
        self._pool = pool
        self.sql = sql
        self._closed = False

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        if self._closed:
            raise sqlite3.ProgrammingError("sql: statement is closed")
        with self._pool.connection() as conn:
            yield conn

    def execute(self, *args: Any) -> sqlite3.Cursor:
        """Execute the statement; the cursor exposes lastrowid and rowcount."""
        with self._connection() as conn:
            return conn.execute(self.sql, args)

    def query(self, *args: Any) -> list[tuple]:
        """Run the statement and return all rows."""
        with self._connection() as conn:
            return conn.execute(self.sql, args).fetchall()

    def query_row(self, *args: Any) -> tuple | None:
        """Run the statement and return the first row, or None."""
        with self._connection() as conn:
            return conn.execute(self.sql, args).fetchone()

    def close(self) -> None:
        """Mark the statement as no longer usable."""
        self._closed = True


class DbClient:
    """Routes reads to a read pool and writes to a single-connection write pool."""

    def __init__(self, read_pool: _Pool, write_pool: _Pool):
        self._read_pool = read_pool
        self._write_pool = write_pool

    def ping(self) -> None:
        """Check that both pools can serve a connection."""
        for pool in (self._read_pool, self._write_pool):
            with pool.connection() as conn:
                conn.execute("SELECT 1").fetchone()

    def query(self, sql: str, *args: Any) -> list[tuple]:
        """Run a query on the read pool and return all rows."""
        with self._read_pool.connection() as conn:
            return conn.execute(sql, args).fetchall()

    def query_row(self, sql: str, *args: Any) -> tuple | None:
        """Run a query on the read pool and return the first row, or None."""
        with self._read_pool.connection() as conn:
            return conn.execute(sql, args).fetchone()

    def execute(self, sql: str, *args: Any) -> sqlite3.Cursor:
        """Execute statements on the write pool; the cursor exposes lastrowid and rowcount."""
        with self._write_pool.connection() as conn:
            return _run(conn, sql, args)

    def begin(self) -> Transaction:
        """Start a transaction on the write pool."""
        return Transaction(self._write_pool)

    def prepare(self, sql: str) -> Statement:
        """Prepare a statement: SELECT goes to the read pool, everything else to the write pool."""
        if sql.upper().strip().startswith("SELECT"):
            return Statement(self._read_pool, sql)
        return Statement(self._write_pool, sql)

    def _apply_migration(self, name: str, content: bytes) -> None:
        with self.begin() as tx:
            tx.execute(content.decode("utf-8"))
            tx.execute("INSERT INTO migrations (name, query) VALUES (?, ?)", name, content)

    def run_migrations(self, directory: str | os.PathLike, sep: str) -> None:
        """Apply every migration file in ``directory`` not yet recorded, in name order."""
        self.execute(_CREATE_MIGRATIONS_TABLE)
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda entry: entry.name)
        for entry in entries:
            validate_migration_file(entry.path, sep)
            row = self.query_row("SELECT query FROM migrations WHERE name = ?", entry.name)
            with open(entry.path, "rb") as fh:
                content = fh.read()
            if row is not None:
                applied = row[0]
                if isinstance(applied, str):
                    applied = applied.encode("utf-8")
                if applied != content:
                    print(f"Migration mismatch for {entry.name}")
                    diff = difflib.unified_diff(
                        applied.decode("utf-8", "replace").splitlines(),
                        content.decode("utf-8", "replace").splitlines(),
                        "applied",
                        entry.name,
                        lineterm="",
                    )
                    print("\n".join(diff))
                    raise MigrationError(
                        f"migration content changed for {entry.name}.\n"
                        " Move the changes into a new migration file"
                    )
                continue
            self._apply_migration(entry.name, content)

    def list_migrations(self) -> list[str]:
        """Return the names of applied migrations."""
        return [name for (name,) in self.query("SELECT name FROM migrations")]

    def close(self) -> None:
        """Close both pools."""
        self._read_pool.close()
        self._write_pool.close()

    def __enter__(self) -> DbClient:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False


def validate_migration_file(path: str | os.PathLike, sep: str) -> None:
    """Check that ``path`` is a file named ``<integer><sep><rest>``."""
    if os.path.isdir(path):
        raise MigrationError("only files are allowed in migrations folder")
    name = os.path.basename(os.fspath(path))
    if sep == "":
        prefix = ""
    else:
        prefix, found, _ = name.partition(sep)
        if not found:
            raise MigrationError("migration file name separator not found")
    if not _INT_RE.fullmatch(prefix) or not _INT64_MIN <= int(prefix) <= _INT64_MAX:
        raise MigrationError("migration file name prefix is not a number")


def _pool_for(dsn: str, max_size: int) -> _Pool:
    return _Pool(lambda: _connect(dsn), max_size)


def open_db(config: Config | None = None) -> DbClient:
    """Open a client; the writer is connected first so WAL files exist for readers."""
    config = config or Config()
    driver = config.driver or DEFAULT_DRIVER
    if driver not in _SUPPORTED_DRIVERS:
        raise ValueError(f'sql: unknown driver "{driver}"')

    if config.r_dsn and config.w_dsn:
        read_dsn, write_dsn = config.r_dsn, config.w_dsn
    else:
        db_path = config.db_path or DEFAULT_DB_PATH
        read_dsn = _build_dsn(db_path, "ro", DEFAULT_PRAGMAS)
        write_dsn = _build_dsn(db_path, "rwc", WRITER_PRAGMAS)

    write_pool = _pool_for(write_dsn, WRITE_MAX_CONNECTIONS)
    try:
        with write_pool.connection() as conn:
            conn.execute("SELECT 1").fetchone()
    except BaseException:
        write_pool.close()
        raise
    read_pool = _pool_for(read_dsn, READ_MAX_CONNECTIONS)
    return DbClient(read_pool, write_pool)