"""SQLite connection handling with validated pragmas and transactions."""

from __future__ import annotations

import os
import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TypeVar

DEFAULT_BUSY_TIMEOUT_MS = 5000
DEFAULT_JOURNAL_MODE = "WAL"
DEFAULT_SYNCHRONOUS = "NORMAL"

# Whitelists keep configuration values from being spliced into PRAGMA statements.
ALLOWED_JOURNAL_MODES = frozenset({"WAL", "DELETE", "TRUNCATE", "MEMORY", "OFF", "PERSIST"})
ALLOWED_SYNCHRONOUS = frozenset({"OFF", "NORMAL", "FULL", "EXTRA"})

T = TypeVar("T")


class InvalidJournalModeError(ValueError):
    """Raised for a journal_mode value outside the whitelist."""


class InvalidSynchronousError(ValueError):
    """Raised for a synchronous value outside the whitelist."""


class OldConnectionCloseError(RuntimeError):
    """The new connection is in use, but closing the previous one failed."""


@dataclass(frozen=True)
class Pragmas:
    """PRAGMA values applied when a connection is opened; empty means default."""

    busy_timeout_ms: int = 0
    journal_mode: str = ""
    synchronous: str = ""

    def normalize(self) -> Pragmas:
        """Return validated pragmas with defaults filled in and modes upper-cased."""
        busy = self.busy_timeout_ms if self.busy_timeout_ms > 0 else DEFAULT_BUSY_TIMEOUT_MS
        mode = self.journal_mode.strip().upper() or DEFAULT_JOURNAL_MODE
        if mode not in ALLOWED_JOURNAL_MODES:
            raise InvalidJournalModeError(f"invalid journal_mode pragma: {self.journal_mode!r}")
        sync = self.synchronous.strip().upper() or DEFAULT_SYNCHRONOUS
        if sync not in ALLOWED_SYNCHRONOUS:
            raise InvalidSynchronousError(f"invalid synchronous pragma: {self.synchronous!r}")
        return Pragmas(busy_timeout_ms=busy, journal_mode=mode, synchronous=sync)


def _connect(path: str, pragmas: Pragmas) -> sqlite3.Connection:
    conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
    try:
        conn.execute(f"PRAGMA busy_timeout = {int(pragmas.busy_timeout_ms)}")
        conn.execute(f"PRAGMA journal_mode = {pragmas.journal_mode}").fetchall()
        conn.execute(f"PRAGMA synchronous = {pragmas.synchronous}")
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("SELECT 1").fetchone()
    except BaseException:
        conn.close()
        raise
    return conn


class Database:
    """A single SQLite connection shared by the repositories.

    All use of the connection is serialised; a transaction holds the
    connection for its whole duration, so other threads wait until it ends.
    """

    def __init__(self, connection: sqlite3.Connection, pragmas: Pragmas, path: str = "") -> None:
        self._conn: sqlite3.Connection | None = connection
        self._pragmas = pragmas
        self._path = path
        self._lock = threading.RLock()
        self._reconnect_lock = threading.Lock()

    @property
    def pragmas(self) -> Pragmas:
        return self._pragmas

    @property
    def path(self) -> str:
        return self._path

    def _require(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("db not connected")
        return self._conn

    @contextmanager
    def cursor(self) -> Iterator[sqlite3.Cursor]:
        """Yield a cursor on the current connection, holding it exclusively."""
        with self._lock:
            cur = self._require().cursor()
            try:
                yield cur
            finally:
                cur.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the block in a transaction; commit on success, roll back on error.

        A transaction opened inside another one on the same thread joins it.
        """
        with self._lock:
            conn = self._require()
            if conn.in_transaction:
                yield
                return
            conn.execute("BEGIN")
            try:
                yield
            except BaseException as exc:
                try:
                    conn.execute("ROLLBACK")
                except sqlite3.Error:
                    raise exc
                raise
            conn.execute("COMMIT")

    def with_tx(self, fn: Callable[[], T]) -> T:
        """Call ``fn`` inside a transaction and return its result."""
        with self.transaction():
            return fn()

    def reconnect(self, path: str | os.PathLike[str]) -> None:
        """Switch to the database at ``path``; the new connection is checked first."""
        with self._reconnect_lock:
            target = os.fspath(path)
            new_conn = _connect(target, self._pragmas)
            with self._lock:
                old, self._conn = self._conn, new_conn
                self._path = target
            if old is not None:
                try:
                    old.close()
                except sqlite3.Error as exc:
                    raise OldConnectionCloseError(
                        f"close previous db connection failed: {exc}"
                    ) from exc

    def close(self) -> None:
        """Close the connection; later use raises until a reconnect."""
        with self._lock:
            conn, self._conn = self._conn, None
            if conn is not None:
                conn.close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def open_database(path: str | os.PathLike[str], pragmas: Pragmas | None = None) -> Database:
    """Open the SQLite database at ``path`` with validated pragmas."""
    normalized = (pragmas or Pragmas()).normalize()
    target = os.fspath(path)
    return Database(_connect(target, normalized), normalized, target)