"""Shared SQLite connection and the transaction boundary both stores use."""

from __future__ import annotations

import contextlib
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class RepositoryUnavailableError(Exception):
    """Raised when the database cannot serve a read or a transaction."""


class StaleStateError(Exception):
    """Raised when a compare-and-swap finds the record in a different state."""


class Database:
    """
    Single SQLite connection guarded by a re-entrant lock.

    ``transaction()`` opens ``BEGIN IMMEDIATE`` at the outermost level and
    lets nested calls join it, so a store method called from inside an
    engine unit of work commits or rolls back together with it.
    """

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._depth = 0
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")

    def init_schema(self, script: str) -> None:
        """Run a DDL script and commit it."""
        with self._lock:
            self._db.executescript(script)
            self._db.commit()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Hold the write lock for the enclosed statements; commit on success."""
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield self._db
                finally:
                    self._depth -= 1
                return

            try:
                self._db.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise RepositoryUnavailableError(str(exc)) from exc

            self._depth = 1
            try:
                yield self._db
                self._db.commit()
            except sqlite3.IntegrityError:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            except sqlite3.DatabaseError as exc:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise RepositoryUnavailableError(str(exc)) from exc
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            finally:
                self._depth = 0

    def fetch_all(self, query: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        """Run a read query and return every row."""
        with self._lock:
            try:
                return self._db.execute(query, params).fetchall()
            except sqlite3.DatabaseError as exc:
                raise RepositoryUnavailableError(str(exc)) from exc

    def fetch_one(self, query: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        """Run a read query and return the first row, if any."""
        with self._lock:
            try:
                row: sqlite3.Row | None = self._db.execute(query, params).fetchone()
            except sqlite3.DatabaseError as exc:
                raise RepositoryUnavailableError(str(exc)) from exc
        return row

    def fetch_count(self, query: str, params: Sequence[Any] = ()) -> int:
        """Run a ``SELECT COUNT(*)`` style query."""
        row = self.fetch_one(query, params)
        return int(row[0]) if row is not None and row[0] is not None else 0

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
