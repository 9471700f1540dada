"""SQLite-backed task storage."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from task_auction_service.services.clock import to_iso
from task_auction_service.services.database import StaleStateError
from task_auction_service.services.lifecycle import TASK_OPEN, TASK_STATUSES, is_task_transition

if TYPE_CHECKING:
    from datetime import datetime

    from task_auction_service.services.database import Database


class DuplicateTaskError(Exception):
    """Raised when attempting to insert a task with a duplicate task_id."""


class TaskLockedError(Exception):
    """Raised when budget or deadline changes are attempted on a task with bids."""


_TASK_SCHEMA = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id TEXT PRIMARY KEY,
    poster_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    category TEXT NOT NULL,
    budget_min REAL NOT NULL,
    budget_max REAL NOT NULL,
    deadline TEXT NOT NULL,
    location TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    attachments TEXT NOT NULL DEFAULT '[]',
    priority TEXT NOT NULL DEFAULT 'Medium',
    status TEXT NOT NULL DEFAULT 'open',
    bid_count INTEGER NOT NULL DEFAULT 0 CHECK (bid_count >= 0),
    assigned_to TEXT,
    accepted_bid_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    assigned_at TEXT,
    started_at TEXT,
    completed_at TEXT,
    closed_at TEXT,
    task_rating INTEGER,
    bidder_rating INTEGER,
    review TEXT
);

CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
CREATE INDEX IF NOT EXISTS idx_tasks_poster ON tasks(poster_id, created_at);
"""

# Columns holding JSON-encoded lists.
_JSON_COLUMNS = frozenset({"tags", "attachments"})

# Columns frozen once the first bid arrives.
_LOCKED_COLUMNS = frozenset({"budget_min", "budget_max", "deadline"})

DEADLINE_WINDOWS = ("today", "week", "month", "urgent")

# ORDER BY clause per sort key; the tie-breaker keeps paging stable.
TASK_SORTS: dict[str, str] = {
    "newest": "created_at DESC, task_id",
    "oldest": "created_at ASC, task_id",
    "deadline": "deadline ASC, task_id",
    "budget_high": "budget_max DESC, created_at DESC",
    "budget_low": "budget_min ASC, created_at DESC",
    "popular": "bid_count DESC, created_at DESC",
    "urgent": "deadline ASC, created_at DESC",
}


@dataclass(frozen=True)
class TaskFilters:
    """Optional filters for task listing; None means no constraint."""

    status: str | None = None
    poster_id: str | None = None
    assigned_to: str | None = None
    category: str | None = None
    search: str | None = None
    min_budget: float | None = None
    max_budget: float | None = None
    deadline_window: str | None = None
    location: str | None = None
    exclude_expired: bool = False


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class TaskStore:
    """SQLite-backed storage for tasks."""

    _TASK_COLUMNS: tuple[str, ...] = (
        "task_id",
        "poster_id",
        "title",
        "description",
        "category",
        "budget_min",
        "budget_max",
        "deadline",
        "location",
        "tags",
        "attachments",
        "priority",
        "status",
        "bid_count",
        "assigned_to",
        "accepted_bid_id",
        "created_at",
        "updated_at",
        "assigned_at",
        "started_at",
        "completed_at",
        "closed_at",
        "task_rating",
        "bidder_rating",
        "review",
    )
    _TASK_COLUMNS_SQL = ", ".join(_TASK_COLUMNS)
    _TASK_INSERT_SQL = (
        f"INSERT INTO tasks ({_TASK_COLUMNS_SQL}) "  # nosec B608
        f"VALUES ({', '.join(['?'] * len(_TASK_COLUMNS))})"
    )
    _TASK_SELECT_BASE_SQL = f"SELECT {_TASK_COLUMNS_SQL} FROM tasks"  # nosec B608

    def __init__(self, db: Database) -> None:
        self._db = db
        self._db.init_schema(_TASK_SCHEMA)

    def _row_to_task(self, row: sqlite3.Row) -> dict[str, Any]:
        task = {column: row[column] for column in self._TASK_COLUMNS}
        for column in _JSON_COLUMNS:
            task[column] = json.loads(task[column])
        return task

    @staticmethod
    def _encode(column: str, value: Any) -> Any:
        if column in _JSON_COLUMNS:
            return json.dumps(value)
        return value

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a new task row."""
        values = tuple(
            self._encode(column, task_data[column]) for column in self._TASK_COLUMNS
        )
        with self._db.transaction() as conn:
            try:
                conn.execute(self._TASK_INSERT_SQL, values)
            except sqlite3.IntegrityError as exc:
                if "unique" in str(exc).lower():
                    raise DuplicateTaskError(
                        f"A task with task_id={task_data['task_id']} already exists"
                    ) from exc
                raise

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID."""
        row = self._db.fetch_one(self._TASK_SELECT_BASE_SQL + " WHERE task_id = ?", (task_id,))
        if row is None:
            return None
        return self._row_to_task(row)

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None = None,
    ) -> int:
        """
        Update descriptive task columns and return the number of affected rows.

        Budget and deadline columns are refused with TaskLockedError once the
        task has received a bid. Status changes go through set_status.
        """
        if len(updates) == 0:
            return 0

        if any(column not in self._TASK_COLUMNS for column in updates):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)
        if "status" in updates or "bid_count" in updates:
            msg = "status and bid_count are not updated through update_task"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [self._encode(column, value) for column, value in updates.items()]
        query = "UPDATE tasks SET " + set_clause + " WHERE task_id = ?"  # nosec B608
        params.append(task_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)

        with self._db.transaction() as conn:
            if _LOCKED_COLUMNS.intersection(updates):
                row = conn.execute(
                    "SELECT bid_count FROM tasks WHERE task_id = ?", (task_id,)
                ).fetchone()
                if row is not None and int(row["bid_count"]) > 0:
                    msg = f"Task {task_id} has bids; budget and deadline are locked"
                    raise TaskLockedError(msg)
            cursor = conn.execute(query, params)
        return int(cursor.rowcount)

    def set_status(
        self,
        task_id: str,
        from_status: str,
        to_status: str,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """
        Move a task along one lifecycle edge, compare-and-swap on the current status.

        Raises:
            ValueError: the edge is not part of the task lifecycle
            StaleStateError: the stored status is no longer ``from_status``
        """
        if not is_task_transition(from_status, to_status):
            msg = f"Illegal task transition {from_status} -> {to_status}"
            raise ValueError(msg)

        columns: dict[str, Any] = {"status": to_status, **(extra or {})}
        if any(column not in self._TASK_COLUMNS for column in columns):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in columns)
        query = "UPDATE tasks SET " + set_clause + " WHERE task_id = ? AND status = ?"  # nosec B608
        params = [*columns.values(), task_id, from_status]

        with self._db.transaction() as conn:
            cursor = conn.execute(query, params)
            if cursor.rowcount == 0:
                msg = f"Task {task_id} is no longer '{from_status}'"
                raise StaleStateError(msg)

    def delete_task(self, task_id: str) -> int:
        """Delete an open task without bids; returns the number of removed rows."""
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM tasks WHERE task_id = ? AND status = ? AND bid_count = 0",
                (task_id, TASK_OPEN),
            )
        return int(cursor.rowcount)

    def _where(self, filters: TaskFilters, now: datetime) -> tuple[str, list[object]]:
        clauses: list[str] = []
        params: list[object] = []

        for column in ("status", "poster_id", "assigned_to", "category"):
            value = getattr(filters, column)
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)

        if filters.search:
            pattern = f"%{_escape_like(filters.search)}%"
            clauses.append(
                "(title LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\' "
                "OR tags LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern, pattern])
        if filters.location:
            clauses.append("location LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(filters.location)}%")
        if filters.exclude_expired:
            clauses.append("NOT (status = ? AND deadline <= ?)")
            params.extend([TASK_OPEN, to_iso(now)])
        if filters.min_budget is not None:
            clauses.append("budget_min >= ?")
            params.append(filters.min_budget)
        if filters.max_budget is not None:
            clauses.append("budget_max <= ?")
            params.append(filters.max_budget)

        if filters.deadline_window is not None:
            if filters.deadline_window == "today":
                start = now.replace(hour=0, minute=0, second=0, microsecond=0)
                end = start + timedelta(days=1)
                clauses.append("deadline >= ? AND deadline < ?")
                params.extend([to_iso(start), to_iso(end)])
            else:
                span = {"week": timedelta(days=7), "month": timedelta(days=30)}.get(
                    filters.deadline_window, timedelta(hours=24)
                )
                clauses.append("deadline > ? AND deadline <= ?")
                params.extend([to_iso(now), to_iso(now + span)])

        if len(clauses) == 0:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    def list_tasks(
        self,
        filters: TaskFilters,
        now: datetime,
        sort: str,
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        """List tasks matching the filters, ordered by one of TASK_SORTS."""
        where, params = self._where(filters, now)
        query = self._TASK_SELECT_BASE_SQL + where + " ORDER BY " + TASK_SORTS[sort]
        query += " LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        rows = self._db.fetch_all(query, params)
        return [self._row_to_task(row) for row in rows]

    def count_matching(self, filters: TaskFilters, now: datetime) -> int:
        """Count tasks matching the filters."""
        where, params = self._where(filters, now)
        return self._db.fetch_count("SELECT COUNT(*) FROM tasks" + where, params)  # nosec B608

    def count_tasks_created_since(self, poster_id: str, since: str) -> int:
        """Count tasks a poster created at or after ``since``."""
        return self._db.fetch_count(
            "SELECT COUNT(*) FROM tasks WHERE poster_id = ? AND created_at >= ?",
            (poster_id, since),
        )

    def count_tasks(self) -> int:
        """Count total tasks."""
        return self._db.fetch_count("SELECT COUNT(*) FROM tasks")

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status; every known status is present."""
        rows = self._db.fetch_all("SELECT status, COUNT(*) FROM tasks GROUP BY status")
        counts = dict.fromkeys(TASK_STATUSES, 0)
        counts.update({str(row[0]): int(row[1]) for row in rows})
        return counts
