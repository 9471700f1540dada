"""SQLite-backed bid storage."""

from __future__ import annotations

import json
import sqlite3
from typing import TYPE_CHECKING, Any

from task_auction_service.services.database import StaleStateError
from task_auction_service.services.lifecycle import (
    BID_ACCEPTED,
    BID_PENDING,
    BID_REJECTED,
    BID_WITHDRAWN,
    DELETABLE_BID_STATUSES,
    is_bid_transition,
)

if TYPE_CHECKING:
    from task_auction_service.services.database import Database


class DuplicateBidError(Exception):
    """Raised when a bidder already has a live bid on the task."""


class BidNotDeletableError(Exception):
    """Raised when deleting a bid that is missing or still pending/accepted."""


_BID_SCHEMA = """
CREATE TABLE IF NOT EXISTS bids (
    bid_id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(task_id),
    bidder_id TEXT NOT NULL,
    amount REAL NOT NULL,
    proposed_timeline TEXT NOT NULL,
    message TEXT,
    deliverables TEXT NOT NULL DEFAULT '[]',
    experience TEXT,
    portfolio TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL DEFAULT 'pending',
    is_highlighted INTEGER NOT NULL DEFAULT 0,
    submitted_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    accepted_at TEXT,
    rejected_at TEXT,
    withdrawn_at TEXT,
    auto_withdraw_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_bids_live_bidder
    ON bids(task_id, bidder_id) WHERE status != 'withdrawn';
CREATE UNIQUE INDEX IF NOT EXISTS idx_bids_one_accepted
    ON bids(task_id) WHERE status = 'accepted';
CREATE INDEX IF NOT EXISTS idx_bids_task ON bids(task_id, status);
CREATE INDEX IF NOT EXISTS idx_bids_bidder ON bids(bidder_id, status);
"""

_JSON_COLUMNS = frozenset({"deliverables", "portfolio"})

BID_SORTS: dict[str, str] = {
    "newest": "b.submitted_at DESC, b.bid_id",
    "oldest": "b.submitted_at ASC, b.bid_id",
    "amount_low": "b.amount ASC, b.submitted_at ASC",
    "amount_high": "b.amount DESC, b.submitted_at ASC",
}


class BidStore:
    """SQLite-backed storage for bids; keeps tasks.bid_count in step."""

    _BID_COLUMNS: tuple[str, ...] = (
        "bid_id",
        "task_id",
        "bidder_id",
        "amount",
        "proposed_timeline",
        "message",
        "deliverables",
        "experience",
        "portfolio",
        "status",
        "is_highlighted",
        "submitted_at",
        "updated_at",
        "accepted_at",
        "rejected_at",
        "withdrawn_at",
        "auto_withdraw_at",
    )
    _BID_COLUMNS_SQL = ", ".join(f"b.{column}" for column in _BID_COLUMNS)
    _BID_INSERT_SQL = (
        f"INSERT INTO bids ({', '.join(_BID_COLUMNS)}) "  # nosec B608
        f"VALUES ({', '.join(['?'] * len(_BID_COLUMNS))})"
    )
    _BID_SELECT_BASE_SQL = f"SELECT {_BID_COLUMNS_SQL} FROM bids b"  # nosec B608

    def __init__(self, db: Database) -> None:
        self._db = db
        self._db.init_schema(_BID_SCHEMA)

    def _row_to_bid(self, row: sqlite3.Row) -> dict[str, Any]:
        bid = {column: row[column] for column in self._BID_COLUMNS}
        for column in _JSON_COLUMNS:
            bid[column] = json.loads(bid[column])
        bid["is_highlighted"] = bool(bid["is_highlighted"])
        return bid

    @staticmethod
    def _encode(column: str, value: Any) -> Any:
        if column in _JSON_COLUMNS:
            return json.dumps(value)
        if column == "is_highlighted":
            return int(bool(value))
        return value

    def insert_bid(self, bid_data: dict[str, Any]) -> None:
        """Insert a bid and increment the associated task bid_count atomically."""
        values = tuple(self._encode(column, bid_data[column]) for column in self._BID_COLUMNS)
        with self._db.transaction() as conn:
            try:
                conn.execute(self._BID_INSERT_SQL, values)
            except sqlite3.IntegrityError as exc:
                if "unique" in str(exc).lower():
                    msg = "This user already has a live bid on this task"
                    raise DuplicateBidError(msg) from exc
                raise
            conn.execute(
                "UPDATE tasks SET bid_count = bid_count + 1 WHERE task_id = ?",
                (bid_data["task_id"],),
            )

    def get_bid(self, bid_id: str) -> dict[str, Any] | None:
        """Fetch a bid by ID."""
        row = self._db.fetch_one(self._BID_SELECT_BASE_SQL + " WHERE b.bid_id = ?", (bid_id,))
        if row is None:
            return None
        return self._row_to_bid(row)

    def find_live_bid(self, task_id: str, bidder_id: str) -> dict[str, Any] | None:
        """Fetch the bidder's non-withdrawn bid on a task, if any."""
        row = self._db.fetch_one(
            self._BID_SELECT_BASE_SQL
            + " WHERE b.task_id = ? AND b.bidder_id = ? AND b.status != ?",
            (task_id, bidder_id, BID_WITHDRAWN),
        )
        if row is None:
            return None
        return self._row_to_bid(row)

    def update_bid(self, bid_id: str, updates: dict[str, Any]) -> None:
        """
        Update descriptive bid columns while the bid is still pending.

        Raises:
            StaleStateError: the bid is no longer pending
        """
        if len(updates) == 0:
            return
        if any(column not in self._BID_COLUMNS for column in updates):
            msg = "Attempted to update unknown bid column"
            raise ValueError(msg)
        if "status" in updates:
            msg = "status is not updated through update_bid"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params = [self._encode(column, value) for column, value in updates.items()]
        query = "UPDATE bids SET " + set_clause + " WHERE bid_id = ? AND status = ?"  # nosec B608
        params.extend([bid_id, BID_PENDING])

        with self._db.transaction() as conn:
            cursor = conn.execute(query, params)
            if cursor.rowcount == 0:
                msg = f"Bid {bid_id} is no longer pending"
                raise StaleStateError(msg)

    def set_status(
        self,
        bid_id: str,
        from_status: str,
        to_status: str,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """
        Move a bid along one lifecycle edge, compare-and-swap on the current status.

        Raises:
            ValueError: the edge is not part of the bid lifecycle
            StaleStateError: the stored status is no longer ``from_status``
        """
        if not is_bid_transition(from_status, to_status):
            msg = f"Illegal bid transition {from_status} -> {to_status}"
            raise ValueError(msg)

        columns: dict[str, Any] = {"status": to_status, **(extra or {})}
        if any(column not in self._BID_COLUMNS for column in columns):
            msg = "Attempted to update unknown bid column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in columns)
        query = "UPDATE bids SET " + set_clause + " WHERE bid_id = ? AND status = ?"  # nosec B608
        params = [*columns.values(), bid_id, from_status]

        with self._db.transaction() as conn:
            cursor = conn.execute(query, params)
            if cursor.rowcount == 0:
                msg = f"Bid {bid_id} is no longer '{from_status}'"
                raise StaleStateError(msg)

    def delete_bid(self, bid_id: str) -> dict[str, Any]:
        """
        Remove a rejected or withdrawn bid and decrement the task bid_count.

        Returns the deleted bid.
        """
        with self._db.transaction() as conn:
            row = conn.execute(
                self._BID_SELECT_BASE_SQL + " WHERE b.bid_id = ?", (bid_id,)
            ).fetchone()
            if row is None or row["status"] not in DELETABLE_BID_STATUSES:
                msg = f"Bid {bid_id} cannot be deleted"
                raise BidNotDeletableError(msg)
            conn.execute("DELETE FROM bids WHERE bid_id = ?", (bid_id,))
            conn.execute(
                "UPDATE tasks SET bid_count = bid_count - 1 WHERE task_id = ? AND bid_count > 0",
                (row["task_id"],),
            )
        return self._row_to_bid(row)

    def bulk_reject_except(
        self, task_id: str, keep_bid_id: str | None, rejected_at: str
    ) -> list[str]:
        """Reject every pending bid of a task except ``keep_bid_id``; return the rejected ids."""
        query = "SELECT bid_id FROM bids WHERE task_id = ? AND status = ?"
        params: list[object] = [task_id, BID_PENDING]
        if keep_bid_id is not None:
            query += " AND bid_id != ?"
            params.append(keep_bid_id)

        with self._db.transaction() as conn:
            rejected = [str(row["bid_id"]) for row in conn.execute(query, params).fetchall()]
            conn.executemany(
                "UPDATE bids SET status = ?, rejected_at = ?, updated_at = ? "
                "WHERE bid_id = ? AND status = ?",
                [
                    (BID_REJECTED, rejected_at, rejected_at, bid_id, BID_PENDING)
                    for bid_id in rejected
                ],
            )
        return rejected

    def list_bids_for_task(
        self,
        task_id: str,
        status: str | None,
        sort: str,
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        """
        List bids on a task with the total matching count.

        Withdrawn bids are left out unless ``status`` asks for them.
        """
        clauses = ["b.task_id = ?"]
        params: list[object] = [task_id]
        if status is None:
            clauses.append("b.status != ?")
            params.append(BID_WITHDRAWN)
        else:
            clauses.append("b.status = ?")
            params.append(status)
        return self._page(" WHERE " + " AND ".join(clauses), params, sort, limit, offset)

    def list_bids_for_user(
        self,
        bidder_id: str,
        status: str | None,
        sort: str,
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        """List bids a user placed, with the total matching count."""
        clauses = ["b.bidder_id = ?"]
        params: list[object] = [bidder_id]
        if status is not None:
            clauses.append("b.status = ?")
            params.append(status)
        return self._page(" WHERE " + " AND ".join(clauses), params, sort, limit, offset)

    def list_bids_received(
        self,
        poster_id: str,
        status: str | None,
        sort: str,
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        """List bids placed on any task the user posted, with the total matching count."""
        clauses = ["t.poster_id = ?"]
        params: list[object] = [poster_id]
        if status is not None:
            clauses.append("b.status = ?")
            params.append(status)
        where = " JOIN tasks t ON t.task_id = b.task_id WHERE " + " AND ".join(clauses)
        return self._page(where, params, sort, limit, offset)

    def _page(
        self,
        where: str,
        params: list[object],
        sort: str,
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        total = self._db.fetch_count("SELECT COUNT(*) FROM bids b" + where, params)  # nosec B608
        query = self._BID_SELECT_BASE_SQL + where + " ORDER BY " + BID_SORTS[sort]
        query += " LIMIT ? OFFSET ?"
        rows = self._db.fetch_all(query, [*params, limit, offset])
        return [self._row_to_bid(row) for row in rows], total

    def count_pending_for_user(self, bidder_id: str) -> int:
        """Count a user's pending bids across all tasks."""
        return self._db.fetch_count(
            "SELECT COUNT(*) FROM bids WHERE bidder_id = ? AND status = ?",
            (bidder_id, BID_PENDING),
        )

    def count_submitted_since(self, bidder_id: str, since: str) -> int:
        """Count bids a user submitted at or after ``since``."""
        return self._db.fetch_count(
            "SELECT COUNT(*) FROM bids WHERE bidder_id = ? AND submitted_at >= ?",
            (bidder_id, since),
        )

    def count_for_task(self, task_id: str) -> int:
        """Count every stored bid of a task, whatever its status."""
        return self._db.fetch_count("SELECT COUNT(*) FROM bids WHERE task_id = ?", (task_id,))

    def aggregate_for_task(self, task_id: str, status: str | None = None) -> dict[str, Any]:
        """Count and amount aggregates, plus per-status counts, for a task's bids."""
        query = (
            "SELECT COUNT(*) AS total, MIN(amount) AS min_amount, MAX(amount) AS max_amount, "
            "AVG(amount) AS avg_amount, "
            "SUM(CASE WHEN status = 'pending' THEN 1 ELSE 0 END) AS pending, "
            "SUM(CASE WHEN status = 'accepted' THEN 1 ELSE 0 END) AS accepted, "
            "SUM(CASE WHEN status = 'rejected' THEN 1 ELSE 0 END) AS rejected, "
            "SUM(CASE WHEN status = 'withdrawn' THEN 1 ELSE 0 END) AS withdrawn "
            "FROM bids WHERE task_id = ?"
        )
        params: list[object] = [task_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        row = self._db.fetch_one(query, params)
        if row is None:
            msg = "Aggregate query returned no row"
            raise RuntimeError(msg)
        return {key: row[key] for key in row.keys()}  # noqa: SIM118

    def timeline_distribution(self, task_id: str, limit: int) -> list[dict[str, Any]]:
        """Most common proposed timelines on a task, with their average amount."""
        rows = self._db.fetch_all(
            "SELECT proposed_timeline, COUNT(*) AS count, AVG(amount) AS avg_amount "
            "FROM bids WHERE task_id = ? GROUP BY proposed_timeline "
            "ORDER BY count DESC, proposed_timeline ASC LIMIT ?",
            (task_id, limit),
        )
        return [
            {
                "proposed_timeline": row["proposed_timeline"],
                "count": int(row["count"]),
                "avg_amount": float(row["avg_amount"]),
            }
            for row in rows
        ]

    def performance_by_day(self, bidder_id: str, since: str) -> list[dict[str, Any]]:
        """A bidder's bids submitted at or after ``since``, grouped by UTC day and status."""
        rows = self._db.fetch_all(
            "SELECT substr(submitted_at, 1, 10) AS day, status, COUNT(*) AS count, "
            "SUM(amount) AS total_amount FROM bids "
            "WHERE bidder_id = ? AND submitted_at >= ? "
            "GROUP BY day, status ORDER BY day ASC, status ASC",
            (bidder_id, since),
        )
        return [
            {
                "date": row["day"],
                "status": row["status"],
                "count": int(row["count"]),
                "total_amount": float(row["total_amount"]),
            }
            for row in rows
        ]

    def success_by_category(self, bidder_id: str) -> list[dict[str, Any]]:
        """Per task category: how many bids a bidder placed, how many won, the average amount."""
        rows = self._db.fetch_all(
            "SELECT t.category AS category, COUNT(*) AS total, "
            "SUM(CASE WHEN b.status = ? THEN 1 ELSE 0 END) AS accepted, "
            "AVG(b.amount) AS avg_amount "
            "FROM bids b JOIN tasks t ON t.task_id = b.task_id "
            "WHERE b.bidder_id = ? GROUP BY t.category",
            (BID_ACCEPTED, bidder_id),
        )
        return [
            {
                "category": row["category"],
                "total": int(row["total"]),
                "accepted": int(row["accepted"] or 0),
                "avg_amount": float(row["avg_amount"]),
            }
            for row in rows
        ]

    def competition_for_bidder(self, bidder_id: str, crowded_at: int) -> dict[str, Any]:
        """
        How a bidder fared on resolved (accepted or rejected) bids.

        The rank of a bid is one more than the number of bids on the same
        task with a lower amount. A win counts as crowded when the task held
        at least ``crowded_at`` bids.
        """
        row = self._db.fetch_one(
            "SELECT COUNT(*) AS resolved, AVG(t.bid_count) AS avg_competition, "
            "AVG(1 + (SELECT COUNT(*) FROM bids o "
            "WHERE o.task_id = b.task_id AND o.amount < b.amount)) AS avg_rank, "
            "SUM(CASE WHEN b.status = ? AND t.bid_count >= ? THEN 1 ELSE 0 END) AS crowded_wins "
            "FROM bids b JOIN tasks t ON t.task_id = b.task_id "
            "WHERE b.bidder_id = ? AND b.status IN (?, ?)",
            (BID_ACCEPTED, crowded_at, bidder_id, BID_ACCEPTED, BID_REJECTED),
        )
        if row is None:
            msg = "Aggregate query returned no row"
            raise RuntimeError(msg)
        return {key: row[key] for key in row.keys()}  # noqa: SIM118
