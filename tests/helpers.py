"""Shared test helpers: a controllable clock, payload and row builders, auth headers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from task_auction_service.services.clock import to_iso

FIXED_NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)

POSTER_ID = "u-alice"
BIDDER_ID = "u-bob"
OTHER_BIDDER_ID = "u-carol"


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


def task_payload(now: datetime = FIXED_NOW, **overrides: Any) -> dict[str, Any]:
    """A valid create-task payload with a deadline three days after ``now``."""
    payload: dict[str, Any] = {
        "title": "Help moving boxes",
        "description": "Need two hands to move boxes to the third floor dorm.",
        "category": "Campus Life",
        "budget_min": 100,
        "budget_max": 500,
        "deadline": to_iso(now + timedelta(days=3)),
        "tags": ["moving", "dorm"],
    }
    payload.update(overrides)
    return payload


def bid_payload(**overrides: Any) -> dict[str, Any]:
    """A valid bid payload for a 100-500 budget."""
    payload: dict[str, Any] = {
        "amount": 300,
        "proposed_timeline": "Within 2 days",
        "message": "I have a car and free time this weekend.",
        "deliverables": ["Boxes moved"],
    }
    payload.update(overrides)
    return payload


def auth(user_id: str) -> dict[str, str]:
    """Authorization header whose token the mocked identity client maps back to ``user_id``."""
    return {"Authorization": f"Bearer token-{user_id}"}


def task_row(task_id: str, **overrides: Any) -> dict[str, Any]:
    """A complete task row as the stores persist it."""
    stamp = to_iso(FIXED_NOW)
    row: dict[str, Any] = {
        "task_id": task_id,
        "poster_id": POSTER_ID,
        "title": f"Task {task_id}",
        "description": "A description long enough to pass validation.",
        "category": "Academic",
        "budget_min": 100.0,
        "budget_max": 500.0,
        "deadline": to_iso(FIXED_NOW + timedelta(days=3)),
        "location": None,
        "tags": [],
        "attachments": [],
        "priority": "Medium",
        "status": "open",
        "bid_count": 0,
        "assigned_to": None,
        "accepted_bid_id": None,
        "created_at": stamp,
        "updated_at": stamp,
        "assigned_at": None,
        "started_at": None,
        "completed_at": None,
        "closed_at": None,
        "task_rating": None,
        "bidder_rating": None,
        "review": None,
    }
    row.update(overrides)
    return row


def bid_row(bid_id: str, task_id: str, **overrides: Any) -> dict[str, Any]:
    """A complete bid row as the stores persist it."""
    stamp = to_iso(FIXED_NOW)
    row: dict[str, Any] = {
        "bid_id": bid_id,
        "task_id": task_id,
        "bidder_id": BIDDER_ID,
        "amount": 300.0,
        "proposed_timeline": "Within 2 days",
        "message": None,
        "deliverables": [],
        "experience": None,
        "portfolio": [],
        "status": "pending",
        "is_highlighted": False,
        "submitted_at": stamp,
        "updated_at": stamp,
        "accepted_at": None,
        "rejected_at": None,
        "withdrawn_at": None,
        "auto_withdraw_at": to_iso(FIXED_NOW + timedelta(days=7)),
    }
    row.update(overrides)
    return row
