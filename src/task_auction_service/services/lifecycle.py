"""Task and bid statuses, and the only status edges the stores will apply."""

from __future__ import annotations

TASK_OPEN = "open"
TASK_ASSIGNED = "assigned"
TASK_IN_PROGRESS = "in_progress"
TASK_COMPLETED = "completed"
TASK_CLOSED = "closed"

TASK_STATUSES = (TASK_OPEN, TASK_ASSIGNED, TASK_IN_PROGRESS, TASK_COMPLETED, TASK_CLOSED)

BID_PENDING = "pending"
BID_ACCEPTED = "accepted"
BID_REJECTED = "rejected"
BID_WITHDRAWN = "withdrawn"

BID_STATUSES = (BID_PENDING, BID_ACCEPTED, BID_REJECTED, BID_WITHDRAWN)

TASK_TRANSITIONS: frozenset[tuple[str, str]] = frozenset(
    {
        (TASK_OPEN, TASK_ASSIGNED),
        (TASK_ASSIGNED, TASK_IN_PROGRESS),
        (TASK_IN_PROGRESS, TASK_COMPLETED),
        (TASK_OPEN, TASK_CLOSED),
        (TASK_COMPLETED, TASK_CLOSED),
    }
)

BID_TRANSITIONS: frozenset[tuple[str, str]] = frozenset(
    {
        (BID_PENDING, BID_ACCEPTED),
        (BID_PENDING, BID_REJECTED),
        (BID_PENDING, BID_WITHDRAWN),
    }
)

CLOSABLE_TASK_STATUSES = frozenset({TASK_OPEN, TASK_COMPLETED})
DELETABLE_BID_STATUSES = frozenset({BID_REJECTED, BID_WITHDRAWN})

TASK_CATEGORIES = ("Academic", "Campus Life", "Tech Help", "Personal", "Other")
TASK_PRIORITIES = ("Low", "Medium", "High", "Urgent")


def is_task_transition(current: str, target: str) -> bool:
    """Return True when current -> target is a legal task edge."""
    return (current, target) in TASK_TRANSITIONS


def is_bid_transition(current: str, target: str) -> bool:
    """Return True when current -> target is a legal bid edge."""
    return (current, target) in BID_TRANSITIONS
