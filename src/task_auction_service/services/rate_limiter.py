"""Per-user admission limits derived from stored records."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from task_auction_service.core.exceptions import auction_error
from task_auction_service.services.clock import to_iso

if TYPE_CHECKING:
    from datetime import datetime

    from task_auction_service.config import LimitsConfig
    from task_auction_service.services.bid_store import BidStore
    from task_auction_service.services.task_store import TaskStore


class RateLimiter:
    """
    Enforces the pending-bid cap and the sliding-window caps on new tasks and bids.

    Counters are read from the stores on every call, so nothing is kept in
    memory between requests.
    """

    def __init__(self, limits: LimitsConfig, task_store: TaskStore, bid_store: BidStore) -> None:
        self._limits = limits
        self._task_store = task_store
        self._bid_store = bid_store

    def _window_start(self, now: datetime) -> str:
        return to_iso(now - timedelta(seconds=self._limits.window_seconds))

    def check_task_creation(self, poster_id: str, now: datetime) -> None:
        """Raise RATE_LIMITED when the poster created too many tasks in the window."""
        created = self._task_store.count_tasks_created_since(poster_id, self._window_start(now))
        if created >= self._limits.max_tasks_per_window:
            raise auction_error(
                "RATE_LIMITED",
                {
                    "limit": "max_tasks_per_window",
                    "max": self._limits.max_tasks_per_window,
                    "window_seconds": self._limits.window_seconds,
                },
            )

    def check_bid_submission(self, bidder_id: str, now: datetime) -> None:
        """Raise RATE_LIMITED when the bidder hit the pending cap or the window cap."""
        pending = self._bid_store.count_pending_for_user(bidder_id)
        if pending >= self._limits.max_pending_bids_per_user:
            raise auction_error(
                "RATE_LIMITED",
                {
                    "limit": "max_pending_bids_per_user",
                    "max": self._limits.max_pending_bids_per_user,
                },
            )

        submitted = self._bid_store.count_submitted_since(bidder_id, self._window_start(now))
        if submitted >= self._limits.max_bids_per_window:
            raise auction_error(
                "RATE_LIMITED",
                {
                    "limit": "max_bids_per_window",
                    "max": self._limits.max_bids_per_window,
                    "window_seconds": self._limits.window_seconds,
                },
            )
