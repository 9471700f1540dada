"""Read-only bid statistics for a task and for a bidder."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from task_auction_service.services.lifecycle import BID_PENDING

if TYPE_CHECKING:
    from task_auction_service.services.bid_store import BidStore

TIMELINE_DISTRIBUTION_SIZE = 10

# Bids on a task from which a win counts as won against heavy competition.
CROWDED_TASK_BIDS = 5


def _amount(value: Any) -> float:
    return round(float(value), 2) if value is not None else 0


class StatsAggregator:
    """Aggregates over the stored bids of a task; never mutates anything."""

    def __init__(self, bid_store: BidStore) -> None:
        self._bid_store = bid_store

    def get_stats(self, task_id: str) -> dict[str, Any]:
        """Counts per status, amount range and average, and the timeline distribution."""
        row = self._bid_store.aggregate_for_task(task_id)
        return {
            "task_id": task_id,
            "total_bids": int(row["total"]),
            "pending_bids": int(row["pending"] or 0),
            "accepted_bids": int(row["accepted"] or 0),
            "rejected_bids": int(row["rejected"] or 0),
            "withdrawn_bids": int(row["withdrawn"] or 0),
            "min_amount": _amount(row["min_amount"]),
            "max_amount": _amount(row["max_amount"]),
            "avg_amount": _amount(row["avg_amount"]),
            "timeline_distribution": self._bid_store.timeline_distribution(
                task_id, TIMELINE_DISTRIBUTION_SIZE
            ),
        }

    def pending_summary(self, task_id: str) -> dict[str, Any]:
        """Count and amount range of the pending bids only."""
        row = self._bid_store.aggregate_for_task(task_id, BID_PENDING)
        return {
            "pending_bids": int(row["total"]),
            "lowest_bid": _amount(row["min_amount"]),
            "highest_bid": _amount(row["max_amount"]),
            "average_bid": _amount(row["avg_amount"]),
        }

    def bidder_analytics(self, bidder_id: str, since: str, days: int) -> dict[str, Any]:
        """
        A bidder's own track record.

        ``bid_performance`` covers bids submitted at or after ``since``; the
        category and competition figures cover every bid the user placed.
        Categories are ordered by success rate, best first.
        """
        categories = [
            {
                "category": row["category"],
                "total_bids": row["total"],
                "accepted_bids": row["accepted"],
                "avg_amount": _amount(row["avg_amount"]),
                "success_rate": round(row["accepted"] / row["total"] * 100, 2),
            }
            for row in self._bid_store.success_by_category(bidder_id)
        ]
        categories.sort(key=lambda entry: (-entry["success_rate"], entry["category"]))

        competition = self._bid_store.competition_for_bidder(bidder_id, CROWDED_TASK_BIDS)
        return {
            "period": f"{days} days",
            "bid_performance": [
                {**row, "total_amount": _amount(row["total_amount"])}
                for row in self._bid_store.performance_by_day(bidder_id, since)
            ],
            "category_success": categories,
            "competitive_analysis": {
                "resolved_bids": int(competition["resolved"]),
                "avg_competition": _amount(competition["avg_competition"]),
                "avg_rank": _amount(competition["avg_rank"]),
                "wins_in_high_competition": int(competition["crowded_wins"] or 0),
            },
        }
