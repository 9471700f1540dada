"""Unit tests for StatsAggregator."""

from __future__ import annotations

from datetime import timedelta

import pytest

from task_auction_service.services.clock import to_iso
from task_auction_service.services.stats_aggregator import StatsAggregator
from tests.helpers import BIDDER_ID, FIXED_NOW, bid_row, task_row


@pytest.fixture
def stats(bid_store, task_store) -> StatsAggregator:
    task_store.insert_task(task_row("t-1"))
    return StatsAggregator(bid_store)


@pytest.mark.unit
def test_no_bids(stats):
    result = stats.get_stats("t-1")
    assert result == {
        "task_id": "t-1",
        "total_bids": 0,
        "pending_bids": 0,
        "accepted_bids": 0,
        "rejected_bids": 0,
        "withdrawn_bids": 0,
        "min_amount": 0,
        "max_amount": 0,
        "avg_amount": 0,
        "timeline_distribution": [],
    }


@pytest.mark.unit
def test_counts_and_amounts(stats, bid_store):
    bid_store.insert_bid(bid_row("bid-1", "t-1", bidder_id="u-1", amount=100.0))
    bid_store.insert_bid(
        bid_row("bid-2", "t-1", bidder_id="u-2", amount=200.0, proposed_timeline="One week")
    )
    bid_store.insert_bid(bid_row("bid-3", "t-1", bidder_id="u-3", amount=150.0, status="rejected"))
    bid_store.insert_bid(
        bid_row("bid-4", "t-1", bidder_id="u-4", amount=400.0, status="withdrawn")
    )

    result = stats.get_stats("t-1")

    assert result["total_bids"] == 4
    assert result["pending_bids"] == 2
    assert result["rejected_bids"] == 1
    assert result["withdrawn_bids"] == 1
    assert result["accepted_bids"] == 0
    assert result["min_amount"] == 100.0
    assert result["max_amount"] == 400.0
    assert result["avg_amount"] == 212.5
    assert result["timeline_distribution"][0] == {
        "proposed_timeline": "Within 2 days",
        "count": 3,
        "avg_amount": pytest.approx(216.6667, rel=1e-4),
    }


@pytest.mark.unit
def test_pending_summary_ignores_resolved_bids(stats, bid_store):
    bid_store.insert_bid(bid_row("bid-1", "t-1", bidder_id="u-1", amount=120.0))
    bid_store.insert_bid(bid_row("bid-2", "t-1", bidder_id="u-2", amount=180.0))
    bid_store.insert_bid(bid_row("bid-3", "t-1", bidder_id="u-3", amount=90.0, status="rejected"))

    assert stats.pending_summary("t-1") == {
        "pending_bids": 2,
        "lowest_bid": 120.0,
        "highest_bid": 180.0,
        "average_bid": 150.0,
    }


class TestBidderAnalytics:
    @pytest.fixture
    def history(self, stats, task_store, bid_store):
        task_store.insert_task(task_row("t-2", category="Tech Help"))
        task_store.insert_task(task_row("t-3", category="Tech Help"))

        bid_store.insert_bid(bid_row("bid-a", "t-1", amount=200.0, status="accepted"))
        for index, amount in enumerate((100.0, 250.0, 400.0, 500.0)):
            bid_store.insert_bid(
                bid_row(f"bid-t1-{index}", "t-1", bidder_id=f"u-{index}", amount=amount)
            )

        yesterday = to_iso(FIXED_NOW - timedelta(days=1))
        bid_store.insert_bid(
            bid_row("bid-b", "t-2", amount=300.0, status="rejected", submitted_at=yesterday)
        )
        bid_store.insert_bid(bid_row("bid-t2", "t-2", bidder_id="u-9", amount=100.0))

        long_ago = to_iso(FIXED_NOW - timedelta(days=40))
        bid_store.insert_bid(bid_row("bid-c", "t-3", amount=150.0, submitted_at=long_ago))
        return stats

    @pytest.mark.unit
    def test_performance_is_limited_to_the_period(self, history):
        since = to_iso(FIXED_NOW - timedelta(days=30))

        result = history.bidder_analytics(BIDDER_ID, since, 30)

        assert result["period"] == "30 days"
        assert result["bid_performance"] == [
            {"date": "2024-12-31", "status": "rejected", "count": 1, "total_amount": 300.0},
            {"date": "2025-01-01", "status": "accepted", "count": 1, "total_amount": 200.0},
        ]

    @pytest.mark.unit
    def test_category_success_best_first(self, history):
        result = history.bidder_analytics(BIDDER_ID, to_iso(FIXED_NOW), 1)

        assert result["category_success"] == [
            {
                "category": "Academic",
                "total_bids": 1,
                "accepted_bids": 1,
                "avg_amount": 200.0,
                "success_rate": 100.0,
            },
            {
                "category": "Tech Help",
                "total_bids": 2,
                "accepted_bids": 0,
                "avg_amount": 225.0,
                "success_rate": 0.0,
            },
        ]

    @pytest.mark.unit
    def test_competitive_analysis_covers_resolved_bids(self, history):
        result = history.bidder_analytics(BIDDER_ID, to_iso(FIXED_NOW), 1)

        assert result["competitive_analysis"] == {
            "resolved_bids": 2,
            "avg_competition": 3.5,
            "avg_rank": 2.0,
            "wins_in_high_competition": 1,
        }

    @pytest.mark.unit
    def test_bidder_without_bids(self, stats):
        result = stats.bidder_analytics("u-nobody", to_iso(FIXED_NOW), 7)

        assert result == {
            "period": "7 days",
            "bid_performance": [],
            "category_success": [],
            "competitive_analysis": {
                "resolved_bids": 0,
                "avg_competition": 0,
                "avg_rank": 0,
                "wins_in_high_competition": 0,
            },
        }
