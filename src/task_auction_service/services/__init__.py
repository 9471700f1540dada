"""Service layer components."""

from task_auction_service.services.auction_engine import AuctionEngine
from task_auction_service.services.bid_store import BidStore
from task_auction_service.services.database import Database
from task_auction_service.services.rate_limiter import RateLimiter
from task_auction_service.services.stats_aggregator import StatsAggregator
from task_auction_service.services.task_store import TaskStore

__all__ = [
    "AuctionEngine",
    "BidStore",
    "Database",
    "RateLimiter",
    "StatsAggregator",
    "TaskStore",
]
