"""Unit test fixtures: clear caches between tests and wire an engine on a temp database."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock

import pytest

from task_auction_service.config import AuctionConfig, LimitsConfig, clear_settings_cache
from task_auction_service.core.state import reset_app_state
from task_auction_service.services.auction_engine import AuctionEngine
from task_auction_service.services.bid_store import BidStore
from task_auction_service.services.database import Database
from task_auction_service.services.rate_limiter import RateLimiter
from task_auction_service.services.stats_aggregator import StatsAggregator
from task_auction_service.services.task_store import TaskStore
from tests.helpers import FixedClock

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear settings cache and app state between tests."""
    clear_settings_cache()
    reset_app_state()
    yield
    clear_settings_cache()
    reset_app_state()


@pytest.fixture
def clock() -> FixedClock:
    """Clock frozen at 2025-01-01T12:00:00Z."""
    return FixedClock()


@pytest.fixture
def policy() -> AuctionConfig:
    """Budget 50-2000, one-year horizon, seven-day bid edit window."""
    return AuctionConfig(
        budget_min=50,
        budget_max=2000,
        max_deadline_days=365,
        bid_edit_window_days=7,
        default_page_size=10,
        max_page_size=50,
    )


@pytest.fixture
def limits() -> LimitsConfig:
    """Generous limits so only dedicated tests hit them."""
    return LimitsConfig(
        max_pending_bids_per_user=20,
        window_seconds=3600,
        max_tasks_per_window=50,
        max_bids_per_window=50,
    )


@pytest.fixture
def database(tmp_path: Path) -> Iterator[Database]:
    """A fresh SQLite database file."""
    db = Database(str(tmp_path / "auction.db"))
    yield db
    db.close()


@pytest.fixture
def task_store(database: Database) -> TaskStore:
    return TaskStore(database)


@pytest.fixture
def bid_store(database: Database, task_store: TaskStore) -> BidStore:
    return BidStore(database)


@pytest.fixture
def publisher() -> AsyncMock:
    """Event publisher that records every call."""
    mock = AsyncMock()
    mock.publish = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def engine(
    database: Database,
    task_store: TaskStore,
    bid_store: BidStore,
    limits: LimitsConfig,
    policy: AuctionConfig,
    publisher: AsyncMock,
    clock: FixedClock,
) -> AuctionEngine:
    """AuctionEngine over the temp database with a fixed clock and a mocked publisher."""
    return AuctionEngine(
        db=database,
        task_store=task_store,
        bid_store=bid_store,
        rate_limiter=RateLimiter(limits, task_store, bid_store),
        stats=StatsAggregator(bid_store),
        publisher=publisher,
        clock=clock,
        policy=policy,
    )
