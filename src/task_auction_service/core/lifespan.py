"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from task_auction_service.clients.identity_client import IdentityClient
from task_auction_service.clients.webhook_client import WebhookClient
from task_auction_service.config import get_safe_config, get_settings
from task_auction_service.core.state import init_app_state
from task_auction_service.logging import get_logger, setup_logging
from task_auction_service.services.auction_engine import AuctionEngine
from task_auction_service.services.bid_store import BidStore
from task_auction_service.services.clock import SystemClock
from task_auction_service.services.database import Database
from task_auction_service.services.event_publisher import (
    EventPublisher,
    LoggingEventPublisher,
    WebhookEventPublisher,
)
from task_auction_service.services.rate_limiter import RateLimiter
from task_auction_service.services.stats_aggregator import StatsAggregator
from task_auction_service.services.task_store import TaskStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    database = Database(settings.database.path)
    state.database = database
    task_store = TaskStore(database)
    bid_store = BidStore(database)

    identity_client = IdentityClient(
        base_url=settings.identity.base_url,
        verify_path=settings.identity.verify_path,
        timeout_seconds=settings.identity.timeout_seconds,
    )
    state.identity_client = identity_client

    publisher: EventPublisher
    if settings.events.webhook_url:
        publisher = WebhookEventPublisher(
            WebhookClient(settings.events.webhook_url, settings.events.timeout_seconds)
        )
    else:
        publisher = LoggingEventPublisher()
    state.event_publisher = publisher

    state.auction_engine = AuctionEngine(
        db=database,
        task_store=task_store,
        bid_store=bid_store,
        rate_limiter=RateLimiter(settings.limits, task_store, bid_store),
        stats=StatsAggregator(bid_store),
        publisher=publisher,
        clock=SystemClock(),
        policy=settings.auction,
    )

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "config": get_safe_config(),
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    await identity_client.close()
    await publisher.close()
    database.close()
