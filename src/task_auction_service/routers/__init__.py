"""API routers."""

from task_auction_service.routers import bids, health, tasks

__all__ = ["bids", "health", "tasks"]
